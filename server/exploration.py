"""Entity exploration: everything the docsets know about one named entity."""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from indexer.docset_adapter import DEFAULT_EXPLORE_TYPES, EntityMatches
from indexer.models import ExternalResult, SearchOptions, dedupe_entries, prefer_entry
from server.parallel_search import ParallelSearchManager

logger = logging.getLogger(__name__)

BUCKETS = (
    'classes', 'structs', 'protocols', 'methods', 'properties', 'functions',
    'enums', 'constants', 'samples', 'guides', 'other',
)

# Docset entry types per bucket. Dash-style variants land with their base type.
TYPE_BUCKETS: Dict[str, str] = {
    'Class': 'classes',
    'Struct': 'structs',
    'Protocol': 'protocols',
    'Interface': 'protocols',
    'Method': 'methods',
    'Instance Method': 'methods',
    'Type Method': 'methods',
    'Constructor': 'methods',
    'Property': 'properties',
    'Instance Property': 'properties',
    'Type Property': 'properties',
    'Function': 'functions',
    'Enum': 'enums',
    'Enumeration': 'enums',
    'Constant': 'constants',
    'Sample': 'samples',
    'Guide': 'guides',
}


def bucket_for(entry_type: str) -> str:
    return TYPE_BUCKETS.get(entry_type, 'other')


@dataclass
class EntityExploration:
    """Bucketed exploration result.

    Buckets are truncated for display; ``counts`` holds the full per-bucket
    totals (plus ``framework``: 0 or 1).
    """
    name: str
    framework: Optional[ExternalResult] = None
    classes: List[ExternalResult] = field(default_factory=list)
    structs: List[ExternalResult] = field(default_factory=list)
    protocols: List[ExternalResult] = field(default_factory=list)
    methods: List[ExternalResult] = field(default_factory=list)
    properties: List[ExternalResult] = field(default_factory=list)
    functions: List[ExternalResult] = field(default_factory=list)
    enums: List[ExternalResult] = field(default_factory=list)
    constants: List[ExternalResult] = field(default_factory=list)
    samples: List[ExternalResult] = field(default_factory=list)
    guides: List[ExternalResult] = field(default_factory=list)
    other: List[ExternalResult] = field(default_factory=list)
    counts: Dict[str, int] = field(default_factory=dict)

    def __post_init__(self):
        for bucket in ('framework',) + BUCKETS:
            self.counts.setdefault(bucket, 0)

    def bucket(self, name: str) -> List[ExternalResult]:
        return getattr(self, name)

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    @property
    def is_empty(self) -> bool:
        return self.total == 0

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            'name': self.name,
            'framework': self.framework.to_scored().to_dict() if self.framework else None,
        }
        for bucket in BUCKETS:
            data[bucket] = [entry.to_scored().to_dict() for entry in self.bucket(bucket)]
        data['counts'] = dict(self.counts)
        return data


class EntityExplorer:
    """Fans exploration out to the docsets and aggregates the rows."""

    def __init__(self, manager: ParallelSearchManager):
        self.manager = manager

    async def explore(self, name: str, options: Optional[SearchOptions] = None,
                      timeout: Optional[float] = None) -> EntityExploration:
        if name is None:
            raise TypeError("name must be a string, not None")
        if options is None:
            options = SearchOptions()
        if not isinstance(options, SearchOptions):
            raise TypeError(f"options must be SearchOptions, not {type(options).__name__}")

        name = name.strip()
        if not name:
            return EntityExploration(name="")

        include_types = (options.type_filter,) if options.type_filter else DEFAULT_EXPLORE_TYPES
        matches = await self.manager.explore_across_sources(
            name, include_types, options.source_filter, timeout=timeout)
        return self.aggregate(name, matches, options.limit)

    @staticmethod
    def _rank(name: str):
        member_prefix = f"{name}."

        def key(entry: ExternalResult):
            if entry.name == name:
                closeness = 0
            elif entry.name.startswith(member_prefix):
                closeness = 1
            else:
                closeness = 2
            return (closeness, len(entry.name), entry.name, entry.entry_type, entry.source_id)
        return key

    def aggregate(self, name: str, matches: Sequence[EntityMatches], limit: int = 20) -> EntityExploration:
        """Bucket, deduplicate and count exploration rows from several docsets."""
        result = EntityExploration(name=name)

        framework = None
        for source_matches in matches:
            if source_matches.framework is not None:
                framework = source_matches.framework if framework is None \
                    else prefer_entry(framework, source_matches.framework)
        result.framework = framework
        result.counts['framework'] = 1 if framework is not None else 0

        unique = dedupe_entries(entry for m in matches for entry in m.entries)
        if framework is not None:
            unique.pop(framework.dedup_key, None)

        grouped: Dict[str, List[ExternalResult]] = {bucket: [] for bucket in BUCKETS}
        for entry in unique.values():
            grouped[bucket_for(entry.entry_type)].append(entry)

        rank = self._rank(name)
        for bucket, entries in grouped.items():
            entries.sort(key=rank)
            result.counts[bucket] = len(entries)
            setattr(result, bucket, entries[:limit])

        # Sources that hit the row cap only returned part of their entries.
        # The same entity may sit in several docsets, so the widest per-type
        # total stands in for the union, not the sum.
        seen: Dict[str, set] = {}
        widest: Dict[str, int] = {}
        for source_matches in matches:
            for entry in source_matches.entries:
                seen.setdefault(entry.entry_type, set()).add(entry.name)
            if source_matches.truncated:
                for entry_type, total in source_matches.type_totals.items():
                    widest[entry_type] = max(widest.get(entry_type, 0), total)
        for entry_type, total in widest.items():
            missing = total - len(seen.get(entry_type, ()))
            if missing > 0:
                result.counts[bucket_for(entry_type)] += missing

        logger.debug(f"Explored {name!r}: {result.total} entries across {len(matches)} docset(s)")
        return result
