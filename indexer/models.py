"""Shared result and document models.

Local documents and docset entries are scored by different substrates. Each
substrate produces its own result type (``LocalResult`` / ``ExternalResult``)
and both project onto the common ``ScoredResult`` view consumed by the merger
and the presentation layer.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional, Union


class Origin(str, Enum):
    """Which corpus a result came from."""
    LOCAL = "local"
    EXTERNAL = "external"


LOCAL_SOURCE_ID = "local"


def _normalize_keywords(raw: Any) -> FrozenSet[str]:
    if raw is None:
        return frozenset()
    if isinstance(raw, str):
        raw = [raw]
    return frozenset(str(k).strip().lower() for k in raw if str(k).strip())


@dataclass(frozen=True)
class Document:
    """A local, author-maintained document."""
    id: str
    title: str
    description: str = ""
    keywords: FrozenSet[str] = field(default_factory=frozenset)
    content: str = ""
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        # Keywords are matched case-insensitively, store them lowercased.
        object.__setattr__(self, "keywords", _normalize_keywords(self.keywords))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Document':
        """Create a Document from a loader-supplied mapping."""
        metadata = dict(data.get('metadata') or {})
        return cls(
            id=str(data['id']),
            title=str(data.get('title') or metadata.get('title') or data['id']),
            description=str(data.get('description') or metadata.get('description') or ""),
            keywords=data.get('keywords', metadata.get('keywords')),
            content=data.get('content') or "",
            metadata=metadata,
        )


@dataclass(frozen=True)
class SearchOptions:
    """Caller options for search and exploration.

    ``docset_id`` is accepted as an alias of ``source_filter``.
    """
    limit: int = 20
    source_filter: Optional[str] = None
    type_filter: Optional[str] = None
    docset_id: Optional[str] = None

    def __post_init__(self):
        if self.limit < 1:
            raise ValueError("limit must be at least 1")
        if self.source_filter is None and self.docset_id is not None:
            object.__setattr__(self, "source_filter", self.docset_id)

    def signature(self) -> Dict[str, Any]:
        """Options that change which results a fan-out returns."""
        return {
            'limit': self.limit,
            'source': self.source_filter,
            'type': self.type_filter,
        }


@dataclass(frozen=True)
class ScoredResult:
    """Common, immutable view of a ranked result."""
    source_id: str
    entry_id: str
    title: str
    origin: Origin
    entry_type: str
    score: float
    snippet: str = ""
    matched_terms: FrozenSet[str] = field(default_factory=frozenset)
    url: Optional[str] = None
    source_name: str = ""
    canonical: bool = False

    def with_score(self, score: float) -> 'ScoredResult':
        return replace(self, score=score)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            'source_id': self.source_id,
            'entry_id': self.entry_id,
            'title': self.title,
            'origin': self.origin.value,
            'entry_type': self.entry_type,
            'score': self.score,
            'snippet': self.snippet,
            'matched_terms': sorted(self.matched_terms),
            'url': self.url,
            'source_name': self.source_name,
            'canonical': self.canonical,
        }


@dataclass(frozen=True)
class LocalResult:
    """A local document that passed the relevance threshold."""
    document: Document
    score: float
    snippet: str
    matched_terms: FrozenSet[str]

    origin = Origin.LOCAL

    def to_scored(self) -> ScoredResult:
        doc = self.document
        return ScoredResult(
            source_id=LOCAL_SOURCE_ID,
            entry_id=doc.id,
            title=doc.title,
            origin=Origin.LOCAL,
            entry_type=str(doc.metadata.get('category') or "document"),
            score=self.score,
            snippet=self.snippet,
            matched_terms=self.matched_terms,
            url=doc.id,
            source_name="project",
        )


@dataclass(frozen=True)
class ExternalResult:
    """A docset index entry, optionally scored against a term set."""
    source_id: str
    source_name: str
    name: str
    entry_type: str
    path: str
    score: float = 0.0
    matched_terms: FrozenSet[str] = field(default_factory=frozenset)
    canonical: bool = False

    origin = Origin.EXTERNAL

    @property
    def dedup_key(self):
        return (self.name, self.entry_type)

    def to_scored(self) -> ScoredResult:
        return ScoredResult(
            source_id=self.source_id,
            entry_id=f"{self.source_id}:{self.name}",
            title=self.name,
            origin=Origin.EXTERNAL,
            entry_type=self.entry_type,
            score=self.score,
            snippet=f"{self.entry_type} in {self.source_name}",
            matched_terms=self.matched_terms,
            url=self.path,
            source_name=self.source_name,
            canonical=self.canonical,
        )


AnyResult = Union[LocalResult, ExternalResult]


def prefer_entry(current: ExternalResult, candidate: ExternalResult) -> ExternalResult:
    """Pick the representative of two entries describing the same API element.

    Canonical variants win; otherwise the higher score, then the lower
    ``(source_id, path)`` so the choice never depends on arrival order.
    """
    if candidate.canonical != current.canonical:
        return candidate if candidate.canonical else current
    if candidate.score != current.score:
        return candidate if candidate.score > current.score else current
    if (candidate.source_id, candidate.path) < (current.source_id, current.path):
        return candidate
    return current


def dedupe_entries(entries: Iterable[ExternalResult]) -> Dict[tuple, ExternalResult]:
    """Collapse entries sharing ``(name, type)`` into their preferred variant."""
    chosen: Dict[tuple, ExternalResult] = {}
    for entry in entries:
        existing = chosen.get(entry.dedup_key)
        chosen[entry.dedup_key] = entry if existing is None else prefer_entry(existing, entry)
    return chosen
