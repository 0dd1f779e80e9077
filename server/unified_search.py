"""Unified search over the local corpus and every installed docset.

This is the engine's public surface. A query is normalized once, the local
corpus and the docset fan-out run side by side, and the merger produces one
ranked list. Repeated fruitless queries earn a one-time fallback suggestion.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple

from config.search import SearchConfig
from indexer.local_index import LocalCorpusIndex
from indexer.models import LOCAL_SOURCE_ID, Document, Origin, ScoredResult, SearchOptions
from indexer.terms import TermExtractor
from observability.logging import get_structured_logger, log_performance
from observability.prometheus_metrics import (
    record_fallback_suggestion,
    record_search_metrics,
    set_local_document_count,
)
from server.attempt_tracker import SearchAttemptTracker
from server.exploration import EntityExploration, EntityExplorer
from server.parallel_search import ParallelSearchManager
from server.ranking import RankingMerger
from sources.loader import DocsetRegistry, MarkdownDocumentLoader

logger = logging.getLogger(__name__)
slog = get_structured_logger(__name__, component="unified_search")

FALLBACK_SUGGESTION = (
    "This query has come back empty several times. Try broader or different "
    "keywords, or consult an external resource such as a web search."
)


@dataclass
class SearchResponse:
    """Ranked results plus the fallback hint. Iterates over ``results``."""
    query: str
    terms: Tuple[str, ...]
    results: List[ScoredResult] = field(default_factory=list)
    suggest_fallback: bool = False
    suggestion: Optional[str] = None

    def __iter__(self) -> Iterator[ScoredResult]:
        return iter(self.results)

    def __len__(self) -> int:
        return len(self.results)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'query': self.query,
            'terms': list(self.terms),
            'results': [r.to_dict() for r in self.results],
            'suggest_fallback': self.suggest_fallback,
            'suggestion': self.suggestion,
        }


@dataclass(frozen=True)
class SourceSummary:
    id: str
    name: str
    entry_count: int
    origin: Origin
    available: bool = True


class UnifiedSearchService:
    """Search engine facade.

    Collaborators are injected; anything left out is built from ``config``.
    The service closes only what it built itself (worker pool, tracker and
    registry); an injected tracker or registry belongs to the caller.
    """

    def __init__(self, local_index: Optional[LocalCorpusIndex] = None,
                 manager: Optional[ParallelSearchManager] = None,
                 config: Optional[SearchConfig] = None,
                 tracker: Optional[SearchAttemptTracker] = None,
                 extractor: Optional[TermExtractor] = None,
                 merger: Optional[RankingMerger] = None,
                 registry=None):
        self.config = config or SearchConfig()
        self.extractor = extractor if extractor is not None else TermExtractor()
        # Collaborators may be empty (and so falsy) until loaded
        self.local_index = local_index if local_index is not None else LocalCorpusIndex(weights=self.config.local)
        self.manager = manager if manager is not None else ParallelSearchManager(self.config.fanout)
        self.merger = merger if merger is not None else RankingMerger(self.config.merge)
        self.explorer = EntityExplorer(self.manager)

        self._owns_tracker = tracker is None
        if tracker is None:
            tracker = SearchAttemptTracker.from_config(self.config.attempts, normalizer=self.extractor.normalize_query)
        self.tracker = tracker

        self.registry = registry
        self._owns_registry = False
        self._maintenance_task: Optional[asyncio.Task] = None
        self._closed = False

        if registry is not None:
            for adapter in registry.open_all():
                self.manager.register(adapter)

    @classmethod
    def from_config(cls, config: Optional[SearchConfig] = None) -> 'UnifiedSearchService':
        """Build a service from configured paths: markdown docs and a docsets directory."""
        config = config or SearchConfig.from_env()
        loader = MarkdownDocumentLoader(config.docs_path) if config.docs_path else None
        registry = DocsetRegistry(config.docsets_path, weights=config.docset) if config.docsets_path else None

        service = cls(
            local_index=LocalCorpusIndex(loader=loader, weights=config.local),
            config=config,
            registry=registry,
        )
        service._owns_registry = registry is not None
        service.reload()
        return service

    @staticmethod
    def _check_options(options: Optional[SearchOptions]) -> SearchOptions:
        if options is None:
            return SearchOptions()
        if not isinstance(options, SearchOptions):
            raise TypeError(f"options must be SearchOptions, not {type(options).__name__}")
        return options

    @log_performance(threshold_ms=1000.0)
    async def search(self, query: str, options: Optional[SearchOptions] = None,
                     timeout: Optional[float] = None) -> SearchResponse:
        """Ranked results for ``query`` across the local corpus and the docsets.

        Args:
            query: Raw query text. None is rejected with TypeError.
            options: Limit, source filter and type filter.
            timeout: Optional deadline for the docset fan-out, in seconds.
        """
        if query is None:
            raise TypeError("query must be a string, not None")
        options = self._check_options(options)
        start = time.perf_counter()

        terms = self.extractor.extract(query)
        results: List[ScoredResult] = []

        if terms:
            fan_out = asyncio.ensure_future(self.manager.search_across_sources(terms, options, timeout))
            try:
                # Let the fan-out hand its calls to the worker pool before the local pass
                await asyncio.sleep(0)
                local = [] if options.source_filter else self.local_index.search(terms, query)
                external = await fan_out
            except BaseException:
                fan_out.cancel()
                raise
            results = self.merger.combine(local, external, query)[:options.limit]
        else:
            logger.debug(f"Query {query!r} has no significant terms, no source queried")

        response = SearchResponse(query=query, terms=terms, results=results)
        if results:
            self.tracker.record_success(query)
        elif self.tracker.record_empty(query):
            response.suggest_fallback = True
            response.suggestion = FALLBACK_SUGGESTION
            record_fallback_suggestion()

        duration = time.perf_counter() - start
        record_search_metrics("unified", duration, len(results))
        slog.debug("Search completed", query=query, terms=len(terms), results=len(results),
                   duration_ms=round(duration * 1000, 2))
        return response

    @log_performance(threshold_ms=1000.0)
    async def explore_entity(self, name: str, options: Optional[SearchOptions] = None,
                             timeout: Optional[float] = None) -> EntityExploration:
        """Every docset entry belonging to ``name``, bucketed by kind."""
        start = time.perf_counter()
        exploration = await self.explorer.explore(name, self._check_options(options), timeout=timeout)
        record_search_metrics("explore", time.perf_counter() - start, exploration.total)
        return exploration

    # Rule documents from the local corpus

    def get_global_rules(self) -> List[Document]:
        return self.local_index.global_rules()

    def get_contextual_docs(self, file_path: str) -> List[Document]:
        """Local documents whose file patterns cover ``file_path``."""
        return self.local_index.contextual_docs(file_path)

    def get_documents_by_category(self, category: str) -> List[Document]:
        return self.local_index.documents_by_category(category)

    def reload(self) -> int:
        """Reload the local corpus; returns the document count."""
        count = self.local_index.reload()
        set_local_document_count(count)
        return count

    initialize = reload

    def get_source_summary(self) -> List[SourceSummary]:
        summaries = [SourceSummary(
            id=LOCAL_SOURCE_ID,
            name="Project documentation",
            entry_count=self.local_index.document_count,
            origin=Origin.LOCAL,
        )]
        for adapter in self.manager.adapters:
            summaries.append(SourceSummary(
                id=adapter.source_id,
                name=adapter.name,
                entry_count=adapter.entry_count(),
                origin=Origin.EXTERNAL,
                available=adapter.available,
            ))
        return summaries

    def get_source_stats(self) -> Dict[str, Any]:
        """Per-source entry counts and type breakdowns, plus cache statistics."""
        local_types: Dict[str, int] = {}
        for doc in self.local_index.documents():
            category = str(doc.metadata.get('category') or "document")
            local_types[category] = local_types.get(category, 0) + 1

        sources = []
        for adapter in self.manager.adapters:
            types = adapter.type_counts()
            sources.append({
                'id': adapter.source_id,
                'name': adapter.name,
                'platform': adapter.source.platform,
                'available': adapter.available,
                'entry_count': sum(types.values()),
                'types': types,
            })

        return {
            'local': {
                'document_count': self.local_index.document_count,
                'types': local_types,
                'last_loaded': self.local_index.last_loaded.isoformat() if self.local_index.last_loaded else None,
            },
            'sources': sources,
            'cache': self.manager.cache.stats(),
            'tracked_queries': len(self.tracker),
        }

    # Maintenance

    def run_maintenance(self) -> Dict[str, int]:
        """One sweep of expired cache entries and idle attempt counters."""
        expired = self.manager.cache.cleanup_expired()
        purged = self.tracker.purge_idle()
        if expired or purged:
            logger.debug(f"Maintenance sweep: {expired} cache entries expired, {purged} counters purged")
        return {'cache_expired': expired, 'counters_purged': purged}

    def start_maintenance(self) -> asyncio.Task:
        """Start the periodic sweep on the running event loop."""
        async def sweep():
            while True:
                await asyncio.sleep(self.config.sweep_interval)
                try:
                    self.run_maintenance()
                except Exception as e:
                    logger.error(f"Maintenance sweep failed: {e}", exc_info=True)

        if self._maintenance_task is None or self._maintenance_task.done():
            self._maintenance_task = asyncio.create_task(sweep())
        return self._maintenance_task

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True

        if self._maintenance_task is not None:
            self._maintenance_task.cancel()
            try:
                await self._maintenance_task
            except asyncio.CancelledError:
                pass
            self._maintenance_task = None

        self.manager.close()
        if self._owns_tracker:
            self.tracker.close()
        if self._owns_registry and self.registry is not None:
            self.registry.close_all()
        logger.info("Unified search service closed")

    async def __aenter__(self) -> 'UnifiedSearchService':
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()
