"""Parallel, bounded-time search across registered docset adapters.

Every adapter call runs on a worker thread and is bounded by the configured
per-adapter timeout, counted from the moment a worker starts the call.
The manager grows its own pool to the number of docsets queried, so a
fan-out takes roughly one timeout in the worst case no matter how many
docsets are installed. A failing or slow adapter contributes nothing to that
query and never affects the other adapters.
"""

import asyncio
import functools
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from config.search import FanOutConfig
from indexer.docset_adapter import DEFAULT_EXPLORE_TYPES, DocsetAdapter, EntityMatches, QueryInterruptedError
from indexer.models import ExternalResult, SearchOptions
from observability.prometheus_metrics import record_adapter_call, record_cache_lookup
from server.result_cache import CacheKey, MemoryCache

logger = logging.getLogger(__name__)


def _resolve(future: asyncio.Future) -> None:
    if not future.done():
        future.set_result(None)


class AdapterTimeoutError(Exception):
    """An adapter call exceeded the per-adapter timeout."""
    pass


class ParallelSearchManager:
    """Fans term searches out to every registered docset adapter.

    Adapters are kept in registration order; contributions are concatenated
    in that order. The manager never opens or closes adapter connections,
    that is the registry's job.
    """

    def __init__(self, config: Optional[FanOutConfig] = None,
                 cache: Optional[MemoryCache] = None,
                 executor: Optional[ThreadPoolExecutor] = None):
        self.config = config or FanOutConfig()
        self.cache = cache if cache is not None else MemoryCache(max_size=self.config.cache_max_size, ttl=self.config.cache_ttl)
        self._owns_executor = executor is None
        self._pool_size = self.config.max_workers
        self._executor = executor or self._new_executor(self._pool_size)
        self._adapters: Dict[str, DocsetAdapter] = {}
        self._registry_lock = threading.Lock()
        self._failing: set = set()
        self._closed = False

    @staticmethod
    def _new_executor(size: int) -> ThreadPoolExecutor:
        return ThreadPoolExecutor(max_workers=size, thread_name_prefix="docbridge-adapter")

    def _ensure_capacity(self, needed: int) -> None:
        """Grow the owned pool so every target gets a worker at once."""
        if not self._owns_executor or needed <= self._pool_size:
            return
        previous = self._executor
        self._pool_size = needed
        self._executor = self._new_executor(needed)
        # Calls already queued on the old pool still run there
        previous.shutdown(wait=False)
        logger.debug(f"Adapter pool grown to {needed} workers")

    # Registration

    def register(self, adapter: DocsetAdapter) -> None:
        with self._registry_lock:
            if adapter.source_id in self._adapters:
                logger.warning(f"Replacing registered adapter for source {adapter.source_id!r}")
            self._adapters[adapter.source_id] = adapter
        self.cache.clear()
        logger.info(f"Registered docset source {adapter.source_id!r} ({adapter.name})")

    def unregister(self, source_id: str) -> Optional[DocsetAdapter]:
        with self._registry_lock:
            adapter = self._adapters.pop(source_id, None)
        self._failing.discard(source_id)
        self.cache.clear()
        if adapter is not None:
            logger.info(f"Unregistered docset source {source_id!r}")
        return adapter

    @property
    def adapters(self) -> List[DocsetAdapter]:
        with self._registry_lock:
            return list(self._adapters.values())

    def get_adapter(self, source_id: str) -> Optional[DocsetAdapter]:
        return self._adapters.get(source_id)

    def _targets(self, source_filter: Optional[str]) -> List[DocsetAdapter]:
        if source_filter is None:
            return self.adapters
        adapter = self.get_adapter(source_filter)
        if adapter is None:
            logger.debug(f"Source filter {source_filter!r} matches no registered docset")
            return []
        return [adapter]

    # Failure bookkeeping: one warning per failure streak

    def _record_failure(self, adapter: DocsetAdapter, error: BaseException) -> None:
        if adapter.source_id not in self._failing:
            self._failing.add(adapter.source_id)
            logger.warning(f"Docset {adapter.name!r} failed, skipping its results: {error}")
        else:
            logger.debug(f"Docset {adapter.name!r} still failing: {error}")

    def _record_success(self, adapter: DocsetAdapter) -> None:
        if adapter.source_id in self._failing:
            self._failing.discard(adapter.source_id)
            logger.info(f"Docset {adapter.name!r} recovered")

    # Fan-out

    async def _call(self, adapter: DocsetAdapter, func: Callable, *args) -> Tuple[Any, bool]:
        """Run one adapter call on the pool.

        The per-adapter timeout starts when a worker picks the call up, so
        time spent queued behind other docsets never counts against it.

        Returns ``(result, complete)``; ``result`` is None when the call
        failed, ``complete`` is False when the failure was transient (timeout
        or interruption) and the combined result must not be cached.
        """
        loop = asyncio.get_running_loop()
        started = loop.create_future()

        def run():
            loop.call_soon_threadsafe(_resolve, started)
            return func(*args)

        future = loop.run_in_executor(self._executor, run)
        # A call cancelled before it ever ran must still release the waiter
        future.add_done_callback(lambda _: _resolve(started))
        start = time.perf_counter()
        try:
            await started
            start = time.perf_counter()
            result = await asyncio.wait_for(future, timeout=self.config.adapter_timeout)
        except asyncio.TimeoutError:
            adapter.interrupt()
            self._record_failure(adapter, AdapterTimeoutError(
                f"no answer within {self.config.adapter_timeout}s"))
            record_adapter_call(adapter.source_id, "timeout", time.perf_counter() - start)
            return None, False
        except asyncio.CancelledError:
            future.cancel()
            adapter.interrupt()
            record_adapter_call(adapter.source_id, "cancelled")
            raise
        except QueryInterruptedError as e:
            logger.debug(f"Docset {adapter.name!r} call interrupted: {e}")
            record_adapter_call(adapter.source_id, "cancelled", time.perf_counter() - start)
            return None, False
        except Exception as e:
            self._record_failure(adapter, e)
            record_adapter_call(adapter.source_id, "error", time.perf_counter() - start)
            return None, True

        self._record_success(adapter)
        record_adapter_call(adapter.source_id, "success", time.perf_counter() - start)
        return result, True

    async def _fan_out(self, targets: Sequence[DocsetAdapter], method: str, *args,
                       timeout: Optional[float] = None) -> Tuple[List[Any], bool]:
        """Call ``method`` on every target concurrently.

        Returns per-target results in target order (None for failed or
        abandoned calls) and whether every call completed.
        """
        if self._closed:
            raise RuntimeError("ParallelSearchManager is closed")
        self._ensure_capacity(len(targets))

        tasks = [
            asyncio.ensure_future(self._call(adapter, getattr(adapter, method), *args))
            for adapter in targets
        ]
        try:
            done, pending = await asyncio.wait(tasks, timeout=timeout)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        if pending:
            logger.warning(f"Fan-out deadline of {timeout}s reached, abandoning {len(pending)} docset call(s)")
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        results = []
        complete = not pending
        for task in tasks:
            if task in done:
                value, finished = task.result()
                complete = complete and finished
                results.append(value)
            else:
                results.append(None)
        return results, complete

    async def search_across_sources(self, terms: Sequence[str], options: Optional[SearchOptions] = None,
                                    timeout: Optional[float] = None) -> List[ExternalResult]:
        """Search every (or the filtered) docset for ``terms``.

        Args:
            terms: Normalized search terms.
            options: Limit, source and type filters.
            timeout: Optional overall deadline in seconds. Calls still running
                at the deadline are abandoned and the partial result is not
                cached.
        """
        if options is None:
            options = SearchOptions()
        if not isinstance(options, SearchOptions):
            raise TypeError(f"options must be SearchOptions, not {type(options).__name__}")

        terms = tuple(terms)
        if not terms:
            return []

        targets = self._targets(options.source_filter)
        if not targets:
            return []

        key = CacheKey.search_results(terms, options.signature())
        cached = self.cache.get(key)
        record_cache_lookup(cached is not None)
        if cached is not None:
            logger.debug(f"Fan-out cache hit for {terms}")
            return list(cached)

        contributions, complete = await self._fan_out(
            targets, 'search_with_terms', terms, options, timeout=timeout)

        results = [entry for part in contributions if part for entry in part]
        if complete:
            self.cache.set(key, results)
        return results

    async def explore_across_sources(self, name: str,
                                     include_types: Sequence[str] = DEFAULT_EXPLORE_TYPES,
                                     source_filter: Optional[str] = None,
                                     timeout: Optional[float] = None) -> List[EntityMatches]:
        """Exploration rows from every (or the filtered) docset, failed ones omitted."""
        if not name or not name.strip():
            return []
        targets = self._targets(source_filter)
        if not targets:
            return []

        contributions, _ = await self._fan_out(
            targets, 'explore_entity', name.strip(), tuple(include_types), self.config.explore_row_cap,
            timeout=timeout)
        return [matches for matches in contributions if matches is not None]

    def clear_cache(self) -> None:
        self.cache.clear()

    def close(self) -> None:
        """Drop cached results and stop the worker pool."""
        if self._closed:
            return
        self._closed = True
        self.cache.clear()
        if self._owns_executor:
            self._executor.shutdown(wait=False, cancel_futures=True)
        logger.info("Parallel search manager closed")
