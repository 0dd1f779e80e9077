"""Tracking of repeated empty searches.

An agent that keeps rephrasing the same fruitless query is better served by
being told to look elsewhere. The tracker counts consecutive empty searches
per normalized query and signals once the threshold is reached.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from config.search import AttemptTrackerConfig

logger = logging.getLogger(__name__)


@dataclass
class AttemptCounter:
    count: int = 0
    last_seen_at: float = 0.0


def _default_key(query: str) -> str:
    return " ".join(query.lower().split())


class SearchAttemptTracker:
    """Lock-guarded map of empty-search counters.

    Owned by whoever constructs it; the search service closes the tracker it
    created itself and leaves injected ones alone.

    Args:
        threshold: Consecutive empty searches that trigger a suggestion.
        idle_window: Seconds after which an untouched counter is purged.
        normalizer: Maps a raw query to its tracking key.
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(self, threshold: int = 3, idle_window: float = 1800.0,
                 normalizer: Optional[Callable[[str], str]] = None,
                 clock: Callable[[], float] = time.monotonic):
        if threshold < 1:
            raise ValueError("threshold must be at least 1")
        self.threshold = threshold
        self.idle_window = idle_window
        self._normalize = normalizer or _default_key
        self._clock = clock
        self._counters: Dict[str, AttemptCounter] = {}
        self._lock = threading.Lock()
        self._closed = False

    @classmethod
    def from_config(cls, config: AttemptTrackerConfig, **kwargs) -> 'SearchAttemptTracker':
        return cls(threshold=config.threshold, idle_window=config.idle_window, **kwargs)

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError("SearchAttemptTracker is closed")

    def record_empty(self, query: str) -> bool:
        """Count an empty search; True when it reaches the threshold.

        Reaching the threshold resets the counter, so the suggestion is
        offered once per streak.
        """
        self._ensure_open()
        key = self._normalize(query)
        with self._lock:
            counter = self._counters.get(key)
            if counter is None:
                counter = self._counters[key] = AttemptCounter()
            counter.count += 1
            counter.last_seen_at = self._clock()
            reached = counter.count >= self.threshold
            if reached:
                del self._counters[key]
        if reached:
            logger.info(f"Query {key!r} came back empty {self.threshold} times in a row")
        return reached

    def record_success(self, query: str) -> None:
        self._ensure_open()
        key = self._normalize(query)
        with self._lock:
            self._counters.pop(key, None)

    def count(self, query: str) -> int:
        """Current consecutive-empty count for ``query``."""
        key = self._normalize(query)
        with self._lock:
            counter = self._counters.get(key)
            return counter.count if counter else 0

    def purge_idle(self) -> int:
        """Drop counters idle for longer than ``idle_window``; returns how many."""
        now = self._clock()
        with self._lock:
            idle = [k for k, c in self._counters.items() if now - c.last_seen_at > self.idle_window]
            for key in idle:
                del self._counters[key]
        if idle:
            logger.debug(f"Purged {len(idle)} idle search attempt counters")
        return len(idle)

    def __len__(self) -> int:
        return len(self._counters)

    def close(self) -> None:
        with self._lock:
            self._counters.clear()
            self._closed = True
