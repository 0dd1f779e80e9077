import sys
import os
from concurrent.futures import ThreadPoolExecutor

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from config.search import AttemptTrackerConfig
from server.attempt_tracker import SearchAttemptTracker


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestSearchAttemptTracker:
    """Test consecutive empty-search tracking."""

    def test_third_empty_search_triggers_and_resets(self):
        tracker = SearchAttemptTracker(threshold=3)

        assert tracker.record_empty("missing widget") is False
        assert tracker.record_empty("missing widget") is False
        assert tracker.record_empty("missing widget") is True
        assert tracker.count("missing widget") == 0

    def test_success_resets_the_streak(self):
        tracker = SearchAttemptTracker(threshold=2)
        tracker.record_empty("q")
        tracker.record_success("q")

        assert tracker.record_empty("q") is False
        assert tracker.count("q") == 1

    def test_queries_tracked_independently(self):
        tracker = SearchAttemptTracker(threshold=2)
        tracker.record_empty("alpha")
        assert tracker.record_empty("beta") is False
        assert tracker.record_empty("alpha") is True

    def test_default_key_ignores_case_and_spacing(self):
        tracker = SearchAttemptTracker(threshold=2)
        tracker.record_empty("Missing  Widget")
        assert tracker.record_empty("missing widget") is True

    def test_custom_normalizer(self):
        tracker = SearchAttemptTracker(threshold=2, normalizer=lambda q: q.strip("?"))
        tracker.record_empty("why?")
        assert tracker.record_empty("why") is True

    def test_purge_idle(self):
        clock = FakeClock()
        tracker = SearchAttemptTracker(threshold=5, idle_window=60, clock=clock)
        tracker.record_empty("old")
        clock.now = 50
        tracker.record_empty("recent")
        clock.now = 100

        assert tracker.purge_idle() == 1
        assert tracker.count("old") == 0
        assert tracker.count("recent") == 1
        assert len(tracker) == 1

    def test_concurrent_increments_are_atomic(self):
        tracker = SearchAttemptTracker(threshold=3)

        with ThreadPoolExecutor(max_workers=8) as pool:
            fired = list(pool.map(lambda _: tracker.record_empty("same"), range(300)))

        assert sum(fired) == 100
        assert tracker.count("same") == 0

    def test_closed_tracker_rejects_updates(self):
        tracker = SearchAttemptTracker()
        tracker.record_empty("q")
        tracker.close()

        assert len(tracker) == 0
        with pytest.raises(RuntimeError):
            tracker.record_empty("q")

    def test_from_config(self):
        tracker = SearchAttemptTracker.from_config(AttemptTrackerConfig(threshold=4, idle_window=10))
        assert tracker.threshold == 4
        assert tracker.idle_window == 10

    def test_threshold_must_be_positive(self):
        with pytest.raises(ValueError):
            SearchAttemptTracker(threshold=0)
