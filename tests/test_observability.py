import json
import logging
import sys
import os

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from observability.logging import ColoredFormatter, JSONFormatter, get_structured_logger, log_performance, setup_logging
from observability.prometheus_metrics import (
    docbridge_registry,
    generate_metrics,
    get_metrics_summary,
    record_adapter_call,
    record_cache_lookup,
    record_search_metrics,
)


def make_record(message="hello", **extra):
    record = logging.LogRecord("docbridge.test", logging.INFO, __file__, 10, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestFormatters:

    def test_json_formatter_groups_context(self):
        output = json.loads(JSONFormatter().format(make_record(ctx_query="widget", duration_ms=3.5)))

        assert output["message"] == "hello"
        assert output["service"] == "docbridge"
        assert output["context"] == {"query": "widget"}
        assert output["duration_ms"] == 3.5

    def test_colored_formatter_without_colors(self):
        line = ColoredFormatter(use_colors=False).format(make_record(ctx_source="apple"))
        assert line.endswith("| docbridge.test | hello | source=apple")
        assert "\033[" not in line

    def test_structured_logger_passes_context(self, caplog):
        slog = get_structured_logger("docbridge.test", component="search")
        with caplog.at_level(logging.INFO, logger="docbridge.test"):
            slog.bind(query="widget").info("searched", results=3)

        record = caplog.records[-1]
        assert record.ctx_component == "search"
        assert record.ctx_query == "widget"
        assert record.ctx_results == 3


class TestLogPerformance:

    def test_slow_sync_call_warns(self, caplog):
        @log_performance(logger_name="docbridge.perf", threshold_ms=0.0)
        def work():
            return 42

        with caplog.at_level(logging.WARNING, logger="docbridge.perf"):
            assert work() == 42
        assert any("Slow function execution" in r.getMessage() for r in caplog.records)

    @pytest.mark.asyncio
    async def test_async_failure_logged_and_raised(self, caplog):
        @log_performance(logger_name="docbridge.perf")
        async def broken():
            raise ValueError("nope")

        with caplog.at_level(logging.ERROR, logger="docbridge.perf"):
            with pytest.raises(ValueError):
                await broken()
        assert any("Function failed" in r.getMessage() for r in caplog.records)

    def test_wraps_preserves_name(self):
        @log_performance()
        def named():
            pass
        assert named.__name__ == "named"


class TestPrometheusMetrics:

    def test_counters_show_up_in_summary(self):
        before = get_metrics_summary()

        record_search_metrics("unified", 0.01, 3)
        record_adapter_call("apple", "timeout", 2.0)
        record_cache_lookup(True)

        after = get_metrics_summary()
        assert after["search_requests_total"] == before["search_requests_total"] + 1
        assert after["adapter_calls_total"] == before["adapter_calls_total"] + 1
        assert after["cache_lookups_total"] == before["cache_lookups_total"] + 1
        assert after["errors_total"] == before["errors_total"] + 1

    def test_adapter_outcomes_labelled_per_source(self):
        labels = {"source": "apple", "outcome": "success"}
        before = docbridge_registry.get_sample_value("docbridge_adapter_calls_total", labels) or 0.0

        record_adapter_call("apple", "success", 0.01)

        assert docbridge_registry.get_sample_value("docbridge_adapter_calls_total", labels) == before + 1
        assert b"docbridge_adapter_calls_total" in generate_metrics()


class TestSetupLogging:

    @pytest.fixture
    def root_logger(self):
        root = logging.getLogger()
        handlers, level = root.handlers[:], root.level
        yield root
        for handler in root.handlers:
            handler.close()
        root.handlers[:] = handlers
        root.setLevel(level)

    def test_file_handler_writes_json(self, root_logger, tmp_path):
        log_file = tmp_path / "logs" / "docbridge.log"
        setup_logging(level="debug", log_file=str(log_file), use_colors=False)

        logging.getLogger("docbridge.test").info("indexed", extra={"ctx_documents": 3})
        for handler in root_logger.handlers:
            handler.flush()

        entry = json.loads(log_file.read_text().splitlines()[-1])
        assert entry["message"] == "indexed"
        assert entry["context"] == {"documents": 3}
        assert root_logger.level == logging.DEBUG

    def test_console_handler_on_stderr(self, root_logger):
        setup_logging(use_json=True)

        assert len(root_logger.handlers) == 1
        console = root_logger.handlers[0]
        assert console.stream is sys.stderr
        assert isinstance(console.formatter, JSONFormatter)
