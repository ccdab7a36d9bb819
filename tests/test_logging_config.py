"""Tests for structured logging and deployment context propagation."""

import json
import logging
import time

import pytest

from bluegreen.logging_config.config import LogFormat, LoggingConfig, LogLevel
from bluegreen.logging_config.context import (
    DeploymentContext,
    generate_deployment_id,
    get_context_dict,
)
from bluegreen.logging_config.performance import PerformanceTimer, log_performance
from bluegreen.logging_config.setup import (
    ConsoleFormatter,
    StructuredFormatter,
    configure_logging,
)


def _current_id():
    return get_context_dict().get("deployment_id", "")


def _record(msg="test", lineno=1, **extra):
    record = logging.LogRecord(
        name="test", level=logging.INFO, pathname="test.py",
        lineno=lineno, msg=msg, args=(), exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestLoggingConfig:
    """Tests for logging configuration dataclasses."""

    def test_default_config_values(self):
        config = LoggingConfig()
        assert config.level == LogLevel.INFO
        assert config.format == LogFormat.CONSOLE
        assert config.include_caller is True
        assert config.slow_threshold_ms == 1000.0
        assert config.service_name == "bluegreen"

    def test_custom_config(self):
        config = LoggingConfig(level=LogLevel.DEBUG, format=LogFormat.JSON, service_name="x")
        assert config.level == LogLevel.DEBUG
        assert config.format == LogFormat.JSON
        assert config.service_name == "x"


class TestDeploymentContext:
    """Tests for deployment-scoped context."""

    def test_generate_deployment_id_unique(self):
        ids = {generate_deployment_id() for _ in range(100)}
        assert len(ids) == 100

    def test_context_sets_and_clears_values(self):
        with DeploymentContext(slot="green", version="1.2.0", deployment_id="dep-1"):
            assert _current_id() == "dep-1"
            ctx = get_context_dict()
            assert ctx["slot"] == "green"
            assert ctx["version"] == "1.2.0"
        assert _current_id() == ""
        assert get_context_dict() == {}

    def test_auto_generates_deployment_id(self):
        with DeploymentContext(slot="blue") as ctx:
            assert ctx.deployment_id != ""
            assert _current_id() == ctx.deployment_id

    def test_bind_extra_context(self):
        with DeploymentContext(slot="blue") as ctx:
            ctx.bind(phase="building")
            assert get_context_dict()["phase"] == "building"

    def test_nested_contexts_restore_outer(self):
        with DeploymentContext(deployment_id="outer"):
            with DeploymentContext(deployment_id="inner"):
                assert _current_id() == "inner"
            assert _current_id() == "outer"

    def test_elapsed_ms(self):
        with DeploymentContext() as ctx:
            time.sleep(0.01)
            assert ctx.elapsed_ms >= 10


class TestStructuredFormatter:
    """Tests for JSON structured log formatting."""

    def test_formats_as_json(self):
        parsed = json.loads(StructuredFormatter().format(_record("hello world")))
        assert parsed["message"] == "hello world"
        assert parsed["level"] == "INFO"
        assert parsed["logger"] == "test"
        assert parsed["service"] == "bluegreen"
        assert "timestamp" in parsed

    def test_caller_info_toggle(self):
        with_caller = json.loads(StructuredFormatter(include_caller=True).format(_record(lineno=42)))
        assert with_caller["line"] == 42
        without = json.loads(StructuredFormatter(include_caller=False).format(_record()))
        assert "line" not in without

    def test_includes_deployment_context(self):
        with DeploymentContext(slot="green", version="2.0", deployment_id="dep-9"):
            parsed = json.loads(StructuredFormatter().format(_record()))
        assert parsed["deployment_id"] == "dep-9"
        assert parsed["slot"] == "green"

    def test_includes_notification_extra(self):
        record = _record(notification={"event": "automated_rollback"}, error_rate=0.8)
        parsed = json.loads(StructuredFormatter().format(record))
        assert parsed["notification"]["event"] == "automated_rollback"
        assert parsed["error_rate"] == 0.8

    def test_includes_exception(self):
        try:
            raise ValueError("boom")
        except ValueError:
            import sys
            record = logging.LogRecord(
                name="test", level=logging.ERROR, pathname="test.py",
                lineno=1, msg="failed", args=(), exc_info=sys.exc_info(),
            )
        parsed = json.loads(StructuredFormatter().format(record))
        assert parsed["exception"]["type"] == "ValueError"
        assert parsed["exception"]["message"] == "boom"


class TestConsoleFormatter:
    """Tests for console output."""

    def test_includes_level_and_message(self):
        output = ConsoleFormatter().format(_record("switching"))
        assert "INFO" in output
        assert "switching" in output

    def test_includes_context(self):
        with DeploymentContext(slot="blue", deployment_id="d1"):
            output = ConsoleFormatter().format(_record())
        assert "slot=blue" in output
        assert "deployment_id=d1" in output


class TestConfigureLogging:
    """Tests for root logger setup."""

    def teardown_method(self):
        logging.getLogger().handlers.clear()

    def test_json_format(self):
        configure_logging(LoggingConfig(format=LogFormat.JSON))
        root = logging.getLogger()
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, StructuredFormatter)

    def test_console_format(self):
        configure_logging(LoggingConfig(format=LogFormat.CONSOLE))
        assert isinstance(logging.getLogger().handlers[0].formatter, ConsoleFormatter)

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("BLUEGREEN_LOG_LEVEL", "debug")
        monkeypatch.setenv("BLUEGREEN_LOG_FORMAT", "json")
        configure_logging(LoggingConfig(level=LogLevel.WARNING, format=LogFormat.CONSOLE))
        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert isinstance(root.handlers[0].formatter, StructuredFormatter)

    def test_quiets_httpx(self):
        configure_logging()
        assert logging.getLogger("httpx").level == logging.WARNING


class TestPerformance:
    """Tests for timing helpers."""

    def test_decorator_returns_value(self):
        @log_performance(threshold_ms=10000)
        def add(a, b):
            return a + b

        assert add(2, 3) == 5

    def test_decorator_reraises(self):
        @log_performance()
        def broken():
            raise RuntimeError("nope")

        with pytest.raises(RuntimeError):
            broken()

    def test_decorator_warns_on_slow_call(self, caplog):
        @log_performance(threshold_ms=0.001, logger_name="bluegreen.test")
        def slow():
            time.sleep(0.002)

        with caplog.at_level(logging.DEBUG, logger="bluegreen.test"):
            slow()
        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert len(warnings) == 1
        assert "Slow operation" in warnings[0].getMessage()
        assert warnings[0].duration_ms >= 0.001

    def test_timer_measures_duration(self):
        with PerformanceTimer("sleep") as timer:
            time.sleep(0.01)
        assert timer.duration_ms >= 10

    def test_timer_logs_slow_operation(self, caplog):
        with caplog.at_level(logging.INFO, logger="bluegreen.logging_config.performance"):
            with PerformanceTimer("build green", threshold_ms=0.001):
                time.sleep(0.002)
        assert any("build green took" in r.getMessage() for r in caplog.records)

    def test_timer_does_not_swallow(self):
        with pytest.raises(KeyError):
            with PerformanceTimer("op"):
                raise KeyError("k")
