import logging

import pytest
import structlog

import mcp_composer.observability.tracing as tracing
from mcp_composer.observability import configure_logging, init_observability, shutdown_observability
from mcp_composer.observability.tracing import (
    _parse_headers,
    _should_enable_otel,
    get_tracer,
    init_tracing,
    is_otel_enabled,
    shutdown_tracing,
    truncate,
)


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    root.handlers = handlers
    root.setLevel(level)
    structlog.reset_defaults()


@pytest.fixture
def clean_tracing():
    tracing._tracer_provider = None
    tracing._otel_enabled = False
    yield
    shutdown_tracing()


def test_truncate():
    """Verify truncation logic."""
    assert truncate("hello", 10) == "hello"
    assert truncate("hello world", 5) == "he..."
    assert truncate(123, 10) == "123"
    assert len(truncate("x" * 5000)) == 4096


def test_parse_headers():
    assert _parse_headers("Authorization=Bearer abc, x-team = core") == {
        "Authorization": "Bearer abc",
        "x-team": "core",
    }
    assert _parse_headers(None) == {}
    assert _parse_headers("garbage") == {}


def test_should_enable_otel_logic(monkeypatch):
    """Test the enablement logic with different env vars."""
    monkeypatch.delenv("OTEL_EXPORTER_OTLP_ENDPOINT", raising=False)
    monkeypatch.setenv("OTEL_TRACING_ENABLED", "true")
    assert _should_enable_otel() is False

    monkeypatch.setenv("OTEL_EXPORTER_OTLP_ENDPOINT", "http://localhost:4318")
    assert _should_enable_otel() is True

    monkeypatch.setenv("OTEL_TRACING_ENABLED", "false")
    assert _should_enable_otel() is False


def test_init_tracing_disabled_without_endpoint(monkeypatch, clean_tracing):
    monkeypatch.delenv("OTEL_EXPORTER_OTLP_ENDPOINT", raising=False)

    assert init_tracing() is False
    assert is_otel_enabled() is False
    # A no-op tracer is still usable
    with get_tracer().start_as_current_span("chain.test") as span:
        span.set_attribute("chain.steps", 1)


def test_init_tracing_full(monkeypatch, clean_tracing):
    """Test full initialization path."""
    monkeypatch.setenv("OTEL_TRACING_ENABLED", "true")
    monkeypatch.setenv("OTEL_EXPORTER_OTLP_ENDPOINT", "http://localhost:4318/")
    monkeypatch.setenv("OTEL_EXPORTER_OTLP_HEADERS", "api-key=secret")

    assert init_tracing() is True
    assert is_otel_enabled() is True
    assert init_tracing() is True

    shutdown_tracing()
    assert is_otel_enabled() is False


def test_configure_logging_json(restore_logging):
    configure_logging(level="debug", json_logs=True)

    root = restore_logging
    assert root.level == logging.DEBUG
    assert len(root.handlers) == 1
    assert isinstance(root.handlers[0].formatter, structlog.stdlib.ProcessorFormatter)


def test_init_observability(monkeypatch, restore_logging, clean_tracing):
    monkeypatch.delenv("OTEL_EXPORTER_OTLP_ENDPOINT", raising=False)

    init_observability(level="WARNING")
    shutdown_observability()

    assert restore_logging.level == logging.WARNING
    assert is_otel_enabled() is False
