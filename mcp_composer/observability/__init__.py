"""Observability module for the MCP composer.

Provides structlog logging configuration and OpenTelemetry tracing.

Quick Start:
    from mcp_composer.observability import init_observability, get_tracer

    # Initialize on startup
    init_observability(level="INFO")

    # Get tracer for creating spans
    tracer = get_tracer()
"""

from mcp_composer.observability.log_config import configure_logging
from mcp_composer.observability.tracing import (
    get_tracer,
    init_tracing,
    is_otel_enabled,
    shutdown_tracing,
    truncate,
)


def init_observability(level: str = "INFO", json_logs: bool = False) -> None:
    """Initialize logging and tracing.

    Args:
        level: Root log level
        json_logs: Emit JSON log lines
    """
    configure_logging(level=level, json_logs=json_logs)
    init_tracing()


def shutdown_observability() -> None:
    """Shutdown observability components."""
    shutdown_tracing()


__all__ = [
    "init_observability",
    "shutdown_observability",
    "configure_logging",
    "init_tracing",
    "get_tracer",
    "is_otel_enabled",
    "shutdown_tracing",
    "truncate",
]
