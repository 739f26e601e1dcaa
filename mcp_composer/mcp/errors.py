"""Composer error taxonomy.

Failures that would leave the unified registry inconsistent (aggregation,
chain resolution) are raised to the immediate caller. Operational noise
(one backend down, one chain step failing, a connection failing to close)
is logged and represented as data instead.
"""

from __future__ import annotations


class ComposerError(Exception):
    """Base class for composer errors."""


class BackendConnectionError(ComposerError):
    """A backend connection could not be opened."""

    def __init__(self, backend: str, message: str) -> None:
        self.backend = backend
        super().__init__(f"Failed to connect to backend '{backend}': {message}")


class BackendNotFoundError(ComposerError):
    def __init__(self, backend: str) -> None:
        self.backend = backend
        super().__init__(f"Backend '{backend}' not found")


class CapabilityListingError(ComposerError):
    """Listing one kind of capability (tools, resources, prompts) failed."""

    def __init__(self, backend: str, kind: str, message: str) -> None:
        self.backend = backend
        self.kind = kind
        super().__init__(f"Failed to list {kind} for backend '{backend}': {message}")


class AggregationError(ComposerError):
    """Registering a backend capability into the unified registry failed."""


class SchemaConversionError(AggregationError):
    def __init__(self, name: str, message: str) -> None:
        self.name = name
        super().__init__(f"Failed to convert schema for {name}: {message}")


class ToolNotFoundError(ComposerError):
    def __init__(self, tool_name: str) -> None:
        self.tool_name = tool_name
        super().__init__(f"Tool not found: {tool_name}")


class ResourceNotFoundError(ComposerError):
    def __init__(self, uri: str) -> None:
        self.uri = uri
        super().__init__(f"Resource not found: {uri}")


class PromptNotFoundError(ComposerError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Prompt not found: {name}")


class ToolArgumentsError(ComposerError):
    """Arguments for a tool call did not pass its input validator."""

    def __init__(self, tool_name: str, message: str) -> None:
        self.tool_name = tool_name
        super().__init__(f"Invalid arguments for tool {tool_name}: {message}")


class ConfigurationError(ComposerError):
    """Composer configuration is invalid."""
