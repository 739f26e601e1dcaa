"""
Backend integration layer.

Connects to backend capability providers, keeps their connection lifecycle,
and aggregates their capabilities into one unified registry.

Architecture:
    ConnectionRegistry -> BackendClient -> Transport (stdio/HTTP/SSE)
    CapabilityAggregator -> CapabilityRegistry -> forwarders

Components:
    - BackendClient: one logical connection to a backend
    - ConnectionRegistry: configured backends, retry, reconnect, connection scopes
    - CapabilityAggregator: namespaced registration of backend capabilities
    - CapabilityRegistry: the unified tool/resource/prompt registry
"""

from mcp_composer.mcp.aggregator import NAMESPACE_SEPARATOR, CapabilityAggregator
from mcp_composer.mcp.capabilities import CapabilityRegistry
from mcp_composer.mcp.client import (
    BackendClient,
    BackendConfig,
    ClientIdentity,
    MCPError,
    PromptArgument,
    PromptDefinition,
    ResourceDefinition,
    ServerCapabilities,
    ToolDefinition,
    TransportType,
)
from mcp_composer.mcp.errors import (
    AggregationError,
    BackendConnectionError,
    BackendNotFoundError,
    CapabilityListingError,
    ComposerError,
    ConfigurationError,
    PromptNotFoundError,
    ResourceNotFoundError,
    SchemaConversionError,
    ToolArgumentsError,
    ToolNotFoundError,
)
from mcp_composer.mcp.forwarders import (
    BackendForwarder,
    LocalForwarder,
    PromptForwarder,
    ResourceForwarder,
    ToolForwarder,
)
from mcp_composer.mcp.registry import (
    BackendState,
    ConnectionRegistry,
    ConnectionScope,
    RetryPolicy,
)

__all__ = [
    # Client
    "BackendClient",
    "BackendConfig",
    "ClientIdentity",
    "MCPError",
    "TransportType",
    "ServerCapabilities",
    "ToolDefinition",
    "ResourceDefinition",
    "PromptDefinition",
    "PromptArgument",
    # Registry
    "ConnectionRegistry",
    "ConnectionScope",
    "BackendState",
    "RetryPolicy",
    # Aggregation
    "CapabilityAggregator",
    "CapabilityRegistry",
    "NAMESPACE_SEPARATOR",
    "LocalForwarder",
    "BackendForwarder",
    "ResourceForwarder",
    "PromptForwarder",
    "ToolForwarder",
    # Errors
    "ComposerError",
    "ConfigurationError",
    "BackendConnectionError",
    "BackendNotFoundError",
    "CapabilityListingError",
    "AggregationError",
    "SchemaConversionError",
    "ToolNotFoundError",
    "ResourceNotFoundError",
    "PromptNotFoundError",
    "ToolArgumentsError",
]
