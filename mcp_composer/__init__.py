"""MCP Composer - compose many MCP backends into one namespaced capability provider."""

from mcp_composer.chains import ChainDefinition, ChainOutput, ChainStep
from mcp_composer.composer import ServerComposer
from mcp_composer.config import ComposerConfig, load_composer_config
from mcp_composer.mcp import NAMESPACE_SEPARATOR, BackendConfig, ClientIdentity, TransportType

__version__ = "0.1.0"

__all__ = [
    "ServerComposer",
    "ComposerConfig",
    "load_composer_config",
    "ChainDefinition",
    "ChainOutput",
    "ChainStep",
    "BackendConfig",
    "ClientIdentity",
    "TransportType",
    "NAMESPACE_SEPARATOR",
]
