"""
Unified capability registry.

Explicit, owned mappings from exposed identifier to forwarder:

- tools, keyed by namespaced name (`<backend><separator><tool>`)
- resources, keyed by URI
- prompts, keyed by name

plus, per backend, the set of namespaced tool names it supports. Entries are
added at aggregation time and only removed when their backend is
disconnected. The first registration of a key wins; later ones are skipped.
"""

from __future__ import annotations

import structlog

from mcp_composer.mcp.forwarders import (
    BackendForwarder,
    PromptForwarder,
    ResourceForwarder,
    ToolForwarder,
)

logger = structlog.get_logger(__name__)


class CapabilityRegistry:
    """Namespaced tools, resources and prompts exposed by the composer."""

    def __init__(self):
        self.tools: dict[str, ToolForwarder] = {}
        self.resources: dict[str, ResourceForwarder] = {}
        self.prompts: dict[str, PromptForwarder] = {}
        self.backend_tools: dict[str, set[str]] = {}

    def has_tool(self, name: str) -> bool:
        return name in self.tools

    def get_tool(self, name: str) -> ToolForwarder | None:
        return self.tools.get(name)

    def get_resource(self, uri: str) -> ResourceForwarder | None:
        return self.resources.get(uri)

    def get_prompt(self, name: str) -> PromptForwarder | None:
        return self.prompts.get(name)

    def register_tool(self, forwarder: ToolForwarder) -> bool:
        if forwarder.name in self.tools:
            logger.info("Tool already exists, skipping", tool=forwarder.name)
            return False
        self.tools[forwarder.name] = forwarder
        return True

    def register_resource(self, forwarder: ResourceForwarder) -> bool:
        if forwarder.uri in self.resources:
            logger.info("Resource already exists, skipping", uri=forwarder.uri)
            return False
        self.resources[forwarder.uri] = forwarder
        return True

    def register_prompt(self, forwarder: PromptForwarder) -> bool:
        if forwarder.name in self.prompts:
            logger.info("Prompt already exists, skipping", prompt=forwarder.name)
            return False
        self.prompts[forwarder.name] = forwarder
        return True

    def set_backend_tools(self, backend: str, tool_names: set[str]) -> None:
        """Replace the set of namespaced tools a backend supports."""
        self.backend_tools[backend] = set(tool_names)

    def resolve_tool(self, requested: str, separator: str) -> tuple[str, ToolForwarder] | None:
        """
        Find the tool a caller refers to.

        An exact name wins; otherwise the first registered tool whose name
        ends with `<separator><requested>` is used, so a bare original name
        works when it is unambiguous.
        """
        forwarder = self.tools.get(requested)
        if forwarder is not None:
            return requested, forwarder

        suffix = f"{separator}{requested}"
        for name, forwarder in self.tools.items():
            if name.endswith(suffix):
                return name, forwarder
        return None

    def backend_for_tool(self, tool_name: str) -> str | None:
        """Return the backend whose tool set contains `tool_name`."""
        for backend, tool_names in self.backend_tools.items():
            if tool_name in tool_names:
                return backend
        return None

    def remove_backend(self, backend: str) -> None:
        """Drop every capability owned by `backend`."""
        for name in self.backend_tools.pop(backend, set()):
            forwarder = self.tools.get(name)
            if isinstance(forwarder, BackendForwarder) and forwarder.backend_name == backend:
                del self.tools[name]

        self.resources = {
            uri: fwd for uri, fwd in self.resources.items() if fwd.backend_name != backend
        }
        self.prompts = {
            name: fwd for name, fwd in self.prompts.items() if fwd.backend_name != backend
        }
