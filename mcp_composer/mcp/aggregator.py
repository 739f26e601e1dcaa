"""
Capability Aggregator.

Turns one backend's declared tools, resources and prompts into forwarders in
the unified registry. Tools are namespaced as `<backend><separator><tool>`;
resources and prompts keep their original identifiers. A collision skips the
later registration. A failure while registering one capability aborts the
rest of that kind for that backend and is re-raised as `AggregationError`.
"""

from __future__ import annotations

from typing import Iterable

import structlog

from mcp_composer.mcp.capabilities import CapabilityRegistry
from mcp_composer.mcp.client import PromptDefinition, ResourceDefinition, ToolDefinition
from mcp_composer.mcp.errors import AggregationError
from mcp_composer.mcp.forwarders import BackendForwarder, PromptForwarder, ResourceForwarder
from mcp_composer.mcp.registry import ConnectionRegistry
from mcp_composer.mcp.tools.converter import prompt_arguments_to_model, schema_to_model

logger = structlog.get_logger(__name__)

NAMESPACE_SEPARATOR = "::"


class CapabilityAggregator:
    """Registers backend capabilities as forwarders."""

    def __init__(
        self,
        registry: CapabilityRegistry,
        connections: ConnectionRegistry,
        separator: str = NAMESPACE_SEPARATOR,
    ):
        self._registry = registry
        self._connections = connections
        self.separator = separator

    def namespaced(self, backend: str, tool_name: str) -> str:
        return f"{backend}{self.separator}{tool_name}"

    def aggregate_tools(
        self,
        backend: str,
        tools: list[ToolDefinition],
        allowed: Iterable[str] | None = None,
    ) -> int:
        """
        Register a backend's tools under namespaced names.

        Args:
            backend: Owning backend name
            tools: Tools declared by the backend
            allowed: Original tool names to expose (None or empty = all)

        Returns:
            Number of newly registered tools
        """
        if not isinstance(tools, list):
            raise AggregationError("Tools must be a list")
        if not backend or not isinstance(backend, str):
            raise AggregationError("Backend name must be a non-empty string")

        allow_list = set(allowed or ())
        tool_set: set[str] = set()
        registered = 0
        log = logger.bind(backend=backend)

        try:
            for tool in tools:
                if allow_list and tool.name not in allow_list:
                    log.debug("Tool not in allow-list, skipping", tool=tool.name)
                    continue

                try:
                    if not tool.name:
                        raise AggregationError("Tool name is required")

                    namespaced_name = self.namespaced(backend, tool.name)
                    tool_set.add(namespaced_name)

                    if self._registry.has_tool(namespaced_name):
                        log.info("Tool already exists, skipping", tool=namespaced_name)
                        continue

                    validator = schema_to_model(namespaced_name, tool.input_schema)
                    forwarder = BackendForwarder(
                        name=namespaced_name,
                        original_name=tool.name,
                        backend_name=backend,
                        description=f"[{backend}] {tool.description or ''}".rstrip(),
                        input_schema=tool.input_schema,
                        validator=validator,
                        connections=self._connections,
                    )
                    self._registry.register_tool(forwarder)
                    registered += 1
                    log.debug("Registered tool", tool=namespaced_name)

                except AggregationError as e:
                    log.error("Failed to process tool", tool=tool.name, error=str(e))
                    raise
                except Exception as e:
                    log.error("Failed to process tool", tool=tool.name, error=str(e))
                    raise AggregationError(f"Failed to register tool {tool.name}: {e}") from e
        finally:
            # Keep tools registered before a failure reachable from chains
            self._registry.set_backend_tools(backend, tool_set)

        log.info("Tools registered", registered=registered, supported=len(tool_set))
        return registered

    def aggregate_resources(self, backend: str, resources: list[ResourceDefinition]) -> int:
        """Register a backend's resources under their original URIs."""
        registered = 0
        for resource in resources:
            try:
                forwarder = ResourceForwarder(
                    uri=resource.uri,
                    name=resource.name,
                    backend_name=backend,
                    connections=self._connections,
                    description=resource.description,
                    mime_type=resource.mime_type,
                    meta=resource.meta,
                )
                if self._registry.register_resource(forwarder):
                    registered += 1
            except Exception as e:
                logger.error("Failed to process resource", backend=backend, uri=resource.uri, error=str(e))
                raise AggregationError(f"Failed to register resource {resource.uri}: {e}") from e
        return registered

    def aggregate_prompts(self, backend: str, prompts: list[PromptDefinition]) -> int:
        """Register a backend's prompts under their original names."""
        registered = 0
        for prompt in prompts:
            if self._registry.get_prompt(prompt.name) is not None:
                logger.info("Prompt already exists, skipping", prompt=prompt.name)
                continue
            try:
                validator = prompt_arguments_to_model(prompt.name, prompt.arguments)
                forwarder = PromptForwarder(
                    name=prompt.name,
                    backend_name=backend,
                    connections=self._connections,
                    description=prompt.description,
                    arguments=tuple(prompt.arguments),
                    validator=validator,
                )
                self._registry.register_prompt(forwarder)
                registered += 1
            except AggregationError as e:
                logger.error("Failed to process prompt", backend=backend, prompt=prompt.name, error=str(e))
                raise
            except Exception as e:
                logger.error("Failed to process prompt", backend=backend, prompt=prompt.name, error=str(e))
                raise AggregationError(f"Failed to register prompt {prompt.name}: {e}") from e
        return registered
