"""
Server Composer.

The unified provider surface: connects backends through the
ConnectionRegistry, aggregates their capabilities into one namespaced
CapabilityRegistry, and exposes chains of tools as tools of their own.

Usage:
    from mcp_composer import ServerComposer
    from mcp_composer.config import load_composer_config

    async with ServerComposer.from_config(load_composer_config()) as composer:
        await composer.start()
        result = await composer.call_tool("github::search_repositories", {"query": "mcp"})
"""

from __future__ import annotations

from typing import Any

import structlog
from pydantic import ValidationError

from mcp_composer.chains.engine import ChainExecutor
from mcp_composer.chains.models import ChainDefinition
from mcp_composer.config import ComposerConfig
from mcp_composer.mcp.aggregator import NAMESPACE_SEPARATOR, CapabilityAggregator
from mcp_composer.mcp.capabilities import CapabilityRegistry
from mcp_composer.mcp.client import BackendClient, BackendConfig, ClientIdentity
from mcp_composer.mcp.errors import (
    AggregationError,
    CapabilityListingError,
    PromptNotFoundError,
    ResourceNotFoundError,
    ToolArgumentsError,
    ToolNotFoundError,
)
from mcp_composer.mcp.forwarders import BackendForwarder
from mcp_composer.mcp.registry import BackendState, ConnectionRegistry, RetryPolicy

logger = structlog.get_logger(__name__)


class ServerComposer:
    """
    Composes many backends into one capability provider.

    Features:
    - Namespaced tools (`<backend>::<tool>`) so same-named tools never collide
    - Resources and prompts exposed under their original identifiers
    - Per-call backend connections, closed on every exit path
    - Tool chains registered as zero-argument tools
    """

    def __init__(
        self,
        server_info: ClientIdentity | None = None,
        separator: str = NAMESPACE_SEPARATOR,
        retry_policy: RetryPolicy | None = None,
        connections: ConnectionRegistry | None = None,
    ):
        self.server_info = server_info or ClientIdentity(name="mcp-composer")
        self.separator = separator
        self.connections = connections or ConnectionRegistry(retry_policy=retry_policy)
        self.capabilities = CapabilityRegistry()
        self.aggregator = CapabilityAggregator(self.capabilities, self.connections, separator)
        self.chains = ChainExecutor(self.capabilities, self.connections, separator)
        self._pending_backends: list[BackendConfig] = []
        self._pending_chains: list[ChainDefinition] = []

        self.connections.set_registration_hook(self._register_capabilities)

    @classmethod
    def from_config(cls, config: ComposerConfig, **kwargs: Any) -> ServerComposer:
        """Build a composer for a loaded configuration; call `start()` to connect."""
        kwargs.setdefault("retry_policy", config.retry)
        composer = cls(server_info=config.server, separator=config.separator, **kwargs)
        composer._pending_backends = [
            entry.to_backend_config() for entry in config.get_enabled_servers().values()
        ]
        composer._pending_chains = list(config.chains)
        return composer

    async def start(self) -> dict[str, bool]:
        """
        Connect every configured backend, then register configured chains.

        Backends are connected one after another. A backend that cannot be
        connected or aggregated is logged and left out; the rest proceed.

        Returns:
            Mapping of backend name to whether it is now available
        """
        results: dict[str, bool] = {}
        for config in self._pending_backends:
            try:
                results[config.name] = await self.add(config)
            except AggregationError as e:
                logger.error("Failed to register backend capabilities", backend=config.name, error=str(e))
                results[config.name] = self.connections.has_backend(config.name)
        self._pending_backends = []

        for definition in self._pending_chains:
            self.compose_chain(definition)
        self._pending_chains = []

        logger.info(
            "Composer started",
            backends=sum(results.values()),
            tools=len(self.capabilities.tools),
            resources=len(self.capabilities.resources),
            prompts=len(self.capabilities.prompts),
        )
        return results

    # ─────────────────────────────────────────────────────────────────────────
    # Backends
    # ─────────────────────────────────────────────────────────────────────────

    async def add(
        self,
        config: BackendConfig,
        identity: ClientIdentity | None = None,
        *,
        register: bool = True,
    ) -> bool:
        """
        Connect a backend and aggregate its capabilities.

        Returns:
            False if the backend could not be connected within the retry budget

        Raises:
            AggregationError: registering one of the backend's capabilities failed
        """
        return await self.connections.connect(config, identity or self.server_info, register=register)

    async def _register_capabilities(self, state: BackendState, client: BackendClient) -> None:
        backend = state.name
        capabilities = client.get_server_capabilities()
        aggregators = {
            "tools": lambda items: self.aggregator.aggregate_tools(backend, items, state.config.tools),
            "resources": lambda items: self.aggregator.aggregate_resources(backend, items),
            "prompts": lambda items: self.aggregator.aggregate_prompts(backend, items),
        }
        first_error: AggregationError | None = None

        for kind, aggregate in aggregators.items():
            if not getattr(capabilities, kind):
                continue
            try:
                items = await self._list(client, backend, kind)
            except CapabilityListingError as e:
                logger.error("Failed to list capabilities", backend=e.backend, kind=e.kind, error=str(e))
                continue
            try:
                aggregate(items)
            except AggregationError as e:
                first_error = first_error or e

        if first_error is not None:
            raise first_error

    @staticmethod
    async def _list(client: BackendClient, backend: str, kind: str) -> list[Any]:
        """
        List one capability kind.

        Raises:
            CapabilityListingError: the backend failed to answer the listing
        """
        method = getattr(client, f"list_{kind}")
        try:
            return await method()
        except Exception as e:
            raise CapabilityListingError(backend, kind, str(e)) from e

    async def disconnect(self, name: str) -> bool:
        """Disconnect a backend and drop every capability it contributed."""
        removed = await self.connections.disconnect(name)
        self.capabilities.remove_backend(name)
        return removed

    async def disconnect_all(self) -> None:
        for state in self.connections.list_backends():
            await self.disconnect(state.name)

    async def aclose(self) -> None:
        await self.connections.aclose()

    async def __aenter__(self) -> ServerComposer:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    # ─────────────────────────────────────────────────────────────────────────
    # Unified surface
    # ─────────────────────────────────────────────────────────────────────────

    def list_tools(self) -> list[dict[str, Any]]:
        return [forwarder.to_dict() for forwarder in self.capabilities.tools.values()]

    def list_resources(self) -> list[dict[str, Any]]:
        return [forwarder.to_dict() for forwarder in self.capabilities.resources.values()]

    def list_prompts(self) -> list[dict[str, Any]]:
        return [forwarder.to_dict() for forwarder in self.capabilities.prompts.values()]

    def list_backends(self) -> list[dict[str, Any]]:
        return [state.to_dict() for state in self.connections.list_backends()]

    async def call_tool(self, name: str, arguments: dict[str, Any] | None = None) -> dict[str, Any]:
        """
        Invoke a tool of the unified surface.

        Backend tools get a connection opened for this call only.

        Raises:
            ToolNotFoundError: no tool is registered under `name`
            ToolArgumentsError: arguments fail the tool's input schema
            BackendConnectionError: the backend could not be reached
        """
        forwarder = self.capabilities.get_tool(name)
        if forwarder is None:
            raise ToolNotFoundError(name)

        arguments = arguments or {}
        if isinstance(forwarder, BackendForwarder) and forwarder.validator is not None:
            try:
                forwarder.validator.model_validate(arguments)
            except ValidationError as e:
                raise ToolArgumentsError(name, str(e)) from e

        result = await forwarder.invoke(arguments)
        return result if result is not None else {"content": []}

    async def read_resource(self, uri: str) -> dict[str, Any]:
        forwarder = self.capabilities.get_resource(uri)
        if forwarder is None:
            raise ResourceNotFoundError(uri)
        return await forwarder.read(uri)

    async def get_prompt(self, name: str, arguments: dict[str, Any] | None = None) -> dict[str, Any]:
        forwarder = self.capabilities.get_prompt(name)
        if forwarder is None:
            raise PromptNotFoundError(name)

        arguments = arguments or {}
        if forwarder.validator is not None:
            try:
                forwarder.validator.model_validate(arguments)
            except ValidationError as e:
                raise ToolArgumentsError(name, str(e)) from e

        return await forwarder.get(arguments)

    # ─────────────────────────────────────────────────────────────────────────
    # Chains
    # ─────────────────────────────────────────────────────────────────────────

    def compose_chain(self, definition: ChainDefinition | dict[str, Any]) -> bool:
        """Register a chain as a tool; returns False if the name is taken."""
        if isinstance(definition, dict):
            definition = ChainDefinition.from_dict(definition)
        return self.chains.define_chain(definition)

    async def execute_chain(self, name: str) -> dict[str, Any]:
        """Run a registered chain the way a host would invoke it."""
        if name not in self.chains.definitions:
            raise ToolNotFoundError(name)
        return await self.call_tool(name, {})
