"""Shared fixtures: in-memory backends standing in for real MCP servers."""

from __future__ import annotations

from typing import Any, Callable

import pytest

from mcp_composer.composer import ServerComposer
from mcp_composer.mcp.client import (
    BackendConfig,
    ClientIdentity,
    PromptDefinition,
    ResourceDefinition,
    ServerCapabilities,
    ToolDefinition,
    TransportType,
)
from mcp_composer.mcp.registry import ConnectionRegistry

ToolHandler = Callable[[dict[str, Any]], Any]


class FakeBackend:
    """What one backend declares and how its tools answer."""

    def __init__(
        self,
        name: str,
        tools: list[ToolDefinition] | None = None,
        resources: list[ResourceDefinition] | None = None,
        prompts: list[PromptDefinition] | None = None,
        handlers: dict[str, ToolHandler] | None = None,
        connect_failures: int = 0,
        fail_listing: tuple[str, ...] = (),
    ):
        self.name = name
        self.tools = tools or []
        self.resources = resources or []
        self.prompts = prompts or []
        self.handlers = handlers or {}
        self.connect_failures = connect_failures
        self.fail_listing = fail_listing
        self.connect_attempts = 0
        self.calls: list[tuple[str, dict[str, Any]]] = []


class FakeClient:
    """Stands in for BackendClient."""

    def __init__(self, config: BackendConfig, identity: ClientIdentity, backend: FakeBackend):
        self.config = config
        self.identity = identity
        self.backend = backend
        self.connected = False
        self.close_count = 0
        self.close_error: Exception | None = None
        self.on_close: Callable[[], None] | None = None

    @property
    def name(self) -> str:
        return self.config.name

    def set_close_handler(self, handler):
        self.on_close = handler

    async def connect(self) -> None:
        self.backend.connect_attempts += 1
        if self.backend.connect_attempts <= self.backend.connect_failures:
            raise ConnectionError("connection refused")
        self.connected = True

    async def close(self) -> None:
        self.close_count += 1
        self.connected = False
        if self.close_error is not None:
            raise self.close_error

    def get_server_capabilities(self) -> ServerCapabilities:
        return ServerCapabilities(
            tools=bool(self.backend.tools),
            resources=bool(self.backend.resources),
            prompts=bool(self.backend.prompts),
        )

    def _listing(self, kind: str, items: list) -> list:
        if kind in self.backend.fail_listing:
            raise RuntimeError(f"{kind}/list failed")
        return list(items)

    async def list_tools(self) -> list[ToolDefinition]:
        return self._listing("tools", self.backend.tools)

    async def list_resources(self) -> list[ResourceDefinition]:
        return self._listing("resources", self.backend.resources)

    async def list_prompts(self) -> list[PromptDefinition]:
        return self._listing("prompts", self.backend.prompts)

    async def call_tool(self, tool_name: str, arguments: dict[str, Any] | None) -> dict[str, Any]:
        assert self.connected, "call_tool on a closed connection"
        self.backend.calls.append((tool_name, dict(arguments or {})))
        handler = self.backend.handlers.get(tool_name)
        if handler is None:
            return {"content": [{"type": "text", "text": f"{self.backend.name}:{tool_name}"}]}
        return handler(arguments or {})

    async def read_resource(self, uri: str, meta: dict[str, Any] | None = None) -> dict[str, Any]:
        return {"contents": [{"uri": uri, "text": f"{self.backend.name} resource"}]}

    async def get_prompt(self, name: str, arguments: dict[str, Any] | None = None) -> dict[str, Any]:
        return {
            "messages": [
                {"role": "user", "content": {"type": "text", "text": f"{name} {arguments or {}}"}}
            ]
        }


class FakeClientFactory:
    """Client factory handed to ConnectionRegistry; records every client it builds."""

    def __init__(self):
        self.backends: dict[str, FakeBackend] = {}
        self.clients: list[FakeClient] = []

    def add(self, name: str, **kwargs: Any) -> FakeBackend:
        backend = FakeBackend(name, **kwargs)
        self.backends[name] = backend
        return backend

    def clients_for(self, name: str) -> list[FakeClient]:
        return [client for client in self.clients if client.config.name == name]

    def __call__(self, config: BackendConfig, identity: ClientIdentity) -> FakeClient:
        client = FakeClient(config, identity, self.backends[config.name])
        self.clients.append(client)
        return client


def make_tool(name: str, schema: dict[str, Any] | None = None, description: str = "") -> ToolDefinition:
    return ToolDefinition(
        name=name,
        description=description or f"{name} tool",
        input_schema=schema if schema is not None else {"type": "object", "properties": {}},
    )


def make_config(name: str, **kwargs: Any) -> BackendConfig:
    return BackendConfig(name=name, transport=TransportType.STDIO, command="fake-server", **kwargs)


@pytest.fixture
def factory() -> FakeClientFactory:
    return FakeClientFactory()


@pytest.fixture
def connections(factory) -> ConnectionRegistry:
    return ConnectionRegistry(client_factory=factory, reconnect_delay_seconds=0)


@pytest.fixture
def composer(connections) -> ServerComposer:
    return ServerComposer(server_info=ClientIdentity(name="test-composer"), connections=connections)


@pytest.fixture
def tool():
    return make_tool


@pytest.fixture
def backend_config():
    return make_config
