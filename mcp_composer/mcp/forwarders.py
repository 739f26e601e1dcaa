"""
Capability forwarders.

A forwarder is the unified-registry entry for one capability. Tool
forwarders come in two variants decided at construction time:

- `LocalForwarder`: self-contained (chains), invoked directly.
- `BackendForwarder`: forwards to the backend that declared the tool, under
  the tool's original (non-namespaced) name.

When a backend forwarder is invoked without a pre-opened connection it opens
one for that single call and closes it afterwards, even if the call fails.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, ClassVar, Union

import structlog
from pydantic import BaseModel

from mcp_composer.mcp.client import BackendClient, PromptArgument
from mcp_composer.mcp.registry import ConnectionRegistry

logger = structlog.get_logger(__name__)

LocalToolFn = Callable[[dict[str, Any]], Awaitable[dict[str, Any] | None]]


@dataclass(frozen=True)
class LocalForwarder:
    """A purely local tool, such as a composed chain."""

    name: str
    description: str
    fn: LocalToolFn
    input_schema: dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})

    needs_connection: ClassVar[bool] = False

    async def invoke(
        self, arguments: dict[str, Any], connection: BackendClient | None = None
    ) -> dict[str, Any] | None:
        return await self.fn(arguments)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
        }


@dataclass(frozen=True)
class BackendForwarder:
    """A namespaced tool that forwards to its owning backend."""

    name: str
    original_name: str
    backend_name: str
    description: str
    input_schema: dict[str, Any]
    validator: type[BaseModel] | None
    connections: ConnectionRegistry = field(repr=False, compare=False)

    needs_connection: ClassVar[bool] = True

    async def invoke(
        self, arguments: dict[str, Any], connection: BackendClient | None = None
    ) -> dict[str, Any]:
        """
        Invoke the backend tool.

        Args:
            arguments: Tool arguments
            connection: Connection to reuse; when omitted one is opened for this call only
        """
        if connection is not None:
            return await self._call(connection, arguments)

        async with self.connections.scope() as scope:
            client = await scope.get_or_open(self.backend_name)
            return await self._call(client, arguments)

    async def _call(self, client: BackendClient, arguments: dict[str, Any]) -> dict[str, Any]:
        logger.debug("Calling tool", tool=self.original_name, backend=self.backend_name)
        return await client.call_tool(self.original_name, arguments)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
            "backend": self.backend_name,
            "originalName": self.original_name,
        }


ToolForwarder = Union[LocalForwarder, BackendForwarder]


@dataclass(frozen=True)
class ResourceForwarder:
    """A resource exposed under its original URI."""

    uri: str
    name: str
    backend_name: str
    connections: ConnectionRegistry = field(repr=False, compare=False)
    description: str | None = None
    mime_type: str | None = None
    meta: dict[str, Any] | None = None

    async def read(self, uri: str | None = None) -> dict[str, Any]:
        async with self.connections.scope() as scope:
            client = await scope.get_or_open(self.backend_name)
            return await client.read_resource(uri or self.uri, self.meta)

    def to_dict(self) -> dict[str, Any]:
        return {
            "uri": self.uri,
            "name": self.name,
            "description": self.description,
            "mimeType": self.mime_type,
            "backend": self.backend_name,
        }


@dataclass(frozen=True)
class PromptForwarder:
    """A prompt exposed under its original name."""

    name: str
    backend_name: str
    connections: ConnectionRegistry = field(repr=False, compare=False)
    description: str | None = None
    arguments: tuple[PromptArgument, ...] = ()
    validator: type[BaseModel] | None = None

    async def get(self, arguments: dict[str, Any] | None = None) -> dict[str, Any]:
        async with self.connections.scope() as scope:
            client = await scope.get_or_open(self.backend_name)
            return await client.get_prompt(self.name, arguments)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "arguments": [
                {"name": a.name, "description": a.description, "required": a.required}
                for a in self.arguments
            ],
            "backend": self.backend_name,
        }
