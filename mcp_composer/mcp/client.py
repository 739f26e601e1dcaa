"""
Backend Connection.

A single logical connection to one backend capability provider, speaking
JSON-RPC over either a spawned subprocess (stdio) or an HTTP endpoint.
The composer treats the transport as an opaque channel: it only needs
connect, list, invoke and close.

Security Note: stdio backends are spawned with asyncio.create_subprocess_exec(),
which passes arguments directly to the executable without shell parsing.
"""

from __future__ import annotations

import asyncio
import json
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

import httpx
import structlog

from mcp_composer.observability.tracing import get_tracer, truncate

logger = structlog.get_logger(__name__)

PROTOCOL_VERSION = "2024-11-05"


class TransportType(str, Enum):
    """Backend transport types."""

    STDIO = "stdio"
    HTTP = "http"
    SSE = "sse"


class MCPError(Exception):
    """MCP protocol error."""

    def __init__(self, code: int, message: str, data: Any = None):
        self.code = code
        self.message = message
        self.data = data
        super().__init__(f"MCP Error {code}: {message}")


@dataclass(frozen=True)
class ClientIdentity:
    """Client metadata sent to a backend during the initialize handshake."""

    name: str
    version: str = "1.0.0"

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "version": self.version}


@dataclass(frozen=True)
class BackendConfig:
    """Configuration for one backend. Immutable once stored."""

    name: str
    transport: TransportType
    # stdio transport
    command: str | None = None
    args: tuple[str, ...] = ()
    env: dict[str, str] = field(default_factory=dict)
    working_dir: str | None = None
    # HTTP/SSE transport
    url: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    # Allow-list of original tool names to expose (empty = all)
    tools: tuple[str, ...] = ()
    timeout_seconds: float = 60.0
    tool_timeouts: dict[str, float] = field(default_factory=dict)
    keep_alive: bool = False
    description: str = ""

    def describe(self) -> str:
        """Endpoint or command used in log lines."""
        if self.transport == TransportType.STDIO:
            return " ".join([self.command or "", *self.args]).strip()
        return self.url or ""

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "name": self.name,
            "transport": self.transport.value,
            "command": self.command,
            "args": list(self.args),
            "url": self.url,
            "tools": list(self.tools),
            "timeout_seconds": self.timeout_seconds,
            "keep_alive": self.keep_alive,
        }


@dataclass
class ToolDefinition:
    """Definition of a tool declared by a backend."""

    name: str
    description: str
    input_schema: dict[str, Any]
    backend: str = ""


@dataclass
class ResourceDefinition:
    """Definition of a resource declared by a backend."""

    uri: str
    name: str
    description: str | None = None
    mime_type: str | None = None
    meta: dict[str, Any] | None = None
    backend: str = ""


@dataclass
class PromptArgument:
    name: str
    description: str | None = None
    required: bool = False


@dataclass
class PromptDefinition:
    """Definition of a prompt declared by a backend."""

    name: str
    description: str | None = None
    arguments: list[PromptArgument] = field(default_factory=list)
    backend: str = ""


@dataclass
class ServerCapabilities:
    """Presence flags reported by a backend in its initialize result."""

    tools: bool = False
    resources: bool = False
    prompts: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ServerCapabilities:
        data = data or {}
        return cls(
            tools="tools" in data,
            resources="resources" in data,
            prompts="prompts" in data,
        )

    def to_dict(self) -> dict[str, bool]:
        return {"tools": self.tools, "resources": self.resources, "prompts": self.prompts}


class MCPTransport(ABC):
    """Abstract base for transport implementations."""

    def __init__(self, config: BackendConfig, identity: ClientIdentity):
        self.config = config
        self.identity = identity
        self.on_close: Callable[[], None] | None = None
        self._connected = False
        self._logger = logger.bind(backend=config.name)

    @property
    def connected(self) -> bool:
        """Check if transport is connected."""
        return self._connected

    @abstractmethod
    async def connect(self) -> dict[str, Any]:
        """Open the channel and perform the handshake; returns the initialize result."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the channel."""

    @abstractmethod
    async def send_request(
        self, method: str, params: dict[str, Any] | None = None, timeout: float | None = None
    ) -> Any:
        """Send a JSON-RPC request and get the response result."""

    @abstractmethod
    async def send_notification(self, method: str, params: dict[str, Any] | None = None) -> None:
        """Send a JSON-RPC notification (no response expected)."""

    def _initialize_params(self) -> dict[str, Any]:
        return {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {},
            "clientInfo": self.identity.to_dict(),
        }

    async def _handshake(self) -> dict[str, Any]:
        result = await self.send_request("initialize", self._initialize_params())
        await self.send_notification("notifications/initialized")
        return result or {}


class StdioTransport(MCPTransport):
    """
    stdio transport.

    Spawns a subprocess and exchanges newline-delimited JSON-RPC messages
    over its stdin/stdout.
    """

    def __init__(self, config: BackendConfig, identity: ClientIdentity):
        super().__init__(config, identity)
        self._process: asyncio.subprocess.Process | None = None
        self._request_id = 0
        self._pending_requests: dict[int, asyncio.Future] = {}
        self._reader_task: asyncio.Task | None = None
        self._closing = False

    async def connect(self) -> dict[str, Any]:
        """Spawn the backend process and run the handshake."""
        if not self.config.command:
            raise MCPError(-32600, "No command specified for stdio transport")

        cwd = None
        if self.config.working_dir:
            cwd = os.path.expanduser(os.path.expandvars(self.config.working_dir))
            if not os.path.isdir(cwd):
                raise MCPError(-32600, f"Working directory does not exist: {cwd}")

        self._logger.debug(
            "Starting backend process",
            command=self.config.command,
            args=list(self.config.args),
            working_dir=cwd,
        )

        env = {**os.environ, **self.config.env}
        self._process = await asyncio.create_subprocess_exec(
            self.config.command,
            *self.config.args,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            env=env,
            cwd=cwd,
            # Large tool listings arrive as a single line
            limit=10 * 1024 * 1024,
        )
        self._reader_task = asyncio.create_task(self._read_responses())

        try:
            result = await self._handshake()
        except BaseException:
            await self.disconnect()
            raise

        self._connected = True
        return result

    async def disconnect(self) -> None:
        """Stop the backend process."""
        self._closing = True
        self._connected = False

        if self._reader_task:
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
            self._reader_task = None

        if self._process:
            if self._process.returncode is None:
                try:
                    self._process.terminate()
                    await asyncio.wait_for(self._process.wait(), timeout=5.0)
                except ProcessLookupError:
                    pass
                except asyncio.TimeoutError:
                    self._process.kill()
            self._process = None

        self._fail_pending(MCPError(-32000, "Connection closed"))

    async def _write(self, message: dict[str, Any]) -> None:
        if not self._process or not self._process.stdin:
            raise MCPError(-32600, "Not connected")
        self._process.stdin.write((json.dumps(message) + "\n").encode())
        await self._process.stdin.drain()

    async def send_request(
        self, method: str, params: dict[str, Any] | None = None, timeout: float | None = None
    ) -> Any:
        """Send JSON-RPC request via stdin."""
        self._request_id += 1
        request_id = self._request_id

        request: dict[str, Any] = {"jsonrpc": "2.0", "id": request_id, "method": method}
        if params is not None:
            request["params"] = params

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending_requests[request_id] = future

        try:
            await self._write(request)
            return await asyncio.wait_for(future, timeout=timeout or self.config.timeout_seconds)
        except asyncio.TimeoutError:
            raise MCPError(-32000, f"Request timeout: {method}")
        finally:
            self._pending_requests.pop(request_id, None)

    async def send_notification(self, method: str, params: dict[str, Any] | None = None) -> None:
        message: dict[str, Any] = {"jsonrpc": "2.0", "method": method}
        if params is not None:
            message["params"] = params
        await self._write(message)

    async def _read_responses(self) -> None:
        """Read messages from stdout until EOF."""
        if not self._process or not self._process.stdout:
            return

        while True:
            try:
                line = await self._process.stdout.readline()
            except asyncio.CancelledError:
                return
            if not line:
                break

            try:
                data = json.loads(line.decode())
            except json.JSONDecodeError:
                continue

            if "method" in data:
                await self._handle_server_message(data)
                continue

            request_id = data.get("id")
            future = self._pending_requests.pop(request_id, None)
            if future is None or future.done():
                continue
            if "error" in data:
                error = data["error"]
                future.set_exception(
                    MCPError(
                        error.get("code", -32000),
                        error.get("message", "Unknown error"),
                        error.get("data"),
                    )
                )
            else:
                future.set_result(data.get("result"))

        self._handle_eof()

    async def _handle_server_message(self, data: dict[str, Any]) -> None:
        """Answer server-initiated requests; notifications are ignored."""
        if "id" not in data:
            return
        if data["method"] == "ping":
            reply: dict[str, Any] = {"jsonrpc": "2.0", "id": data["id"], "result": {}}
        else:
            reply = {
                "jsonrpc": "2.0",
                "id": data["id"],
                "error": {"code": -32601, "message": f"Method not found: {data['method']}"},
            }
        try:
            await self._write(reply)
        except (MCPError, ConnectionError) as e:
            self._logger.debug("Failed to answer server request", error=str(e))

    def _handle_eof(self) -> None:
        was_connected = self._connected
        self._connected = False
        self._fail_pending(MCPError(-32000, "Connection closed"))
        if was_connected and not self._closing:
            self._logger.warning("Backend process closed its output")
            if self.on_close:
                self.on_close()

    def _fail_pending(self, error: MCPError) -> None:
        for future in self._pending_requests.values():
            if not future.done():
                future.set_exception(error)
        self._pending_requests.clear()


class HTTPTransport(MCPTransport):
    """
    HTTP transport.

    Sends JSON-RPC requests over HTTP POST. Responses may be plain JSON or
    an event stream carrying the JSON-RPC message in `data:` lines.
    """

    def __init__(
        self,
        config: BackendConfig,
        identity: ClientIdentity,
        client: httpx.AsyncClient | None = None,
    ):
        super().__init__(config, identity)
        self._client = client
        self._owns_client = client is None
        self._request_id = 0
        self._session_id: str | None = None

    async def connect(self) -> dict[str, Any]:
        """Create the HTTP client and run the handshake."""
        if not self.config.url:
            raise MCPError(-32600, "No url specified for HTTP transport")

        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.config.timeout_seconds)

        try:
            result = await self._handshake()
        except BaseException:
            await self.disconnect()
            raise

        self._connected = True
        return result

    async def disconnect(self) -> None:
        """Close the HTTP client."""
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None
        self._connected = False

    def _headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json, text/event-stream",
            **self.config.headers,
        }
        if self._session_id:
            headers["Mcp-Session-Id"] = self._session_id
        return headers

    async def _post(self, message: dict[str, Any], timeout: float | None = None) -> httpx.Response:
        if not self._client:
            raise MCPError(-32600, "Not connected")
        response = await self._client.post(
            self.config.url,
            json=message,
            headers=self._headers(),
            timeout=timeout or self.config.timeout_seconds,
        )
        response.raise_for_status()
        session_id = response.headers.get("mcp-session-id")
        if session_id:
            self._session_id = session_id
        return response

    async def send_request(
        self, method: str, params: dict[str, Any] | None = None, timeout: float | None = None
    ) -> Any:
        """Send JSON-RPC request over HTTP."""
        self._request_id += 1
        request_id = self._request_id

        request: dict[str, Any] = {"jsonrpc": "2.0", "id": request_id, "method": method}
        if params is not None:
            request["params"] = params

        response = await self._post(request, timeout=timeout)
        data = self._extract_message(response, request_id)
        if data is None:
            raise MCPError(-32000, f"No response for request: {method}")

        if "error" in data:
            error = data["error"]
            raise MCPError(
                error.get("code", -32000),
                error.get("message", "Unknown error"),
                error.get("data"),
            )
        return data.get("result")

    async def send_notification(self, method: str, params: dict[str, Any] | None = None) -> None:
        message: dict[str, Any] = {"jsonrpc": "2.0", "method": method}
        if params is not None:
            message["params"] = params
        await self._post(message)

    @staticmethod
    def _extract_message(response: httpx.Response, request_id: int) -> dict[str, Any] | None:
        content_type = response.headers.get("content-type", "")
        if "text/event-stream" not in content_type:
            return response.json()

        for line in response.text.splitlines():
            if not line.startswith("data:"):
                continue
            try:
                data = json.loads(line[5:].strip())
            except json.JSONDecodeError:
                continue
            if isinstance(data, dict) and data.get("id") == request_id:
                return data
        return None


def create_transport(config: BackendConfig, identity: ClientIdentity) -> MCPTransport:
    """Build the transport matching `config.transport`."""
    if config.transport == TransportType.STDIO:
        return StdioTransport(config, identity)
    if config.transport in (TransportType.HTTP, TransportType.SSE):
        return HTTPTransport(config, identity)
    raise MCPError(-32600, f"Unknown transport: {config.transport}")


class BackendClient:
    """
    One logical connection to a backend.

    Provides the handshake, capability listing and invocation calls the
    composer needs. Each instance owns at most one transport.
    """

    def __init__(
        self,
        config: BackendConfig,
        identity: ClientIdentity,
        transport: MCPTransport | None = None,
    ):
        self.config = config
        self.identity = identity
        self._transport = transport
        self._capabilities = ServerCapabilities()
        self._server_info: dict[str, Any] = {}
        self._on_close: Callable[[], None] | None = None
        self._logger = logger.bind(backend=config.name)

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def connected(self) -> bool:
        """Check if client is connected."""
        return self._transport is not None and self._transport.connected

    @property
    def server_info(self) -> dict[str, Any]:
        return self._server_info

    def set_close_handler(self, handler: Callable[[], None] | None) -> None:
        """Register a callback fired when the transport closes unexpectedly."""
        self._on_close = handler
        if self._transport is not None:
            self._transport.on_close = handler

    async def connect(self) -> None:
        """Open the transport and run the initialize handshake."""
        if self.connected:
            return

        if self._transport is None:
            self._transport = create_transport(self.config, self.identity)
        self._transport.on_close = self._on_close

        result = await self._transport.connect()
        self._capabilities = ServerCapabilities.from_dict(result.get("capabilities"))
        self._server_info = result.get("serverInfo") or {}

        self._logger.debug(
            "Backend handshake complete",
            server=self._server_info.get("name"),
            capabilities=self._capabilities.to_dict(),
        )

    async def close(self) -> None:
        """Close the connection. Safe to call more than once."""
        transport, self._transport = self._transport, None
        if transport is not None:
            transport.on_close = None
            await transport.disconnect()

    def get_server_capabilities(self) -> ServerCapabilities:
        return self._capabilities

    def _require_transport(self) -> MCPTransport:
        if self._transport is None:
            raise MCPError(-32600, "Not connected")
        return self._transport

    async def _list_paginated(self, method: str, key: str) -> list[dict[str, Any]]:
        transport = self._require_transport()
        items: list[dict[str, Any]] = []
        cursor: str | None = None
        while True:
            params = {"cursor": cursor} if cursor else None
            result = await transport.send_request(method, params) or {}
            items.extend(result.get(key, []))
            cursor = result.get("nextCursor")
            if not cursor:
                return items

    async def list_tools(self) -> list[ToolDefinition]:
        """List tools declared by the backend."""
        tools = await self._list_paginated("tools/list", "tools")
        return [
            ToolDefinition(
                name=tool.get("name", ""),
                description=tool.get("description") or "",
                input_schema=tool.get("inputSchema") or {},
                backend=self.config.name,
            )
            for tool in tools
        ]

    async def list_resources(self) -> list[ResourceDefinition]:
        """List resources declared by the backend."""
        resources = await self._list_paginated("resources/list", "resources")
        return [
            ResourceDefinition(
                uri=resource["uri"],
                name=resource.get("name", resource["uri"]),
                description=resource.get("description"),
                mime_type=resource.get("mimeType"),
                meta=resource.get("_meta"),
                backend=self.config.name,
            )
            for resource in resources
        ]

    async def list_prompts(self) -> list[PromptDefinition]:
        """List prompts declared by the backend."""
        prompts = await self._list_paginated("prompts/list", "prompts")
        return [
            PromptDefinition(
                name=prompt["name"],
                description=prompt.get("description"),
                arguments=[
                    PromptArgument(
                        name=arg["name"],
                        description=arg.get("description"),
                        required=bool(arg.get("required", False)),
                    )
                    for arg in prompt.get("arguments") or []
                ],
                backend=self.config.name,
            )
            for prompt in prompts
        ]

    async def call_tool(self, tool_name: str, arguments: dict[str, Any] | None) -> dict[str, Any]:
        """Invoke a tool by its original name and return the raw result."""
        transport = self._require_transport()
        timeout = self.config.tool_timeouts.get(tool_name, self.config.timeout_seconds)
        tracer = get_tracer()

        with tracer.start_as_current_span(f"mcp.tool.{tool_name}") as span:
            span.set_attribute("mcp.tool.name", tool_name)
            span.set_attribute("mcp.backend", self.config.name)
            span.set_attribute("mcp.tool.arguments", truncate(arguments, 500))
            span.set_attribute("mcp.timeout_seconds", timeout)

            try:
                result = await transport.send_request(
                    "tools/call",
                    {"name": tool_name, "arguments": arguments or {}},
                    timeout=timeout,
                )
            except MCPError as e:
                span.set_attribute("mcp.error", True)
                span.set_attribute("mcp.error_message", truncate(e, 200))
                raise

            span.set_attribute("mcp.is_error", bool((result or {}).get("isError")))
            return result or {}

    async def read_resource(self, uri: str, meta: dict[str, Any] | None = None) -> dict[str, Any]:
        """Read a resource from the backend."""
        params: dict[str, Any] = {"uri": uri}
        if meta:
            params["_meta"] = meta
        return await self._require_transport().send_request("resources/read", params) or {}

    async def get_prompt(self, name: str, arguments: dict[str, Any] | None = None) -> dict[str, Any]:
        """Fetch a rendered prompt from the backend."""
        return (
            await self._require_transport().send_request(
                "prompts/get", {"name": name, "arguments": arguments or {}}
            )
            or {}
        )
