"""
Connection Registry.

Owns the configured backends and their connection lifecycle: connect with a
bounded fixed-delay retry, reconnect after an unexpected close, and the
single chokepoint (`get_or_open`) through which every forwarded call or
chain execution obtains a backend connection.

Connections handed out by `get_or_open` belong to the caller. Use a
`ConnectionScope` to cache them for one call or one chain execution and to
close them on every exit path:

    async with registry.scope() as scope:
        client = await scope.get_or_open("github")
        await client.call_tool("search", {"q": "mcp"})
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable

import structlog

from mcp_composer.mcp.client import BackendClient, BackendConfig, ClientIdentity
from mcp_composer.mcp.errors import (
    BackendConnectionError,
    BackendNotFoundError,
    ComposerError,
)

logger = structlog.get_logger(__name__)

# Registry events
EVENT_BACKEND_CONNECTED = "backend_connected"
EVENT_BACKEND_DISCONNECTED = "backend_disconnected"
EVENT_BACKEND_CONNECTION_LOST = "backend_connection_lost"
EVENT_BACKEND_CONNECTION_FAILED = "backend_connection_failed"

ClientFactory = Callable[[BackendConfig, ClientIdentity], BackendClient]
EventCallback = Callable[[str, str, dict[str, Any]], None]


@dataclass(frozen=True)
class RetryPolicy:
    """Fixed-delay retry budget for backend connects."""

    max_retries: int = 2
    delay_seconds: float = 15.0


@dataclass
class BackendState:
    """Mutable record for one connected backend."""

    identity: ClientIdentity
    config: BackendConfig
    connection: BackendClient | None = None
    connected_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def name(self) -> str:
        return self.config.name

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "name": self.config.name,
            "client": self.identity.to_dict(),
            "transport": self.config.transport.value,
            "endpoint": self.config.describe(),
            "live_connection": self.connection is not None and self.connection.connected,
            "connected_at": self.connected_at.isoformat(),
        }


RegistrationHook = Callable[[BackendState, BackendClient], Awaitable[None]]


async def close_quietly(client: BackendClient, backend: str) -> None:
    """Close a connection, logging instead of raising on failure."""
    try:
        await client.close()
    except Exception as e:
        logger.error("Failed to close backend connection", backend=backend, error=str(e))


class ConnectionScope:
    """
    Per-call cache of backend connections.

    Opens at most one connection per backend and closes all of them exactly
    once when the scope ends, whatever happened inside it.
    """

    def __init__(self, registry: ConnectionRegistry):
        self._registry = registry
        self._connections: dict[str, BackendClient] = {}
        self._closed = False

    @property
    def opened(self) -> list[str]:
        """Names of backends with a connection open in this scope."""
        return list(self._connections)

    async def get_or_open(self, name: str) -> BackendClient:
        if self._closed:
            raise ComposerError("Connection scope is already closed")
        client = self._connections.get(name)
        if client is None:
            client = await self._registry.get_or_open(name)
            self._connections[name] = client
        return client

    async def close(self) -> None:
        connections, self._connections = self._connections, {}
        self._closed = True
        for name, client in connections.items():
            await close_quietly(client, name)

    async def __aenter__(self) -> ConnectionScope:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


class ConnectionRegistry:
    """
    Registry of configured backends and their live connection handles.

    Connect failures are retried under a `RetryPolicy` and then logged and
    swallowed; the backend is simply absent afterwards.
    """

    def __init__(
        self,
        retry_policy: RetryPolicy | None = None,
        client_factory: ClientFactory = BackendClient,
        reconnect_delay_seconds: float = 10.0,
    ):
        self._retry_policy = retry_policy or RetryPolicy()
        self._client_factory = client_factory
        self._reconnect_delay = reconnect_delay_seconds
        self._backends: dict[str, BackendState] = {}
        self._registration_hook: RegistrationHook | None = None
        self._event_callbacks: list[EventCallback] = []
        self._reconnect_tasks: dict[str, asyncio.Task] = {}
        self._logger = logger.bind(component="ConnectionRegistry")

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry_policy

    def set_registration_hook(self, hook: RegistrationHook | None) -> None:
        """Set the coroutine run after a connect that asks for registration."""
        self._registration_hook = hook

    def on_event(self, callback: EventCallback) -> None:
        """Register a callback for registry events."""
        self._event_callbacks.append(callback)

    def _emit(self, event: str, name: str, data: dict[str, Any] | None = None) -> None:
        for callback in self._event_callbacks:
            try:
                callback(event, name, data or {})
            except Exception as e:
                self._logger.warning("Registry event callback failed", event_name=event, error=str(e))

    # ─────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    async def connect(
        self,
        config: BackendConfig,
        identity: ClientIdentity,
        *,
        register: bool = True,
    ) -> bool:
        """
        Connect to a backend and store its state.

        Args:
            config: Backend configuration
            identity: Client identity for the handshake
            register: Run the registration hook after connecting

        Returns:
            True on success, False once the retry budget is exhausted

        Raises:
            AggregationError: propagated from the registration hook
        """
        policy = self._retry_policy
        log = self._logger.bind(backend=config.name, endpoint=config.describe(), client=identity.name)

        attempts = max(policy.max_retries, 0) + 1
        for attempt in range(attempts):
            client = self._client_factory(config, identity)
            try:
                await client.connect()
                break
            except asyncio.CancelledError:
                await close_quietly(client, config.name)
                raise
            except Exception as e:
                await close_quietly(client, config.name)
                if attempt >= policy.max_retries:
                    log.error(
                        "Connection failed, skipping backend",
                        retries=policy.max_retries,
                        reason=str(e),
                    )
                    self._emit(EVENT_BACKEND_CONNECTION_FAILED, config.name, {"error": str(e)})
                    return False
                log.error(
                    "Connection failed, will retry",
                    reason=str(e),
                    retry_in_seconds=policy.delay_seconds,
                    attempt=f"{attempt + 1}/{policy.max_retries}",
                )
                await asyncio.sleep(policy.delay_seconds)

        log.info("Successfully connected to backend")

        previous = self._backends.get(config.name)
        if previous is not None and previous.connection is not None:
            log.info("Replacing existing backend connection")
            stale, previous.connection = previous.connection, None
            await close_quietly(stale, config.name)

        state = BackendState(identity=identity, config=config, connection=client)
        self._backends[config.name] = state
        self._emit(EVENT_BACKEND_CONNECTED, config.name, {"endpoint": config.describe()})

        if config.keep_alive:
            client.set_close_handler(lambda: self._handle_connection_lost(config.name, client))

        try:
            if not register:
                log.info("Skipping capability registration")
            elif self._registration_hook is not None:
                await self._registration_hook(state, client)
        finally:
            if not config.keep_alive:
                state.connection = None
                await close_quietly(client, config.name)

        return True

    def _handle_connection_lost(self, name: str, client: BackendClient) -> None:
        """Drop the stale state and reconnect in the background without re-registering."""
        state = self._backends.get(name)
        if state is None or state.connection is not client:
            return

        del self._backends[name]
        state.connection = None

        self._logger.error(
            "Backend connection lost",
            backend=name,
            transport=state.config.transport.value,
            endpoint=state.config.describe(),
            client=state.identity.name,
            reconnect_in_seconds=self._reconnect_delay,
        )
        self._emit(EVENT_BACKEND_CONNECTION_LOST, name)

        self._cancel_reconnect(name)
        task = asyncio.get_running_loop().create_task(self._reconnect_later(state))
        self._reconnect_tasks[name] = task
        task.add_done_callback(lambda done: self._forget_reconnect(name, done))

    def _forget_reconnect(self, name: str, task: asyncio.Task) -> None:
        if self._reconnect_tasks.get(name) is task:
            del self._reconnect_tasks[name]

    def _cancel_reconnect(self, name: str) -> bool:
        """Cancel a scheduled background reconnect for ``name``, if one is pending."""
        task = self._reconnect_tasks.pop(name, None)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    async def _reconnect_later(self, state: BackendState) -> None:
        await asyncio.sleep(self._reconnect_delay)
        try:
            await self.connect(state.config, state.identity, register=False)
        except Exception as e:
            self._logger.error("Reconnect failed", backend=state.config.name, error=str(e))

    async def reconnect(self, name: str) -> bool:
        """Refresh a backend's connection without touching its registered capabilities."""
        self._cancel_reconnect(name)
        state = self._backends.pop(name, None)
        if state is None:
            raise BackendNotFoundError(name)
        if state.connection is not None:
            connection, state.connection = state.connection, None
            await close_quietly(connection, name)
        return await self.connect(state.config, state.identity, register=False)

    async def disconnect(self, name: str) -> bool:
        """Remove a backend record, closing its live connection and any pending reconnect."""
        cancelled = self._cancel_reconnect(name)
        state = self._backends.pop(name, None)
        if state is None and not cancelled:
            return False
        if state is not None and state.connection is not None:
            connection, state.connection = state.connection, None
            await close_quietly(connection, name)
        self._logger.info("Backend disconnected", backend=name)
        self._emit(EVENT_BACKEND_DISCONNECTED, name)
        return True

    async def disconnect_all(self) -> None:
        for name in list(self._backends):
            await self.disconnect(name)

    async def aclose(self) -> None:
        """Cancel pending reconnects and disconnect every backend."""
        tasks = list(self._reconnect_tasks.values())
        self._reconnect_tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self.disconnect_all()

    # ─────────────────────────────────────────────────────────────────────────
    # Lookup and connection reuse
    # ─────────────────────────────────────────────────────────────────────────

    def list_backends(self) -> list[BackendState]:
        return list(self._backends.values())

    def get_backend(self, name: str) -> BackendState | None:
        return self._backends.get(name)

    def has_backend(self, name: str) -> bool:
        return name in self._backends

    async def get_or_open(self, name: str) -> BackendClient:
        """
        Open a new connection to a registered backend.

        The caller owns the returned connection and must close it.

        Raises:
            BackendNotFoundError: the backend is not registered
            BackendConnectionError: the connection could not be opened
        """
        state = self._backends.get(name)
        if state is None:
            raise BackendNotFoundError(name)

        client = self._client_factory(state.config, state.identity)
        try:
            await client.connect()
        except Exception as e:
            await close_quietly(client, name)
            raise BackendConnectionError(name, str(e)) from e
        return client

    def scope(self) -> ConnectionScope:
        """Create a connection scope for one call or one chain execution."""
        return ConnectionScope(self)
