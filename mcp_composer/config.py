"""
Composer Configuration Loader.

Loads backend, namespacing, retry and chain configuration from a YAML file
or from environment variables.

Usage:
    from mcp_composer.config import load_composer_config

    config = load_composer_config("config/composer.yaml")
    for name, server in config.get_enabled_servers().items():
        print(f"Backend: {name}, Transport: {server.transport}")

File format:
    server:
      name: mcp-composer
      version: 1.0.0
    separator: "::"
    retry:
      max_retries: 2
      delay_seconds: 15
    servers:
      github:
        transport: stdio
        command: npx
        args: ["-y", "@modelcontextprotocol/server-github"]
        tools: [search_repositories]
    chains:
      - name: find_and_read
        steps:
          - tool: search_repositories
            args: {query: mcp}
          - tool: get_file_contents
            output_mapping: {repo: content.0.text}
        output: {final: true}
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog
import yaml

from mcp_composer.chains.models import ChainDefinition
from mcp_composer.mcp.aggregator import NAMESPACE_SEPARATOR
from mcp_composer.mcp.client import BackendConfig, ClientIdentity, TransportType
from mcp_composer.mcp.errors import ConfigurationError
from mcp_composer.mcp.registry import RetryPolicy

logger = structlog.get_logger(__name__)

CONFIG_PATH_ENV = "MCP_COMPOSER_CONFIG"
DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config" / "composer.yaml"


def expand_bash_vars(value: str) -> str:
    """Expand bash-style environment variables with default values.

    Handles the following patterns:
    - $VAR or ${VAR} - standard variable expansion
    - ${VAR:-default} - use default if VAR is unset or empty
    - ${VAR-default} - use default if VAR is unset (but not if empty)
    """
    if not value or "$" not in value:
        return value

    pattern = r"\$\{([^}:-]+)(:-|-)?([^}]*)?\}"

    def replace_var(match: re.Match) -> str:
        var_name = match.group(1)
        operator = match.group(2)
        default = match.group(3) or ""

        env_value = os.environ.get(var_name)

        if operator == ":-":
            return env_value if env_value else default
        elif operator == "-":
            return env_value if env_value is not None else default
        else:
            return env_value or ""

    result = re.sub(pattern, replace_var, value)
    return os.path.expandvars(result)


def _expand(value: str | None) -> str | None:
    if not value:
        return value
    return expand_bash_vars(os.path.expanduser(value))


@dataclass
class ServerConfigEntry:
    """Configuration entry for a single backend."""

    name: str
    transport: TransportType
    enabled: bool = True
    command: str | None = None
    args: list[str] = field(default_factory=list)
    working_dir: str | None = None
    env: dict[str, str] = field(default_factory=dict)
    url: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    tools: list[str] = field(default_factory=list)
    keep_alive: bool = False
    description: str = ""
    timeout_seconds: float = 60.0
    tool_timeouts: dict[str, float] = field(default_factory=dict)

    def to_backend_config(self) -> BackendConfig:
        """Convert to an immutable BackendConfig with environment variables expanded."""
        return BackendConfig(
            name=self.name,
            transport=self.transport,
            command=_expand(self.command),
            args=tuple(expand_bash_vars(str(a)) for a in self.args),
            env={k: _expand(str(v)) or "" for k, v in self.env.items()},
            working_dir=_expand(self.working_dir),
            url=_expand(self.url),
            headers={k: expand_bash_vars(str(v)) for k, v in self.headers.items()},
            tools=tuple(self.tools),
            timeout_seconds=self.timeout_seconds,
            tool_timeouts=dict(self.tool_timeouts),
            keep_alive=self.keep_alive,
            description=self.description,
        )


@dataclass
class ComposerConfig:
    """Complete composer configuration."""

    server: ClientIdentity = field(default_factory=lambda: ClientIdentity(name="mcp-composer"))
    separator: str = NAMESPACE_SEPARATOR
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    servers: dict[str, ServerConfigEntry] = field(default_factory=dict)
    chains: list[ChainDefinition] = field(default_factory=list)

    def get_enabled_servers(self) -> dict[str, ServerConfigEntry]:
        """Get all enabled servers."""
        return {name: entry for name, entry in self.servers.items() if entry.enabled}

    def get_server(self, name: str) -> ServerConfigEntry | None:
        """Get a specific server configuration."""
        return self.servers.get(name)


def _parse_server(name: str, data: dict[str, Any], defaults: dict[str, Any]) -> ServerConfigEntry | None:
    transport_str = data.get("transport", "stdio")
    try:
        transport = TransportType(transport_str)
    except ValueError:
        logger.warning("Unknown transport type, skipping server", server=name, transport=transport_str)
        return None

    if transport == TransportType.STDIO and not data.get("command"):
        raise ConfigurationError(f"Server '{name}' uses stdio transport but has no command")
    if transport != TransportType.STDIO and not data.get("url"):
        raise ConfigurationError(f"Server '{name}' uses {transport.value} transport but has no url")

    tools = data.get("tools") or []
    if not isinstance(tools, list):
        raise ConfigurationError(f"'tools' for server '{name}' must be a list")

    return ServerConfigEntry(
        name=name,
        transport=transport,
        enabled=bool(data.get("enabled", True)),
        command=data.get("command"),
        args=[str(a) for a in data.get("args") or []],
        working_dir=data.get("working_dir"),
        env=dict(data.get("env") or {}),
        url=data.get("url"),
        headers=dict(data.get("headers") or {}),
        tools=[str(t) for t in tools],
        keep_alive=bool(data.get("keep_alive", defaults.get("keep_alive", False))),
        description=data.get("description", ""),
        timeout_seconds=float(data.get("timeout_seconds", defaults.get("timeout_seconds", 60.0))),
        tool_timeouts={
            **(defaults.get("tool_timeouts") or {}),
            **(data.get("tool_timeouts") or {}),
        },
    )


def parse_composer_config(data: dict[str, Any] | None) -> ComposerConfig:
    """Build a ComposerConfig from already-parsed YAML/JSON data."""
    if not data:
        return ComposerConfig()
    if not isinstance(data, dict):
        raise ConfigurationError("Configuration root must be a mapping")

    server = data.get("server") or {}
    identity = ClientIdentity(
        name=str(server.get("name", "mcp-composer")),
        version=str(server.get("version", "1.0.0")),
    )

    separator = data.get("separator", NAMESPACE_SEPARATOR)
    if not isinstance(separator, str) or not separator:
        raise ConfigurationError("'separator' must be a non-empty string")

    retry_data = data.get("retry") or {}
    retry = RetryPolicy(
        max_retries=int(retry_data.get("max_retries", RetryPolicy.max_retries)),
        delay_seconds=float(retry_data.get("delay_seconds", RetryPolicy.delay_seconds)),
    )

    defaults = data.get("defaults") or {}
    servers: dict[str, ServerConfigEntry] = {}
    for name, server_data in (data.get("servers") or {}).items():
        if server_data is None:
            continue
        entry = _parse_server(str(name), server_data, defaults)
        if entry is not None:
            servers[entry.name] = entry

    chains: list[ChainDefinition] = []
    for chain_data in data.get("chains") or []:
        try:
            chains.append(ChainDefinition.from_dict(chain_data))
        except (ValueError, TypeError, AttributeError) as e:
            raise ConfigurationError(f"Invalid chain definition: {e}") from e

    return ComposerConfig(
        server=identity,
        separator=separator,
        retry=retry,
        servers=servers,
        chains=chains,
    )


def load_composer_config(config_path: str | Path | None = None) -> ComposerConfig:
    """
    Load composer configuration from a YAML file.

    Args:
        config_path: Path to config file. Defaults to $MCP_COMPOSER_CONFIG,
            then config/composer.yaml

    Returns:
        ComposerConfig with loaded backends and chains
    """
    if config_path is None:
        config_path = Path(os.getenv(CONFIG_PATH_ENV) or DEFAULT_CONFIG_PATH)
    else:
        config_path = Path(config_path)

    if not config_path.exists():
        logger.warning("Composer config file not found, using empty configuration", path=str(config_path))
        return ComposerConfig()

    logger.info("Loading composer configuration", path=str(config_path))

    with open(config_path) as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

    config = parse_composer_config(data)

    logger.info(
        "Composer configuration loaded",
        total_servers=len(config.servers),
        enabled_servers=len(config.get_enabled_servers()),
        chains=len(config.chains),
    )
    return config


def load_composer_config_from_env() -> ComposerConfig:
    """
    Load backend configuration from environment variables.

    Environment variable format:
    - MCP_SERVER_{NAME}_TRANSPORT: Transport type (stdio, http, sse)
    - MCP_SERVER_{NAME}_COMMAND: Command for stdio transport
    - MCP_SERVER_{NAME}_ARGS: Comma-separated args for stdio
    - MCP_SERVER_{NAME}_URL: URL for http/sse transport
    - MCP_SERVER_{NAME}_TOOLS: Comma-separated tool allow-list
    - MCP_SERVER_{NAME}_ENABLED: true/false
    - MCP_COMPOSER_SEPARATOR: Namespace separator
    """
    servers: dict[str, ServerConfigEntry] = {}

    env_prefix = "MCP_SERVER_"
    server_names: set[str] = set()

    for key in os.environ:
        if key.startswith(env_prefix):
            # MCP_SERVER_GITHUB_TRANSPORT -> GITHUB
            parts = key[len(env_prefix):].split("_")
            if len(parts) >= 2:
                server_names.add(parts[0])

    for name in server_names:
        prefix = f"{env_prefix}{name}_"

        transport_str = os.getenv(f"{prefix}TRANSPORT", "stdio")
        try:
            transport = TransportType(transport_str)
        except ValueError:
            continue

        args_str = os.getenv(f"{prefix}ARGS", "")
        tools_str = os.getenv(f"{prefix}TOOLS", "")
        server_name = name.lower()

        servers[server_name] = ServerConfigEntry(
            name=server_name,
            transport=transport,
            enabled=os.getenv(f"{prefix}ENABLED", "true").lower() == "true",
            command=os.getenv(f"{prefix}COMMAND"),
            args=[a.strip() for a in args_str.split(",") if a.strip()],
            url=os.getenv(f"{prefix}URL"),
            tools=[t.strip() for t in tools_str.split(",") if t.strip()],
        )

    return ComposerConfig(
        separator=os.getenv("MCP_COMPOSER_SEPARATOR", NAMESPACE_SEPARATOR),
        servers=servers,
    )
