"""Tests for composer configuration loading."""

import pytest

from mcp_composer.config import (
    ComposerConfig,
    expand_bash_vars,
    load_composer_config,
    load_composer_config_from_env,
    parse_composer_config,
)
from mcp_composer.mcp.client import TransportType
from mcp_composer.mcp.errors import ConfigurationError
from mcp_composer.mcp.registry import RetryPolicy

CONFIG_YAML = """
server:
  name: gateway
  version: 2.0.0
separator: "__"
retry:
  max_retries: 4
  delay_seconds: 1.5
defaults:
  timeout_seconds: 30
  tool_timeouts:
    slow_tool: 120
servers:
  files:
    transport: stdio
    command: ${FS_COMMAND:-npx}
    args: ["-y", "server-filesystem", "${FS_ROOT}"]
    env:
      TOKEN: ${FS_TOKEN:-none}
    tools: [read_file]
  remote:
    transport: http
    url: http://${REMOTE_HOST:-localhost}:8080/mcp
    headers:
      Authorization: Bearer ${REMOTE_TOKEN-unset}
    keep_alive: true
    tool_timeouts:
      slow_tool: 5
  disabled:
    command: nothing
    enabled: false
chains:
  - name: read_first
    steps:
      - tool: files__read_file
        args: {path: /tmp/a}
    output:
      final: true
"""


class TestExpandBashVars:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("COMPOSER_TEST_VAR", raising=False)
        assert expand_bash_vars("${COMPOSER_TEST_VAR:-fallback}") == "fallback"
        assert expand_bash_vars("${COMPOSER_TEST_VAR-fallback}") == "fallback"

        monkeypatch.setenv("COMPOSER_TEST_VAR", "")
        assert expand_bash_vars("${COMPOSER_TEST_VAR:-fallback}") == "fallback"
        assert expand_bash_vars("${COMPOSER_TEST_VAR-fallback}") == ""

        monkeypatch.setenv("COMPOSER_TEST_VAR", "set")
        assert expand_bash_vars("x-${COMPOSER_TEST_VAR}-$COMPOSER_TEST_VAR") == "x-set-set"

    def test_passthrough(self):
        assert expand_bash_vars("plain") == "plain"
        assert expand_bash_vars("") == ""


class TestLoadComposerConfig:
    def test_load_from_file(self, tmp_path, monkeypatch):
        monkeypatch.setenv("FS_ROOT", "/data")
        monkeypatch.delenv("FS_COMMAND", raising=False)
        monkeypatch.delenv("FS_TOKEN", raising=False)
        monkeypatch.delenv("REMOTE_HOST", raising=False)
        monkeypatch.delenv("REMOTE_TOKEN", raising=False)
        path = tmp_path / "composer.yaml"
        path.write_text(CONFIG_YAML)

        config = load_composer_config(path)

        assert config.server.name == "gateway"
        assert config.server.version == "2.0.0"
        assert config.separator == "__"
        assert config.retry == RetryPolicy(max_retries=4, delay_seconds=1.5)
        assert set(config.servers) == {"files", "remote", "disabled"}
        assert set(config.get_enabled_servers()) == {"files", "remote"}
        assert config.chains[0].name == "read_first"
        assert config.chains[0].output.final is True

        files = config.get_server("files").to_backend_config()
        assert files.transport == TransportType.STDIO
        assert files.command == "npx"
        assert files.args == ("-y", "server-filesystem", "/data")
        assert files.env == {"TOKEN": "none"}
        assert files.tools == ("read_file",)
        assert files.timeout_seconds == 30.0
        assert files.tool_timeouts == {"slow_tool": 120}

        remote = config.get_server("remote").to_backend_config()
        assert remote.transport == TransportType.HTTP
        assert remote.url == "http://localhost:8080/mcp"
        assert remote.headers == {"Authorization": "Bearer unset"}
        assert remote.keep_alive is True
        assert remote.tool_timeouts == {"slow_tool": 5}

    def test_missing_file_gives_empty_config(self, tmp_path):
        config = load_composer_config(tmp_path / "absent.yaml")

        assert config.servers == {}
        assert config.chains == []
        assert config.separator == "::"

    def test_path_from_environment(self, tmp_path, monkeypatch):
        path = tmp_path / "env.yaml"
        path.write_text("separator: '/'\n")
        monkeypatch.setenv("MCP_COMPOSER_CONFIG", str(path))

        assert load_composer_config().separator == "/"

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("servers: [unclosed\n")

        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            load_composer_config(path)


class TestParseComposerConfig:
    def test_empty(self):
        config = parse_composer_config(None)

        assert isinstance(config, ComposerConfig)
        assert config.retry == RetryPolicy()

    def test_unknown_transport_is_skipped(self):
        config = parse_composer_config({"servers": {"odd": {"transport": "carrier-pigeon"}}})

        assert config.servers == {}

    @pytest.mark.parametrize(
        "data, message",
        [
            (["not", "a", "mapping"], "mapping"),
            ({"separator": ""}, "separator"),
            ({"servers": {"s": {"transport": "stdio"}}}, "no command"),
            ({"servers": {"s": {"transport": "sse"}}}, "no url"),
            ({"servers": {"s": {"command": "x", "tools": "read"}}}, "must be a list"),
            ({"chains": [{"name": "c"}]}, "Invalid chain"),
        ],
    )
    def test_invalid(self, data, message):
        with pytest.raises(ConfigurationError, match=message):
            parse_composer_config(data)


class TestLoadFromEnv:
    def test_servers_from_environment(self, monkeypatch):
        monkeypatch.setenv("MCP_SERVER_GITHUB_TRANSPORT", "stdio")
        monkeypatch.setenv("MCP_SERVER_GITHUB_COMMAND", "npx")
        monkeypatch.setenv("MCP_SERVER_GITHUB_ARGS", "-y, server-github")
        monkeypatch.setenv("MCP_SERVER_GITHUB_TOOLS", "search,get_file")
        monkeypatch.setenv("MCP_SERVER_DOCS_TRANSPORT", "http")
        monkeypatch.setenv("MCP_SERVER_DOCS_URL", "http://docs/mcp")
        monkeypatch.setenv("MCP_SERVER_DOCS_ENABLED", "false")
        monkeypatch.setenv("MCP_COMPOSER_SEPARATOR", ".")

        config = load_composer_config_from_env()

        assert config.separator == "."
        github = config.get_server("github")
        assert github.command == "npx"
        assert github.args == ["-y", "server-github"]
        assert github.tools == ["search", "get_file"]
        assert set(config.get_enabled_servers()) >= {"github"}
        assert "docs" not in config.get_enabled_servers()
        assert config.get_server("docs").url == "http://docs/mcp"
