"""Tests for the mcp-composer command line."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from mcp_composer import main as cli
from mcp_composer.config import ComposerConfig


def _composer_mock(chain_result=None):
    composer = MagicMock()
    composer.__aenter__ = AsyncMock(return_value=composer)
    composer.__aexit__ = AsyncMock(return_value=None)
    composer.start = AsyncMock(return_value={})
    composer.list_backends.return_value = [{"name": "alpha"}]
    composer.list_tools.return_value = [{"name": "alpha::search"}]
    composer.list_resources.return_value = []
    composer.list_prompts.return_value = []
    composer.execute_chain = AsyncMock(return_value=chain_result)
    return composer


def test_parser_defaults():
    args = cli.build_parser().parse_args([])

    assert args.config is None
    assert args.list is False
    assert args.chain is None
    assert args.log_level == "INFO"
    assert args.json_logs is False


@pytest.mark.asyncio
async def test_list_prints_unified_surface(capsys):
    composer = _composer_mock()
    args = cli.build_parser().parse_args(["--list", "--config", "custom.yaml"])

    with patch.object(cli, "load_composer_config", return_value=ComposerConfig()) as load, patch.object(
        cli.ServerComposer, "from_config", return_value=composer
    ):
        assert await cli.run(args) == 0

    load.assert_called_once_with("custom.yaml")
    composer.start.assert_awaited_once()
    surface = json.loads(capsys.readouterr().out)
    assert surface["tools"] == [{"name": "alpha::search"}]
    assert surface["backends"] == [{"name": "alpha"}]


@pytest.mark.asyncio
async def test_chain_error_result_sets_exit_code(capsys):
    composer = _composer_mock(
        {"content": [{"type": "text", "text": "Error: Tool not found: ghost"}], "isError": True}
    )
    args = cli.build_parser().parse_args(["--chain", "broken"])

    with patch.object(cli, "load_composer_config", return_value=ComposerConfig()), patch.object(
        cli.ServerComposer, "from_config", return_value=composer
    ):
        assert await cli.run(args) == 1

    composer.execute_chain.assert_awaited_once_with("broken")
    assert "Tool not found" in capsys.readouterr().out


def test_load_config_falls_back_to_environment(tmp_path, monkeypatch):
    monkeypatch.setattr(cli, "DEFAULT_CONFIG_PATH", tmp_path / "absent.yaml")
    monkeypatch.delenv("MCP_COMPOSER_CONFIG", raising=False)
    monkeypatch.setenv("MCP_SERVER_FILES_COMMAND", "files-server")
    monkeypatch.setenv("MCP_SERVER_FILES_ARGS", "--root, /data")

    config = cli.load_config(None)

    assert list(config.servers) == ["files"]
    assert config.servers["files"].command == "files-server"
    assert config.servers["files"].args == ["--root", "/data"]


def test_load_config_prefers_existing_file(tmp_path, monkeypatch):
    path = tmp_path / "composer.yaml"
    path.write_text("separator: '/'\n")
    monkeypatch.setattr(cli, "DEFAULT_CONFIG_PATH", path)
    monkeypatch.delenv("MCP_COMPOSER_CONFIG", raising=False)
    monkeypatch.setenv("MCP_SERVER_FILES_COMMAND", "files-server")

    with patch.object(cli, "load_composer_config_from_env") as from_env:
        config = cli.load_config(None)

    from_env.assert_not_called()
    assert config.separator == "/"


def test_main_exits_with_run_result(monkeypatch):
    monkeypatch.setattr("sys.argv", ["mcp-composer", "--log-level", "ERROR"])

    with patch.object(cli, "init_observability") as init_obs, patch.object(
        cli, "shutdown_observability"
    ) as shutdown_obs, patch.object(cli, "run", AsyncMock(return_value=0)):
        with pytest.raises(SystemExit) as exc_info:
            cli.main()

    assert exc_info.value.code == 0
    init_obs.assert_called_once_with(level="ERROR", json_logs=False)
    shutdown_obs.assert_called_once()
