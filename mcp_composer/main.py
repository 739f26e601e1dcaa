#!/usr/bin/env python
"""MCP Composer - Main Entry Point.

Connects the configured backends, composes their capabilities and either
prints the unified surface or runs a chain.

Usage:
    # Print the unified tool/resource/prompt surface
    mcp-composer --list

    # Run a configured chain and print its result
    mcp-composer --chain find_and_read

    # Use another configuration file
    mcp-composer --config config/composer.yaml --list
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path

# Load environment from .env.local
from dotenv import load_dotenv

env_file = Path(__file__).parent.parent / ".env.local"
if env_file.exists():
    load_dotenv(env_file)

import structlog

from mcp_composer.composer import ServerComposer
from mcp_composer.config import (
    CONFIG_PATH_ENV,
    DEFAULT_CONFIG_PATH,
    ComposerConfig,
    load_composer_config,
    load_composer_config_from_env,
)
from mcp_composer.mcp.errors import ComposerError
from mcp_composer.observability import init_observability, shutdown_observability

logger = structlog.get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mcp-composer",
        description="Compose MCP backends into one namespaced capability surface",
    )
    parser.add_argument(
        "--config",
        default=None,
        help=(
            "Path to the composer YAML config (default: $MCP_COMPOSER_CONFIG, then config/composer.yaml, "
            "then MCP_SERVER_* environment variables)"
        ),
    )
    parser.add_argument(
        "--list",
        action="store_true",
        help="Print the unified capability surface as JSON",
    )
    parser.add_argument(
        "--chain",
        default=None,
        help="Execute the named chain and print its result",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: INFO)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit JSON log lines",
    )
    return parser


def load_config(config_path: str | None) -> ComposerConfig:
    """Load the YAML config, or fall back to MCP_SERVER_* variables when no file is configured."""
    path = config_path or os.getenv(CONFIG_PATH_ENV)
    if path is None:
        if not DEFAULT_CONFIG_PATH.exists():
            logger.info("No composer config file, reading backends from environment")
            return load_composer_config_from_env()
        path = DEFAULT_CONFIG_PATH
    return load_composer_config(path)


async def run(args: argparse.Namespace) -> int:
    config = load_config(args.config)

    async with ServerComposer.from_config(config) as composer:
        await composer.start()

        if args.list:
            surface = {
                "backends": composer.list_backends(),
                "tools": composer.list_tools(),
                "resources": composer.list_resources(),
                "prompts": composer.list_prompts(),
            }
            print(json.dumps(surface, indent=2, default=str))

        if args.chain:
            result = await composer.execute_chain(args.chain)
            print(json.dumps(result, indent=2, default=str))
            if result.get("isError"):
                return 1

    return 0


def main() -> None:
    """Main entry point."""
    args = build_parser().parse_args()

    # Logs go to stderr so --list / --chain output stays clean JSON
    init_observability(level=args.log_level, json_logs=args.json_logs)

    try:
        exit_code = asyncio.run(run(args))
    except KeyboardInterrupt:
        logger.info("Shutting down...")
        exit_code = 130
    except ComposerError as e:
        logger.error("Composer error", error=str(e))
        exit_code = 1
    finally:
        shutdown_observability()

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
