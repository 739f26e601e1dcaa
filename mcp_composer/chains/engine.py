"""
Chain Execution Engine.

Runs a chain's steps strictly in order. Each step is resolved against the
unified registry, receives mapped values from an earlier result, and runs
either locally or on its backend through a connection shared by every step
of the same execution. Step failures are recorded as placeholder results so
step indices stay stable; only an unresolvable step aborts the chain.
"""

from __future__ import annotations

import copy
import json
from functools import partial
from typing import Any

import structlog

from mcp_composer.chains.mapping import apply_output_mapping
from mcp_composer.chains.models import ChainDefinition, ChainOutput
from mcp_composer.mcp.capabilities import CapabilityRegistry
from mcp_composer.mcp.errors import ComposerError, ToolNotFoundError
from mcp_composer.mcp.forwarders import LocalForwarder, ToolForwarder
from mcp_composer.mcp.registry import ConnectionRegistry, ConnectionScope
from mcp_composer.observability.tracing import get_tracer

logger = structlog.get_logger(__name__)

DEFAULT_CHAIN_DESCRIPTION = "Execute a chain of tools"


def text_result(text: str, is_error: bool = False) -> dict[str, Any]:
    """Build a tool result carrying a single text item."""
    result: dict[str, Any] = {"content": [{"type": "text", "text": text}]}
    if is_error:
        result["isError"] = True
    return result


def project_results(results: list[Any], output: ChainOutput | None) -> list[Any]:
    """
    Select the results a chain returns.

    - `final`: only the last result (empty when no step ran)
    - explicit `steps`: those indices, silently dropping out-of-range ones
    - otherwise: every result
    """
    if output is not None and output.final:
        return [results[-1]] if results else []

    if output is not None and output.steps:
        return [
            results[index]
            for index in output.steps
            if 0 <= index < len(results) and results[index] is not None
        ]

    return [result for result in results if result is not None]


class ChainExecutor:
    """Registers chains as local tools and executes them."""

    def __init__(
        self,
        registry: CapabilityRegistry,
        connections: ConnectionRegistry,
        separator: str,
    ):
        self._registry = registry
        self._connections = connections
        self._separator = separator
        self._definitions: dict[str, ChainDefinition] = {}

    @property
    def definitions(self) -> dict[str, ChainDefinition]:
        return dict(self._definitions)

    def define_chain(self, definition: ChainDefinition) -> bool:
        """Register `definition` as a zero-argument tool under its name."""
        forwarder = LocalForwarder(
            name=definition.name,
            description=definition.description or DEFAULT_CHAIN_DESCRIPTION,
            fn=partial(self._run, definition),
        )
        if not self._registry.register_tool(forwarder):
            return False

        self._definitions[definition.name] = definition
        logger.info("Registered tool chain", chain=definition.name, steps=len(definition.steps))
        return True

    async def _run(self, definition: ChainDefinition, arguments: dict[str, Any]) -> dict[str, Any]:
        try:
            return await self.execute(definition)
        except ToolNotFoundError as e:
            logger.error("Chain aborted", chain=definition.name, error=str(e))
            return text_result(f"Error: {e}", is_error=True)

    async def execute_chain(self, name: str) -> dict[str, Any]:
        """Execute a registered chain by name."""
        definition = self._definitions.get(name)
        if definition is None:
            raise ToolNotFoundError(name)
        return await self.execute(definition)

    async def execute(self, definition: ChainDefinition) -> dict[str, Any]:
        """
        Execute a chain.

        Returns:
            A text result whose text is the JSON array of projected step results

        Raises:
            ToolNotFoundError: a step names a tool that cannot be resolved
        """
        log = logger.bind(chain=definition.name)
        results: list[Any] = []
        failed_steps = 0

        with get_tracer().start_as_current_span(f"chain.{definition.name}") as span:
            span.set_attribute("chain.steps", len(definition.steps))

            async with self._connections.scope() as scope:
                for index, step in enumerate(definition.steps):
                    resolved = self._registry.resolve_tool(step.tool_name, self._separator)
                    if resolved is None:
                        span.set_attribute("chain.aborted", True)
                        raise ToolNotFoundError(step.tool_name)
                    tool_name, forwarder = resolved

                    log.debug("Executing chain step", step=index, tool=tool_name)

                    # Mapped values go into a copy so the definition can run again
                    args = copy.deepcopy(step.args)
                    if step.output_mapping:
                        source = self._source_result(results, index, step.from_step)
                        if source is not None:
                            apply_output_mapping(index, args, step.output_mapping, source)

                    try:
                        result = await self._invoke(tool_name, forwarder, args, scope)
                        results.append(result if result is not None else text_result(""))
                    except Exception as e:
                        failed_steps += 1
                        log.error("Chain step failed", step=index, tool=tool_name, error=str(e))
                        results.append(text_result(f"Error: {e}"))

            span.set_attribute("chain.failed_steps", failed_steps)

        log.debug("Chain execution completed", steps=len(results), failed_steps=failed_steps)

        projected = project_results(results, definition.output)
        return text_result(json.dumps(projected, default=str))

    @staticmethod
    def _source_result(results: list[Any], index: int, from_step: int | None) -> Any:
        source_index = from_step if from_step is not None else index - 1
        if 0 <= source_index < len(results):
            return results[source_index]
        return None

    async def _invoke(
        self,
        tool_name: str,
        forwarder: ToolForwarder,
        args: dict[str, Any],
        scope: ConnectionScope,
    ) -> Any:
        if not forwarder.needs_connection:
            return await forwarder.invoke(args)

        backend = self._registry.backend_for_tool(tool_name)
        if backend is None:
            raise ComposerError(f"No backend found for tool: {tool_name}")

        connection = await scope.get_or_open(backend)
        return await forwarder.invoke(args, connection)
