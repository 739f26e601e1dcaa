"""
Tool chains: named, linear sequences of tool invocations with data flowing
from earlier results into later arguments.
"""

from mcp_composer.chains.engine import ChainExecutor, project_results, text_result
from mcp_composer.chains.mapping import apply_output_mapping, get_nested_value
from mcp_composer.chains.models import ChainDefinition, ChainOutput, ChainStep

__all__ = [
    "ChainDefinition",
    "ChainOutput",
    "ChainStep",
    "ChainExecutor",
    "apply_output_mapping",
    "get_nested_value",
    "project_results",
    "text_result",
]
