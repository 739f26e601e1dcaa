"""Schema conversion helpers for forwarded capabilities."""

from mcp_composer.mcp.tools.converter import prompt_arguments_to_model, schema_to_model

__all__ = ["schema_to_model", "prompt_arguments_to_model"]
