"""
Schema conversion for forwarded capabilities.

Turns a backend-declared JSON schema (tool input) or prompt argument list
into a Pydantic model used to validate arguments before forwarding.
"""

from __future__ import annotations

import keyword
from typing import Any, Iterable

import structlog
from pydantic import BaseModel, ConfigDict, Field, create_model

from mcp_composer.mcp.client import PromptArgument
from mcp_composer.mcp.errors import SchemaConversionError

logger = structlog.get_logger(__name__)


class _ArgsBase(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


def _json_type_to_python(json_type: str | list | None) -> Any:
    """Convert JSON schema type to Python type."""
    if isinstance(json_type, list):
        # Handle union types like ["string", "null"]
        non_null = [t for t in json_type if t != "null"]
        if non_null:
            return _json_type_to_python(non_null[0])
        return Any

    type_map = {
        "string": str,
        "integer": int,
        "number": float,
        "boolean": bool,
        "array": list,
        "object": dict,
    }
    return type_map.get(json_type, Any)


def _model_name(name: str, suffix: str) -> str:
    safe_name = "".join(c if c.isalnum() else "_" for c in name).title().replace("_", "")
    return f"{safe_name or 'Anonymous'}{suffix}"


def _field_name(prop_name: str) -> tuple[str, str | None]:
    """Return a valid Python identifier for a property and its alias, if needed."""
    if prop_name.isidentifier() and not keyword.iskeyword(prop_name) and not prop_name.startswith("_"):
        return prop_name, None
    safe = "".join(c if c.isalnum() else "_" for c in prop_name).strip("_") or "field"
    if safe[0].isdigit() or keyword.iskeyword(safe):
        safe = f"f_{safe}"
    return safe, prop_name


def schema_to_model(name: str, schema: dict[str, Any] | None) -> type[BaseModel]:
    """
    Create a Pydantic model from a JSON schema.

    Args:
        name: Capability name the model validates arguments for
        schema: JSON schema dict (an object schema)

    Returns:
        Pydantic model class

    Raises:
        SchemaConversionError: if the schema is not a usable object schema
    """
    if schema is None:
        schema = {}
    if not isinstance(schema, dict):
        raise SchemaConversionError(name, "input schema must be an object")

    schema_type = schema.get("type", "object")
    if schema_type != "object":
        raise SchemaConversionError(name, f"unsupported schema type '{schema_type}'")

    properties = schema.get("properties") or {}
    required = schema.get("required") or []
    if not isinstance(properties, dict):
        raise SchemaConversionError(name, "'properties' must be an object")
    if not isinstance(required, list):
        raise SchemaConversionError(name, "'required' must be an array")

    field_definitions: dict[str, Any] = {}
    for prop_name, prop_schema in properties.items():
        if not isinstance(prop_schema, dict):
            raise SchemaConversionError(name, f"property '{prop_name}' must be an object")

        python_type = _json_type_to_python(prop_schema.get("type"))
        description = prop_schema.get("description", "")
        field_name, alias = _field_name(prop_name)

        if prop_name in required:
            field_definitions[field_name] = (
                python_type,
                Field(description=description, alias=alias),
            )
        else:
            field_definitions[field_name] = (
                python_type | None,
                Field(default=prop_schema.get("default"), description=description, alias=alias),
            )

    try:
        return create_model(_model_name(name, "Args"), __base__=_ArgsBase, **field_definitions)
    except Exception as e:
        raise SchemaConversionError(name, str(e)) from e


def prompt_arguments_to_model(name: str, arguments: Iterable[PromptArgument] | None) -> type[BaseModel]:
    """
    Create a Pydantic model from a prompt's declared arguments.

    Prompt arguments are always strings; `required` decides optionality.
    """
    field_definitions: dict[str, Any] = {}
    for argument in arguments or []:
        if not argument.name:
            raise SchemaConversionError(name, "prompt argument name is required")
        field_name, alias = _field_name(argument.name)
        if argument.required:
            field_definitions[field_name] = (
                str,
                Field(description=argument.description or "", alias=alias),
            )
        else:
            field_definitions[field_name] = (
                str | None,
                Field(default=None, description=argument.description or "", alias=alias),
            )

    try:
        return create_model(_model_name(name, "PromptArgs"), __base__=_ArgsBase, **field_definitions)
    except Exception as e:
        raise SchemaConversionError(name, str(e)) from e
