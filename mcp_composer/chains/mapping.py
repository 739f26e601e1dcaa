"""Moving values from a prior step's result into a later step's arguments."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import structlog

logger = structlog.get_logger(__name__)

_MISSING = object()


def get_nested_value(obj: Any, path: str, default: Any = None) -> Any:
    """
    Walk a dotted path through mappings, sequences and attributes.

    Digit segments index into lists (`content.0.text`); signed or
    out-of-range indices do not resolve. A missing key, or a `None` reached
    before the last segment, yields `default`. A `None` stored at the end of
    the path is returned as-is.
    """
    current = obj
    for key in path.split("."):
        if current is None:
            return default
        if isinstance(current, Mapping):
            if key not in current:
                return default
            current = current[key]
        elif isinstance(current, (list, tuple)):
            if not key.isdecimal() or int(key) >= len(current):
                return default
            current = current[int(key)]
        else:
            current = getattr(current, key, default)
            if current is default:
                return default
    return current


def apply_output_mapping(
    step_index: int,
    args: dict[str, Any],
    mapping: Mapping[str, str],
    source: Any,
) -> None:
    """Write each resolvable mapped value into `args`; unresolved paths leave it untouched."""
    for key, path in mapping.items():
        value = get_nested_value(source, path, _MISSING)
        if value is _MISSING:
            logger.info("Output mapping path returned nothing", path=path, step=step_index)
            continue
        args[key] = value
