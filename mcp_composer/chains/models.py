"""Chain definitions."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


def _pick(data: dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in data:
            return data[key]
    return default


@dataclass
class ChainStep:
    """One tool invocation in a chain.

    `output_mapping` maps an argument key of this step to a dotted path in a
    prior step's result; the prior step is `from_step` when set, else the
    immediately preceding step.
    """

    tool_name: str
    args: dict[str, Any] = field(default_factory=dict)
    output_mapping: dict[str, str] | None = None
    from_step: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChainStep:
        tool_name = _pick(data, "tool", "tool_name", "toolName")
        if not tool_name or not isinstance(tool_name, str):
            raise ValueError("Chain step requires a tool name")

        args = _pick(data, "args", "arguments", default={}) or {}
        if not isinstance(args, dict):
            raise ValueError(f"Arguments for step '{tool_name}' must be a mapping")

        mapping = _pick(data, "output_mapping", "outputMapping")
        if mapping is not None and not isinstance(mapping, dict):
            raise ValueError(f"Output mapping for step '{tool_name}' must be a mapping")

        from_step = _pick(data, "from_step", "fromStep")
        if from_step is not None and not isinstance(from_step, int):
            raise ValueError(f"from_step for step '{tool_name}' must be an integer")

        return cls(
            tool_name=tool_name,
            args=dict(args),
            output_mapping={str(k): str(v) for k, v in mapping.items()} if mapping else None,
            from_step=from_step,
        )


@dataclass
class ChainOutput:
    """Which step results a chain returns."""

    steps: list[int] | None = None
    final: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ChainOutput | None:
        if data is None:
            return None
        steps = data.get("steps")
        return cls(
            steps=[int(s) for s in steps] if steps else None,
            final=bool(data.get("final", False)),
        )


@dataclass
class ChainDefinition:
    """A named, ordered sequence of steps exposed as one tool."""

    name: str
    steps: list[ChainStep]
    description: str | None = None
    output: ChainOutput | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChainDefinition:
        name = data.get("name")
        if not name or not isinstance(name, str):
            raise ValueError("Chain requires a name")

        steps = data.get("steps")
        if not isinstance(steps, list):
            raise ValueError(f"Chain '{name}' requires a list of steps")

        return cls(
            name=name,
            steps=[ChainStep.from_dict(step) for step in steps],
            description=data.get("description"),
            output=ChainOutput.from_dict(data.get("output")),
        )
