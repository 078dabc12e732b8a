from __future__ import annotations

from dataclasses import dataclass, field
from typing import Awaitable, Callable, Union

ToolCallback = Callable[[str], Union[str, Awaitable[str]]]


def normalize_schema(schema: dict | None) -> dict:
    s = dict(schema or {})
    s.setdefault("type", "object")
    s.setdefault("properties", {})
    return s


@dataclass(frozen=True)
class ToolDefinition:
    """
    A function the model may call.

    *callback* receives the raw JSON argument string exactly as the model
    produced it and returns the result text (or an awaitable of it).
    """

    name: str
    description: str
    callback: ToolCallback
    parameters: dict = field(default_factory=dict)

    def to_openai_schema(self) -> dict:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": normalize_schema(self.parameters),
            },
        }
