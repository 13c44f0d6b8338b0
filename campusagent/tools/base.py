from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class ToolDescriptor:
    name: str
    description: str
    service: str
    input_schema: dict[str, Any] = field(default_factory=dict)

    def to_model_tool(self) -> dict[str, Any]:
        schema = self.input_schema or {"type": "object", "properties": {}}
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": schema,
        }


@dataclass(frozen=True)
class ToolCallResult:
    tool_use_id: str
    tool_name: str
    content: str
    user_id: str
    is_error: bool = False

    def to_content_block(self) -> dict[str, Any]:
        block: dict[str, Any] = {
            "type": "tool_result",
            "tool_use_id": self.tool_use_id,
            "content": self.content,
        }
        if self.is_error:
            block["is_error"] = True
        return block


def tool_results_message(results: list[ToolCallResult]) -> dict[str, Any]:
    return {
        "role": "user",
        "content": [result.to_content_block() for result in results],
    }
