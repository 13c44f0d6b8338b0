from .base import ToolCallResult, ToolDescriptor, tool_results_message

__all__ = [
    "ToolCallResult",
    "ToolDescriptor",
    "tool_results_message",
]
