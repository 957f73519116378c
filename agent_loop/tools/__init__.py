"""
Agent Loop Tools Package

- base: tool interface, call/response types and the function-tool wrapper
- registry: ToolSet, the name-keyed table of tools available to an agent
"""

from .base import (
    AgentTool,
    FunctionTool,
    ToolCall,
    ToolInfo,
    ToolResponse,
    function_tool,
    new_image_response,
    new_media_response,
    new_text_error_response,
    new_text_response,
    with_response_metadata,
)
from .registry import ToolSet

__all__ = [
    "AgentTool",
    "FunctionTool",
    "ToolCall",
    "ToolInfo",
    "ToolResponse",
    "ToolSet",
    "function_tool",
    "new_image_response",
    "new_media_response",
    "new_text_error_response",
    "new_text_response",
    "with_response_metadata",
]
