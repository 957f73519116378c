"""
Agent Loop - multi-step tool-calling agent over OpenAI-compatible models

This package provides:
- Agent step loop (generate and stream) with stop conditions
- Tool-call validation with an optional repair hook
- Sequential tool executor
- Stream reconstruction into step content
- OpenAI-compatible model adapter and header-aware retry
"""

from .cancellation import RunContext
from .errors import (
    AgentError,
    APICallError,
    InvalidArgumentError,
    RetryError,
    RunCancelledError,
    ToolValidationError,
    UnsupportedFunctionalityError,
)
from .orchestration import (
    Agent,
    AgentCall,
    AgentResult,
    AgentStreamCall,
    StepResult,
    StreamHandler,
)
from .providers import OpenAICompatModel
from .tools import AgentTool, ToolSet, function_tool

__all__ = [
    "Agent",
    "AgentCall",
    "AgentError",
    "AgentResult",
    "AgentStreamCall",
    "AgentTool",
    "APICallError",
    "InvalidArgumentError",
    "OpenAICompatModel",
    "RetryError",
    "RunCancelledError",
    "RunContext",
    "StepResult",
    "StreamHandler",
    "ToolSet",
    "ToolValidationError",
    "function_tool",
]

__version__ = "0.1.0"
