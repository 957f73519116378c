"""
Agent orchestration: step loop, tool-call validation, tool execution,
stop conditions and stream reconstruction.
"""

from .executor import execute_tools
from .loop import (
    Agent,
    AgentCall,
    AgentStreamCall,
    PrepareStepFunction,
    PrepareStepOptions,
    PrepareStepResult,
    should_continue,
)
from .results import AgentResult, StepResult
from .stop_conditions import (
    StopCondition,
    finish_reason_is,
    has_content,
    has_tool_call,
    is_stop_condition_met,
    max_tokens_used,
    step_count_is,
)
from .streaming import StreamedStep, StreamHandler, StreamReconstructor
from .validation import (
    RepairOptions,
    RepairToolCallFunction,
    validate_and_repair_tool_call,
    validate_tool_call,
)

__all__ = [
    "Agent",
    "AgentCall",
    "AgentStreamCall",
    "AgentResult",
    "PrepareStepFunction",
    "PrepareStepOptions",
    "PrepareStepResult",
    "RepairOptions",
    "RepairToolCallFunction",
    "StepResult",
    "StopCondition",
    "StreamedStep",
    "StreamHandler",
    "StreamReconstructor",
    "execute_tools",
    "finish_reason_is",
    "has_content",
    "has_tool_call",
    "is_stop_condition_met",
    "max_tokens_used",
    "should_continue",
    "step_count_is",
    "validate_and_repair_tool_call",
    "validate_tool_call",
]
