"""
Tool-call validation and repair.

Each tool call the model emits is checked against the tool set before it
can run: the tool must exist, the input must be a JSON object, and every
required parameter must be present. A failing call is handed to the repair
hook when one is configured; a replacement is accepted only if it passes
validation itself. Calls that stay invalid are flagged and later turned
into error tool results instead of being executed.
"""

import json
import logging
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Callable, Optional

from ..content import Message, ToolCallContent
from ..errors import (
    InvalidToolInputError,
    MissingParameterError,
    ToolNotFoundError,
    ToolValidationError,
)
from ..tools.base import AgentTool
from ..tools.registry import ToolSet

if TYPE_CHECKING:
    from ..cancellation import RunContext

logger = logging.getLogger(__name__)


@dataclass
class RepairOptions:
    """Everything a repair hook gets to work with."""

    original_tool_call: ToolCallContent
    validation_error: ToolValidationError
    available_tools: list[AgentTool]
    system_prompt: str
    messages: list[Message]


RepairToolCallFunction = Callable[
    ["RunContext", RepairOptions], Optional[ToolCallContent]
]


def validate_tool_call(tool_call: ToolCallContent, tools: ToolSet) -> None:
    """
    Check a tool call against the tool set.

    Raises:
        ToolNotFoundError: No tool with the call's name.
        InvalidToolInputError: Input is not a JSON object.
        MissingParameterError: A required parameter is absent.
    """
    tool = tools.get(tool_call.tool_name)
    if tool is None:
        raise ToolNotFoundError(tool_call.tool_name)

    try:
        args = json.loads(tool_call.input)
    except (json.JSONDecodeError, TypeError) as e:
        raise InvalidToolInputError(e) from e
    if not isinstance(args, dict):
        raise InvalidToolInputError(
            ValueError(f"expected a JSON object, got {type(args).__name__}")
        )

    for param in tool.info().required:
        if param not in args:
            raise MissingParameterError(param)


def validate_and_repair_tool_call(
    ctx: "RunContext",
    tool_call: ToolCallContent,
    tools: ToolSet,
    system_prompt: str,
    messages: list[Message],
    repair: Optional[RepairToolCallFunction] = None,
) -> ToolCallContent:
    """
    Validate a tool call, repairing it if possible.

    Returns the call unchanged when valid, the repaired call when the hook
    produced a valid replacement, or a copy flagged ``invalid`` with the
    original validation error attached. Exceptions raised by the repair hook
    propagate.
    """
    try:
        validate_tool_call(tool_call, tools)
        return tool_call
    except ToolValidationError as e:
        error = e

    if repair is not None:
        logger.debug(
            "Attempting repair of tool call %s (%s): %s",
            tool_call.tool_call_id,
            tool_call.tool_name,
            error,
        )
        repaired = repair(
            ctx,
            RepairOptions(
                original_tool_call=tool_call,
                validation_error=error,
                available_tools=list(tools),
                system_prompt=system_prompt,
                messages=list(messages),
            ),
        )
        if repaired is not None:
            try:
                validate_tool_call(repaired, tools)
                logger.debug("Repaired tool call %s", tool_call.tool_call_id)
                return replace(repaired, invalid=False, validation_error=None)
            except ToolValidationError as repaired_error:
                logger.debug(
                    "Repaired tool call %s still invalid: %s",
                    tool_call.tool_call_id,
                    repaired_error,
                )

    logger.warning(
        "Invalid tool call %s (%s): %s",
        tool_call.tool_call_id,
        tool_call.tool_name,
        error,
    )
    return replace(tool_call, invalid=True, validation_error=error)
