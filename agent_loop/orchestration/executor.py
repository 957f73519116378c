"""
Sequential tool executor.

Runs a step's validated tool calls one after another, in content order, and
produces exactly one tool result per call.
"""

import base64
import logging
import time
from contextlib import nullcontext
from typing import TYPE_CHECKING, Callable, Optional

from ..content import (
    ToolCallContent,
    ToolResultContent,
    ToolResultOutputError,
    ToolResultOutputMedia,
    ToolResultOutputText,
)
from ..errors import ToolNotFoundError
from ..tools.base import RESPONSE_IMAGE, RESPONSE_MEDIA, ToolCall, ToolResponse
from ..tools.registry import ToolSet

if TYPE_CHECKING:
    from ..cancellation import RunContext
    from ..tracing import TracingContext

logger = logging.getLogger(__name__)

ToolResultCallback = Callable[[ToolResultContent], None]


def _result_from_response(
    tool_call: ToolCallContent, response: ToolResponse
) -> ToolResultContent:
    if response.is_error:
        output = ToolResultOutputError(error=Exception(response.content))
    elif response.type in (RESPONSE_IMAGE, RESPONSE_MEDIA):
        output = ToolResultOutputMedia(
            data=base64.b64encode(response.data).decode("ascii"),
            media_type=response.media_type,
            text=response.content,
        )
    else:
        output = ToolResultOutputText(text=response.content)
    return ToolResultContent(
        tool_call_id=tool_call.tool_call_id,
        tool_name=tool_call.tool_name,
        result=output,
        client_metadata=response.metadata,
    )


def _error_result(tool_call: ToolCallContent, error: BaseException) -> ToolResultContent:
    return ToolResultContent(
        tool_call_id=tool_call.tool_call_id,
        tool_name=tool_call.tool_name,
        result=ToolResultOutputError(error=error),
    )


def execute_tools(
    ctx: "RunContext",
    tools: ToolSet,
    tool_calls: list[ToolCallContent],
    on_tool_result: Optional[ToolResultCallback] = None,
    tracing: Optional["TracingContext"] = None,
    id_prefix: str = "",
) -> list[ToolResultContent]:
    """
    Execute tool calls strictly in order.

    Invalid calls and calls to unknown tools produce error results without
    running anything. A tool reporting ``is_error`` produces an error result
    and execution continues. A tool that raises is an execution fault: the
    callback is told about the failed result, then the exception propagates
    and no further calls run. ``on_tool_result`` fires after every result
    and its exceptions propagate.
    """
    results: list[ToolResultContent] = []

    def emit(result: ToolResultContent) -> None:
        results.append(result)
        if on_tool_result is not None:
            on_tool_result(result)

    for tool_call in tool_calls:
        if tool_call.invalid:
            logger.debug(
                "%sSkipping invalid tool call %s (%s)",
                id_prefix,
                tool_call.tool_call_id,
                tool_call.tool_name,
            )
            emit(_error_result(tool_call, tool_call.validation_error))
            continue

        tool = tools.get(tool_call.tool_name)
        if tool is None:
            logger.warning("%sTool not found: %s", id_prefix, tool_call.tool_name)
            emit(_error_result(tool_call, ToolNotFoundError(tool_call.tool_name)))
            continue

        ctx.raise_if_cancelled()

        span_cm = (
            tracing.span(
                name=f"tool:{tool_call.tool_name}",
                input={"arguments": tool_call.input},
                metadata={"tool_call_id": tool_call.tool_call_id},
            )
            if tracing is not None
            else nullcontext()
        )
        with span_cm as span:
            logger.debug("%sExecuting tool: %s", id_prefix, tool_call.tool_name)
            start = time.time()
            try:
                response = tool.run(
                    ctx,
                    ToolCall(
                        id=tool_call.tool_call_id,
                        name=tool_call.tool_name,
                        input=tool_call.input,
                    ),
                )
            except Exception as e:
                logger.error(
                    "%sTool '%s' execution failed: %s",
                    id_prefix,
                    tool_call.tool_name,
                    e,
                )
                if span is not None:
                    span.set_status("error")
                    span.set_output({"error": str(e)})
                failed = _error_result(tool_call, e)
                if on_tool_result is not None:
                    on_tool_result(failed)
                raise

            duration_ms = (time.time() - start) * 1000
            logger.debug(
                "%sTool '%s' completed in %.0fms (is_error=%s)",
                id_prefix,
                tool_call.tool_name,
                duration_ms,
                response.is_error,
            )
            if span is not None:
                span.set_status("error" if response.is_error else "success")
                span.set_output(
                    {"content": response.content, "is_error": response.is_error}
                )

        emit(_result_from_response(tool_call, response))

    return results
