"""
Scripted language model and canned responses shared by the agent tests.
"""

import json
from typing import Iterator, Optional

from agent_loop.cancellation import RunContext
from agent_loop.content import FinishReason, TextContent, ToolCallContent
from agent_loop.model import (
    Call,
    LanguageModel,
    Response,
    StreamPart,
    StreamPartType,
    Usage,
)


class MockLanguageModel(LanguageModel):
    """
    Scripted model: returns the queued responses (or stream part lists) in
    order and records every call it receives.

    A queued exception is raised instead of returned.
    """

    provider = "mock"
    model_id = "mock-model"

    def __init__(self, responses=None, streams=None):
        self.responses = list(responses or [])
        self.streams = list(streams or [])
        self.calls: list[Call] = []
        self.stream_calls: list[Call] = []

    def generate(self, ctx: RunContext, call: Call) -> Response:
        self.calls.append(call)
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    def stream(self, ctx: RunContext, call: Call) -> Iterator[StreamPart]:
        self.stream_calls.append(call)
        item = self.streams.pop(0)
        if isinstance(item, BaseException):
            raise item
        return iter(item)


def text_response(text: str, usage: Optional[Usage] = None) -> Response:
    """A plain text response that ends the run."""
    return Response(
        content=[TextContent(text=text)],
        finish_reason=FinishReason.STOP,
        usage=usage or Usage(input_tokens=3, output_tokens=10, total_tokens=13),
    )


def tool_call_response(
    name: str,
    args,
    call_id: str = "call-1",
    usage: Optional[Usage] = None,
) -> Response:
    """A response asking for one tool call."""
    raw = args if isinstance(args, str) else json.dumps(args)
    return Response(
        content=[ToolCallContent(tool_call_id=call_id, tool_name=name, input=raw)],
        finish_reason=FinishReason.TOOL_CALLS,
        usage=usage or Usage(input_tokens=5, output_tokens=2, total_tokens=7),
    )


def text_stream(text_chunks: list[str], usage: Optional[Usage] = None) -> list[StreamPart]:
    """Stream parts for a text-only step."""
    parts = [StreamPart(type=StreamPartType.TEXT_START, id="0")]
    parts += [
        StreamPart(type=StreamPartType.TEXT_DELTA, id="0", delta=chunk)
        for chunk in text_chunks
    ]
    parts += [
        StreamPart(type=StreamPartType.TEXT_END, id="0"),
        StreamPart(
            type=StreamPartType.FINISH,
            usage=usage or Usage(input_tokens=3, output_tokens=10, total_tokens=13),
            finish_reason=FinishReason.STOP,
        ),
    ]
    return parts


def tool_call_stream(
    name: str, args: dict, call_id: str = "call-1", usage: Optional[Usage] = None
) -> list[StreamPart]:
    """Stream parts for a step making one tool call."""
    raw = json.dumps(args)
    half = len(raw) // 2
    return [
        StreamPart(
            type=StreamPartType.TOOL_INPUT_START, id=call_id, tool_call_name=name
        ),
        StreamPart(type=StreamPartType.TOOL_INPUT_DELTA, id=call_id, delta=raw[:half]),
        StreamPart(type=StreamPartType.TOOL_INPUT_DELTA, id=call_id, delta=raw[half:]),
        StreamPart(type=StreamPartType.TOOL_INPUT_END, id=call_id),
        StreamPart(
            type=StreamPartType.TOOL_CALL,
            id=call_id,
            tool_call_name=name,
            tool_call_input=raw,
        ),
        StreamPart(
            type=StreamPartType.FINISH,
            usage=usage or Usage(input_tokens=5, output_tokens=2, total_tokens=7),
            finish_reason=FinishReason.TOOL_CALLS,
        ),
    ]
