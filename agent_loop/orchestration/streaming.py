"""
Streaming observer surface and stream reconstruction.

``StreamReconstructor`` consumes the lazily produced ``StreamPart`` events
of one model call and rebuilds the step's content from them:

- text and reasoning blocks accumulate per block id between their start and
  end events and become one content item at the end event; an end event
  for a block that was never started is ignored
- tool input deltas accumulate into a skeleton per id; the ``tool-call``
  event is authoritative, is validated (and repaired) immediately and
  replaces the skeleton
- sources are appended as they arrive
- ``finish`` records usage, finish reason and provider metadata
- ``error`` raises, so no partial step is ever recorded

Each event goes to ``StreamHandler.on_chunk`` first, then to the handler
method for its phase. Handler exceptions abort the stream.
"""

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterable, Optional

from ..content import (
    Content,
    FinishReason,
    Message,
    ProviderMetadata,
    ReasoningContent,
    SourceContent,
    TextContent,
    ToolCallContent,
    ToolResultContent,
)
from ..errors import StreamError
from ..model import CallWarning, StreamPart, StreamPartType, Usage
from ..tools.registry import ToolSet
from .validation import RepairToolCallFunction, validate_and_repair_tool_call

if TYPE_CHECKING:
    from ..cancellation import RunContext
    from .results import AgentResult, StepResult

logger = logging.getLogger(__name__)


class StreamHandler:
    """
    Observer for a streaming agent run.

    Subclass and override the events you care about; every method is a
    no-op by default. Exceptions raised from any method abort the run and
    propagate to the caller of ``Agent.stream``.
    """

    def on_agent_start(self) -> None:
        pass

    def on_agent_finish(self, result: "AgentResult") -> None:
        pass

    def on_step_start(self, step_number: int) -> None:
        pass

    def on_step_finish(self, step: "StepResult") -> None:
        pass

    def on_finish(self, result: "AgentResult") -> None:
        pass

    def on_error(self, error: BaseException) -> None:
        """Called with the run-ending error before it propagates."""

    def on_chunk(self, part: StreamPart) -> None:
        """Called with every raw stream event, before its phase callback."""

    def on_warnings(self, warnings: list[CallWarning]) -> None:
        pass

    def on_text_start(self, block_id: str) -> None:
        pass

    def on_text_delta(self, block_id: str, delta: str) -> None:
        pass

    def on_text_end(self, block_id: str) -> None:
        pass

    def on_reasoning_start(self, block_id: str, content: ReasoningContent) -> None:
        pass

    def on_reasoning_delta(self, block_id: str, delta: str) -> None:
        pass

    def on_reasoning_end(self, block_id: str, content: ReasoningContent) -> None:
        pass

    def on_tool_input_start(self, tool_call_id: str, tool_name: str) -> None:
        pass

    def on_tool_input_delta(self, tool_call_id: str, delta: str) -> None:
        pass

    def on_tool_input_end(self, tool_call_id: str) -> None:
        pass

    def on_tool_call(self, tool_call: ToolCallContent) -> None:
        pass

    def on_tool_result(self, result: ToolResultContent) -> None:
        pass

    def on_source(self, source: SourceContent) -> None:
        pass

    def on_stream_finish(
        self,
        usage: Usage,
        finish_reason: FinishReason,
        provider_metadata: Optional[ProviderMetadata],
    ) -> None:
        pass


@dataclass
class _ReasoningBlock:
    text: str
    provider_metadata: Optional[ProviderMetadata]


@dataclass
class StreamedStep:
    """What one consumed stream produced, before tool execution."""

    content: list[Content] = field(default_factory=list)
    tool_calls: list[ToolCallContent] = field(default_factory=list)
    usage: Usage = field(default_factory=Usage)
    finish_reason: FinishReason = FinishReason.UNKNOWN
    warnings: list[CallWarning] = field(default_factory=list)
    provider_metadata: Optional[ProviderMetadata] = None


class StreamReconstructor:
    """State machine turning stream events into one step's content."""

    def __init__(
        self,
        ctx: "RunContext",
        tools: ToolSet,
        handler: Optional[StreamHandler] = None,
        system_prompt: str = "",
        messages: Optional[list[Message]] = None,
        repair: Optional[RepairToolCallFunction] = None,
    ):
        self.ctx = ctx
        self.tools = tools
        self.handler = handler or StreamHandler()
        self.system_prompt = system_prompt
        self.messages = messages or []
        self.repair = repair

        self.step = StreamedStep()
        self._text: dict[str, str] = {}
        self._reasoning: dict[str, _ReasoningBlock] = {}
        self._tool_inputs: dict[str, ToolCallContent] = {}

    def consume(self, parts: Iterable[StreamPart]) -> StreamedStep:
        """Drain ``parts`` and return the reconstructed step."""
        for part in parts:
            self.ctx.raise_if_cancelled()
            self.handler.on_chunk(part)
            self.process(part)

        if self._text or self._reasoning:
            logger.debug(
                "Stream ended with unterminated blocks: text=%s reasoning=%s",
                list(self._text),
                list(self._reasoning),
            )
        return self.step

    def process(self, part: StreamPart) -> None:
        handler = self.handler
        step = self.step
        kind = part.type

        if kind == StreamPartType.WARNINGS:
            step.warnings = list(part.warnings)
            handler.on_warnings(part.warnings)

        elif kind == StreamPartType.TEXT_START:
            self._text[part.id] = ""
            handler.on_text_start(part.id)

        elif kind == StreamPartType.TEXT_DELTA:
            if part.id in self._text:
                self._text[part.id] += part.delta
            handler.on_text_delta(part.id, part.delta)

        elif kind == StreamPartType.TEXT_END:
            if part.id in self._text:
                step.content.append(
                    TextContent(
                        text=self._text.pop(part.id),
                        provider_metadata=part.provider_metadata,
                    )
                )
                handler.on_text_end(part.id)

        elif kind == StreamPartType.REASONING_START:
            self._reasoning[part.id] = _ReasoningBlock(
                text=part.delta, provider_metadata=part.provider_metadata
            )
            handler.on_reasoning_start(
                part.id,
                ReasoningContent(
                    text=part.delta, provider_metadata=part.provider_metadata
                ),
            )

        elif kind == StreamPartType.REASONING_DELTA:
            block = self._reasoning.get(part.id)
            if block is not None:
                block.text += part.delta
                if part.provider_metadata is not None:
                    block.provider_metadata = part.provider_metadata
            handler.on_reasoning_delta(part.id, part.delta)

        elif kind == StreamPartType.REASONING_END:
            block = self._reasoning.pop(part.id, None)
            if block is not None:
                if part.provider_metadata is not None:
                    block.provider_metadata = part.provider_metadata
                content = ReasoningContent(
                    text=block.text, provider_metadata=block.provider_metadata
                )
                step.content.append(content)
                handler.on_reasoning_end(part.id, content)

        elif kind == StreamPartType.TOOL_INPUT_START:
            self._tool_inputs[part.id] = ToolCallContent(
                tool_call_id=part.id,
                tool_name=part.tool_call_name,
                input="",
                provider_executed=part.provider_executed,
            )
            handler.on_tool_input_start(part.id, part.tool_call_name)

        elif kind == StreamPartType.TOOL_INPUT_DELTA:
            skeleton = self._tool_inputs.get(part.id)
            if skeleton is not None:
                skeleton.input += part.delta
            handler.on_tool_input_delta(part.id, part.delta)

        elif kind == StreamPartType.TOOL_INPUT_END:
            handler.on_tool_input_end(part.id)

        elif kind == StreamPartType.TOOL_CALL:
            tool_call = validate_and_repair_tool_call(
                self.ctx,
                ToolCallContent(
                    tool_call_id=part.id,
                    tool_name=part.tool_call_name,
                    input=part.tool_call_input,
                    provider_executed=part.provider_executed,
                    provider_metadata=part.provider_metadata,
                ),
                self.tools,
                self.system_prompt,
                self.messages,
                self.repair,
            )
            step.tool_calls.append(tool_call)
            step.content.append(tool_call)
            handler.on_tool_call(tool_call)
            self._tool_inputs.pop(part.id, None)

        elif kind == StreamPartType.SOURCE:
            source = SourceContent(
                source_type=part.source_type,
                id=part.id,
                url=part.url,
                title=part.title,
                provider_metadata=part.provider_metadata,
            )
            step.content.append(source)
            handler.on_source(source)

        elif kind == StreamPartType.FINISH:
            step.usage = part.usage
            step.finish_reason = part.finish_reason
            step.provider_metadata = part.provider_metadata
            handler.on_stream_finish(
                part.usage, part.finish_reason, part.provider_metadata
            )

        elif kind == StreamPartType.ERROR:
            if part.error is not None:
                raise part.error
            raise StreamError("stream error event without details")
