"""
Tests for the streaming agent step loop and stream reconstruction.
"""

import json
from dataclasses import replace
from unittest.mock import MagicMock

import pytest

from agent_loop.content import (
    FinishReason,
    ReasoningContent,
    SourceContent,
    SourceType,
    TextContent,
    ToolCallContent,
    ToolResultContent,
)
from agent_loop.errors import (
    APICallError,
    InvalidArgumentError,
    RunCancelledError,
    StreamError,
)
from agent_loop.model import CallWarning, CallWarningType, StreamPart, StreamPartType, Usage
from agent_loop.orchestration import (
    Agent,
    AgentStreamCall,
    PrepareStepResult,
    StreamHandler,
    StreamReconstructor,
    has_tool_call,
    step_count_is,
)
from agent_loop.tools import ToolSet

from mock_models import MockLanguageModel, text_stream, tool_call_stream


class RecordingHandler(StreamHandler):
    """Handler that records the name of every callback it receives."""

    def __init__(self):
        self.events = []
        self.chunks = []
        self.errors = []
        self.tool_results = []
        self.finished = None

    def on_agent_start(self):
        self.events.append("agent_start")

    def on_agent_finish(self, result):
        self.events.append("agent_finish")
        self.finished = result

    def on_step_start(self, step_number):
        self.events.append(f"step_start:{step_number}")

    def on_step_finish(self, step):
        self.events.append("step_finish")

    def on_finish(self, result):
        self.events.append("finish")

    def on_error(self, error):
        self.errors.append(error)

    def on_chunk(self, part):
        self.chunks.append(part.type)

    def on_text_start(self, block_id):
        self.events.append("text_start")

    def on_text_delta(self, block_id, delta):
        self.events.append(f"text_delta:{delta}")

    def on_text_end(self, block_id):
        self.events.append("text_end")

    def on_tool_input_start(self, tool_call_id, tool_name):
        self.events.append(f"tool_input_start:{tool_name}")

    def on_tool_call(self, tool_call):
        self.events.append(f"tool_call:{tool_call.tool_name}")

    def on_tool_result(self, result):
        self.events.append("tool_result")
        self.tool_results.append(result)

    def on_stream_finish(self, usage, finish_reason, provider_metadata):
        self.events.append(f"stream_finish:{finish_reason.value}")


class TestStreamReconstructor:
    """Tests for rebuilding step content from stream events."""

    def test_text_blocks(self, ctx):
        step = StreamReconstructor(ctx, ToolSet()).consume(text_stream(["Hel", "lo"]))

        assert step.content == [TextContent(text="Hello")]
        assert step.finish_reason == FinishReason.STOP
        assert step.usage.total_tokens == 13

    def test_interleaved_blocks(self, ctx):
        """Blocks are keyed by id and emitted at their end event."""
        parts = [
            StreamPart(type=StreamPartType.TEXT_START, id="a"),
            StreamPart(type=StreamPartType.TEXT_START, id="b"),
            StreamPart(type=StreamPartType.TEXT_DELTA, id="a", delta="first"),
            StreamPart(type=StreamPartType.TEXT_DELTA, id="b", delta="second"),
            StreamPart(type=StreamPartType.TEXT_END, id="b"),
            StreamPart(type=StreamPartType.TEXT_END, id="a"),
        ]

        step = StreamReconstructor(ctx, ToolSet()).consume(parts)

        assert [c.text for c in step.content] == ["second", "first"]

    def test_reasoning_metadata_end_wins(self, ctx):
        parts = [
            StreamPart(
                type=StreamPartType.REASONING_START,
                id="r",
                provider_metadata={"sig": "start"},
            ),
            StreamPart(type=StreamPartType.REASONING_DELTA, id="r", delta="step 1. "),
            StreamPart(type=StreamPartType.REASONING_DELTA, id="r", delta="step 2."),
            StreamPart(
                type=StreamPartType.REASONING_END,
                id="r",
                provider_metadata={"sig": "end"},
            ),
        ]

        step = StreamReconstructor(ctx, ToolSet()).consume(parts)

        assert step.content == [
            ReasoningContent(text="step 1. step 2.", provider_metadata={"sig": "end"})
        ]

    def test_reasoning_metadata_kept_without_end_metadata(self, ctx):
        parts = [
            StreamPart(
                type=StreamPartType.REASONING_START,
                id="r",
                provider_metadata={"sig": "start"},
            ),
            StreamPart(type=StreamPartType.REASONING_DELTA, id="r", delta="x"),
            StreamPart(type=StreamPartType.REASONING_END, id="r"),
        ]

        step = StreamReconstructor(ctx, ToolSet()).consume(parts)

        assert step.content[0].provider_metadata == {"sig": "start"}

    def test_tool_call_validated_immediately(self, ctx, echo_tool):
        handler = MagicMock(spec=StreamHandler)
        parts = tool_call_stream("tool1", {"wrong": 1})

        step = StreamReconstructor(ctx, ToolSet([echo_tool]), handler).consume(parts)

        assert len(step.tool_calls) == 1
        tool_call = step.tool_calls[0]
        assert tool_call.invalid is True
        assert tool_call.input == '{"wrong": 1}'
        assert step.content == [tool_call]
        handler.on_tool_call.assert_called_once_with(tool_call)
        assert handler.on_tool_input_delta.call_count == 2

    def test_sources_and_warnings(self, ctx):
        warning = CallWarning(type=CallWarningType.UNSUPPORTED_SETTING, setting="top_k")
        parts = [
            StreamPart(type=StreamPartType.WARNINGS, warnings=[warning]),
            StreamPart(
                type=StreamPartType.SOURCE,
                id="s1",
                source_type=SourceType.URL,
                url="https://example.com",
                title="Example",
            ),
        ]

        step = StreamReconstructor(ctx, ToolSet()).consume(parts)

        assert step.warnings == [warning]
        assert step.content == [
            SourceContent(
                source_type=SourceType.URL,
                id="s1",
                url="https://example.com",
                title="Example",
            )
        ]

    def test_end_without_start_ignored(self, ctx):
        """End events for blocks that never started add nothing and notify nobody."""
        handler = MagicMock(spec=StreamHandler)
        parts = [
            StreamPart(type=StreamPartType.TEXT_END, id="t"),
            StreamPart(type=StreamPartType.REASONING_END, id="r"),
        ]

        step = StreamReconstructor(ctx, ToolSet(), handler).consume(parts)

        assert step.content == []
        handler.on_text_end.assert_not_called()
        handler.on_reasoning_end.assert_not_called()

    def test_end_callbacks_fire_for_open_blocks(self, ctx):
        handler = MagicMock(spec=StreamHandler)
        parts = [
            StreamPart(type=StreamPartType.REASONING_START, id="r"),
            StreamPart(type=StreamPartType.REASONING_DELTA, id="r", delta="hmm"),
            StreamPart(type=StreamPartType.REASONING_END, id="r"),
            StreamPart(type=StreamPartType.TEXT_START, id="t"),
            StreamPart(type=StreamPartType.TEXT_END, id="t"),
        ]

        StreamReconstructor(ctx, ToolSet(), handler).consume(parts)

        handler.on_text_end.assert_called_once_with("t")
        handler.on_reasoning_end.assert_called_once_with(
            "r", ReasoningContent(text="hmm")
        )

    def test_error_event_raises(self, ctx):
        error = APICallError("boom", status_code=400)
        parts = [
            StreamPart(type=StreamPartType.TEXT_START, id="0"),
            StreamPart(type=StreamPartType.ERROR, error=error),
        ]

        with pytest.raises(APICallError) as exc_info:
            StreamReconstructor(ctx, ToolSet()).consume(parts)
        assert exc_info.value is error

    def test_error_event_without_details(self, ctx):
        with pytest.raises(StreamError):
            StreamReconstructor(ctx, ToolSet()).consume(
                [StreamPart(type=StreamPartType.ERROR)]
            )

    def test_chunk_callback_sees_every_event(self, ctx):
        handler = RecordingHandler()
        parts = text_stream(["a"])

        StreamReconstructor(ctx, ToolSet(), handler).consume(parts)

        assert handler.chunks == [p.type for p in parts]

    def test_handler_error_aborts(self, ctx):
        class Failing(StreamHandler):
            def on_text_delta(self, block_id, delta):
                raise ValueError("observer failed")

        with pytest.raises(ValueError, match="observer failed"):
            StreamReconstructor(ctx, ToolSet(), Failing()).consume(text_stream(["a"]))


class TestAgentStream:
    """Tests for Agent.stream."""

    def test_tool_round_trip(self, echo_tool, tool_calls_log):
        """Streamed tool call then text: two steps with summed usage."""
        model = MockLanguageModel(
            streams=[
                tool_call_stream("tool1", {"value": "value"}),
                text_stream(["Hello, ", "world!"]),
            ]
        )
        handler = RecordingHandler()

        result = Agent(model, tools=[echo_tool]).stream(
            AgentStreamCall(prompt="test", handler=handler)
        )

        assert len(result.steps) == 2
        assert list(result.response.content) == [TextContent(text="Hello, world!")]
        assert result.total_usage == Usage(
            input_tokens=8, output_tokens=12, total_tokens=20
        )
        assert tool_calls_log == [{"value": "value"}]

        first = result.steps[0].content
        assert [type(c) for c in first] == [ToolCallContent, ToolResultContent]
        assert handler.finished is result
        assert handler.tool_results[0].result.text == "echo: value"

    def test_event_order(self, echo_tool):
        model = MockLanguageModel(
            streams=[tool_call_stream("tool1", {"value": "v"}), text_stream(["done"])]
        )
        handler = RecordingHandler()

        Agent(model, tools=[echo_tool]).stream(
            AgentStreamCall(prompt="go", handler=handler)
        )

        assert handler.events == [
            "agent_start",
            "step_start:0",
            "tool_input_start:tool1",
            "tool_call:tool1",
            "stream_finish:tool-calls",
            "tool_result",
            "step_finish",
            "step_start:1",
            "text_start",
            "text_delta:done",
            "text_end",
            "stream_finish:stop",
            "step_finish",
            "finish",
            "agent_finish",
        ]

    def test_empty_prompt_rejected(self):
        model = MockLanguageModel(streams=[text_stream(["never"])])

        with pytest.raises(InvalidArgumentError):
            Agent(model).stream(AgentStreamCall(prompt=""))

        assert model.stream_calls == []

    def test_invalid_call_gets_error_result(self, echo_tool, tool_calls_log):
        model = MockLanguageModel(
            streams=[tool_call_stream("tool1", {}), text_stream(["sorry"])]
        )

        result = Agent(model, tools=[echo_tool]).stream(AgentStreamCall(prompt="go"))

        assert tool_calls_log == []
        tool_result = result.steps[0].content.tool_results()[0]
        assert "missing required parameter: `value`" in tool_result.result.message

    def test_error_event_aborts_without_partial_step(self):
        """A provider error event ends the run and no step is recorded."""
        error = APICallError("bad request", status_code=400)
        model = MockLanguageModel(
            streams=[
                [
                    StreamPart(type=StreamPartType.TEXT_START, id="0"),
                    StreamPart(type=StreamPartType.TEXT_DELTA, id="0", delta="par"),
                    StreamPart(type=StreamPartType.ERROR, error=error),
                ]
            ]
        )
        handler = RecordingHandler()

        with pytest.raises(APICallError):
            Agent(model).stream(AgentStreamCall(prompt="go", handler=handler))

        assert "step_finish" not in handler.events
        assert handler.errors == [error]

    def test_retry_restarts_stream(self):
        """A retryable stream error restarts the step from scratch."""
        error = APICallError("overloaded", status_code=503)
        model = MockLanguageModel(
            streams=[
                [
                    StreamPart(type=StreamPartType.TEXT_START, id="0"),
                    StreamPart(type=StreamPartType.TEXT_DELTA, id="0", delta="partial"),
                    StreamPart(type=StreamPartType.ERROR, error=error),
                ],
                text_stream(["complete"]),
            ]
        )

        result = Agent(model, retry_initial_delay=0.0).stream(
            AgentStreamCall(prompt="go")
        )

        assert len(result.steps) == 1
        assert result.response.content.text() == "complete"
        assert len(model.stream_calls) == 2

    def test_tool_fault_aborts(self, failing_tool):
        model = MockLanguageModel(
            streams=[tool_call_stream("broken", {}), text_stream(["never"])]
        )
        handler = RecordingHandler()

        with pytest.raises(RuntimeError, match="backend unavailable"):
            Agent(model, tools=[failing_tool]).stream(
                AgentStreamCall(prompt="go", handler=handler)
            )

        assert len(model.stream_calls) == 1
        assert isinstance(handler.errors[0], RuntimeError)

    def test_step_start_error_propagates(self):
        class Failing(StreamHandler):
            def on_step_start(self, step_number):
                raise ValueError("nope")

        model = MockLanguageModel(streams=[text_stream(["x"])])

        with pytest.raises(ValueError, match="nope"):
            Agent(model).stream(AgentStreamCall(prompt="go", handler=Failing()))
        assert model.stream_calls == []

    def test_prepare_step_in_stream(self, echo_tool):
        """Step numbers are zero-based and overrides apply per step."""
        seen = []

        def prepare(ctx, options):
            seen.append(options.step_number)
            if options.step_number == 1:
                return PrepareStepResult(disable_all_tools=True)
            return None

        model = MockLanguageModel(
            streams=[tool_call_stream("tool1", {"value": "v"}), text_stream(["done"])]
        )

        Agent(model, tools=[echo_tool], prepare_step=prepare).stream(
            AgentStreamCall(prompt="go")
        )

        assert seen == [0, 1]
        assert [t.name for t in model.stream_calls[0].tools] == ["tool1"]
        assert model.stream_calls[1].tools == []

    def test_cancelled_mid_stream(self, ctx):
        """Cancellation is checked between stream events."""

        def parts():
            yield StreamPart(type=StreamPartType.TEXT_START, id="0")
            ctx.cancel("stop")
            yield StreamPart(type=StreamPartType.TEXT_DELTA, id="0", delta="x")

        model = MockLanguageModel(streams=[parts()])

        with pytest.raises(RunCancelledError):
            Agent(model).stream(AgentStreamCall(prompt="go"), ctx)

    def test_stop_condition_ends_run(self, echo_tool, tool_calls_log):
        """A stop condition ends the run even though the step asked for tools."""
        model = MockLanguageModel(
            streams=[tool_call_stream("tool1", {"value": "v"}), text_stream(["never"])]
        )

        result = Agent(model, tools=[echo_tool]).stream(
            AgentStreamCall(prompt="go", stop_when=[step_count_is(1)])
        )

        assert len(result.steps) == 1
        assert result.steps[0].finish_reason == FinishReason.TOOL_CALLS
        assert len(model.stream_calls) == 1
        # The step's tools still ran before the run stopped
        assert tool_calls_log == [{"value": "v"}]

    def test_agent_stop_condition_on_tool_call(self, echo_tool):
        model = MockLanguageModel(
            streams=[tool_call_stream("tool1", {"value": "v"}), text_stream(["never"])]
        )
        agent = Agent(model, tools=[echo_tool], stop_when=[has_tool_call("tool1")])

        result = agent.stream(AgentStreamCall(prompt="go"))

        assert len(result.steps) == 1
        assert len(model.stream_calls) == 1

    def test_repair_hook_fixes_streamed_call(self, echo_tool, tool_calls_log):
        seen = []

        def repair(ctx, options):
            seen.append(options)
            args = json.loads(options.original_tool_call.input)
            args["value"] = "repaired"
            return replace(options.original_tool_call, input=json.dumps(args))

        model = MockLanguageModel(
            streams=[tool_call_stream("tool1", {"other": 1}), text_stream(["done"])]
        )

        result = Agent(model, tools=[echo_tool], system_prompt="Be brief.").stream(
            AgentStreamCall(prompt="go", repair_tool_call=repair)
        )

        tool_call = result.steps[0].content.tool_calls()[0]
        assert tool_call.invalid is False
        assert json.loads(tool_call.input) == {"other": 1, "value": "repaired"}
        assert tool_calls_log == [{"other": 1, "value": "repaired"}]
        assert len(seen) == 1
        assert "value" in str(seen[0].validation_error)
        assert seen[0].system_prompt == "Be brief."
        assert result.response.content.text() == "done"
