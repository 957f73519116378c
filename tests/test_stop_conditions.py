"""
Tests for stop-condition predicates.
"""

from agent_loop.content import (
    ContentType,
    FinishReason,
    ReasoningContent,
    TextContent,
    ToolCallContent,
)
from agent_loop.model import Usage
from agent_loop.orchestration import (
    finish_reason_is,
    has_content,
    has_tool_call,
    is_stop_condition_met,
    max_tokens_used,
    step_count_is,
)
from agent_loop.orchestration.results import StepResult


def _step(content=None, finish_reason=FinishReason.STOP, total_tokens=0):
    return StepResult(
        content=content or [],
        finish_reason=finish_reason,
        usage=Usage(total_tokens=total_tokens),
    )


def _call(name):
    return ToolCallContent(tool_call_id=f"id-{name}", tool_name=name, input="{}")


class TestStepCountIs:
    """Tests for step_count_is."""

    def test_below_threshold(self):
        condition = step_count_is(3)
        assert condition([]) is False
        assert condition([_step(), _step()]) is False

    def test_at_and_above_threshold(self):
        condition = step_count_is(2)
        assert condition([_step(), _step()]) is True
        assert condition([_step(), _step(), _step()]) is True


class TestHasToolCall:
    """Tests for has_tool_call."""

    def test_matches_last_step(self):
        condition = has_tool_call("search")
        assert condition([_step([_call("search")])]) is True

    def test_ignores_earlier_steps(self):
        """Only the last step is examined."""
        condition = has_tool_call("search")
        steps = [_step([_call("search")]), _step([_call("calculate")])]
        assert condition(steps) is False

    def test_empty_history(self):
        assert has_tool_call("search")([]) is False


class TestHasContent:
    """Tests for has_content."""

    def test_matches_kind_in_last_step(self):
        condition = has_content(ContentType.REASONING)
        steps = [_step([TextContent(text="a"), ReasoningContent(text="b")])]
        assert condition(steps) is True

    def test_no_match(self):
        condition = has_content(ContentType.REASONING)
        steps = [_step([ReasoningContent(text="b")]), _step([TextContent(text="a")])]
        assert condition(steps) is False


class TestFinishReasonIs:
    """Tests for finish_reason_is."""

    def test_last_step_reason(self):
        condition = finish_reason_is(FinishReason.LENGTH)
        assert condition([_step(finish_reason=FinishReason.LENGTH)]) is True
        assert (
            condition(
                [
                    _step(finish_reason=FinishReason.LENGTH),
                    _step(finish_reason=FinishReason.STOP),
                ]
            )
            is False
        )


class TestMaxTokensUsed:
    """Tests for max_tokens_used."""

    def test_sums_across_all_steps(self):
        """Usage accumulates across the whole history."""
        condition = max_tokens_used(100)
        assert condition([_step(total_tokens=60)]) is False
        assert condition([_step(total_tokens=60), _step(total_tokens=40)]) is True

    def test_exceeding(self):
        assert max_tokens_used(10)([_step(total_tokens=11)]) is True


class TestIsStopConditionMet:
    """Tests for OR-combination of conditions."""

    def test_any_condition_fires(self):
        steps = [_step([_call("done")])]
        conditions = [step_count_is(5), has_tool_call("done")]
        assert is_stop_condition_met(conditions, steps) is True

    def test_none_fire(self):
        steps = [_step()]
        assert is_stop_condition_met([step_count_is(5)], steps) is False

    def test_no_conditions(self):
        assert is_stop_condition_met([], [_step()]) is False
