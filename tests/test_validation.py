"""
Tests for tool-call validation and repair.
"""

from dataclasses import replace

import pytest

from agent_loop.content import ToolCallContent, new_user_message
from agent_loop.errors import (
    InvalidToolInputError,
    MissingParameterError,
    ToolNotFoundError,
)
from agent_loop.orchestration import (
    RepairOptions,
    validate_and_repair_tool_call,
    validate_tool_call,
)
from agent_loop.tools import ToolSet


def _call(input: str, name: str = "tool1") -> ToolCallContent:
    return ToolCallContent(tool_call_id="call-1", tool_name=name, input=input)


@pytest.fixture
def tools(echo_tool):
    return ToolSet([echo_tool])


class TestValidateToolCall:
    """Tests for the validation checks, in order."""

    def test_valid_call(self, tools):
        """A valid call passes without raising."""
        validate_tool_call(_call('{"value": "x"}'), tools)

    def test_unknown_tool(self, tools):
        with pytest.raises(ToolNotFoundError) as exc_info:
            validate_tool_call(_call('{"value": "x"}', name="nope"), tools)
        assert str(exc_info.value) == "tool not found: nope"

    def test_malformed_json(self, tools):
        with pytest.raises(InvalidToolInputError) as exc_info:
            validate_tool_call(_call('{"value": '), tools)
        assert "invalid JSON input" in str(exc_info.value)

    def test_non_object_json(self, tools):
        """A JSON array is not a valid input object."""
        with pytest.raises(InvalidToolInputError):
            validate_tool_call(_call('["x"]'), tools)

    def test_missing_required_parameter(self, tools):
        with pytest.raises(MissingParameterError) as exc_info:
            validate_tool_call(_call("{}"), tools)
        assert str(exc_info.value) == "missing required parameter: `value`"

    def test_unknown_tool_checked_before_input(self, tools):
        """Tool existence is checked before the input is parsed."""
        with pytest.raises(ToolNotFoundError):
            validate_tool_call(_call("not json", name="nope"), tools)


class TestValidateAndRepair:
    """Tests for validate_and_repair_tool_call."""

    def test_valid_call_returned_unchanged(self, ctx, tools):
        call = _call('{"value": "x"}')
        result = validate_and_repair_tool_call(ctx, call, tools, "", [])
        assert result is call
        assert result.invalid is False

    def test_invalid_without_repair(self, ctx, tools):
        """Without a repair hook the call is flagged invalid."""
        result = validate_and_repair_tool_call(ctx, _call("{}"), tools, "", [])

        assert result.invalid is True
        assert isinstance(result.validation_error, MissingParameterError)
        assert "missing required parameter: `value`" in str(result.validation_error)

    def test_successful_repair(self, ctx, tools):
        """A repaired call that re-validates replaces the original."""
        seen = []

        def repair(repair_ctx, options: RepairOptions):
            seen.append(options)
            return replace(options.original_tool_call, input='{"value": "fixed"}')

        messages = [new_user_message("hi")]
        result = validate_and_repair_tool_call(
            ctx, _call("{}"), tools, "be helpful", messages, repair
        )

        assert result.invalid is False
        assert result.validation_error is None
        assert result.input == '{"value": "fixed"}'

        options = seen[0]
        assert options.system_prompt == "be helpful"
        assert options.messages == messages
        assert isinstance(options.validation_error, MissingParameterError)
        assert [t.info().name for t in options.available_tools] == ["tool1"]

    def test_repair_still_invalid(self, ctx, tools):
        """A repair that does not validate leaves the original flagged."""

        def repair(repair_ctx, options):
            return replace(options.original_tool_call, input='{"other": 1}')

        original = _call("{}")
        result = validate_and_repair_tool_call(ctx, original, tools, "", [], repair)

        assert result.invalid is True
        assert result.input == "{}"
        assert isinstance(result.validation_error, MissingParameterError)

    def test_repair_returns_none(self, ctx, tools):
        def repair(repair_ctx, options):
            return None

        result = validate_and_repair_tool_call(ctx, _call("{}"), tools, "", [], repair)
        assert result.invalid is True

    def test_repair_exception_propagates(self, ctx, tools):
        """Errors raised by the repair hook are not swallowed."""

        def repair(repair_ctx, options):
            raise RuntimeError("repair backend down")

        with pytest.raises(RuntimeError, match="repair backend down"):
            validate_and_repair_tool_call(ctx, _call("{}"), tools, "", [], repair)

    def test_repair_not_called_for_valid_call(self, ctx, tools):
        def repair(repair_ctx, options):
            raise AssertionError("should not be called")

        result = validate_and_repair_tool_call(
            ctx, _call('{"value": "x"}'), tools, "", [], repair
        )
        assert result.invalid is False
