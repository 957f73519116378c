"""
Pytest configuration and fixtures for agent loop tests.
"""

import pytest

from agent_loop.cancellation import RunContext
from agent_loop.tools import function_tool, new_text_response


@pytest.fixture
def ctx():
    """A fresh run context."""
    return RunContext.background()


@pytest.fixture
def tool_calls_log():
    """Arguments of every echo tool invocation, in order."""
    return []


@pytest.fixture
def echo_tool(tool_calls_log):
    """Tool ``tool1`` requiring ``value`` and echoing it back."""

    def handler(ctx, args):
        tool_calls_log.append(args)
        return new_text_response(f"echo: {args['value']}")

    return function_tool(
        "tool1",
        "Echo the given value",
        handler,
        parameters={"value": {"type": "string", "description": "Value to echo"}},
        required=["value"],
    )


@pytest.fixture
def failing_tool():
    """Tool whose run raises, i.e. an execution fault."""

    def handler(ctx, args):
        raise RuntimeError("backend unavailable")

    return function_tool("broken", "Always fails", handler)
