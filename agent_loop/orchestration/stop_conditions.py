"""
Stop conditions.

A stop condition is a pure predicate over the full step history, evaluated
after every step. Configured conditions combine with OR. Every standard
predicate looks only at the last step, except ``max_tokens_used`` which
sums usage across all steps.
"""

from typing import Callable, Sequence

from ..content import ContentType, FinishReason
from .results import StepResult

StopCondition = Callable[[Sequence[StepResult]], bool]


def step_count_is(count: int) -> StopCondition:
    """Stop once ``count`` steps have run."""

    def condition(steps: Sequence[StepResult]) -> bool:
        return len(steps) >= count

    return condition


def has_tool_call(tool_name: str) -> StopCondition:
    """Stop when the last step called ``tool_name``."""

    def condition(steps: Sequence[StepResult]) -> bool:
        if not steps:
            return False
        return any(c.tool_name == tool_name for c in steps[-1].content.tool_calls())

    return condition


def has_content(content_type: ContentType) -> StopCondition:
    """Stop when the last step produced content of the given kind."""

    def condition(steps: Sequence[StepResult]) -> bool:
        if not steps:
            return False
        return any(item.type == content_type for item in steps[-1].content)

    return condition


def finish_reason_is(reason: FinishReason) -> StopCondition:
    def condition(steps: Sequence[StepResult]) -> bool:
        if not steps:
            return False
        return steps[-1].finish_reason == reason

    return condition


def max_tokens_used(max_tokens: int) -> StopCondition:
    """Stop once total tokens across all steps reach ``max_tokens``."""

    def condition(steps: Sequence[StepResult]) -> bool:
        return sum(step.usage.total_tokens for step in steps) >= max_tokens

    return condition


def is_stop_condition_met(
    conditions: Sequence[StopCondition], steps: Sequence[StepResult]
) -> bool:
    return any(condition(steps) for condition in conditions)
