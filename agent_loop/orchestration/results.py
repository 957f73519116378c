"""
Step and run results.
"""

from dataclasses import dataclass, field
from typing import Any

from ..content import Message, ToolResultOutputError, ToolResultOutputMedia
from ..model import Response, Usage


@dataclass
class StepResult(Response):
    """One model round-trip plus its tool executions."""

    messages: list[Message] = field(default_factory=list)

    @property
    def response(self) -> Response:
        return Response(
            content=self.content,
            finish_reason=self.finish_reason,
            usage=self.usage,
            warnings=self.warnings,
            provider_metadata=self.provider_metadata,
        )


@dataclass
class AgentResult:
    steps: list[StepResult]
    response: Response
    total_usage: Usage

    @classmethod
    def from_steps(cls, steps: list[StepResult]) -> "AgentResult":
        total = Usage()
        for step in steps:
            total = total + step.usage
        return cls(steps=list(steps), response=steps[-1].response, total_usage=total)

    def get_trace(self) -> list[dict[str, Any]]:
        """Get the run as a list of plain dicts, one per step."""
        trace = []
        for number, step in enumerate(self.steps, start=1):
            tool_results = []
            for result in step.content.tool_results():
                output = result.result
                if isinstance(output, ToolResultOutputError):
                    value = {"error": output.message}
                elif isinstance(output, ToolResultOutputMedia):
                    value = {"media_type": output.media_type, "text": output.text}
                else:
                    value = {"text": output.text}
                tool_results.append(
                    {
                        "tool_call_id": result.tool_call_id,
                        "tool_name": result.tool_name,
                        **value,
                    }
                )
            trace.append(
                {
                    "step": number,
                    "finish_reason": step.finish_reason.value,
                    "text": step.content.text(),
                    "tool_calls": [
                        {
                            "id": call.tool_call_id,
                            "name": call.tool_name,
                            "input": call.input,
                            "invalid": call.invalid,
                            "validation_error": (
                                str(call.validation_error)
                                if call.validation_error
                                else None
                            ),
                        }
                        for call in step.content.tool_calls()
                    ],
                    "tool_results": tool_results,
                    "usage": step.usage.to_dict(),
                }
            )
        return trace
