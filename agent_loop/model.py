"""
Language model interface consumed by the agent loop.

A model adapter turns a ``Call`` into either a complete ``Response`` or a
lazily produced iterator of ``StreamPart`` events. The loop never looks at
provider wire formats; adapters live in ``agent_loop.providers``.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Iterator, Optional

from .content import (
    FinishReason,
    Message,
    ProviderMetadata,
    ResponseContent,
    SourceType,
)

if TYPE_CHECKING:
    from .cancellation import RunContext


@dataclass
class Usage:
    """Token usage for one model call; adds field-wise."""

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    reasoning_tokens: int = 0
    cache_creation_tokens: int = 0
    cache_read_tokens: int = 0

    def __add__(self, other: "Usage") -> "Usage":
        return Usage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
            reasoning_tokens=self.reasoning_tokens + other.reasoning_tokens,
            cache_creation_tokens=(
                self.cache_creation_tokens + other.cache_creation_tokens
            ),
            cache_read_tokens=self.cache_read_tokens + other.cache_read_tokens,
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
            "reasoning_tokens": self.reasoning_tokens,
            "cache_creation_tokens": self.cache_creation_tokens,
            "cache_read_tokens": self.cache_read_tokens,
        }


class ToolChoice(str, Enum):
    """Whether (and which) tools the model may call in a step."""

    NONE = "none"
    AUTO = "auto"
    REQUIRED = "required"


def specific_tool_choice(name: str) -> str:
    """Force the model to call the tool with the given name."""
    return name


@dataclass
class ToolSpec:
    """Function tool as sent to the model."""

    name: str
    description: str
    input_schema: dict[str, Any]
    provider_options: Optional[ProviderMetadata] = None


class CallWarningType(str, Enum):
    UNSUPPORTED_SETTING = "unsupported-setting"
    UNSUPPORTED_TOOL = "unsupported-tool"
    OTHER = "other"


@dataclass
class CallWarning:
    """Non-fatal problem reported by the provider for a call."""

    type: CallWarningType
    setting: str = ""
    tool: Optional[ToolSpec] = None
    details: str = ""
    message: str = ""


@dataclass
class Call:
    """Everything a model adapter needs for one request."""

    prompt: list[Message]
    max_output_tokens: Optional[int] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    top_k: Optional[int] = None
    presence_penalty: Optional[float] = None
    frequency_penalty: Optional[float] = None
    tools: list[ToolSpec] = field(default_factory=list)
    tool_choice: Optional[str] = None
    headers: dict[str, str] = field(default_factory=dict)
    provider_options: ProviderMetadata = field(default_factory=dict)


@dataclass
class Response:
    content: ResponseContent = field(default_factory=ResponseContent)
    finish_reason: FinishReason = FinishReason.UNKNOWN
    usage: Usage = field(default_factory=Usage)
    warnings: list[CallWarning] = field(default_factory=list)
    provider_metadata: Optional[ProviderMetadata] = None

    def __post_init__(self):
        if not isinstance(self.content, ResponseContent):
            self.content = ResponseContent(self.content)


class StreamPartType(str, Enum):
    WARNINGS = "warnings"
    TEXT_START = "text-start"
    TEXT_DELTA = "text-delta"
    TEXT_END = "text-end"
    REASONING_START = "reasoning-start"
    REASONING_DELTA = "reasoning-delta"
    REASONING_END = "reasoning-end"
    TOOL_INPUT_START = "tool-input-start"
    TOOL_INPUT_DELTA = "tool-input-delta"
    TOOL_INPUT_END = "tool-input-end"
    TOOL_CALL = "tool-call"
    TOOL_RESULT = "tool-result"
    SOURCE = "source"
    FINISH = "finish"
    ERROR = "error"


@dataclass
class StreamPart:
    """
    One event of a streaming model response.

    Only the fields relevant to ``type`` are populated: ``id``/``delta`` for
    block events, ``tool_call_name``/``tool_call_input`` for tool events,
    ``usage``/``finish_reason`` for finish, ``error`` for error.
    """

    type: StreamPartType
    id: str = ""
    tool_call_name: str = ""
    tool_call_input: str = ""
    delta: str = ""
    provider_executed: bool = False
    usage: Usage = field(default_factory=Usage)
    finish_reason: FinishReason = FinishReason.UNKNOWN
    error: Optional[BaseException] = None
    warnings: list[CallWarning] = field(default_factory=list)
    source_type: SourceType = SourceType.URL
    url: str = ""
    title: str = ""
    provider_metadata: Optional[ProviderMetadata] = None


class LanguageModel(ABC):
    """A model the agent can drive."""

    provider: str = ""
    model_id: str = ""

    @abstractmethod
    def generate(self, ctx: "RunContext", call: Call) -> Response:
        """Run one complete model call."""

    @abstractmethod
    def stream(self, ctx: "RunContext", call: Call) -> Iterator[StreamPart]:
        """Start a streaming call; events are produced lazily."""
