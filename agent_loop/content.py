"""
Content and message model shared by the agent loop and model adapters.

Model output is an ordered sequence of tagged content items (text,
reasoning, file, source, tool call, tool result). Conversation input is a
sequence of messages, each holding tagged message parts. Both are closed
sets of dataclasses discriminated by a ``type`` tag.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, TypeVar, Union

ProviderMetadata = dict[str, Any]


class ContentType(str, Enum):
    """Discriminant for content items and message parts."""

    TEXT = "text"
    REASONING = "reasoning"
    FILE = "file"
    SOURCE = "source"
    TOOL_CALL = "tool-call"
    TOOL_RESULT = "tool-result"


class FinishReason(str, Enum):
    """Terminal status reported by the model for a single call."""

    STOP = "stop"
    LENGTH = "length"
    CONTENT_FILTER = "content-filter"
    TOOL_CALLS = "tool-calls"
    ERROR = "error"
    OTHER = "other"
    UNKNOWN = "unknown"


class SourceType(str, Enum):
    URL = "url"
    DOCUMENT = "document"


class MessageRole(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


# =============================================================================
# Tool result outputs
# =============================================================================


@dataclass
class ToolResultOutputText:
    text: str
    type: str = field(default="text", init=False)


@dataclass
class ToolResultOutputError:
    error: BaseException
    type: str = field(default="error", init=False)

    @property
    def message(self) -> str:
        return str(self.error)


@dataclass
class ToolResultOutputMedia:
    data: str  # base64
    media_type: str
    text: str = ""
    type: str = field(default="media", init=False)


ToolResultOutput = Union[
    ToolResultOutputText, ToolResultOutputError, ToolResultOutputMedia
]


# =============================================================================
# Content (model output)
# =============================================================================


@dataclass
class TextContent:
    text: str
    provider_metadata: Optional[ProviderMetadata] = None
    type: ContentType = field(default=ContentType.TEXT, init=False)


@dataclass
class ReasoningContent:
    text: str
    provider_metadata: Optional[ProviderMetadata] = None
    type: ContentType = field(default=ContentType.REASONING, init=False)


@dataclass
class FileContent:
    media_type: str
    data: bytes
    provider_metadata: Optional[ProviderMetadata] = None
    type: ContentType = field(default=ContentType.FILE, init=False)


@dataclass
class SourceContent:
    """A reference the model used; url or document."""

    source_type: SourceType
    id: str
    url: str = ""
    title: str = ""
    media_type: str = ""
    filename: str = ""
    provider_metadata: Optional[ProviderMetadata] = None
    type: ContentType = field(default=ContentType.SOURCE, init=False)


@dataclass
class ToolCallContent:
    """
    A tool invocation requested by the model.

    ``input`` is the raw JSON string the model produced. ``invalid`` and
    ``validation_error`` are set by the validator when the call does not
    match its tool and could not be repaired.
    """

    tool_call_id: str
    tool_name: str
    input: str
    provider_executed: bool = False
    provider_metadata: Optional[ProviderMetadata] = None
    invalid: bool = False
    validation_error: Optional[BaseException] = None
    type: ContentType = field(default=ContentType.TOOL_CALL, init=False)


@dataclass
class ToolResultContent:
    tool_call_id: str
    tool_name: str
    result: ToolResultOutput
    client_metadata: str = ""
    provider_executed: bool = False
    provider_metadata: Optional[ProviderMetadata] = None
    type: ContentType = field(default=ContentType.TOOL_RESULT, init=False)


Content = Union[
    TextContent,
    ReasoningContent,
    FileContent,
    SourceContent,
    ToolCallContent,
    ToolResultContent,
]

T = TypeVar("T")


def as_content(item: Any, cls: type[T]) -> Optional[T]:
    """Return ``item`` if it is a ``cls`` instance, otherwise None."""
    if isinstance(item, cls):
        return item
    return None


class ResponseContent(list):
    """Ordered content of a model response, with typed getters."""

    def _of(self, cls: type[T]) -> list[T]:
        return [c for c in self if isinstance(c, cls)]

    def text(self) -> str:
        """Text of the first text item, or empty string."""
        for item in self:
            if isinstance(item, TextContent):
                return item.text
        return ""

    def reasoning(self) -> list[ReasoningContent]:
        return self._of(ReasoningContent)

    def reasoning_text(self) -> str:
        return "".join(r.text for r in self.reasoning())

    def files(self) -> list[FileContent]:
        return self._of(FileContent)

    def sources(self) -> list[SourceContent]:
        return self._of(SourceContent)

    def tool_calls(self) -> list[ToolCallContent]:
        return self._of(ToolCallContent)

    def tool_results(self) -> list[ToolResultContent]:
        return self._of(ToolResultContent)


# =============================================================================
# Messages (model input)
# =============================================================================


@dataclass
class TextPart:
    text: str
    provider_options: Optional[ProviderMetadata] = None
    type: ContentType = field(default=ContentType.TEXT, init=False)


@dataclass
class ReasoningPart:
    text: str
    provider_options: Optional[ProviderMetadata] = None
    type: ContentType = field(default=ContentType.REASONING, init=False)


@dataclass
class FilePart:
    data: bytes
    media_type: str
    filename: str = ""
    provider_options: Optional[ProviderMetadata] = None
    type: ContentType = field(default=ContentType.FILE, init=False)


@dataclass
class ToolCallPart:
    tool_call_id: str
    tool_name: str
    input: str
    provider_executed: bool = False
    provider_options: Optional[ProviderMetadata] = None
    type: ContentType = field(default=ContentType.TOOL_CALL, init=False)


@dataclass
class ToolResultPart:
    tool_call_id: str
    output: ToolResultOutput
    provider_options: Optional[ProviderMetadata] = None
    type: ContentType = field(default=ContentType.TOOL_RESULT, init=False)


MessagePart = Union[TextPart, ReasoningPart, FilePart, ToolCallPart, ToolResultPart]


@dataclass
class Message:
    role: MessageRole
    content: list[MessagePart] = field(default_factory=list)
    provider_options: Optional[ProviderMetadata] = None


def new_user_message(prompt: str, *files: FilePart) -> Message:
    """Build a user message from prompt text and optional file attachments."""
    parts: list[MessagePart] = [TextPart(text=prompt)]
    parts.extend(files)
    return Message(role=MessageRole.USER, content=parts)


def new_system_message(*prompts: str) -> Message:
    return Message(
        role=MessageRole.SYSTEM, content=[TextPart(text=p) for p in prompts]
    )


def to_response_messages(content: list[Content]) -> list[Message]:
    """
    Convert one step's content into the messages fed back to the model.

    Text, reasoning, tool-call and file items become parts of a single
    assistant message; tool results become parts of a single tool message.
    Sources are metadata and are not sent back.
    """
    assistant_parts: list[MessagePart] = []
    tool_parts: list[MessagePart] = []

    for item in content:
        if isinstance(item, TextContent):
            assistant_parts.append(
                TextPart(text=item.text, provider_options=item.provider_metadata)
            )
        elif isinstance(item, ReasoningContent):
            assistant_parts.append(
                ReasoningPart(
                    text=item.text, provider_options=item.provider_metadata
                )
            )
        elif isinstance(item, ToolCallContent):
            assistant_parts.append(
                ToolCallPart(
                    tool_call_id=item.tool_call_id,
                    tool_name=item.tool_name,
                    input=item.input,
                    provider_executed=item.provider_executed,
                    provider_options=item.provider_metadata,
                )
            )
        elif isinstance(item, FileContent):
            assistant_parts.append(
                FilePart(
                    data=item.data,
                    media_type=item.media_type,
                    provider_options=item.provider_metadata,
                )
            )
        elif isinstance(item, ToolResultContent):
            tool_parts.append(
                ToolResultPart(
                    tool_call_id=item.tool_call_id,
                    output=item.result,
                    provider_options=item.provider_metadata,
                )
            )

    messages: list[Message] = []
    if assistant_parts:
        messages.append(Message(role=MessageRole.ASSISTANT, content=assistant_parts))
    if tool_parts:
        messages.append(Message(role=MessageRole.TOOL, content=tool_parts))
    return messages
