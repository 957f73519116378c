"""
Tool abstraction.

A tool exposes its metadata through ``info()`` and handles calls through
``run(ctx, call)``. Tools report business-logic failures by returning an
error response (``is_error=True``); raising from ``run`` is an execution
fault and aborts the agent run.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Callable, Optional

from ..content import ProviderMetadata

if TYPE_CHECKING:
    from ..cancellation import RunContext

logger = logging.getLogger(__name__)


@dataclass
class ToolInfo:
    """Metadata for a tool - defined once, used everywhere."""

    name: str
    description: str
    parameters: dict[str, Any] = field(default_factory=dict)  # JSON-schema properties
    required: list[str] = field(default_factory=list)

    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": self.parameters,
            "required": list(self.required),
        }


@dataclass
class ToolCall:
    """A call handed to a tool; ``input`` is the raw JSON string."""

    id: str
    name: str
    input: str


RESPONSE_TEXT = "text"
RESPONSE_IMAGE = "image"
RESPONSE_MEDIA = "media"


@dataclass
class ToolResponse:
    type: str = RESPONSE_TEXT
    content: str = ""
    data: bytes = b""
    media_type: str = ""
    metadata: str = ""
    is_error: bool = False


def new_text_response(content: str) -> ToolResponse:
    return ToolResponse(type=RESPONSE_TEXT, content=content)


def new_text_error_response(content: str) -> ToolResponse:
    return ToolResponse(type=RESPONSE_TEXT, content=content, is_error=True)


def new_image_response(data: bytes, media_type: str) -> ToolResponse:
    return ToolResponse(type=RESPONSE_IMAGE, data=data, media_type=media_type)


def new_media_response(data: bytes, media_type: str) -> ToolResponse:
    return ToolResponse(type=RESPONSE_MEDIA, data=data, media_type=media_type)


def with_response_metadata(response: ToolResponse, metadata: Any) -> ToolResponse:
    """
    Attach client metadata to a response.

    The metadata is JSON-encoded into ``response.metadata``. Metadata that
    cannot be encoded leaves the response unchanged.
    """
    if metadata is None:
        return response
    try:
        encoded = json.dumps(metadata)
    except (TypeError, ValueError):
        logger.debug("Dropping unencodable tool response metadata: %r", metadata)
        return response
    return replace(response, metadata=encoded)


class AgentTool(ABC):
    """A capability the model can invoke."""

    def __init__(self):
        self._provider_options: ProviderMetadata = {}

    @abstractmethod
    def info(self) -> ToolInfo:
        """Tool name, description and input schema."""

    @abstractmethod
    def run(self, ctx: "RunContext", call: ToolCall) -> ToolResponse:
        """Handle one call."""

    def provider_options(self) -> ProviderMetadata:
        return self._provider_options

    def set_provider_options(self, options: ProviderMetadata) -> None:
        self._provider_options = dict(options or {})


ToolHandler = Callable[["RunContext", dict[str, Any]], Any]


class FunctionTool(AgentTool):
    """
    Wrap a plain function as a tool.

    The handler receives the run context and the parsed input object. A
    returned ``ToolResponse`` is passed through; any other value is turned
    into a text response (strings as-is, everything else JSON-encoded).
    """

    def __init__(
        self,
        name: str,
        description: str,
        handler: ToolHandler,
        parameters: Optional[dict[str, Any]] = None,
        required: Optional[list[str]] = None,
    ):
        super().__init__()
        self._info = ToolInfo(
            name=name,
            description=description,
            parameters=dict(parameters or {}),
            required=list(required or []),
        )
        self._handler = handler

    def info(self) -> ToolInfo:
        return self._info

    def run(self, ctx: "RunContext", call: ToolCall) -> ToolResponse:
        try:
            args = json.loads(call.input) if call.input else {}
        except json.JSONDecodeError as e:
            return new_text_error_response(f"invalid parameters: {e}")
        if not isinstance(args, dict):
            return new_text_error_response(
                "invalid parameters: expected a JSON object"
            )

        result = self._handler(ctx, args)
        if isinstance(result, ToolResponse):
            return result
        if isinstance(result, str):
            return new_text_response(result)
        return new_text_response(json.dumps(result))


def function_tool(
    name: str,
    description: str,
    fn: ToolHandler,
    parameters: Optional[dict[str, Any]] = None,
    required: Optional[list[str]] = None,
) -> FunctionTool:
    """Build a ``FunctionTool`` from a handler and its JSON-schema properties."""
    return FunctionTool(name, description, fn, parameters, required)
