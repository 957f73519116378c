"""
OpenAI-compatible chat completions adapter.

Works against any server speaking the OpenAI chat completions API (vLLM,
SGLang, OpenAI itself). Translates ``Call`` into a request, the completion
back into content items, and the streamed chunks into ``StreamPart`` events.

Models served through vLLM/SGLang may return chain-of-thought in a
non-standard ``reasoning_content`` field; it is surfaced as reasoning
content in both modes.
"""

import base64
import json
import logging
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Iterator, Optional

from openai import APIConnectionError, APIStatusError, APITimeoutError, OpenAI, OpenAIError

from ..content import (
    FilePart,
    FinishReason,
    Message,
    MessageRole,
    ReasoningContent,
    ReasoningPart,
    SourceContent,
    SourceType,
    TextContent,
    TextPart,
    ToolCallContent,
    ToolCallPart,
    ToolResultOutputError,
    ToolResultOutputMedia,
    ToolResultOutputText,
    ToolResultPart,
)
from ..errors import (
    APICallError,
    InvalidResponseDataError,
    UnsupportedFunctionalityError,
)
from ..model import (
    Call,
    CallWarning,
    CallWarningType,
    LanguageModel,
    Response,
    StreamPart,
    StreamPartType,
    ToolChoice,
    ToolSpec,
    Usage,
)

if TYPE_CHECKING:
    from ..cancellation import RunContext

logger = logging.getLogger(__name__)

PROVIDER_NAME = "openai-compat"

# Chunk-level block id; the chat completions API has a single text block.
_BLOCK_ID = "0"

_FINISH_REASONS = {
    "stop": FinishReason.STOP,
    "length": FinishReason.LENGTH,
    "content_filter": FinishReason.CONTENT_FILTER,
    "function_call": FinishReason.TOOL_CALLS,
    "tool_calls": FinishReason.TOOL_CALLS,
}

_AUDIO_FORMATS = {
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "audio/mpeg": "mp3",
    "audio/mp3": "mp3",
}


def map_finish_reason(reason: Optional[str]) -> FinishReason:
    return _FINISH_REASONS.get(reason or "", FinishReason.UNKNOWN)


def to_api_call_error(error: Exception) -> Exception:
    """
    Convert an OpenAI SDK error into ``APICallError``.

    Status errors keep their status code, headers and body; connection
    errors and timeouts are always retryable. Anything else is returned
    unchanged.
    """
    if isinstance(error, APIStatusError):
        response = error.response
        return APICallError(
            message=error.message,
            url=str(response.request.url) if response is not None else "",
            status_code=error.status_code,
            response_headers=dict(response.headers) if response is not None else {},
            response_body=response.text if response is not None else "",
            cause=error,
        )
    if isinstance(error, (APIConnectionError, APITimeoutError)):
        request = getattr(error, "request", None)
        return APICallError(
            message=str(error),
            url=str(request.url) if request is not None else "",
            cause=error,
            is_retryable=True,
        )
    return error


def _map_usage(usage: Any) -> Usage:
    if usage is None:
        return Usage()
    completion_details = getattr(usage, "completion_tokens_details", None)
    prompt_details = getattr(usage, "prompt_tokens_details", None)
    return Usage(
        input_tokens=usage.prompt_tokens or 0,
        output_tokens=usage.completion_tokens or 0,
        total_tokens=usage.total_tokens or 0,
        reasoning_tokens=getattr(completion_details, "reasoning_tokens", 0) or 0,
        cache_read_tokens=getattr(prompt_details, "cached_tokens", 0) or 0,
    )


def _data_url(media_type: str, data: bytes) -> str:
    return f"data:{media_type};base64,{base64.b64encode(data).decode('ascii')}"


def _is_valid_json(text: str) -> bool:
    try:
        json.loads(text)
    except ValueError:
        return False
    return True


# =============================================================================
# Request translation
# =============================================================================


def _convert_user_parts(parts: list) -> Any:
    if len(parts) == 1 and isinstance(parts[0], TextPart):
        return parts[0].text

    converted: list[dict[str, Any]] = []
    for part in parts:
        if isinstance(part, TextPart):
            converted.append({"type": "text", "text": part.text})
        elif isinstance(part, FilePart):
            media_type = part.media_type
            if media_type.startswith("image/"):
                converted.append(
                    {
                        "type": "image_url",
                        "image_url": {"url": _data_url(media_type, part.data)},
                    }
                )
            elif media_type in _AUDIO_FORMATS:
                converted.append(
                    {
                        "type": "input_audio",
                        "input_audio": {
                            "data": base64.b64encode(part.data).decode("ascii"),
                            "format": _AUDIO_FORMATS[media_type],
                        },
                    }
                )
            elif media_type == "application/pdf":
                converted.append(
                    {
                        "type": "file",
                        "file": {
                            "filename": part.filename or "document.pdf",
                            "file_data": _data_url(media_type, part.data),
                        },
                    }
                )
            else:
                raise UnsupportedFunctionalityError(
                    f"file part media type {media_type}",
                    f"file part media type {media_type} not supported",
                )
    return converted


def _tool_result_text(part: ToolResultPart) -> str:
    output = part.output
    if isinstance(output, ToolResultOutputText):
        return output.text
    if isinstance(output, ToolResultOutputError):
        return output.message
    if isinstance(output, ToolResultOutputMedia):
        return output.text or f"[{output.media_type} content]"
    return ""


def convert_prompt(
    prompt: list[Message],
) -> tuple[list[dict[str, Any]], list[CallWarning]]:
    """
    Translate messages into chat completion messages plus warnings.

    Raises:
        UnsupportedFunctionalityError: A user file part has a media type
            chat completions cannot carry.
    """
    messages: list[dict[str, Any]] = []
    warnings: list[CallWarning] = []

    for message in prompt:
        if message.role == MessageRole.SYSTEM:
            texts = [p.text for p in message.content if isinstance(p, TextPart)]
            if len(texts) != len(message.content):
                warnings.append(
                    CallWarning(
                        type=CallWarningType.OTHER,
                        message="system prompt can only have text parts",
                    )
                )
            text = "\n".join(t for t in texts if t)
            if not text:
                warnings.append(
                    CallWarning(
                        type=CallWarningType.OTHER,
                        message="system prompt has no text parts",
                    )
                )
                continue
            messages.append({"role": "system", "content": text})

        elif message.role == MessageRole.USER:
            if not message.content:
                warnings.append(
                    CallWarning(
                        type=CallWarningType.OTHER,
                        message="dropping empty user message",
                    )
                )
                continue
            messages.append(
                {
                    "role": "user",
                    "content": _convert_user_parts(message.content),
                }
            )

        elif message.role == MessageRole.ASSISTANT:
            text = ""
            reasoning = ""
            tool_calls: list[dict[str, Any]] = []
            for part in message.content:
                if isinstance(part, TextPart):
                    text += part.text
                elif isinstance(part, ReasoningPart):
                    reasoning += part.text
                elif isinstance(part, ToolCallPart):
                    tool_calls.append(
                        {
                            "id": part.tool_call_id,
                            "type": "function",
                            "function": {
                                "name": part.tool_name,
                                "arguments": part.input,
                            },
                        }
                    )
            assistant: dict[str, Any] = {"role": "assistant", "content": text}
            if reasoning:
                assistant["reasoning_content"] = reasoning
            if tool_calls:
                assistant["tool_calls"] = tool_calls
            messages.append(assistant)

        elif message.role == MessageRole.TOOL:
            for part in message.content:
                if not isinstance(part, ToolResultPart):
                    continue
                messages.append(
                    {
                        "role": "tool",
                        "tool_call_id": part.tool_call_id,
                        "content": _tool_result_text(part),
                    }
                )

    return messages, warnings


def convert_tools(
    tools: list[ToolSpec], tool_choice: Optional[str]
) -> tuple[list[dict[str, Any]], Any]:
    """Translate tool specs and the tool choice into request fields."""
    if not tools:
        return [], None

    api_tools = [
        {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.input_schema,
                "strict": False,
            },
        }
        for tool in tools
    ]

    if tool_choice is None:
        return api_tools, None
    if tool_choice in (ToolChoice.AUTO, ToolChoice.NONE, ToolChoice.REQUIRED):
        return api_tools, ToolChoice(tool_choice).value
    return api_tools, {"type": "function", "function": {"name": tool_choice}}


# =============================================================================
# Streaming state
# =============================================================================


@dataclass
class _StreamToolCall:
    id: str
    name: str
    arguments: str = ""
    finished: bool = False


class OpenAICompatModel(LanguageModel):
    """
    ``LanguageModel`` backed by an OpenAI-compatible endpoint.

    Provider options under the ``"openai-compat"`` key are sent as extra
    request body fields (e.g. ``{"openai-compat": {"reasoning_effort": "low"}}``).
    """

    provider = PROVIDER_NAME

    def __init__(
        self,
        model_id: str,
        base_url: Optional[str] = None,
        api_key: str = "not-needed",
        timeout: Optional[float] = None,
        client: Optional[OpenAI] = None,
    ):
        self.model_id = model_id
        self.base_url = base_url
        if client is not None:
            self._client = client
        else:
            kwargs: dict[str, Any] = {"base_url": base_url, "api_key": api_key}
            if timeout is not None:
                kwargs["timeout"] = timeout
            self._client = OpenAI(**kwargs)

    def _prepare_params(self, call: Call) -> tuple[dict[str, Any], list[CallWarning]]:
        messages, warnings = convert_prompt(call.prompt)

        params: dict[str, Any] = {"model": self.model_id, "messages": messages}
        if call.max_output_tokens is not None:
            params["max_tokens"] = call.max_output_tokens
        if call.temperature is not None:
            params["temperature"] = call.temperature
        if call.top_p is not None:
            params["top_p"] = call.top_p
        if call.presence_penalty is not None:
            params["presence_penalty"] = call.presence_penalty
        if call.frequency_penalty is not None:
            params["frequency_penalty"] = call.frequency_penalty
        if call.top_k is not None:
            warnings.append(
                CallWarning(
                    type=CallWarningType.UNSUPPORTED_SETTING,
                    setting="top_k",
                    details="top_k is not supported by the chat completions API",
                )
            )

        tools, tool_choice = convert_tools(call.tools, call.tool_choice)
        if tools:
            params["tools"] = tools
            if tool_choice is not None:
                params["tool_choice"] = tool_choice

        if call.headers:
            params["extra_headers"] = dict(call.headers)
        extra_body = call.provider_options.get(self.provider)
        if extra_body:
            params["extra_body"] = dict(extra_body)

        return params, warnings

    # ------------------------------------------------------------------
    # Generate
    # ------------------------------------------------------------------

    def generate(self, ctx: "RunContext", call: Call) -> Response:
        params, warnings = self._prepare_params(call)
        ctx.raise_if_cancelled()

        logger.debug("Calling %s (%d messages)", self.model_id, len(params["messages"]))
        try:
            completion = self._client.chat.completions.create(**params)
        except OpenAIError as e:
            raise to_api_call_error(e) from e

        if not completion.choices:
            raise InvalidResponseDataError(completion, "no choices in completion")
        choice = completion.choices[0]
        message = choice.message

        content: list = []
        if message.content:
            content.append(TextContent(text=message.content))

        reasoning = getattr(message, "reasoning_content", None)
        if reasoning:
            content.append(ReasoningContent(text=reasoning))

        for tool_call in message.tool_calls or []:
            content.append(
                ToolCallContent(
                    tool_call_id=tool_call.id or str(uuid.uuid4()),
                    tool_name=tool_call.function.name,
                    input=tool_call.function.arguments or "",
                )
            )

        for annotation in getattr(message, "annotations", None) or []:
            if annotation.type == "url_citation":
                content.append(
                    SourceContent(
                        source_type=SourceType.URL,
                        id=str(uuid.uuid4()),
                        url=annotation.url_citation.url,
                        title=annotation.url_citation.title,
                    )
                )

        finish_reason = map_finish_reason(choice.finish_reason)
        if message.tool_calls:
            finish_reason = FinishReason.TOOL_CALLS

        return Response(
            content=content,
            finish_reason=finish_reason,
            usage=_map_usage(completion.usage),
            warnings=warnings,
        )

    # ------------------------------------------------------------------
    # Stream
    # ------------------------------------------------------------------

    def stream(self, ctx: "RunContext", call: Call) -> Iterator[StreamPart]:
        params, warnings = self._prepare_params(call)
        params["stream"] = True
        params["stream_options"] = {"include_usage": True}
        return self._stream_parts(ctx, params, warnings)

    def _stream_parts(
        self, ctx: "RunContext", params: dict[str, Any], warnings: list[CallWarning]
    ) -> Iterator[StreamPart]:
        ctx.raise_if_cancelled()
        if warnings:
            yield StreamPart(type=StreamPartType.WARNINGS, warnings=warnings)

        logger.debug("Streaming %s (%d messages)", self.model_id, len(params["messages"]))

        text_active = False
        reasoning_active = False
        tool_calls: dict[int, _StreamToolCall] = {}
        usage = Usage()
        finish_reason: Optional[str] = None

        try:
            chunks = self._client.chat.completions.create(**params)
            for chunk in chunks:
                if chunk.usage is not None:
                    usage = _map_usage(chunk.usage)
                if not chunk.choices:
                    continue

                choice = chunk.choices[0]
                if choice.finish_reason:
                    finish_reason = choice.finish_reason
                delta = choice.delta
                if delta is None:
                    continue

                reasoning = getattr(delta, "reasoning_content", None)
                if reasoning:
                    if not reasoning_active:
                        reasoning_active = True
                        yield StreamPart(
                            type=StreamPartType.REASONING_START, id=_BLOCK_ID
                        )
                    yield StreamPart(
                        type=StreamPartType.REASONING_DELTA,
                        id=_BLOCK_ID,
                        delta=reasoning,
                    )

                # A chunk may close the reasoning and start the answer at once.
                if reasoning_active and (delta.content or delta.tool_calls):
                    reasoning_active = False
                    yield StreamPart(type=StreamPartType.REASONING_END, id=_BLOCK_ID)

                if delta.content:
                    if not text_active:
                        text_active = True
                        yield StreamPart(type=StreamPartType.TEXT_START, id=_BLOCK_ID)
                    yield StreamPart(
                        type=StreamPartType.TEXT_DELTA,
                        id=_BLOCK_ID,
                        delta=delta.content,
                    )

                if delta.tool_calls:
                    if text_active:
                        text_active = False
                        yield StreamPart(type=StreamPartType.TEXT_END, id=_BLOCK_ID)

                    for tool_delta in delta.tool_calls:
                        yield from self._tool_delta_parts(tool_calls, tool_delta)

                for annotation in getattr(delta, "annotations", None) or []:
                    if getattr(annotation, "type", None) == "url_citation":
                        yield StreamPart(
                            type=StreamPartType.SOURCE,
                            id=chunk.id,
                            source_type=SourceType.URL,
                            url=annotation.url_citation.url,
                            title=annotation.url_citation.title,
                        )
        except InvalidResponseDataError as e:
            yield StreamPart(type=StreamPartType.ERROR, error=e)
            return
        except OpenAIError as e:
            yield StreamPart(type=StreamPartType.ERROR, error=to_api_call_error(e))
            return

        if reasoning_active:
            yield StreamPart(type=StreamPartType.REASONING_END, id=_BLOCK_ID)
        if text_active:
            yield StreamPart(type=StreamPartType.TEXT_END, id=_BLOCK_ID)

        for pending in tool_calls.values():
            if not pending.finished:
                logger.warning(
                    "Dropping tool call %s (%s): arguments never became valid JSON",
                    pending.id,
                    pending.name,
                )

        mapped = map_finish_reason(finish_reason)
        if tool_calls:
            mapped = FinishReason.TOOL_CALLS
        yield StreamPart(
            type=StreamPartType.FINISH, usage=usage, finish_reason=mapped
        )

    @staticmethod
    def _tool_delta_parts(
        tool_calls: dict[int, _StreamToolCall], tool_delta: Any
    ) -> Iterator[StreamPart]:
        function = tool_delta.function
        arguments = (function.arguments if function is not None else None) or ""
        existing = tool_calls.get(tool_delta.index)

        if existing is None:
            name = function.name if function is not None else None
            if not tool_delta.id:
                raise InvalidResponseDataError(tool_delta, "expected 'id' to be a string")
            if not name:
                raise InvalidResponseDataError(
                    tool_delta, "expected 'function.name' to be a string"
                )
            existing = _StreamToolCall(id=tool_delta.id, name=name)
            tool_calls[tool_delta.index] = existing
            yield StreamPart(
                type=StreamPartType.TOOL_INPUT_START,
                id=existing.id,
                tool_call_name=existing.name,
            )
        elif existing.finished:
            return

        if arguments:
            existing.arguments += arguments
            yield StreamPart(
                type=StreamPartType.TOOL_INPUT_DELTA,
                id=existing.id,
                delta=arguments,
            )

        if existing.arguments and _is_valid_json(existing.arguments):
            existing.finished = True
            yield StreamPart(type=StreamPartType.TOOL_INPUT_END, id=existing.id)
            yield StreamPart(
                type=StreamPartType.TOOL_CALL,
                id=existing.id,
                tool_call_name=existing.name,
                tool_call_input=existing.arguments,
            )

    def close(self) -> None:
        """Close the underlying OpenAI client."""
        try:
            self._client.close()
        except Exception as e:
            logger.debug("Error closing OpenAI client: %s", e)
