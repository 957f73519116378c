"""
Error types raised by the agent loop.

Argument errors are raised before any model call. Validation errors are
attached to the offending tool call and surfaced to the model as an error
tool result. Provider errors are retried according to the retry policy.
Everything else (tool execution faults, hook and observer failures)
propagates to the caller unchanged.
"""

from typing import Any, Optional


class AgentError(Exception):
    """Base class for all errors raised by the agent loop."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        return self.message


class InvalidArgumentError(AgentError):
    """An argument passed to the agent was rejected."""

    def __init__(
        self, argument: str, message: str, cause: Optional[BaseException] = None
    ):
        super().__init__(message, cause)
        self.argument = argument


class InvalidResponseDataError(AgentError):
    """The provider returned data the adapter could not interpret."""

    def __init__(self, data: Any, message: str = ""):
        super().__init__(message or f"Invalid response data: {data!r}.")
        self.data = data


class UnsupportedFunctionalityError(AgentError):
    """The provider does not support a requested feature."""

    def __init__(self, functionality: str, message: str = ""):
        super().__init__(
            message or f"'{functionality}' functionality not supported."
        )
        self.functionality = functionality


# HTTP status codes that are worth retrying even without an explicit hint.
RETRYABLE_STATUS_CODES = frozenset({408, 409, 429})


class APICallError(AgentError):
    """A call to the model provider failed."""

    def __init__(
        self,
        message: str,
        url: str = "",
        status_code: int = 0,
        response_headers: Optional[dict[str, str]] = None,
        response_body: str = "",
        cause: Optional[BaseException] = None,
        is_retryable: bool = False,
    ):
        super().__init__(message, cause)
        self.url = url
        self.status_code = status_code
        self.response_headers = {
            k.lower(): v for k, v in (response_headers or {}).items()
        }
        self.response_body = response_body
        if not is_retryable and status_code:
            is_retryable = (
                status_code in RETRYABLE_STATUS_CODES or status_code >= 500
            )
        self.is_retryable = is_retryable


class RetryError(AgentError):
    """Raised when the retry policy gives up."""

    MAX_RETRIES_EXCEEDED = "max_retries_exceeded"
    ERROR_NOT_RETRYABLE = "error_not_retryable"

    def __init__(self, message: str, reason: str, errors: list[BaseException]):
        super().__init__(message, errors[-1] if errors else None)
        self.reason = reason
        self.errors = list(errors)


class StreamError(AgentError):
    """The provider reported an error event without an exception attached."""


class RunCancelledError(AgentError):
    """The run context was cancelled."""

    def __init__(self, message: str = "run cancelled"):
        super().__init__(message)


class ToolValidationError(AgentError):
    """A model-emitted tool call does not match the tool definition."""


class ToolNotFoundError(ToolValidationError):
    def __init__(self, tool_name: str):
        super().__init__(f"tool not found: {tool_name}")
        self.tool_name = tool_name


class InvalidToolInputError(ToolValidationError):
    def __init__(self, cause: BaseException):
        super().__init__(f"invalid JSON input: {cause}", cause)


class MissingParameterError(ToolValidationError):
    def __init__(self, parameter: str):
        super().__init__(f"missing required parameter: `{parameter}`")
        self.parameter = parameter
