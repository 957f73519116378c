"""
Retry policy for model calls.

Retries retryable provider errors with exponential backoff. When the
provider sends ``retry-after-ms`` or ``retry-after`` headers with a
reasonable value, that value replaces the computed delay. Built on tenacity;
back-off sleeps wake up early when the run context is cancelled.
"""

import email.utils
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

import tenacity
from tenacity import Retrying, retry_if_exception, stop_after_attempt
from tenacity.wait import wait_base

from .cancellation import RunContext
from .errors import APICallError, RetryError, RunCancelledError

logger = logging.getLogger(__name__)

T = TypeVar("T")

OnRetryCallback = Callable[[APICallError, float], None]

# Header hints above this are ignored unless shorter than the backoff delay.
MAX_HINTED_DELAY_SECONDS = 60.0


@dataclass
class RetryOptions:
    """Retry configuration; delays are in seconds."""

    max_retries: int = 2
    initial_delay: float = 2.0
    backoff_factor: float = 2.0
    on_retry: Optional[OnRetryCallback] = None


def retry_delay_from_headers(
    error: Optional[BaseException], exponential_delay: float
) -> float:
    """
    Pick the delay before the next attempt.

    ``retry-after-ms`` is preferred over ``retry-after`` (seconds or an HTTP
    date). A hint is used only if it is positive and either below 60 seconds
    or below the exponential delay.
    """
    if not isinstance(error, APICallError) or not error.response_headers:
        return exponential_delay

    headers = error.response_headers
    hinted = 0.0

    retry_after_ms = headers.get("retry-after-ms")
    if retry_after_ms is not None:
        try:
            hinted = float(retry_after_ms) / 1000.0
        except ValueError:
            hinted = 0.0

    retry_after = headers.get("retry-after")
    if retry_after is not None and hinted == 0:
        try:
            hinted = float(retry_after)
        except ValueError:
            try:
                hinted = (
                    email.utils.parsedate_to_datetime(retry_after).timestamp()
                    - time.time()
                )
            except (TypeError, ValueError):
                hinted = 0.0

    if hinted > 0 and (
        hinted < MAX_HINTED_DELAY_SECONDS or hinted < exponential_delay
    ):
        return hinted
    return exponential_delay


class wait_exponential_respecting_headers(wait_base):
    """Exponential backoff that defers to provider retry hints."""

    def __init__(self, initial: float, factor: float):
        self.initial = initial
        self.factor = factor

    def __call__(self, retry_state: tenacity.RetryCallState) -> float:
        exponential = self.initial * self.factor ** (retry_state.attempt_number - 1)
        error = retry_state.outcome.exception() if retry_state.outcome else None
        return retry_delay_from_headers(error, exponential)


def _is_retryable(error: BaseException) -> bool:
    return isinstance(error, APICallError) and error.is_retryable


def retry_with_backoff(
    ctx: RunContext, fn: Callable[[], T], options: Optional[RetryOptions] = None
) -> T:
    """
    Run ``fn`` under the retry policy.

    Raises the original error when retries are disabled, when the first
    attempt fails with a non-retryable error, or on cancellation. Otherwise
    raises ``RetryError`` carrying every attempt's error.
    """
    options = options or RetryOptions()
    if options.max_retries <= 0:
        return fn()

    errors: list[BaseException] = []

    def attempt() -> T:
        try:
            return fn()
        except Exception as e:
            errors.append(e)
            raise

    def before_sleep(retry_state: tenacity.RetryCallState) -> None:
        error = retry_state.outcome.exception()
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.warning(
            "Model call failed (attempt %d/%d), retrying in %.2fs: %s",
            retry_state.attempt_number,
            options.max_retries + 1,
            delay,
            error,
        )
        if options.on_retry is not None:
            options.on_retry(error, delay)

    retrying = Retrying(
        stop=stop_after_attempt(options.max_retries + 1),
        wait=wait_exponential_respecting_headers(
            options.initial_delay, options.backoff_factor
        ),
        retry=retry_if_exception(_is_retryable),
        sleep=ctx.sleep,
        before_sleep=before_sleep,
        reraise=False,
    )

    try:
        return retrying(attempt)
    except tenacity.RetryError as e:
        last = errors[-1]
        raise RetryError(
            f"Failed after {len(errors)} attempts. Last error: {last}",
            RetryError.MAX_RETRIES_EXCEEDED,
            errors,
        ) from e
    except RunCancelledError:
        raise
    except Exception as e:
        if not errors or e is not errors[-1] or len(errors) == 1:
            raise
        if len(errors) > options.max_retries:
            raise RetryError(
                f"Failed after {len(errors)} attempts. Last error: {e}",
                RetryError.MAX_RETRIES_EXCEEDED,
                errors,
            ) from e
        raise RetryError(
            f"Failed after {len(errors)} attempts with non-retryable error: {e}",
            RetryError.ERROR_NOT_RETRYABLE,
            errors,
        ) from e
