"""
Tests for the header-aware retry policy.
"""

import email.utils
import time
from unittest.mock import MagicMock, patch

import pytest

from agent_loop.cancellation import RunContext
from agent_loop.errors import APICallError, RetryError, RunCancelledError
from agent_loop.retry import (
    RetryOptions,
    retry_delay_from_headers,
    retry_with_backoff,
)


def _flaky(outcomes):
    """A callable raising or returning each outcome in turn."""
    outcomes = list(outcomes)
    fn = MagicMock()

    def side_effect():
        item = outcomes.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    fn.side_effect = side_effect
    return fn


def _retryable(**kwargs):
    return APICallError("overloaded", status_code=503, **kwargs)


class TestAPICallErrorRetryable:
    """Tests for status-based retryability."""

    @pytest.mark.parametrize("status", [408, 409, 429, 500, 503])
    def test_retryable_status(self, status):
        assert APICallError("x", status_code=status).is_retryable is True

    @pytest.mark.parametrize("status", [400, 401, 404, 422])
    def test_non_retryable_status(self, status):
        assert APICallError("x", status_code=status).is_retryable is False

    def test_explicit_flag(self):
        assert APICallError("connection reset", is_retryable=True).is_retryable is True

    def test_headers_lower_cased(self):
        error = APICallError("x", response_headers={"Retry-After": "3"})
        assert error.response_headers == {"retry-after": "3"}


class TestRetryDelayFromHeaders:
    """Tests for retry-after header handling."""

    def test_no_headers(self):
        assert retry_delay_from_headers(_retryable(), 4.0) == 4.0

    def test_retry_after_ms(self):
        error = _retryable(response_headers={"retry-after-ms": "1500"})
        assert retry_delay_from_headers(error, 4.0) == 1.5

    def test_retry_after_seconds(self):
        error = _retryable(response_headers={"retry-after": "7"})
        assert retry_delay_from_headers(error, 2.0) == 7.0

    def test_ms_preferred_over_seconds(self):
        error = _retryable(
            response_headers={"retry-after-ms": "500", "retry-after": "30"}
        )
        assert retry_delay_from_headers(error, 2.0) == 0.5

    def test_http_date(self):
        future = email.utils.formatdate(time.time() + 10, usegmt=True)
        error = _retryable(response_headers={"retry-after": future})

        delay = retry_delay_from_headers(error, 2.0)

        assert 8.0 < delay <= 10.0

    def test_unreasonable_hint_ignored(self):
        """A hint over 60s that is longer than the backoff is ignored."""
        error = _retryable(response_headers={"retry-after": "600"})
        assert retry_delay_from_headers(error, 2.0) == 2.0

    def test_long_hint_shorter_than_backoff_used(self):
        error = _retryable(response_headers={"retry-after": "90"})
        assert retry_delay_from_headers(error, 120.0) == 90.0

    def test_garbage_header(self):
        error = _retryable(response_headers={"retry-after": "soon"})
        assert retry_delay_from_headers(error, 2.0) == 2.0


class TestRetryWithBackoff:
    """Tests for retry_with_backoff."""

    @pytest.fixture
    def ctx(self):
        ctx = RunContext.background()
        ctx.sleep = MagicMock()
        return ctx

    def test_success_first_try(self, ctx):
        fn = _flaky(["ok"])
        assert retry_with_backoff(ctx, fn) == "ok"
        ctx.sleep.assert_not_called()

    def test_retries_then_succeeds(self, ctx):
        on_retry = MagicMock()
        fn = _flaky([_retryable(), _retryable(), "ok"])
        options = RetryOptions(max_retries=2, initial_delay=2.0, on_retry=on_retry)

        assert retry_with_backoff(ctx, fn, options) == "ok"

        assert fn.call_count == 3
        # Exponential: 2s, then 4s
        assert [c[0][0] for c in ctx.sleep.call_args_list] == [2.0, 4.0]
        assert [c[0][1] for c in on_retry.call_args_list] == [2.0, 4.0]

    def test_header_hint_used(self, ctx):
        fn = _flaky([_retryable(response_headers={"retry-after-ms": "250"}), "ok"])

        retry_with_backoff(ctx, fn, RetryOptions(max_retries=1))

        ctx.sleep.assert_called_once_with(0.25)

    def test_max_retries_exceeded(self, ctx):
        errors = [_retryable(), _retryable(), _retryable()]
        fn = _flaky(errors)

        with pytest.raises(RetryError) as exc_info:
            retry_with_backoff(ctx, fn, RetryOptions(max_retries=2))

        assert exc_info.value.reason == RetryError.MAX_RETRIES_EXCEEDED
        assert exc_info.value.errors == errors
        assert fn.call_count == 3

    def test_non_retryable_first_attempt_raised_raw(self, ctx):
        error = APICallError("bad request", status_code=400)

        with pytest.raises(APICallError) as exc_info:
            retry_with_backoff(ctx, _flaky([error]))

        assert exc_info.value is error

    def test_non_retryable_after_retry(self, ctx):
        """A non-retryable error after a retry is wrapped with every error."""
        first = _retryable()
        second = APICallError("bad request", status_code=400)

        with pytest.raises(RetryError) as exc_info:
            retry_with_backoff(ctx, _flaky([first, second]), RetryOptions(max_retries=3))

        assert exc_info.value.reason == RetryError.ERROR_NOT_RETRYABLE
        assert exc_info.value.errors == [first, second]

    def test_other_exceptions_not_retried(self, ctx):
        fn = _flaky([KeyError("boom"), "ok"])

        with pytest.raises(KeyError):
            retry_with_backoff(ctx, fn)
        assert fn.call_count == 1

    def test_zero_retries_raises_raw(self, ctx):
        error = _retryable()

        with pytest.raises(APICallError) as exc_info:
            retry_with_backoff(ctx, _flaky([error]), RetryOptions(max_retries=0))

        assert exc_info.value is error

    def test_cancellation_not_wrapped(self, ctx):
        fn = _flaky([_retryable(), RunCancelledError()])

        with pytest.raises(RunCancelledError):
            retry_with_backoff(ctx, fn, RetryOptions(max_retries=3))


class TestCancellableSleep:
    """Tests for RunContext.sleep used as the back-off sleep."""

    def test_sleep_interrupted_by_cancel(self):
        ctx = RunContext.background()
        ctx.cancel("shutdown")

        with pytest.raises(RunCancelledError, match="shutdown"):
            ctx.sleep(30)

    def test_backoff_sleep_cancelled(self):
        """Cancelling during back-off aborts the retry loop."""
        ctx = RunContext.background()
        fn = _flaky([_retryable(), "ok"])

        with patch.object(ctx, "sleep", side_effect=RunCancelledError()):
            with pytest.raises(RunCancelledError):
                retry_with_backoff(ctx, fn)

        assert fn.call_count == 1

    def test_derived_context_shares_cancellation(self):
        root = RunContext.background()
        child = root.with_value("k", "v")

        root.cancel()

        assert child.cancelled is True
        assert child.value("k") == "v"
