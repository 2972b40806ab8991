#!/usr/bin/env python3
"""Tests for the retry helpers.

A recording sleep function replaces time.sleep so no test waits.
"""
import pytest

from src.entsync.api.exceptions import (
    BackendUnreachable,
    ConnectionError,
    RateLimitError,
    ServerError,
    ValidationError,
)
from src.entsync.api.resilience import retry, retry_call


class Flaky:
    """Callable that raises the given errors, then returns a value."""

    def __init__(self, *errors, result="ok"):
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    def __call__(self, *args, **kwargs):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


@pytest.fixture
def sleeps():
    return []


# ============================================
# Retry Tests
# ============================================

class TestRetry:
    """Tests for the retry decorator."""

    def test_succeeds_after_transient_failures(self, sleeps):
        func = Flaky(ServerError(), ConnectionError())
        wrapped = retry(max_attempts=3, jitter=False, sleep=sleeps.append)(func)

        assert wrapped() == "ok"
        assert func.calls == 3
        assert sleeps == [1.0, 2.0]

    def test_raises_after_max_attempts(self, sleeps):
        func = Flaky(ServerError(), ServerError(), ServerError())
        wrapped = retry(max_attempts=3, jitter=False, sleep=sleeps.append)(func)

        with pytest.raises(ServerError):
            wrapped()
        assert func.calls == 3
        assert len(sleeps) == 2

    def test_non_retryable_errors_propagate_immediately(self, sleeps):
        func = Flaky(ValidationError("bad payload"))
        wrapped = retry(sleep=sleeps.append)(func)

        with pytest.raises(ValidationError):
            wrapped()
        assert func.calls == 1
        assert sleeps == []

    def test_backend_unreachable_is_retried(self, sleeps):
        func = Flaky(BackendUnreachable("no heartbeat"))
        assert retry(jitter=False, sleep=sleeps.append)(func)() == "ok"

    def test_rate_limit_uses_retry_after(self, sleeps):
        func = Flaky(RateLimitError(retry_after=7))
        wrapped = retry(jitter=False, max_delay=60.0, sleep=sleeps.append)(func)

        wrapped()
        assert sleeps == [7.0]

    def test_delay_is_capped(self, sleeps):
        func = Flaky(ServerError(), ServerError(), ServerError())
        wrapped = retry(
            max_attempts=4, initial_delay=5.0, backoff_factor=10.0, max_delay=20.0,
            jitter=False, sleep=sleeps.append,
        )(func)

        wrapped()
        assert sleeps == [5.0, 20.0, 20.0]

    def test_jitter_stays_within_bounds(self, sleeps):
        func = Flaky(ServerError())
        retry(initial_delay=2.0, jitter=True, sleep=sleeps.append)(func)()

        assert 1.0 <= sleeps[0] <= 3.0

    def test_on_retry_callback(self, sleeps):
        seen = []
        error = ServerError()
        func = Flaky(error)
        retry(jitter=False, sleep=sleeps.append, on_retry=lambda e, n: seen.append((e, n)))(func)()

        assert seen == [(error, 1)]


class TestRetryCall:
    """Tests for retry_call."""

    def test_passes_arguments(self, sleeps):
        func = Flaky(ConnectionError(), result="users")
        assert retry_call(func, 1, key="value", initial_delay=0.5, sleep=sleeps.append) == "users"
        assert func.calls == 2
