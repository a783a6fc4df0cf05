"""Tests for llm.retry: bounded retries of transient provider failures."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from analysis.errors import AuthError, ProviderUnavailable, RateLimited, Timeout
from llm.retry import RetryState, backoff_delay, with_retry


class _Flaky:
    """Raises the queued errors, then returns ``result``."""

    def __init__(self, errors, result="ok"):
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    async def __call__(self, **kwargs):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


def _run(fn, **kwargs):
    return asyncio.run(with_retry(fn, **kwargs))


class TestBackoff:
    def test_doubles_and_caps(self):
        assert [backoff_delay(n) for n in range(1, 6)] == [1, 2, 4, 8, 8]


class TestWithRetry:
    def test_success_first_try(self):
        fn = _Flaky([])
        state = RetryState()
        with patch("llm.retry._sleep", new=AsyncMock()) as sleep:
            assert _run(fn, max_attempts=3, timeout_seconds=5, state=state) == "ok"
        assert state.attempts == 1
        sleep.assert_not_called()

    def test_retries_rate_limit_then_succeeds(self):
        fn = _Flaky([RateLimited("429"), ProviderUnavailable("503")])
        state = RetryState()
        with patch("llm.retry._sleep", new=AsyncMock()) as sleep:
            assert _run(fn, max_attempts=3, timeout_seconds=5, state=state) == "ok"
        assert fn.calls == 3
        assert state.attempts == 3
        assert [c.args[0] for c in sleep.await_args_list] == [1, 2]

    def test_auth_error_not_retried(self):
        fn = _Flaky([AuthError("bad key")])
        with patch("llm.retry._sleep", new=AsyncMock()) as sleep:
            with pytest.raises(AuthError):
                _run(fn, max_attempts=3, timeout_seconds=5)
        assert fn.calls == 1
        sleep.assert_not_called()

    def test_other_exceptions_propagate(self):
        fn = _Flaky([ValueError("bug")])
        with patch("llm.retry._sleep", new=AsyncMock()):
            with pytest.raises(ValueError):
                _run(fn, max_attempts=3, timeout_seconds=5)
        assert fn.calls == 1

    def test_exhaustion_raises_last_error(self):
        last = ProviderUnavailable("still down")
        fn = _Flaky([ProviderUnavailable("down"), ProviderUnavailable("down"), last])
        with patch("llm.retry._sleep", new=AsyncMock()):
            with pytest.raises(ProviderUnavailable) as exc_info:
                _run(fn, max_attempts=3, timeout_seconds=5)
        assert exc_info.value is last
        assert fn.calls == 3

    def test_attempt_timeout_becomes_timeout_error(self):
        calls = []

        async def slow(**kwargs):
            calls.append(kwargs)
            await asyncio.sleep(5)

        with patch("llm.retry._sleep", new=AsyncMock()):
            with pytest.raises(Timeout):
                _run(slow, max_attempts=2, timeout_seconds=0.01, prompt="x")
        assert calls == [{"prompt": "x"}, {"prompt": "x"}]

    def test_at_least_one_attempt(self):
        fn = _Flaky([])
        assert _run(fn, max_attempts=0, timeout_seconds=5) == "ok"
