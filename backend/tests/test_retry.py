"""Tests for bounded exponential backoff."""

import pytest

from pedimento.document_extractor.errors import RetryExhausted, TranscriptionError, TranscriptionRateLimited
from pedimento.document_extractor.retry import BackoffPolicy, call_with_backoff


class RecordingSleep:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def flaky(failures: list[BaseException], result: str = "ok"):
    """Coroutine factory raising each queued error once, then returning result."""
    remaining = list(failures)
    calls = {"n": 0}

    async def func():
        calls["n"] += 1
        if remaining:
            raise remaining.pop(0)
        return result

    return func, calls


class TestBackoffPolicy:
    def test_exponential_without_jitter(self):
        policy = BackoffPolicy(base_delay=1.0, max_delay=30.0, jitter_ratio=0)
        assert [policy.delay_for(n) for n in range(6)] == [1.0, 2.0, 4.0, 8.0, 16.0, 30.0]

    def test_jitter_bounds(self):
        policy = BackoffPolicy(base_delay=2.0, jitter_ratio=0.5)
        assert policy.delay_for(0, rng=lambda: 0.0) == 1.0
        assert policy.delay_for(0, rng=lambda: 0.5) == 2.0
        assert policy.delay_for(0, rng=lambda: 1.0) == 3.0

    @pytest.mark.parametrize(
        "kwargs",
        [{"max_attempts": 0}, {"base_delay": -1}, {"max_delay": -1}, {"jitter_ratio": 1.5}],
    )
    def test_rejects_invalid(self, kwargs):
        with pytest.raises(ValueError):
            BackoffPolicy(**kwargs)


class TestCallWithBackoff:
    async def test_succeeds_first_try(self):
        sleep = RecordingSleep()
        func, calls = flaky([])
        result, attempts = await call_with_backoff(func, BackoffPolicy(), sleep=sleep)
        assert result == "ok"
        assert attempts == 1
        assert sleep.delays == []

    async def test_retries_rate_limit_then_succeeds(self):
        sleep = RecordingSleep()
        func, calls = flaky([TranscriptionRateLimited(), TranscriptionRateLimited()])
        policy = BackoffPolicy(max_attempts=5, base_delay=1.0, jitter_ratio=0)

        result, attempts = await call_with_backoff(func, policy, sleep=sleep)

        assert result == "ok"
        assert attempts == 3
        assert calls["n"] == 3
        assert sleep.delays == [1.0, 2.0]

    async def test_exhaustion_chains_last_error(self):
        sleep = RecordingSleep()
        func, calls = flaky([TranscriptionRateLimited("slow down")] * 3)
        policy = BackoffPolicy(max_attempts=3, jitter_ratio=0)

        with pytest.raises(RetryExhausted) as exc_info:
            await call_with_backoff(func, policy, sleep=sleep)

        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.__cause__, TranscriptionRateLimited)
        assert calls["n"] == 3
        # no sleep after the final attempt
        assert len(sleep.delays) == 2

    async def test_non_retryable_error_propagates_immediately(self):
        sleep = RecordingSleep()
        func, calls = flaky([TranscriptionError("bad request")])

        with pytest.raises(TranscriptionError):
            await call_with_backoff(func, BackoffPolicy(), sleep=sleep)

        assert calls["n"] == 1
        assert sleep.delays == []

    async def test_retry_after_hint_raises_delay(self):
        sleep = RecordingSleep()
        func, _ = flaky([TranscriptionRateLimited(retry_after=7)])
        policy = BackoffPolicy(base_delay=1.0, max_delay=30.0, jitter_ratio=0)

        await call_with_backoff(func, policy, sleep=sleep)

        assert sleep.delays == [7.0]

    async def test_retry_after_capped_at_max_delay(self):
        sleep = RecordingSleep()
        func, _ = flaky([TranscriptionRateLimited(retry_after=120)])
        policy = BackoffPolicy(base_delay=1.0, max_delay=10.0, jitter_ratio=0)

        await call_with_backoff(func, policy, sleep=sleep)

        assert sleep.delays == [10.0]
