"""Tests for sniper.retry: policy delays and the retry_until combinator."""

import pytest

from sniper.retry import Backoff, RetryPolicy, retry_until


class Recorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


def scripted(values):
    values = list(values)
    calls = []

    async def action():
        calls.append(1)
        value = values.pop(0)
        if isinstance(value, Exception):
            raise value
        return value

    action.calls = calls
    return action


class TestRetryPolicy:
    def test_fixed_delay(self):
        policy = RetryPolicy(interval=0.2)
        assert [policy.delay(i) for i in range(4)] == [0.2, 0.2, 0.2, 0.2]

    def test_exponential_doubles_up_to_cap(self):
        policy = RetryPolicy(max_attempts=10, backoff=Backoff.EXPONENTIAL, interval=1, cap=30)
        delays = [policy.delay(i) for i in range(8)]
        assert delays == [1, 2, 4, 8, 16, 30, 30, 30]
        assert delays == sorted(delays)

    def test_unbounded_never_exhausts(self):
        policy = RetryPolicy(max_attempts=None)
        assert not policy.bounded
        assert not policy.exhausted(10_000)

    def test_bounded_exhausts_at_max(self):
        policy = RetryPolicy(max_attempts=3)
        assert not policy.exhausted(2)
        assert policy.exhausted(3)


class TestRetryUntil:
    @pytest.mark.asyncio
    async def test_first_success_needs_no_sleep(self):
        sleep = Recorder()
        result = await retry_until(scripted(["ok"]), RetryPolicy(interval=1), sleep=sleep)
        assert result.satisfied
        assert result.value == "ok"
        assert result.attempts == 1
        assert result.retries == 0
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_retries_until_accepted(self):
        sleep = Recorder()
        action = scripted(["pending", "pending", "done"])
        result = await retry_until(action, RetryPolicy(interval=0.2), accept=lambda v: v == "done", sleep=sleep)
        assert result.satisfied
        assert result.attempts == 3
        assert sleep.delays == [0.2, 0.2]

    @pytest.mark.asyncio
    async def test_exceptions_count_as_failed_attempts(self):
        action = scripted([ValueError("boom"), ConnectionError("reset"), "tx"])
        result = await retry_until(action, RetryPolicy(), sleep=Recorder())
        assert result.satisfied
        assert result.value == "tx"
        assert result.attempts == 3
        assert result.last_error is None

    @pytest.mark.asyncio
    async def test_bounded_gives_up_after_max_attempts(self):
        sleep = Recorder()
        action = scripted(["no"] * 10)
        result = await retry_until(action, RetryPolicy(max_attempts=3, interval=0.2),
                                   accept=lambda v: v == "yes", sleep=sleep)
        assert not result.satisfied
        assert result.attempts == 3
        assert len(action.calls) == 3
        # no pause after the final attempt
        assert sleep.delays == [0.2, 0.2]
        assert result.value == "no"

    @pytest.mark.asyncio
    async def test_bounded_keeps_last_error(self):
        action = scripted([RuntimeError("a"), RuntimeError("b")])
        result = await retry_until(action, RetryPolicy(max_attempts=2), sleep=Recorder())
        assert not result.satisfied
        assert str(result.last_error) == "b"

    @pytest.mark.asyncio
    async def test_exponential_sleeps(self):
        sleep = Recorder()
        action = scripted([IOError()] * 4 + ["up"])
        await retry_until(action, RetryPolicy(backoff=Backoff.EXPONENTIAL, interval=1, cap=4), sleep=sleep)
        assert sleep.delays == [1, 2, 4, 4]
