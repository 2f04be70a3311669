"""Tests for caller-side retry."""

import pytest

from claystore.core.errors import ChunkUploadFailed, MalformedPayload, RequestTimeout
from claystore.retry import RetryPolicy, call_with_retry


class _Flaky:
    def __init__(self, failures):
        self.failures = list(failures)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return "ok"


class _RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


def test_backoff_schedule():
    policy = RetryPolicy(base_delay=1.0, multiplier=2.0, max_delay=3.0)

    assert [policy.delay_for(attempt) for attempt in (1, 2, 3)] == [1.0, 2.0, 3.0]


@pytest.mark.asyncio
async def test_retries_then_succeeds():
    fn = _Flaky([RequestTimeout("fetch", 1.0), ChunkUploadFailed(3)])
    sleep = _RecordingSleep()

    result = await call_with_retry(RetryPolicy(max_attempts=3), fn, sleep=sleep)

    assert result == "ok"
    assert fn.calls == 3
    assert sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_gives_up_after_max_attempts():
    fn = _Flaky([ConnectionError("down")] * 5)
    sleep = _RecordingSleep()

    with pytest.raises(ConnectionError):
        await call_with_retry(RetryPolicy(max_attempts=2), fn, sleep=sleep)

    assert fn.calls == 2
    assert sleep.delays == [1.0]


@pytest.mark.asyncio
async def test_non_retryable_error_propagates_immediately():
    fn = _Flaky([MalformedPayload("bad bytes")])
    sleep = _RecordingSleep()

    with pytest.raises(MalformedPayload):
        await call_with_retry(RetryPolicy(), fn, sleep=sleep)

    assert fn.calls == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_rejects_zero_attempts():
    with pytest.raises(ValueError):
        await call_with_retry(RetryPolicy(max_attempts=0), _Flaky([]))
