import asyncio

import pytest

from requirements_hub.exceptions import ClusteringTransientError, RetryExhaustedError
from requirements_hub.services.retry_policy import RetryPolicy


class _Flaky:
    def __init__(self, failures, error=ClusteringTransientError("transient")):
        self.failures = failures
        self.error = error
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "ok"


def _policy(delays, **kwargs):
    async def sleep(delay):
        delays.append(delay)

    return RetryPolicy(sleep=sleep, **kwargs)


class TestRetryPolicy:
    def test_recovers_after_failure(self):
        delays = []
        op = _Flaky(failures=1)
        assert asyncio.run(_policy(delays).run(op, label="test")) == "ok"
        assert op.calls == 2
        assert delays == [2.0]

    def test_exhaustion(self):
        delays, retries = [], []
        op = _Flaky(failures=10)
        with pytest.raises(RetryExhaustedError) as exc_info:
            asyncio.run(_policy(delays).run(op, on_retry=lambda a, e, d: retries.append((a, d))))

        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.last_error, ClusteringTransientError)
        assert op.calls == 3
        assert delays == [2.0, 4.0]
        assert retries == [(1, 2.0), (2, 4.0)]

    def test_other_errors_propagate(self):
        op = _Flaky(failures=1, error=KeyError("id"))
        with pytest.raises(KeyError):
            asyncio.run(_policy([], retry_on=(ClusteringTransientError,)).run(op))
        assert op.calls == 1

    def test_timeout_counts_as_failure(self):
        async def slow():
            await asyncio.sleep(5)

        with pytest.raises(RetryExhaustedError) as exc_info:
            asyncio.run(_policy([], max_attempts=1, timeout=0.01).run(slow, label="slow call"))
        assert isinstance(exc_info.value.last_error, TimeoutError)

    def test_at_least_one_attempt(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)

    def test_grouping_preset(self, settings):
        policy = RetryPolicy.for_grouping(settings)
        assert policy.max_attempts == 3
        assert policy.timeout == 150.0
        assert policy.retry_on == (ClusteringTransientError,)
