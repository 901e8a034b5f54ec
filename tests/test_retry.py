"""Tests for retry with exponential backoff."""

import pytest

from moonwell_risk.rpc.retry import RetryConfig, call_with_retry, with_retry


class Flaky:
    def __init__(self, failures, error=ConnectionError):
        self.failures = failures
        self.error = error
        self.calls = 0

    def __call__(self, value):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error("node unavailable")
        return value * 2


def test_delay_is_exponential_and_capped():
    config = RetryConfig(base_delay=1.0, max_delay=5.0)

    assert [config.get_delay(attempt) for attempt in range(4)] == [1.0, 2.0, 4.0, 5.0]


def test_succeeds_after_retries():
    sleeps = []
    flaky = Flaky(failures=2)

    result = call_with_retry(flaky, 21, config=RetryConfig(max_retries=3, base_delay=0.5), sleep=sleeps.append)

    assert result == 42
    assert flaky.calls == 3
    assert sleeps == [0.5, 1.0]


def test_raises_last_error_when_exhausted():
    sleeps = []
    flaky = Flaky(failures=5)

    with pytest.raises(ConnectionError):
        call_with_retry(flaky, 1, config=RetryConfig(max_retries=2), sleep=sleeps.append)

    assert flaky.calls == 3
    assert len(sleeps) == 2


def test_non_retryable_error_propagates_at_once():
    flaky = Flaky(failures=1, error=ValueError)

    with pytest.raises(ValueError):
        call_with_retry(flaky, 1, config=RetryConfig(retry_on=(ConnectionError,)), sleep=lambda _: None)

    assert flaky.calls == 1


def test_decorator():
    flaky = Flaky(failures=1)

    @with_retry(RetryConfig(max_retries=1, base_delay=0.0))
    def doubled(value):
        return flaky(value)

    assert doubled(4) == 8
    assert doubled.__name__ == "doubled"
