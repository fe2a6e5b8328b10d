"""Tests for the RPC retry executor."""

import pytest

from solana_indexer.core.exceptions import SolanaRPCError
from solana_indexer.services.retry import RetryOptions, is_retryable, with_retry


class Flaky:
    """Fails with the given errors, then returns "ok"."""

    def __init__(self, *errors):
        self.errors = list(errors)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return "ok"


@pytest.mark.parametrize("message", [
    "HTTP 429 Too Many Requests",
    "502 Bad Gateway",
    "Request timeout",
    "read ECONNRESET",
    "Connection reset by peer",
])
def test_transient_errors_are_retryable(message):
    assert is_retryable(Exception(message))


def test_other_errors_are_not_retryable():
    assert not is_retryable(ValueError("Invalid param: WrongSize"))


def test_retryable_through_cause_chain():
    try:
        try:
            raise TimeoutError()
        except TimeoutError as e:
            raise SolanaRPCError("getTransaction failed") from e
    except SolanaRPCError as wrapped:
        assert is_retryable(wrapped)


async def test_retries_with_exponential_backoff(sleeps):
    operation = Flaky(Exception("429"), Exception("503"))

    result = await with_retry(operation, RetryOptions())

    assert result == "ok"
    assert operation.calls == 3
    assert sleeps == [1.0, 2.0]


async def test_non_retryable_error_raises_immediately(sleeps):
    operation = Flaky(ValueError("bad request"))

    with pytest.raises(ValueError):
        await with_retry(operation, RetryOptions())

    assert operation.calls == 1
    assert sleeps == []


async def test_gives_up_after_max_retries(sleeps):
    operation = Flaky(*[Exception("503")] * 10)

    with pytest.raises(Exception, match="503"):
        await with_retry(operation, RetryOptions(max_retries=3))

    assert operation.calls == 4
    assert sleeps == [1.0, 2.0, 4.0]


async def test_delay_is_capped(sleeps):
    operation = Flaky(*[Exception("timeout")] * 3)

    await with_retry(operation, RetryOptions(initial_delay=10.0, max_delay=15.0))

    assert sleeps == [10.0, 15.0, 15.0]


def test_options_from_settings(config):
    options = RetryOptions.from_settings(config)

    assert options.max_retries == config.retry_max_retries
    assert options.initial_delay == config.retry_initial_delay
    assert options.max_delay == config.retry_max_delay
