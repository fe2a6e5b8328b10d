"""
Bounded exponential backoff for outbound Solana RPC calls.

Only calls to the chain RPC are wrapped; store calls are the caller's concern.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Tuple, TypeVar

import structlog

from solana_indexer.core.config import Settings


logger = structlog.get_logger(__name__)

T = TypeVar("T")

DEFAULT_RETRYABLE_ERRORS: Tuple[str, ...] = (
    "429",
    "500",
    "502",
    "503",
    "504",
    "timeout",
    "econnreset",
    "connection reset",
    "too many requests",
)


@dataclass
class RetryOptions:
    """Retry policy for a single upstream call."""
    max_retries: int = 5
    initial_delay: float = 1.0  # seconds
    max_delay: float = 30.0  # seconds
    backoff_factor: float = 2.0
    retryable_errors: Tuple[str, ...] = field(default=DEFAULT_RETRYABLE_ERRORS)

    @classmethod
    def from_settings(cls, config: Settings) -> "RetryOptions":
        return cls(
            max_retries=config.retry_max_retries,
            initial_delay=config.retry_initial_delay,
            max_delay=config.retry_max_delay,
            backoff_factor=config.retry_backoff_factor,
        )


def _error_texts(error: BaseException) -> List[str]:
    """Message and type name of the error and everything it was raised from."""
    texts = []
    seen = set()
    current: Optional[BaseException] = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        texts.append(str(current))
        texts.append(type(current).__name__)
        current = current.__cause__ or current.__context__
    return texts


def is_retryable(error: BaseException, retryable_errors: Tuple[str, ...] = DEFAULT_RETRYABLE_ERRORS) -> bool:
    """Classify an error as transient (rate limit, 5xx, timeout, reset)."""
    haystack = " ".join(_error_texts(error)).lower()
    return any(marker.lower() in haystack for marker in retryable_errors)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    options: Optional[RetryOptions] = None,
    log: Optional[structlog.stdlib.BoundLogger] = None,
) -> T:
    """
    Run an async operation, retrying transient failures.

    Args:
        operation: Zero-argument coroutine factory
        options: Retry policy (defaults to RetryOptions())
        log: Logger used for retry warnings

    Returns:
        The operation's result

    Raises:
        The original exception once retries are exhausted or the error
        is not retryable.
    """
    options = options or RetryOptions()
    log = log or logger
    attempt = 0
    delay = options.initial_delay

    while True:
        try:
            return await operation()
        except Exception as e:
            if attempt >= options.max_retries or not is_retryable(e, options.retryable_errors):
                raise

            attempt += 1
            log.warning(
                "Retrying RPC call",
                attempt=attempt,
                max_retries=options.max_retries,
                delay=delay,
                error=str(e)
            )

            await asyncio.sleep(delay)
            delay = min(delay * options.backoff_factor, options.max_delay)
