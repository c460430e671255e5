"""Retry with capped exponential backoff.

RetryPolicy is shared by every backend. It wraps tenacity's AsyncRetrying so
that the delay after failed attempt ``n`` is::

    min(base_delay * backoff_factor ** (n - 1), max_delay)

and the last error is re-raised unchanged once attempts are exhausted or the
error is not retryable.
"""

from __future__ import annotations

import asyncio
import errno
import logging
import socket
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

import httpx
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from pagescrape.common.exceptions import (
    RETRYABLE_STATUS_CODES,
    ConfigurationError,
    FetchRejectedException,
    TransientException,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

OnRetry = Callable[[int, BaseException, float], None]

RETRYABLE_ERRNOS = frozenset(
    {errno.ECONNRESET, errno.ETIMEDOUT, errno.ECONNREFUSED}
)
RETRYABLE_MESSAGE_KEYWORDS = ("timeout", "network")


def is_retryable(error: BaseException) -> bool:
    """Classify an error as worth retrying.

    Args:
        error: The exception raised by the operation.

    Returns:
        True for connection resets, timeouts, DNS failures, HTTP
        408/429/500/502/503/504, or any error whose message mentions
        "timeout" or "network". False for everything else, including
        configuration errors and rejected fetches.
    """
    if isinstance(error, (ConfigurationError, FetchRejectedException)):
        return False

    status_code = getattr(error, "status_code", None)
    if isinstance(status_code, int):
        return status_code in RETRYABLE_STATUS_CODES

    if isinstance(
        error,
        (
            TransientException,
            httpx.TimeoutException,
            httpx.NetworkError,
            PlaywrightTimeoutError,
            socket.gaierror,
            TimeoutError,
            ConnectionError,
        ),
    ):
        return True

    if isinstance(error, OSError) and error.errno in RETRYABLE_ERRNOS:
        return True

    # Playwright reports navigation failures as net::ERR_* messages
    if isinstance(error, PlaywrightError):
        if "net::err_" in str(error).lower():
            return True

    message = str(error).lower()
    return any(keyword in message for keyword in RETRYABLE_MESSAGE_KEYWORDS)


@dataclass(frozen=True)
class RetryPolicy:
    """Capped exponential backoff for async operations.

    Delays are in seconds. ``sleep`` is the coroutine used between attempts
    and can be replaced in tests.

    Example::

        policy = RetryPolicy(max_attempts=3, base_delay=2.0)
        document = await policy.run(session.fetch, url, on_retry=record)
    """

    max_attempts: int = 3
    base_delay: float = 2.0
    max_delay: float = 10.0
    backoff_factor: float = 2.0
    is_retryable: Callable[[BaseException], bool] = is_retryable
    sleep: Callable[[float], Awaitable[Any]] = field(
        default=asyncio.sleep, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ConfigurationError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ConfigurationError("retry delays must not be negative")

    def delay_for(self, attempt: int) -> float:
        """Return the delay slept after failed attempt number ``attempt``."""
        return min(
            self.base_delay * self.backoff_factor ** (attempt - 1),
            self.max_delay,
        )

    def _retrying(self, on_retry: OnRetry | None) -> AsyncRetrying:
        def before_sleep(retry_state: RetryCallState) -> None:
            outcome = retry_state.outcome
            error = outcome.exception() if outcome else None
            delay = (
                retry_state.next_action.sleep
                if retry_state.next_action
                else self.delay_for(retry_state.attempt_number)
            )
            logger.info(
                f"Attempt {retry_state.attempt_number}/{self.max_attempts} "
                f"failed ({error}); retrying in {delay:.2f}s"
            )
            if on_retry is not None and error is not None:
                on_retry(retry_state.attempt_number, error, delay)

        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(
                multiplier=self.base_delay,
                exp_base=self.backoff_factor,
                min=0,
                max=self.max_delay,
            ),
            retry=retry_if_exception(self.is_retryable),
            before_sleep=before_sleep,
            sleep=self.sleep,
            reraise=True,
        )

    async def run(
        self,
        operation: Callable[..., Awaitable[T]],
        *args: Any,
        on_retry: OnRetry | None = None,
        **kwargs: Any,
    ) -> T:
        """Run ``operation`` until it succeeds or retrying stops.

        Args:
            operation: Coroutine function to call.
            *args: Positional arguments for ``operation``.
            on_retry: Optional callback ``(attempt, error, delay)`` invoked
                before each backoff sleep.
            **kwargs: Keyword arguments for ``operation``.

        Returns:
            The operation's result.

        Raises:
            Exception: The last error raised by ``operation``, unchanged.
        """
        async for attempt in self._retrying(on_retry):
            with attempt:
                result = await operation(*args, **kwargs)
        return result


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    on_retry: OnRetry | None = None,
) -> T:
    """Run a zero-argument coroutine function under ``policy``."""
    return await (policy or RetryPolicy()).run(operation, on_retry=on_retry)
