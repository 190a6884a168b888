"""Exponential backoff shared by record API and name index calls.

Only capacity failures are retried: a rate-limit answer from the record API or
a busy signal from the index database. Everything else (auth, malformed
request, missing record, constraint violations) is raised on the first
failure.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, TypeVar

import httpx
from sqlalchemy.exc import OperationalError
from tenacity import Retrying, before_sleep_log, retry_if_exception, stop_after_attempt, wait_exponential

from dupflag.records.errors import SERVER_ERROR_CODES, RecordApiError

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

_RATE_LIMIT_MARKERS = ("429", "rate limit", "too many requests", "database is locked", "database is busy")
_SERVER_ERROR_MARKERS = ("500", "502", "503", "504", "internal server error")


def is_rate_limit_error(exc: BaseException) -> bool:
    """Return True when ``exc`` signals a transient capacity limit."""

    if isinstance(exc, RecordApiError):
        return exc.is_rate_limited
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code == 429
    if isinstance(exc, OperationalError):
        message = str(exc.orig or exc).lower()
        return any(marker in message for marker in _RATE_LIMIT_MARKERS)
    message = str(exc).lower()
    return any(marker in message for marker in _RATE_LIMIT_MARKERS[:3])


def is_server_error(exc: BaseException) -> bool:
    """Return True for 5xx answers from the record API."""

    if isinstance(exc, RecordApiError):
        return exc.is_server_error
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in SERVER_ERROR_CODES
    message = str(exc).lower()
    return any(marker in message for marker in _SERVER_ERROR_MARKERS)


@dataclass(slots=True)
class RetryPolicy:
    """Retry ``operation`` with ``initial_delay * 2**attempt`` sleeps.

    Attributes:
        max_attempts: Total number of calls made before giving up.
        initial_delay: Delay in seconds after the first failed attempt.
        retry_server_errors: Also treat 5xx answers as transient.
        sleep: Injected for tests.
    """

    max_attempts: int = 3
    initial_delay: float = 1.0
    retry_server_errors: bool = False
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def is_retryable(self, exc: BaseException) -> bool:
        if is_rate_limit_error(exc):
            return True
        return self.retry_server_errors and is_server_error(exc)

    def retrying(self) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(max(self.max_attempts, 1)),
            wait=wait_exponential(multiplier=self.initial_delay),
            retry=retry_if_exception(self.is_retryable),
            sleep=self.sleep,
            reraise=True,
            before_sleep=before_sleep_log(LOGGER, logging.WARNING),
        )

    def call(self, operation: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        return self.retrying()(operation, *args, **kwargs)


def with_retry(
    operation: Callable[[], T],
    max_attempts: int = 3,
    initial_delay: float = 1.0,
    *,
    retry_server_errors: bool = False,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``operation`` under a one-off :class:`RetryPolicy`."""

    policy = RetryPolicy(
        max_attempts=max_attempts,
        initial_delay=initial_delay,
        retry_server_errors=retry_server_errors,
        sleep=sleep,
    )
    return policy.call(operation)


NO_RETRY = RetryPolicy(max_attempts=1)

__all__ = ["RetryPolicy", "with_retry", "is_rate_limit_error", "is_server_error", "NO_RETRY"]
