"""
Retry policy for opening the chat response stream.

Retries transient HTTP statuses (408, 429, 5xx) and httpx connect/timeout
errors. Waits follow Retry-After / x-ratelimit-reset-* headers when present,
else exponential backoff.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

import httpx
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from exceptions import HttpStatusError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_RESET_HEADER_NAMES = [
    "retry-after",
    "x-ratelimit-reset-requests",
    "x-ratelimit-reset-tokens",
]

RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})

MAX_HEADER_WAIT_SECONDS = 300.0


class RetryableHttpStatus(Exception):
    """Raised inside the retry loop for a transient status; carries the response."""

    def __init__(self, response: httpx.Response):
        super().__init__(f"HTTP {response.status_code}")
        self.response = response
        self.status_code = response.status_code

    def to_http_status_error(self) -> HttpStatusError:
        return HttpStatusError(self.status_code, str(self.response.request.url))


def is_retryable_error(exc: BaseException) -> bool:
    if isinstance(exc, RetryableHttpStatus):
        return True
    return isinstance(exc, (httpx.ConnectError, httpx.TimeoutException, httpx.RemoteProtocolError))


def parse_duration_to_seconds(value: str) -> Optional[float]:
    """
    Parse a reset header value to seconds.

    Accepts plain seconds ("55", "1.5"), Go-style durations ("6m0s",
    "1h0m0s", "250ms") and Retry-After HTTP dates.
    """
    if not value or not isinstance(value, str):
        return None
    value = value.strip().lower()
    if not value:
        return None

    try:
        return max(0.0, float(value))
    except ValueError:
        pass

    parts = re.findall(r"(\d+(?:\.\d+)?)(ms|h|m|s)", value)
    if parts and "".join(number + unit for number, unit in parts) == value:
        scale = {"h": 3600.0, "m": 60.0, "s": 1.0, "ms": 0.001}
        return sum(float(number) * scale[unit] for number, unit in parts)

    try:
        moment = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    delta = (moment - datetime.now(timezone.utc)).total_seconds()
    return delta if delta > 0 else None


def get_reset_seconds(exc: BaseException, header_names: Optional[List[str]] = None) -> Optional[float]:
    """Return the first parseable reset duration from the failed response's headers."""
    response = getattr(exc, "response", None)
    headers = getattr(response, "headers", None)
    if headers is None:
        return None
    for name in header_names or DEFAULT_RESET_HEADER_NAMES:
        raw = headers.get(name)
        if raw is None:
            continue
        parsed = parse_duration_to_seconds(str(raw))
        if parsed is not None:
            return parsed
    return None


def build_wait_strategy(initial_delay: float, exponential_base: float, max_wait_seconds: float,
                        header_names: Optional[List[str]] = None) -> Callable[[RetryCallState], float]:
    def wait(retry_state: RetryCallState) -> float:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if exc is not None:
            seconds = get_reset_seconds(exc, header_names)
            if seconds is not None and seconds > 0:
                wait_secs = min(seconds, MAX_HEADER_WAIT_SECONDS)
                logger.debug("Waiting for header-based reset",
                             extra={"data": {"attempt": retry_state.attempt_number, "wait_seconds": wait_secs}})
                return wait_secs
        return min(initial_delay * (exponential_base ** (retry_state.attempt_number - 1)), max_wait_seconds)

    return wait


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning("Retrying chat request",
                   extra={"component": "ChatClient",
                          "data": {"attempt": retry_state.attempt_number, "error": str(exc)}})


async def async_invoke_with_retry(
    func: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    initial_delay: float = 0.5,
    exponential_base: float = 2.0,
    max_wait_seconds: float = 30.0,
    reset_header_names: Optional[List[str]] = None,
    sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
) -> T:
    """Await ``func`` with retries; ``max_retries`` counts retries after the first attempt.

    The last error is re-raised once attempts are exhausted.
    """
    kwargs = {}
    if sleep is not None:
        kwargs["sleep"] = sleep
    retrying = AsyncRetrying(
        retry=retry_if_exception(is_retryable_error),
        stop=stop_after_attempt(max_retries + 1),
        wait=build_wait_strategy(initial_delay, exponential_base, max_wait_seconds, reset_header_names),
        before_sleep=_log_retry,
        reraise=True,
        **kwargs,
    )
    return await retrying(func)
