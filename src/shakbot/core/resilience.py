"""
Resilience patterns for outbound service calls.

Implements rate-limit classification and retry with strict exponential
backoff for chat turns, image edits and speech synthesis.
"""

import asyncio
import logging
import re
from typing import Any, Awaitable, Callable, Iterator, Optional, TypeVar

from .config import RetryPolicyConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

RATE_LIMIT_STATUS = 429
QUOTA_MARKERS = ("quota", "rate limit", "too many requests")
_RATE_LIMIT_TEXT = re.compile(r"\b429\b|resource.{0,12}exhausted", re.IGNORECASE)

_MAX_DEPTH = 6


def _iter_nested(value: Any, depth: int = 0) -> Iterator[Any]:
    """Yield a value and every value nested inside it."""
    yield value
    if depth >= _MAX_DEPTH:
        return

    if isinstance(value, dict):
        for item in value.values():
            yield from _iter_nested(item, depth + 1)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from _iter_nested(item, depth + 1)
    elif isinstance(value, BaseException):
        for attr in ("status_code", "code", "status", "error", "body", "details"):
            if hasattr(value, attr):
                yield from _iter_nested(getattr(value, attr), depth + 1)
        yield from _iter_nested(list(value.args), depth + 1)
        if value.__cause__ is not None:
            yield from _iter_nested(value.__cause__, depth + 1)
    elif hasattr(value, "status_code"):
        # Response-like objects (httpx.Response and friends)
        yield from _iter_nested(value.status_code, depth + 1)


def is_rate_limited(error: BaseException) -> bool:
    """Check whether an error signals an exhausted request quota.

    True if any nested field carries the numeric code 429 or a textual
    quota-exhaustion marker.
    """
    for value in _iter_nested(error):
        if isinstance(value, bool):
            continue
        if isinstance(value, int) and value == RATE_LIMIT_STATUS:
            return True
        if isinstance(value, str):
            lowered = value.lower()
            if _RATE_LIMIT_TEXT.search(value):
                return True
            if any(marker in lowered for marker in QUOTA_MARKERS):
                return True
    return False


async def retry_with_backoff(
    func: Callable[[], Awaitable[T]],
    config: Optional[RetryPolicyConfig] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    operation: str = "call",
) -> T:
    """Execute an async call, retrying only rate-limited failures.

    Waits base_delay, 2*base_delay, ... between attempts. Any other error,
    or the last rate-limited one, propagates immediately.
    """
    config = config or RetryPolicyConfig()
    attempts = max(1, config.max_attempts)

    for attempt in range(attempts):
        try:
            return await func()
        except Exception as e:
            if not is_rate_limited(e):
                logger.debug(f"{operation} failed with non-retryable error: {e}")
                raise

            if attempt == attempts - 1:
                logger.error(f"{operation}: all {attempts} attempts were rate limited")
                raise

            delay = config.base_delay_s * (2**attempt)
            logger.warning(
                f"{operation}: attempt {attempt + 1} rate limited, "
                f"retrying in {delay:.2f}s"
            )
            await sleep(delay)

    raise RuntimeError("unreachable")  # pragma: no cover
