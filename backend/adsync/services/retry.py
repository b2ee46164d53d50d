"""Bounded exponential-backoff retry for remote platform calls.

WHAT:
    Calls a function up to `max_attempts` times. After failed attempt N
    (N < max_attempts) it sleeps `base ** N` seconds: 2s, then 4s with the
    defaults. Exhausted retries raise RemoteApiFailure carrying the last
    underlying error's message.

WHY:
    Ad platform APIs fail transiently (5xx, timeouts, 429s). Only
    RemoteApiFailure is retried; auth/credential errors are fatal at once.

NOTE:
    Sleeps are synchronous within one request. State resets on every call;
    nothing is persisted between invocations.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Optional, Tuple, Type, TypeVar

from adsync.errors import RemoteApiFailure

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_BASE = 2.0


def call_with_retries(
    func: Callable[..., T],
    *args: Any,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    backoff_base: float = DEFAULT_BACKOFF_BASE,
    retry_on: Tuple[Type[BaseException], ...] = (RemoteApiFailure,),
    sleep: Callable[[float], None] = time.sleep,
    label: str = "remote call",
    platform: Optional[str] = None,
    **kwargs: Any,
) -> T:
    """Invoke `func(*args, **kwargs)` with bounded exponential backoff.

    Raises:
        RemoteApiFailure: after `max_attempts` failures, message embeds the
            last error's message.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    last_error: Optional[BaseException] = None
    for attempt in range(1, max_attempts + 1):
        try:
            return func(*args, **kwargs)
        except retry_on as e:
            last_error = e
            if attempt == max_attempts:
                break
            delay = backoff_base ** attempt
            logger.info(
                "[RETRY] %s failed (attempt %d/%d), retrying in %.1fs: %s",
                label, attempt, max_attempts, delay, str(e)[:200],
            )
            sleep(delay)

    message = getattr(last_error, "message", None) or str(last_error)
    logger.error("[RETRY] %s failed after %d attempts: %s", label, max_attempts, message)
    status_code = getattr(last_error, "status_code", None)
    raise RemoteApiFailure(
        f"Failed after {max_attempts} attempts: {message}",
        platform=platform or getattr(last_error, "platform", None),
        status_code=status_code,
    ) from last_error

