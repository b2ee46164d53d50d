"""Fire-and-log operations.

WHAT:
    Runs a secondary side effect (audit log insert, last_sync bookkeeping,
    outbound notification) and converts any failure into a log line.

WHY:
    Handler responses reflect only the primary operation's outcome. Keeping
    best-effort work behind one helper makes it impossible to accidentally
    turn a notification or log failure into a failed request.

REFERENCES:
    - adsync/services/sync_service.py (last_sync stamp, sync log)
    - adsync/services/webhook_service.py (audit log, sync trigger)
    - adsync/services/alert_service.py (external notification, audit log)
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


def fire_and_log(
    label: str,
    operation: Callable[..., Any],
    *args: Any,
    session: Optional[Session] = None,
    **kwargs: Any,
) -> bool:
    """Run `operation`, swallowing and logging any exception.

    Args:
        label:     Short description used in the log line.
        operation: Callable performing the side effect.
        session:   If given, committed on success and rolled back on failure
                   so the session stays usable for the caller.

    Returns:
        True if the operation (and commit) succeeded, False otherwise.
    """
    try:
        operation(*args, **kwargs)
        if session is not None:
            session.commit()
        return True
    except Exception as e:  # noqa: BLE001
        logger.warning("[BEST_EFFORT] %s failed: %s", label, e, exc_info=True)
        if session is not None:
            try:
                session.rollback()
            except Exception:  # noqa: BLE001
                logger.exception("[BEST_EFFORT] Rollback after %s failed", label)
        return False
