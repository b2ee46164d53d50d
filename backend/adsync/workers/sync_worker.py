"""Pending-sync worker.

WHAT:
    Drains integrations flagged `sync_status = pending` (set by platform
    webhooks) by running the regular platform sync over the default window.

WHY:
    - Keeps webhook responses fast: they only flag, the worker syncs.
    - One failing integration never blocks the rest; its error is recorded
      on the row (sync_status = error, last_sync_error) by the sync itself.

USAGE:
    python -m adsync.workers.sync_worker   # loop every 60s
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, List, Optional

import httpx
from sqlalchemy.orm import sessionmaker

from adsync.config import Settings, get_settings
from adsync.database import build_engine, build_session_factory, session_scope
from adsync.errors import AdSyncError
from adsync.models import Integration, SyncStatusEnum
from adsync.security import TokenCipher
from adsync.services.platforms import AdapterMap, build_adapters
from adsync.services.sync_service import sync_platform
from adsync.telemetry import capture_exception, init_sentry, set_tenant_context

logger = logging.getLogger(__name__)


def process_pending_syncs(
    session_factory: sessionmaker,
    settings: Settings,
    adapters: Optional[AdapterMap] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> List[Dict[str, Any]]:
    """Run one drain pass over pending integrations.

    Returns:
        One summary dict per integration:
        {agency_id, platform, account_id, success, records_synced | error}
    """
    http_client: Optional[httpx.Client] = None
    if adapters is None:
        http_client = httpx.Client(timeout=settings.HTTP_TIMEOUT_SECONDS)
        adapters = build_adapters(settings, http_client)

    cipher = TokenCipher(settings.TOKEN_ENCRYPTION_KEY)
    summaries: List[Dict[str, Any]] = []

    try:
        with session_scope(session_factory) as db:
            pending = (
                db.query(Integration.agency_id, Integration.platform, Integration.account_id)
                .filter(
                    Integration.is_active.is_(True),
                    Integration.sync_status == SyncStatusEnum.pending,
                )
                .order_by(Integration.last_sync_attempted_at)
                .all()
            )

        if not pending:
            logger.debug("[SYNC_WORKER] No pending integrations")
            return summaries

        logger.info("[SYNC_WORKER] Processing %d pending integration(s)", len(pending))

        for agency_id, platform, account_id in pending:
            summary: Dict[str, Any] = {
                "agency_id": agency_id,
                "platform": platform.value,
                "account_id": account_id,
            }
            set_tenant_context(agency_id, platform.value)
            with session_scope(session_factory) as db:
                try:
                    result = sync_platform(
                        db,
                        settings=settings,
                        cipher=cipher,
                        adapters=adapters,
                        platform=platform,
                        agency_id=agency_id,
                        account_id=account_id,
                        sleep=sleep,
                    )
                    summary.update(success=True, records_synced=result.records_synced)
                except AdSyncError as e:
                    logger.error(
                        "[SYNC_WORKER] %s sync failed for %s (agency=%s): %s",
                        platform.value, account_id, agency_id, e.message,
                    )
                    capture_exception(e, extra=summary)
                    summary.update(success=False, error=e.message)
                except Exception as e:
                    logger.exception(
                        "[SYNC_WORKER] Unexpected error syncing %s %s (agency=%s)",
                        platform.value, account_id, agency_id,
                    )
                    capture_exception(e, extra=summary)
                    summary.update(success=False, error=f"{type(e).__name__}: {e}")
            summaries.append(summary)
    finally:
        if http_client is not None:
            http_client.close()

    succeeded = sum(1 for s in summaries if s["success"])
    logger.info("[SYNC_WORKER] Pass complete: %d/%d succeeded", succeeded, len(summaries))
    return summaries


def run_forever(interval: float = 60.0, settings: Optional[Settings] = None) -> None:
    """Drain pending syncs every `interval` seconds until interrupted."""
    settings = settings or get_settings()
    init_sentry(settings)
    session_factory = build_session_factory(build_engine(settings.DATABASE_URL))

    logger.info("[SYNC_WORKER] Starting, interval=%.0fs", interval)
    while True:
        process_pending_syncs(session_factory, settings)
        time.sleep(interval)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    try:
        run_forever()
    except KeyboardInterrupt:
        logger.info("[SYNC_WORKER] Stopped")
