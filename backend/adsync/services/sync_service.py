"""Generic platform sync.

WHAT:
    `sync_platform` runs one sync for (agency, platform, account):
    resolve window -> load + validate credentials -> fetch with retries ->
    upsert in batches -> commit -> stamp last_sync + append sync log.

WHY:
    - One control flow for every platform; adapters supply only the
      fetch/transform step (see services/platforms).
    - The response reflects the primary write only. The last_sync stamp and
      the sync log are fire-and-log.
    - On failure the error is recorded on the integration and in sync_logs
      before it surfaces to the caller.

REFERENCES:
    - adsync/routers/sync.py (HTTP entry points)
    - adsync/workers/sync_worker.py (pending-sync drain)
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from adsync.config import Settings
from adsync.errors import AdSyncError, StorageWriteFailure
from adsync.models import Integration, PlatformEnum, SyncLog, SyncStatusEnum, utcnow
from adsync.security import TokenCipher
from adsync.services.best_effort import fire_and_log
from adsync.services.credential_store import get_integration, load_credentials, mark_synced
from adsync.services.platforms import AdapterMap, PlatformAdapter, SyncWindow, adapter_for
from adsync.services.retry import call_with_retries
from adsync.services.upsert import upsert_rows

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    platform: PlatformEnum
    message: str
    count_field: str
    records_synced: int
    window: SyncWindow

    def as_payload(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            self.count_field: self.records_synced,
            "start_date": self.window.start.isoformat(),
            "end_date": self.window.end.isoformat(),
        }


def _append_sync_log(
    db: Session,
    integration: Integration,
    window: SyncWindow,
    *,
    status: str,
    records_synced: int = 0,
    error_message: Optional[str] = None,
) -> None:
    db.add(SyncLog(
        agency_id=integration.agency_id,
        platform=integration.platform,
        account_id=integration.account_id,
        sync_status=status,
        records_synced=records_synced,
        window_start=window.start,
        window_end=window.end,
        error_message=error_message,
    ))


def _record_success(db: Session, integration: Integration, window: SyncWindow, records_synced: int) -> None:
    mark_synced(db, integration)
    _append_sync_log(db, integration, window, status="success", records_synced=records_synced)


def _record_failure(db: Session, integration: Integration, window: SyncWindow, error_message: str) -> None:
    integration.sync_status = SyncStatusEnum.error
    integration.last_sync_error = error_message
    _append_sync_log(db, integration, window, status="error", error_message=error_message)


def _mark_attempt(integration: Integration) -> None:
    integration.sync_status = SyncStatusEnum.syncing
    integration.last_sync_attempted_at = utcnow()


def sync_platform(
    db: Session,
    *,
    settings: Settings,
    cipher: TokenCipher,
    adapters: AdapterMap,
    platform: PlatformEnum,
    agency_id: str,
    account_id: str,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    sleep: Callable[[float], None] = time.sleep,
    today: Optional[date] = None,
    now: Optional[datetime] = None,
) -> SyncResult:
    """Sync one integration's metrics for a date window.

    Raises:
        InvalidRequest:       start_date after end_date.
        IntegrationNotFound:  no active integration for the key.
        InvalidCredentials:   required credential fields missing/undecryptable.
        TokenExpired:         Google Ads token past expiry.
        RemoteApiFailure:     remote fetch failed after all retries.
        StorageWriteFailure:  upsert or commit failed.

    Any other exception is recorded on the integration the same way and
    re-raised unchanged.
    """
    adapter: PlatformAdapter = adapter_for(adapters, platform)
    window = SyncWindow.resolve(
        start_date,
        end_date,
        today=today,
        default_days=settings.SYNC_DEFAULT_WINDOW_DAYS,
    )
    integration = get_integration(db, agency_id, platform, account_id)
    label = f"{platform.value}:{account_id}"

    logger.info(
        "[SYNC] Starting %s sync for %s (agency=%s) %s..%s",
        adapter.display_name, account_id, agency_id, window.start, window.end,
    )
    fire_and_log(f"mark {label} syncing", _mark_attempt, integration, session=db)

    try:
        credentials = load_credentials(integration, cipher)
        adapter.validate_credentials(credentials, now=now)

        records = call_with_retries(
            adapter.fetch_remote_metrics,
            credentials,
            window,
            max_attempts=settings.SYNC_MAX_ATTEMPTS,
            sleep=sleep,
            label=f"{adapter.display_name} fetch for {account_id}",
            platform=platform.value,
        )

        synced_at = now or utcnow()
        rows = adapter.to_rows(agency_id, account_id, credentials, records)
        for row in rows:
            row["synced_at"] = synced_at

        written = upsert_rows(
            db,
            adapter.metric_model,
            rows,
            conflict_columns=adapter.conflict_columns,
            batch_size=settings.SYNC_BATCH_SIZE,
        )
        adapter.after_upsert(db, agency_id, account_id, records)

        try:
            db.commit()
        except SQLAlchemyError as e:
            raise StorageWriteFailure(f"Failed to commit {adapter.display_name} data: {e}", platform.value) from e
    except AdSyncError as e:
        db.rollback()
        logger.error("[SYNC] %s sync failed for %s: %s", adapter.display_name, account_id, e.message)
        fire_and_log(
            f"record {label} sync failure",
            _record_failure,
            db,
            integration,
            window,
            e.message,
            session=db,
        )
        raise
    except Exception as e:
        db.rollback()
        logger.exception("[SYNC] Unexpected error during %s sync for %s", adapter.display_name, account_id)
        fire_and_log(
            f"record {label} sync failure",
            _record_failure,
            db,
            integration,
            window,
            f"Unexpected error: {type(e).__name__}: {e}",
            session=db,
        )
        raise

    fire_and_log(
        f"record {label} sync success",
        _record_success,
        db,
        integration,
        window,
        written,
        session=db,
    )

    logger.info("[SYNC] %s sync complete for %s: %d rows", adapter.display_name, account_id, written)
    return SyncResult(
        platform=platform,
        message=f"{adapter.display_name} data synced successfully",
        count_field=adapter.count_field,
        records_synced=written,
        window=window,
    )
