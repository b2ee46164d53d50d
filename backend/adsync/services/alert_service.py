"""Alert activation and outbound notification.

WHAT:
    Flips `alerts_config.is_active`, optionally POSTs a notification to a
    caller-supplied URL, and appends an `alert_webhook_logs` row.

WHY:
    The flag write is the primary operation. The notification and the log
    are fire-and-log: an unreachable URL never fails the request, it only
    shows up as notification_status="failed".
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, Optional

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from adsync.config import Settings
from adsync.errors import InvalidRequest, RecordNotFound, StorageWriteFailure
from adsync.models import AlertConfig, AlertWebhookLog, utcnow
from adsync.services.best_effort import fire_and_log

logger = logging.getLogger(__name__)

ALERT_ACTIONS = ("activate", "deactivate")


def _load_alert(db: Session, alert_id: str) -> AlertConfig:
    try:
        key = uuid.UUID(str(alert_id))
    except ValueError:
        raise RecordNotFound(f"Alert {alert_id} not found")
    alert = db.get(AlertConfig, key)
    if alert is None:
        raise RecordNotFound(f"Alert {alert_id} not found")
    return alert


def _notify(http_client: httpx.Client, url: str, payload: Dict[str, Any]) -> None:
    response = http_client.post(url, json=payload)
    response.raise_for_status()


def _append_alert_log(
    db: Session,
    alert_id: str,
    action: str,
    webhook_url: Optional[str],
    notification_status: str,
) -> None:
    db.add(AlertWebhookLog(
        alert_id=str(alert_id),
        action=action,
        webhook_url=webhook_url,
        status="success",
        notification_status=notification_status,
    ))


def trigger_alert(
    db: Session,
    *,
    settings: Settings,
    http_client: httpx.Client,
    action: str,
    alert_type: str,
    alert_id: str,
    webhook_url: Optional[str] = None,
) -> Dict[str, Any]:
    """Activate/deactivate an alert and notify best-effort.

    Raises:
        InvalidRequest:      unknown action.
        RecordNotFound:      no alert with this id.
        StorageWriteFailure: the flag update could not be committed.
    """
    if action not in ALERT_ACTIONS:
        raise InvalidRequest(f"Invalid action: {action}")

    alert = _load_alert(db, alert_id)
    alert.is_active = action == "activate"
    alert.updated_at = utcnow()
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("[ALERT] Failed to %s alert %s: %s", action, alert_id, e)
        raise StorageWriteFailure(f"Failed to update alert: {e}") from e

    logger.info("[ALERT] %s alert %s (%s)", action.capitalize() + "d", alert_id, alert_type)

    notification_status = "skipped"
    if webhook_url:
        payload = {
            "action": action,
            "alert_type": alert_type,
            "alert_id": str(alert_id),
            "timestamp": utcnow().isoformat(),
            "source": settings.ALERT_SOURCE_NAME,
        }
        delivered = fire_and_log(f"alert notification to {webhook_url}", _notify, http_client, webhook_url, payload)
        notification_status = "delivered" if delivered else "failed"

    fire_and_log(
        "alert webhook log",
        _append_alert_log, db, alert_id, action, webhook_url, notification_status,
        session=db,
    )

    return {
        "message": f"Alert {action}d successfully",
        "notification_status": notification_status,
    }
