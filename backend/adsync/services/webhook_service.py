"""Platform webhook processing.

WHAT:
    Verifies a signed webhook event, applies it to `ad_campaigns`, writes
    an audit row, and flags the integration for a re-sync.

WHY:
    - The signature gates everything: an unsigned or mis-signed event
      writes nothing at all.
    - Known events mutate exactly one campaign/adset/ad record; unknown
      events change nothing but are still logged (status "ignored").
    - The audit log, the pending-sync flag and the automation ping are
      fire-and-log. Only the record mutation decides the response.

REFERENCES:
    - adsync/security.py (canonical body + HMAC)
    - adsync/workers/sync_worker.py (consumes sync_status = pending)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from adsync.config import Settings
from adsync.errors import AdSyncError, InvalidRequest, RecordNotFound, StorageWriteFailure, UnsupportedPlatform
from adsync.models import AdCampaign, EntityLevelEnum, PlatformEnum, WebhookLog, utcnow
from adsync.security import canonical_webhook_body, verify_webhook_signature
from adsync.services.best_effort import fire_and_log
from adsync.services.credential_store import mark_sync_pending
from adsync.services.upsert import upsert_rows

logger = logging.getLogger(__name__)

REMOVED_STATUS = "REMOVED"


@dataclass(frozen=True)
class EventRule:
    level: EntityLevelEnum
    id_field: str
    action: str  # create | update | remove


GOOGLE_ADS_EVENTS = {
    "CAMPAIGN_UPDATED": EventRule(EntityLevelEnum.campaign, "campaign_id", "update"),
    "CAMPAIGN_CREATED": EventRule(EntityLevelEnum.campaign, "campaign_id", "create"),
    "CAMPAIGN_REMOVED": EventRule(EntityLevelEnum.campaign, "campaign_id", "remove"),
}

META_ADS_EVENTS = {
    "AD_UPDATED": EventRule(EntityLevelEnum.ad, "ad_id", "update"),
    "AD_CREATED": EventRule(EntityLevelEnum.ad, "ad_id", "create"),
    "AD_REMOVED": EventRule(EntityLevelEnum.ad, "ad_id", "remove"),
    "ADSET_UPDATED": EventRule(EntityLevelEnum.adset, "adset_id", "update"),
    "CAMPAIGN_UPDATED": EventRule(EntityLevelEnum.campaign, "campaign_id", "update"),
}

EVENT_RULES = {
    PlatformEnum.google_ads: GOOGLE_ADS_EVENTS,
    PlatformEnum.meta_ads: META_ADS_EVENTS,
}


@dataclass
class WebhookEvent:
    tenant_id: str
    account_id: str
    event_type: str
    data: Dict[str, Any]
    signature: Optional[str] = None


def _mutable_fields(data: Dict[str, Any]) -> Dict[str, Any]:
    """Pick the campaign-record fields a webhook is allowed to set."""
    fields: Dict[str, Any] = {}
    if "name" in data:
        fields["name"] = data["name"]
    if "status" in data:
        fields["status"] = data["status"]
    budget = data.get("budget", data.get("daily_budget"))
    if budget is not None:
        fields["budget"] = budget
    return fields


def _find_record(db: Session, platform: PlatformEnum, event: WebhookEvent, rule: EventRule, external_id: str):
    return (
        db.query(AdCampaign)
        .filter(
            AdCampaign.agency_id == event.tenant_id,
            AdCampaign.platform == platform,
            AdCampaign.account_id == event.account_id,
            AdCampaign.level == rule.level,
            AdCampaign.external_id == external_id,
        )
        .first()
    )


def apply_event(db: Session, platform: PlatformEnum, event: WebhookEvent, rule: EventRule) -> None:
    """Apply one known event to ad_campaigns (caller commits).

    Raises:
        InvalidRequest: the rule's id field is missing from `data`.
        RecordNotFound: update/remove of a record that does not exist.
    """
    external_id = event.data.get(rule.id_field)
    if not external_id:
        raise InvalidRequest(f"Missing {rule.id_field} in webhook data", platform.value)
    external_id = str(external_id)

    if rule.action == "create":
        row = {
            "agency_id": event.tenant_id,
            "platform": platform,
            "account_id": event.account_id,
            "level": rule.level,
            "external_id": external_id,
            "updated_at": utcnow(),
        }
        row.update(_mutable_fields(event.data))
        upsert_rows(
            db,
            AdCampaign,
            [row],
            conflict_columns=("agency_id", "platform", "account_id", "level", "external_id"),
        )
        logger.info("[WEBHOOK] Upserted %s %s for account %s", rule.level.value, external_id, event.account_id)
        return

    record = _find_record(db, platform, event, rule, external_id)
    if record is None:
        logger.warning("[WEBHOOK] %s %s not found for account %s", rule.level.value, external_id, event.account_id)
        raise RecordNotFound(f"{rule.level.value.capitalize()} {external_id} not found", platform.value)

    if rule.action == "remove":
        record.status = REMOVED_STATUS
    else:
        for key, value in _mutable_fields(event.data).items():
            setattr(record, key, value)
    record.updated_at = utcnow()
    logger.info("[WEBHOOK] %s %s %s", rule.action.capitalize(), rule.level.value, external_id)


def _append_webhook_log(
    db: Session,
    platform: PlatformEnum,
    event: WebhookEvent,
    status: str,
    error_message: Optional[str] = None,
) -> None:
    db.add(WebhookLog(
        agency_id=event.tenant_id,
        platform=platform,
        account_id=event.account_id,
        event_type=event.event_type,
        payload=event.data,
        status=status,
        error_message=error_message,
    ))


def _post_automation_hook(http_client: httpx.Client, url: str, payload: Dict[str, Any]) -> None:
    response = http_client.post(url, json=payload)
    response.raise_for_status()


def process_webhook(
    db: Session,
    *,
    settings: Settings,
    http_client: httpx.Client,
    platform: PlatformEnum,
    event: WebhookEvent,
) -> Dict[str, Any]:
    """Verify, dispatch, log and trigger a re-sync for one webhook event.

    Raises:
        InvalidSignature: before anything is written.
        InvalidRequest / RecordNotFound / StorageWriteFailure: after the
            error audit row has been written.
    """
    rules = EVENT_RULES.get(platform)
    if rules is None:
        raise UnsupportedPlatform(f"No webhook handler for platform {platform.value}", platform.value)

    body = canonical_webhook_body(event.tenant_id, event.account_id, event.event_type, event.data)
    verify_webhook_signature(
        settings.webhook_secret_for(platform.value),
        body,
        event.signature,
        platform=platform.value,
    )

    logger.info(
        "[WEBHOOK] %s event %s for account %s (agency=%s)",
        platform.value, event.event_type, event.account_id, event.tenant_id,
    )

    rule = rules.get(event.event_type)
    if rule is None:
        logger.info("[WEBHOOK] Ignoring unhandled %s event type %s", platform.value, event.event_type)
        fire_and_log(
            f"{platform.value} webhook log",
            _append_webhook_log, db, platform, event, "ignored",
            session=db,
        )
        return {
            "message": "Webhook processed successfully",
            "event_type": event.event_type,
            "processed": False,
        }

    try:
        apply_event(db, platform, event, rule)
        try:
            db.commit()
        except SQLAlchemyError as e:
            raise StorageWriteFailure(f"Failed to apply webhook: {e}", platform.value) from e
    except Exception as e:
        db.rollback()
        message = e.message if isinstance(e, AdSyncError) else f"Unexpected error: {type(e).__name__}: {e}"
        logger.error("[WEBHOOK] %s %s failed: %s", platform.value, event.event_type, message)
        fire_and_log(
            f"{platform.value} webhook log",
            _append_webhook_log, db, platform, event, "error", message,
            session=db,
        )
        raise

    fire_and_log(
        f"{platform.value} webhook log",
        _append_webhook_log, db, platform, event, "processed",
        session=db,
    )
    fire_and_log(
        f"flag {platform.value}:{event.account_id} for sync",
        mark_sync_pending, db, event.tenant_id, platform, event.account_id,
        session=db,
    )
    if settings.AUTOMATION_WEBHOOK_URL:
        fire_and_log(
            "automation webhook",
            _post_automation_hook,
            http_client,
            settings.AUTOMATION_WEBHOOK_URL,
            {
                "tenant_id": event.tenant_id,
                "platform": platform.value,
                "account_id": event.account_id,
                "event_type": event.event_type,
                "trigger": "webhook",
            },
        )

    return {
        "message": "Webhook processed successfully",
        "event_type": event.event_type,
        "processed": True,
    }
