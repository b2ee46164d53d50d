"""Platform webhook endpoints (Google Ads, Meta Ads).

Events are signed with a per-platform secret; see adsync/security.py for
the canonical body. Processing lives in services/webhook_service.py.
"""

import logging

import httpx
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from adsync import schemas
from adsync.config import Settings
from adsync.database import get_db
from adsync.deps import get_app_settings, get_http_client
from adsync.models import PlatformEnum
from adsync.services.webhook_service import WebhookEvent, process_webhook

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Webhooks"])


def _handle(
    platform: PlatformEnum,
    payload: schemas.WebhookRequest,
    db: Session,
    settings: Settings,
    http_client: httpx.Client,
):
    event = WebhookEvent(
        tenant_id=payload.tenant_id,
        account_id=payload.account_id,
        event_type=payload.event_type,
        data=payload.data,
        signature=payload.signature,
    )
    result = process_webhook(db, settings=settings, http_client=http_client, platform=platform, event=event)
    return schemas.success_body(**result)


@router.post("/google-ads-webhook", response_model=schemas.WebhookResponse)
def google_ads_webhook(
    payload: schemas.WebhookRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    http_client: httpx.Client = Depends(get_http_client),
):
    return _handle(PlatformEnum.google_ads, payload, db, settings, http_client)


@router.post("/meta-ads-webhook", response_model=schemas.WebhookResponse)
def meta_ads_webhook(
    payload: schemas.WebhookRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    http_client: httpx.Client = Depends(get_http_client),
):
    return _handle(PlatformEnum.meta_ads, payload, db, settings, http_client)
