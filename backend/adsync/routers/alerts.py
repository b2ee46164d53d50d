"""Alert toggle endpoint."""

import httpx
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from adsync import schemas
from adsync.config import Settings
from adsync.database import get_db
from adsync.deps import get_app_settings, get_http_client
from adsync.services.alert_service import trigger_alert

router = APIRouter(tags=["Alerts"])


@router.post("/alert-webhook", response_model=schemas.AlertWebhookResponse)
def alert_webhook(
    payload: schemas.AlertWebhookRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    http_client: httpx.Client = Depends(get_http_client),
):
    result = trigger_alert(
        db,
        settings=settings,
        http_client=http_client,
        action=payload.action,
        alert_type=payload.alert_type.value,
        alert_id=payload.alert_id,
        webhook_url=payload.webhook_url,
    )
    return schemas.success_body(**result)
