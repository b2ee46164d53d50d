"""Sync endpoints, one per platform, all backed by `sync_platform`."""

import logging
from typing import Callable

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from adsync import schemas
from adsync.config import Settings
from adsync.database import get_db
from adsync.deps import get_adapters, get_app_settings, get_cipher, get_sleep
from adsync.models import PlatformEnum
from adsync.security import TokenCipher
from adsync.services.platforms import AdapterMap
from adsync.services.sync_service import sync_platform

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Sync"])


def _run_sync(
    platform: PlatformEnum,
    payload: schemas.SyncRequest,
    db: Session,
    settings: Settings,
    cipher: TokenCipher,
    adapters: AdapterMap,
    sleep: Callable[[float], None],
):
    result = sync_platform(
        db,
        settings=settings,
        cipher=cipher,
        adapters=adapters,
        platform=platform,
        agency_id=payload.tenant_id,
        account_id=payload.account_id,
        start_date=payload.start_date,
        end_date=payload.end_date,
        sleep=sleep,
    )
    return schemas.success_body(**result.as_payload())


def _register(path: str, platform: PlatformEnum) -> None:
    """Bind one POST endpoint per platform to the shared handler."""

    def endpoint(
        payload: schemas.SyncRequest,
        db: Session = Depends(get_db),
        settings: Settings = Depends(get_app_settings),
        cipher: TokenCipher = Depends(get_cipher),
        adapters: AdapterMap = Depends(get_adapters),
        sleep: Callable[[float], None] = Depends(get_sleep),
    ):
        return _run_sync(platform, payload, db, settings, cipher, adapters, sleep)

    endpoint.__name__ = f"{platform.value}_sync"
    router.add_api_route(
        path,
        endpoint,
        methods=["POST"],
        response_model=schemas.SyncResponse,
        response_model_exclude_none=True,
        summary=f"Sync {platform.value} metrics",
    )


_register("/ga4-sync", PlatformEnum.ga4)
_register("/google-ads-sync", PlatformEnum.google_ads)
_register("/search-console-sync", PlatformEnum.search_console)
_register("/meta-ads-sync", PlatformEnum.meta_ads)
