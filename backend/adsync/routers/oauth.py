"""OAuth endpoints.

WHAT:
    - POST /integration-oauth: build a provider authorization URL + state.
    - POST /google-oauth-callback: finish Google (GA4, Google Ads, Search Console).
    - POST /meta-oauth-callback: finish Meta, storing every ad account.
    - POST /integration-disconnect: soft-disable one integration.

WHY:
    The integration UI owns the browser redirect; it posts the code and
    state back here, so every endpoint is a JSON POST.
"""

import logging

import httpx
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from adsync import schemas
from adsync.config import Settings
from adsync.database import get_db
from adsync.deps import get_app_settings, get_cipher, get_http_client
from adsync.security import TokenCipher
from adsync.services.credential_store import deactivate_integration
from adsync.services.oauth_service import OAuthService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["OAuth"])


def get_oauth_service(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    cipher: TokenCipher = Depends(get_cipher),
    http_client: httpx.Client = Depends(get_http_client),
) -> OAuthService:
    return OAuthService(db, settings, cipher, http_client)


@router.post("/integration-oauth", response_model=schemas.OAuthStartResponse)
def integration_oauth(
    payload: schemas.OAuthStartRequest,
    service: OAuthService = Depends(get_oauth_service),
):
    link = service.build_authorization_url(payload.platform, payload.tenant_id, payload.redirect_uri)
    return schemas.success_body(**link)


@router.post("/google-oauth-callback", response_model=schemas.GoogleOAuthResponse)
def google_oauth_callback(
    payload: schemas.GoogleOAuthCallbackRequest,
    service: OAuthService = Depends(get_oauth_service),
):
    logger.info("[OAUTH] Google callback for %s (agency=%s)", payload.platform.value, payload.tenant_id)
    result = service.complete_google(
        code=payload.code,
        state=payload.state,
        tenant_id=payload.tenant_id,
        platform=payload.platform,
        redirect_uri=payload.redirect_uri,
    )
    return schemas.success_body(**result)


@router.post("/meta-oauth-callback", response_model=schemas.MetaOAuthResponse)
def meta_oauth_callback(
    payload: schemas.MetaOAuthCallbackRequest,
    service: OAuthService = Depends(get_oauth_service),
):
    logger.info("[OAUTH] Meta callback (agency=%s)", payload.tenant_id)
    result = service.complete_meta(
        code=payload.code,
        state=payload.state,
        tenant_id=payload.tenant_id,
        redirect_uri=payload.redirect_uri,
    )
    return schemas.success_body(**result)


@router.post("/integration-disconnect", response_model=schemas.IntegrationDisconnectResponse)
def integration_disconnect(
    payload: schemas.IntegrationDisconnectRequest,
    db: Session = Depends(get_db),
):
    deactivate_integration(db, payload.tenant_id, payload.platform, payload.account_id)
    return schemas.success_body(
        message="Integration disconnected",
        platform=payload.platform,
        account_id=payload.account_id,
    )
