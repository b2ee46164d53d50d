"""Pydantic schemas for request/response payloads."""

from datetime import date, datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from .models import AlertTypeEnum, PlatformEnum


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def success_body(**fields: Any) -> Dict[str, Any]:
    """Standard success envelope: {success: true, ..., timestamp}."""
    return {"success": True, **fields, "timestamp": utc_timestamp()}


def error_body(message: str) -> Dict[str, Any]:
    """Standard failure envelope: {error, timestamp}."""
    return {"error": message, "timestamp": utc_timestamp()}


# OAuth ---------------------------------------------------------------

class OAuthStartRequest(BaseModel):
    """Payload asking for a provider authorization URL."""

    platform: PlatformEnum = Field(description="Platform to connect")
    tenant_id: str = Field(description="Agency id")
    redirect_uri: str = Field(description="Callback URL registered with the provider")

    model_config = {
        "json_schema_extra": {
            "example": {
                "platform": "ga4",
                "tenant_id": "agency_123",
                "redirect_uri": "https://app.example.com/integrations/callback",
            }
        }
    }


class OAuthStartResponse(BaseModel):
    success: bool = True
    oauth_url: str
    state: str
    timestamp: str


class GoogleOAuthCallbackRequest(BaseModel):
    """Google redirect round-trip (GA4, Google Ads or Search Console)."""

    code: str = Field(description="Authorization code from Google")
    state: str = Field(description="State token issued with the authorization URL")
    tenant_id: str = Field(description="Agency id")
    platform: PlatformEnum = Field(description="google_ads, ga4 or search_console")
    redirect_uri: str = Field(description="Same redirect_uri used to obtain the code")


class GoogleOAuthResponse(BaseModel):
    success: bool = True
    message: str
    platform: PlatformEnum
    account_id: str
    account_name: Optional[str] = None
    timestamp: str


class MetaOAuthCallbackRequest(BaseModel):
    """Meta redirect round-trip."""

    code: str = Field(description="Authorization code from Meta")
    state: str = Field(description="State token issued with the authorization URL")
    tenant_id: str = Field(description="Agency id")
    redirect_uri: str = Field(description="Same redirect_uri used to obtain the code")


class MetaAccountResult(BaseModel):
    account_id: str
    account_name: Optional[str] = None
    success: bool
    error: Optional[str] = None


class MetaOAuthResponse(BaseModel):
    success: bool = True
    message: str
    accounts: List[MetaAccountResult]
    timestamp: str


class IntegrationDisconnectRequest(BaseModel):
    """Soft-disable one integration (credentials kept, syncing stops)."""

    tenant_id: str
    platform: PlatformEnum
    account_id: str


class IntegrationDisconnectResponse(BaseModel):
    success: bool = True
    message: str
    platform: PlatformEnum
    account_id: str
    timestamp: str


# Sync ----------------------------------------------------------------

class SyncRequest(BaseModel):
    """Sync one integration for an inclusive date window.

    Missing end_date means today (UTC); missing start_date means
    end_date minus 30 days.
    """

    tenant_id: str = Field(description="Agency id")
    account_id: str = Field(description="Remote account id as stored on the integration")
    start_date: Optional[date] = Field(default=None, description="YYYY-MM-DD")
    end_date: Optional[date] = Field(default=None, description="YYYY-MM-DD")

    model_config = {
        "json_schema_extra": {
            "example": {
                "tenant_id": "agency_123",
                "account_id": "123456789",
                "start_date": "2024-01-01",
                "end_date": "2024-01-31",
            }
        }
    }


class SyncResponse(BaseModel):
    success: bool = True
    message: str
    days_synced: Optional[int] = None
    campaigns_synced: Optional[int] = None
    pages_synced: Optional[int] = None
    insights_synced: Optional[int] = None
    start_date: str
    end_date: str
    timestamp: str


# Webhooks --------------------------------------------------------------

class WebhookRequest(BaseModel):
    """Signed platform event.

    `signature` is the hex HMAC-SHA256 (optionally "sha256="-prefixed) of
    the canonical JSON of {tenant_id, account_id, event_type, data}.
    """

    tenant_id: str
    account_id: str
    event_type: str
    data: Dict[str, Any] = Field(default_factory=dict)
    signature: Optional[str] = None


class WebhookResponse(BaseModel):
    success: bool = True
    message: str
    event_type: str
    processed: bool
    timestamp: str


# Alerts ------------------------------------------------------------------

class AlertWebhookRequest(BaseModel):
    action: Literal["activate", "deactivate"]
    alert_type: AlertTypeEnum
    alert_id: str
    webhook_url: Optional[str] = None


class AlertWebhookResponse(BaseModel):
    success: bool = True
    message: str
    notification_status: Literal["delivered", "failed", "skipped"]
    timestamp: str


# Shared ------------------------------------------------------------------

class ErrorResponse(BaseModel):
    """Standard error response."""

    error: str = Field(description="Error message")
    timestamp: str

    model_config = {
        "json_schema_extra": {
            "example": {
                "error": "Integration not found for ga4 account 123456",
                "timestamp": "2024-01-31T12:00:00+00:00",
            }
        }
    }


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(description="Service status")

    model_config = {
        "json_schema_extra": {
            "example": {
                "status": "ok"
            }
        }
    }
