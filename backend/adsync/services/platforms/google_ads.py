"""Google Ads adapter.

WHAT:
    Pulls campaign x day KPIs over GAQL via the google-ads SDK
    (`GoogleAdsService.search_stream`) and mirrors campaign names/status
    into `ad_campaigns`.

WHY:
    - Google Ads is the only platform whose stored token expiry is enforced
      before the call; refresh is not implemented, so an expired token is a
      hard `TokenExpired` and the user reconnects.
    - The SDK client is built through an injectable factory so tests never
      touch the network.

REFERENCES:
    - https://developers.google.com/google-ads/api/docs/query/overview
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from adsync.config import Settings
from adsync.errors import InvalidCredentials, RemoteApiFailure
from adsync.models import AdCampaign, EntityLevelEnum, GoogleAdsCampaignKpi, PlatformEnum, utcnow
from adsync.services.platforms.base import PlatformAdapter, SyncWindow
from adsync.services.upsert import upsert_rows

logger = logging.getLogger(__name__)

CAMPAIGN_KPI_QUERY = """
    SELECT
        campaign.id,
        campaign.name,
        campaign.status,
        segments.date,
        metrics.impressions,
        metrics.clicks,
        metrics.cost_micros,
        metrics.conversions,
        metrics.conversions_value
    FROM campaign
    WHERE segments.date BETWEEN '{start}' AND '{end}'
"""

# Error codes that mean "reconnect", not "try again".
AUTH_ERROR_MARKERS = ("AUTHENTICATION_ERROR", "AUTHORIZATION_ERROR", "USER_PERMISSION_DENIED")

ClientFactory = Callable[[Dict[str, Any], Settings], Any]


def normalize_customer_id(customer_id: str) -> str:
    """Digits only: '123-456-7890' -> '1234567890'."""
    return "".join(ch for ch in str(customer_id) if ch.isdigit())


def default_client_factory(credentials: Dict[str, Any], settings: Settings) -> Any:
    """Build a GoogleAdsClient from the stored refresh token and app secrets."""
    from google.ads.googleads.client import GoogleAdsClient

    config = {
        "developer_token": settings.GOOGLE_ADS_DEVELOPER_TOKEN,
        "client_id": settings.GOOGLE_CLIENT_ID,
        "client_secret": settings.GOOGLE_CLIENT_SECRET,
        "refresh_token": credentials["refresh_token"],
        "use_proto_plus": True,
    }
    login_customer_id = normalize_customer_id(credentials.get("login_customer_id") or "")
    if len(login_customer_id) == 10:
        config["login_customer_id"] = login_customer_id
    missing = [k for k in ("developer_token", "client_id", "client_secret") if not config[k]]
    if missing:
        raise InvalidCredentials(
            f"Missing Google Ads app settings: {', '.join(missing)}",
            PlatformEnum.google_ads.value,
        )
    return GoogleAdsClient.load_from_dict(config)


class GoogleAdsAdapter(PlatformAdapter):
    platform = PlatformEnum.google_ads
    display_name = "Google Ads"
    metric_model = GoogleAdsCampaignKpi
    conflict_columns = ("agency_id", "account_id", "campaign_id", "date")
    required_fields = ("access_token", "refresh_token", "customer_id")
    count_field = "campaigns_synced"
    enforce_token_expiry = True

    def __init__(self, settings: Settings, client_factory: Optional[ClientFactory] = None):
        self.settings = settings
        self.client_factory = client_factory or default_client_factory

    def fetch_remote_metrics(self, credentials: Dict[str, Any], window: SyncWindow) -> List[Dict[str, Any]]:
        customer_id = normalize_customer_id(credentials["customer_id"])
        query = CAMPAIGN_KPI_QUERY.format(start=window.start.isoformat(), end=window.end.isoformat())

        client = self.client_factory(credentials, self.settings)
        service = client.get_service("GoogleAdsService")

        records: List[Dict[str, Any]] = []
        try:
            for batch in service.search_stream(customer_id=customer_id, query=query):
                for row in getattr(batch, "results", []):
                    records.append(self._record_from_row(row))
        except RemoteApiFailure:
            raise
        except Exception as e:
            raise self._classify_error(e) from e

        logger.info("[SYNC] Google Ads returned %d campaign-day rows for %s", len(records), customer_id)
        return records

    @staticmethod
    def _record_from_row(row: Any) -> Dict[str, Any]:
        status = getattr(row.campaign.status, "name", row.campaign.status)
        return {
            "campaign_id": str(row.campaign.id),
            "campaign_name": row.campaign.name,
            "campaign_status": str(status) if status is not None else None,
            "date": date.fromisoformat(str(row.segments.date)),
            "impressions": int(row.metrics.impressions or 0),
            "clicks": int(row.metrics.clicks or 0),
            "cost": (row.metrics.cost_micros or 0) / 1_000_000,
            "conversions": float(row.metrics.conversions or 0),
            "conversion_value": float(row.metrics.conversions_value or 0),
        }

    def _classify_error(self, error: Exception) -> Exception:
        text = str(error)
        if any(marker in text for marker in AUTH_ERROR_MARKERS):
            logger.warning("[SYNC] Google Ads rejected credentials: %s", text[:200])
            return InvalidCredentials(f"Invalid credentials: {text[:200]}", self.platform.value)
        logger.warning("[SYNC] Google Ads API error: %s", text[:200])
        return RemoteApiFailure(f"Google Ads API error: {text[:200]}", self.platform.value)

    def to_rows(
        self,
        agency_id: str,
        account_id: str,
        credentials: Dict[str, Any],
        records: Sequence[Dict[str, Any]],
    ) -> List[Dict[str, Any]]:
        rows = []
        for record in records:
            row = {key: value for key, value in record.items() if key != "campaign_status"}
            rows.append({"agency_id": agency_id, "account_id": account_id, **row})
        return rows

    def after_upsert(
        self,
        db: Session,
        agency_id: str,
        account_id: str,
        records: Sequence[Dict[str, Any]],
    ) -> None:
        """Mirror campaign name/status into ad_campaigns (one row per campaign)."""
        latest: Dict[str, Dict[str, Any]] = {}
        updated_at = utcnow()
        for record in sorted(records, key=lambda r: r["date"]):
            latest[record["campaign_id"]] = record

        campaigns = [
            {
                "agency_id": agency_id,
                "platform": self.platform,
                "account_id": account_id,
                "level": EntityLevelEnum.campaign,
                "external_id": campaign_id,
                "name": record["campaign_name"],
                "status": record["campaign_status"],
                "updated_at": updated_at,
            }
            for campaign_id, record in latest.items()
        ]
        upsert_rows(
            db,
            AdCampaign,
            campaigns,
            conflict_columns=("agency_id", "platform", "account_id", "level", "external_id"),
            batch_size=self.settings.SYNC_BATCH_SIZE,
        )
