"""Meta Ads adapter (Marketing API insights via facebook_business).

WHAT:
    Fetches ad-level daily insights for one ad account and derives
    cpc/cpa/roas. Conversions and revenue come from purchase actions.

WHY:
    - `time_increment=1` gives one row per ad per day, matching the
      (agency, account, ad, date) natural key.
    - The insights fetcher is injectable so tests run without the SDK
      reaching Graph API.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Sequence

import requests
from facebook_business.adobjects.adaccount import AdAccount
from facebook_business.adobjects.adsinsights import AdsInsights
from facebook_business.api import FacebookAdsApi
from facebook_business.exceptions import FacebookRequestError

from adsync.config import Settings
from adsync.errors import InvalidCredentials, RemoteApiFailure
from adsync.models import MetaAdsInsightDaily, PlatformEnum
from adsync.services.platforms.base import PlatformAdapter, SyncWindow, safe_div

logger = logging.getLogger(__name__)

# Purchase action types, most specific first; the first present wins.
PURCHASE_ACTION_TYPES = (
    "omni_purchase",
    "purchase",
    "offsite_conversion.fb_pixel_purchase",
)

# Graph API error codes for invalid/expired sessions.
AUTH_ERROR_CODES = {102, 190}

InsightsFetcher = Callable[[Dict[str, Any], SyncWindow], List[Dict[str, Any]]]


def ad_account_path(account_id: str) -> str:
    return account_id if str(account_id).startswith("act_") else f"act_{account_id}"


def _action_value(actions: Optional[List[Dict[str, Any]]]) -> float:
    if not actions:
        return 0.0
    by_type = {action.get("action_type"): action.get("value") for action in actions}
    for action_type in PURCHASE_ACTION_TYPES:
        if by_type.get(action_type) is not None:
            return float(by_type[action_type])
    return 0.0


class MetaAdsAdapter(PlatformAdapter):
    platform = PlatformEnum.meta_ads
    display_name = "Meta Ads"
    metric_model = MetaAdsInsightDaily
    conflict_columns = ("agency_id", "account_id", "ad_id", "date")
    required_fields = ("access_token", "ad_account_id")
    count_field = "insights_synced"

    def __init__(self, settings: Settings, insights_fetcher: Optional[InsightsFetcher] = None):
        self.settings = settings
        self.insights_fetcher = insights_fetcher or self._fetch_with_sdk

    def _fetch_with_sdk(self, credentials: Dict[str, Any], window: SyncWindow) -> List[Dict[str, Any]]:
        api = FacebookAdsApi.init(
            app_id=self.settings.META_APP_ID or None,
            app_secret=self.settings.META_APP_SECRET or None,
            access_token=credentials["access_token"],
        )
        account = AdAccount(ad_account_path(credentials["ad_account_id"]), api=api)
        fields = [
            AdsInsights.Field.campaign_id,
            AdsInsights.Field.adset_id,
            AdsInsights.Field.ad_id,
            AdsInsights.Field.date_start,
            AdsInsights.Field.impressions,
            AdsInsights.Field.clicks,
            AdsInsights.Field.spend,
            AdsInsights.Field.actions,
            AdsInsights.Field.action_values,
        ]
        params = {
            "level": "ad",
            "time_increment": 1,
            "time_range": {"since": window.start.isoformat(), "until": window.end.isoformat()},
        }
        return [dict(insight) for insight in account.get_insights(fields=fields, params=params)]

    def _classify_error(self, error: FacebookRequestError) -> Exception:
        code = error.api_error_code()
        status = error.http_status()
        message = error.api_error_message()
        logger.error("[SYNC] Meta API error: HTTP %s, code %s, %s", status, code, message)
        if status in (401, 403) or code in AUTH_ERROR_CODES:
            return InvalidCredentials(f"Invalid credentials: {message}", self.platform.value)
        return RemoteApiFailure(f"Meta API error {status}: {message}", self.platform.value, status_code=status)

    def fetch_remote_metrics(self, credentials: Dict[str, Any], window: SyncWindow) -> List[Dict[str, Any]]:
        try:
            insights = self.insights_fetcher(credentials, window)
        except FacebookRequestError as e:
            raise self._classify_error(e) from e
        except requests.RequestException as e:
            logger.warning("[SYNC] Meta API unreachable: %s", e)
            raise RemoteApiFailure(f"Meta API unreachable: {e}", self.platform.value) from e

        records = []
        for insight in insights:
            impressions = int(insight.get("impressions") or 0)
            clicks = int(insight.get("clicks") or 0)
            spend = float(insight.get("spend") or 0)
            conversions = int(_action_value(insight.get("actions")))
            revenue = _action_value(insight.get("action_values"))
            records.append({
                "campaign_id": insight.get("campaign_id"),
                "adset_id": insight.get("adset_id"),
                "ad_id": str(insight["ad_id"]),
                "date": date.fromisoformat(insight["date_start"]),
                "impressions": impressions,
                "clicks": clicks,
                "spend": spend,
                "conversions": conversions,
                "revenue": revenue,
                "cpc": safe_div(spend, clicks),
                "cpa": safe_div(spend, conversions),
                "roas": safe_div(revenue, spend),
            })

        logger.info(
            "[SYNC] Meta returned %d ad-day rows for %s",
            len(records),
            ad_account_path(credentials["ad_account_id"]),
        )
        return records

    def to_rows(
        self,
        agency_id: str,
        account_id: str,
        credentials: Dict[str, Any],
        records: Sequence[Dict[str, Any]],
    ) -> List[Dict[str, Any]]:
        return [{"agency_id": agency_id, "account_id": account_id, **record} for record in records]
