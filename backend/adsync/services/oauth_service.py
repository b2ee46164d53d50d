"""OAuth exchange service.

WHAT:
    - Builds provider authorization URLs carrying a signed `state` token.
    - Completes the redirect round-trip: verify state -> exchange code ->
      discover remote accounts -> upsert one Integration per account.

WHY:
    - `state` is recomputed from (tenant, platform) plus its embedded
      timestamp, so nothing about the flow is stored server-side.
    - A bad state aborts before any network call or write.
    - Google connects one account per authorization (first discovered);
      Meta connects every ad account the token can see.

REFERENCES:
    - https://developers.google.com/identity/protocols/oauth2/web-server
    - https://developers.facebook.com/docs/facebook-login/guides/access-tokens/get-long-lived
    - adsync/services/credential_store.py (persistence)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import httpx
from sqlalchemy.orm import Session

from adsync.config import Settings
from adsync.errors import InvalidRequest, StorageWriteFailure, TokenExchangeFailed, UnsupportedPlatform
from adsync.models import Agency, PlatformEnum
from adsync.security import TokenCipher, generate_state_token, verify_state_token
from adsync.services.credential_store import upsert_integration
from adsync.utils.env import require_setting

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_SCOPES = {
    PlatformEnum.google_ads: "https://www.googleapis.com/auth/adwords",
    PlatformEnum.ga4: "https://www.googleapis.com/auth/analytics.readonly",
    PlatformEnum.search_console: "https://www.googleapis.com/auth/webmasters.readonly",
}
GOOGLE_PLATFORMS = tuple(GOOGLE_SCOPES)

GA4_ADMIN_URL = "https://analyticsadmin.googleapis.com/v1beta/accountSummaries"
GOOGLE_ADS_API_VERSION = "v19"
GOOGLE_ADS_CUSTOMERS_URL = (
    f"https://googleads.googleapis.com/{GOOGLE_ADS_API_VERSION}/customers:listAccessibleCustomers"
)
SEARCH_CONSOLE_SITES_URL = "https://www.googleapis.com/webmasters/v3/sites"

META_API_VERSION = "v18.0"
META_DIALOG_URL = f"https://www.facebook.com/{META_API_VERSION}/dialog/oauth"
META_GRAPH_URL = f"https://graph.facebook.com/{META_API_VERSION}"


@dataclass
class TokenBundle:
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    scope: Optional[str] = None


@dataclass
class DiscoveredAccount:
    account_id: str
    account_name: Optional[str]
    extra: Dict[str, Any] = field(default_factory=dict)


def _expires_at(expires_in: Any) -> Optional[datetime]:
    if not expires_in:
        return None
    return datetime.now(timezone.utc) + timedelta(seconds=int(expires_in))


class OAuthService:
    """Per-request OAuth flow bound to one session and one HTTP client."""

    def __init__(self, db: Session, settings: Settings, cipher: TokenCipher, http_client: httpx.Client):
        self.db = db
        self.settings = settings
        self.cipher = cipher
        self.http = http_client

    # ------------------------------------------------------------------
    # Authorization links
    # ------------------------------------------------------------------

    def build_authorization_url(self, platform: PlatformEnum, tenant_id: str, redirect_uri: str) -> Dict[str, str]:
        """Return {oauth_url, state} for the integration UI to redirect to."""
        self._ensure_agency(tenant_id)
        state = generate_state_token(self.settings.OAUTH_STATE_SECRET, tenant_id, platform.value)

        if platform == PlatformEnum.meta_ads:
            params = {
                "client_id": require_setting(self.settings.META_APP_ID, "META_APP_ID"),
                "redirect_uri": redirect_uri,
                "scope": ",".join(self.settings.meta_scopes),
                "response_type": "code",
                "state": state,
            }
            url = f"{META_DIALOG_URL}?{urlencode(params)}"
        elif platform in GOOGLE_SCOPES:
            params = {
                "client_id": require_setting(self.settings.GOOGLE_CLIENT_ID, "GOOGLE_CLIENT_ID"),
                "redirect_uri": redirect_uri,
                "scope": GOOGLE_SCOPES[platform],
                "response_type": "code",
                "access_type": "offline",
                "prompt": "consent",
                "state": state,
            }
            url = f"{GOOGLE_AUTH_URL}?{urlencode(params)}"
        else:
            raise UnsupportedPlatform(f"Unsupported platform: {platform}", str(platform))

        logger.info("[OAUTH] Built %s authorization URL for agency=%s", platform.value, tenant_id)
        return {"oauth_url": url, "state": state}

    # ------------------------------------------------------------------
    # Callbacks
    # ------------------------------------------------------------------

    def complete_google(
        self,
        *,
        code: str,
        state: str,
        tenant_id: str,
        platform: PlatformEnum,
        redirect_uri: str,
    ) -> Dict[str, Any]:
        """Exchange a Google code and store the first discovered account."""
        if platform not in GOOGLE_PLATFORMS:
            raise UnsupportedPlatform(f"Unsupported Google platform: {platform}", str(platform))

        self._verify_state(state, tenant_id, platform)
        self._ensure_agency(tenant_id)

        tokens = self._exchange_google_code(code, redirect_uri, platform)
        account = self._discover_google_account(platform, tokens.access_token)

        integration = upsert_integration(
            self.db,
            self.cipher,
            agency_id=tenant_id,
            platform=platform,
            account_id=account.account_id,
            account_name=account.account_name,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            expires_at=tokens.expires_at,
            scope=tokens.scope,
            extra=account.extra,
        )
        logger.info(
            "[OAUTH] Connected %s account %s for agency=%s",
            platform.value, integration.account_id, tenant_id,
        )
        return {
            "message": "Google OAuth successful",
            "platform": platform.value,
            "account_id": integration.account_id,
            "account_name": integration.account_name,
        }

    def complete_meta(self, *, code: str, state: str, tenant_id: str, redirect_uri: str) -> Dict[str, Any]:
        """Exchange a Meta code and store every discovered ad account.

        A failed write for one account is recorded in its result entry and
        the loop moves on. If no account could be stored at all the request
        fails with StorageWriteFailure.
        """
        platform = PlatformEnum.meta_ads
        self._verify_state(state, tenant_id, platform)
        self._ensure_agency(tenant_id)

        tokens = self._exchange_meta_code(code, redirect_uri)
        tokens = self._exchange_long_lived(tokens)
        accounts = self._discover_meta_accounts(tokens.access_token)

        results: List[Dict[str, Any]] = []
        for account in accounts:
            try:
                upsert_integration(
                    self.db,
                    self.cipher,
                    agency_id=tenant_id,
                    platform=platform,
                    account_id=account.account_id,
                    account_name=account.account_name,
                    access_token=tokens.access_token,
                    expires_at=tokens.expires_at,
                    scope=tokens.scope,
                    extra=account.extra,
                )
                results.append({
                    "account_id": account.account_id,
                    "account_name": account.account_name,
                    "success": True,
                })
            except StorageWriteFailure as e:
                logger.error("[OAUTH] Failed to store Meta account %s: %s", account.account_id, e.message)
                results.append({
                    "account_id": account.account_id,
                    "account_name": account.account_name,
                    "success": False,
                    "error": e.message,
                })

        stored = sum(1 for result in results if result["success"])
        if not stored:
            raise StorageWriteFailure("Failed to store any Meta ad account", platform.value)

        logger.info("[OAUTH] Connected %d/%d Meta ad accounts for agency=%s", stored, len(results), tenant_id)
        return {"message": "Meta OAuth successful", "accounts": results}

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _verify_state(self, state: str, tenant_id: str, platform: PlatformEnum) -> None:
        verify_state_token(
            self.settings.OAUTH_STATE_SECRET,
            state,
            tenant_id,
            platform.value,
            max_age_seconds=self.settings.OAUTH_STATE_TTL_SECONDS,
        )

    def _ensure_agency(self, tenant_id: str) -> None:
        if self.db.get(Agency, tenant_id) is None:
            logger.warning("[OAUTH] Unknown agency %s", tenant_id)
            raise InvalidRequest(f"Unknown agency: {tenant_id}")

    def _call(self, method: str, url: str, platform: PlatformEnum, what: str, **kwargs: Any) -> Dict[str, Any]:
        """HTTP call where any failure means the connection attempt failed."""
        try:
            response = self.http.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            logger.error("[OAUTH] %s %s transport error: %s", platform.value, what, e)
            raise TokenExchangeFailed(f"Failed to {what}: {e}", platform.value) from e

        if response.status_code >= 400:
            logger.error("[OAUTH] %s %s failed (%d): %s", platform.value, what, response.status_code, response.text[:200])
            raise TokenExchangeFailed(f"Failed to {what}: HTTP {response.status_code}", platform.value)

        try:
            return response.json()
        except ValueError as e:
            raise TokenExchangeFailed(f"Failed to {what}: invalid JSON response", platform.value) from e

    def _exchange_google_code(self, code: str, redirect_uri: str, platform: PlatformEnum) -> TokenBundle:
        data = self._call(
            "POST",
            GOOGLE_TOKEN_URL,
            platform,
            "exchange code for tokens",
            data={
                "code": code,
                "client_id": self.settings.GOOGLE_CLIENT_ID,
                "client_secret": self.settings.GOOGLE_CLIENT_SECRET,
                "redirect_uri": redirect_uri,
                "grant_type": "authorization_code",
            },
        )
        access_token = data.get("access_token")
        if not access_token:
            logger.error("[OAUTH] Google token response missing access_token")
            raise TokenExchangeFailed("Failed to exchange code for tokens: no access token", platform.value)

        logger.info(
            "[OAUTH] Google token exchange ok (access=%d chars, refresh=%s)",
            len(access_token), "yes" if data.get("refresh_token") else "no",
        )
        return TokenBundle(
            access_token=access_token,
            refresh_token=data.get("refresh_token"),
            expires_at=_expires_at(data.get("expires_in")),
            scope=data.get("scope"),
        )

    def _discover_google_account(self, platform: PlatformEnum, access_token: str) -> DiscoveredAccount:
        headers = {"Authorization": f"Bearer {access_token}"}

        if platform == PlatformEnum.ga4:
            data = self._call("GET", GA4_ADMIN_URL, platform, "list GA4 properties", headers=headers)
            for summary in data.get("accountSummaries", []) or []:
                for prop in summary.get("propertySummaries", []) or []:
                    property_id = prop["property"].split("/")[-1]
                    return DiscoveredAccount(
                        account_id=property_id,
                        account_name=prop.get("displayName"),
                        extra={"property_id": property_id},
                    )

        elif platform == PlatformEnum.google_ads:
            headers["developer-token"] = require_setting(
                self.settings.GOOGLE_ADS_DEVELOPER_TOKEN, "GOOGLE_ADS_DEVELOPER_TOKEN"
            )
            data = self._call("GET", GOOGLE_ADS_CUSTOMERS_URL, platform, "list Google Ads customers", headers=headers)
            for resource_name in data.get("resourceNames", []) or []:
                customer_id = resource_name.split("/")[-1]
                return DiscoveredAccount(
                    account_id=customer_id,
                    account_name=f"Google Ads {customer_id}",
                    extra={"customer_id": customer_id},
                )

        elif platform == PlatformEnum.search_console:
            data = self._call("GET", SEARCH_CONSOLE_SITES_URL, platform, "list Search Console sites", headers=headers)
            for site in data.get("siteEntry", []) or []:
                site_url = site["siteUrl"]
                return DiscoveredAccount(account_id=site_url, account_name=site_url, extra={"site_url": site_url})

        logger.error("[OAUTH] No %s accounts visible to this authorization", platform.value)
        raise TokenExchangeFailed(f"No {platform.value} accounts found for this authorization", platform.value)

    def _exchange_meta_code(self, code: str, redirect_uri: str) -> TokenBundle:
        platform = PlatformEnum.meta_ads
        data = self._call(
            "GET",
            f"{META_GRAPH_URL}/oauth/access_token",
            platform,
            "exchange code for tokens",
            params={
                "client_id": self.settings.META_APP_ID,
                "client_secret": self.settings.META_APP_SECRET,
                "redirect_uri": redirect_uri,
                "code": code,
            },
        )
        access_token = data.get("access_token")
        if not access_token:
            logger.error("[OAUTH] Meta token response missing access_token")
            raise TokenExchangeFailed("Failed to exchange code for tokens: no access token", platform.value)
        return TokenBundle(
            access_token=access_token,
            expires_at=_expires_at(data.get("expires_in")),
            scope=",".join(self.settings.meta_scopes),
        )

    def _exchange_long_lived(self, tokens: TokenBundle) -> TokenBundle:
        """Swap a short-lived Meta token for a ~60 day one; keep the original on failure."""
        try:
            data = self._call(
                "GET",
                f"{META_GRAPH_URL}/oauth/access_token",
                PlatformEnum.meta_ads,
                "exchange for long-lived token",
                params={
                    "grant_type": "fb_exchange_token",
                    "client_id": self.settings.META_APP_ID,
                    "client_secret": self.settings.META_APP_SECRET,
                    "fb_exchange_token": tokens.access_token,
                },
            )
        except TokenExchangeFailed as e:
            logger.warning("[OAUTH] Long-lived token exchange failed, using short-lived token: %s", e.message)
            return tokens

        if not data.get("access_token"):
            logger.warning("[OAUTH] Long-lived token response had no access_token, using short-lived token")
            return tokens

        logger.info("[OAUTH] Exchanged for long-lived Meta token (%d chars)", len(data["access_token"]))
        return TokenBundle(
            access_token=data["access_token"],
            expires_at=_expires_at(data.get("expires_in")) or tokens.expires_at,
            scope=tokens.scope,
        )

    def _discover_meta_accounts(self, access_token: str) -> List[DiscoveredAccount]:
        """List /me/adaccounts across pages, deduplicated by numeric id."""
        platform = PlatformEnum.meta_ads
        url: Optional[str] = f"{META_GRAPH_URL}/me/adaccounts"
        params: Optional[Dict[str, Any]] = {
            "fields": "id,account_id,name",
            "access_token": access_token,
            "limit": 200,
        }

        seen: Dict[str, DiscoveredAccount] = {}
        while url:
            data = self._call("GET", url, platform, "list Meta ad accounts", params=params)
            for entry in data.get("data", []) or []:
                numeric_id = str(entry.get("account_id") or entry["id"]).replace("act_", "")
                if numeric_id in seen:
                    continue
                seen[numeric_id] = DiscoveredAccount(
                    account_id=numeric_id,
                    account_name=entry.get("name"),
                    extra={"ad_account_id": f"act_{numeric_id}"},
                )
            # `next` already carries the cursor and access token.
            url = (data.get("paging") or {}).get("next")
            params = None

        if not seen:
            logger.error("[OAUTH] No Meta ad accounts visible to this token")
            raise TokenExchangeFailed("No ad accounts found for this Meta user", platform.value)

        logger.info("[OAUTH] Discovered %d Meta ad account(s)", len(seen))
        return list(seen.values())
