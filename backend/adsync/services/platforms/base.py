"""Platform adapter interface shared by all sync handlers.

WHAT:
    A `PlatformAdapter` describes one remote platform: which credential
    fields it needs, how to fetch a date-ranged metrics dataset, how those
    records map onto its metric table, and the natural key to upsert on.

WHY:
    The sync control flow (load credentials -> fetch -> upsert -> stamp) is
    identical across GA4, Google Ads, Search Console and Meta. Adapters carry
    only the platform-specific fetch/transform step, so there is one
    `sync_platform` instead of four copy-pasted handlers.

REFERENCES:
    - adsync/services/sync_service.py (the generic flow)
    - adsync/services/platforms/__init__.py (registry keyed by PlatformEnum)
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, ClassVar, Dict, List, Optional, Sequence, Tuple

import httpx
from sqlalchemy.orm import Session

from adsync.errors import InvalidCredentials, InvalidRequest, RemoteApiFailure, TokenExpired
from adsync.models import PlatformEnum

logger = logging.getLogger(__name__)

# Statuses worth retrying: throttling and server-side failures.
TRANSIENT_STATUS_CODES = {408, 429, 500, 502, 503, 504}


@dataclass(frozen=True)
class SyncWindow:
    """Inclusive [start, end] date range to sync."""

    start: date
    end: date

    @classmethod
    def resolve(
        cls,
        start: Optional[date],
        end: Optional[date],
        *,
        today: Optional[date] = None,
        default_days: int = 30,
    ) -> "SyncWindow":
        """Apply defaults: end=today, start=end - default_days.

        With no dates on day D the window is [D-30, D] (31 days).
        """
        if today is None:
            today = datetime.now(timezone.utc).date()
        resolved_end = end or today
        resolved_start = start or (resolved_end - timedelta(days=default_days))
        if resolved_start > resolved_end:
            raise InvalidRequest(
                f"start_date {resolved_start.isoformat()} is after end_date {resolved_end.isoformat()}"
            )
        return cls(start=resolved_start, end=resolved_end)


class PlatformAdapter(ABC):
    """Capability set one platform contributes to the generic sync."""

    platform: ClassVar[PlatformEnum]
    display_name: ClassVar[str]
    metric_model: ClassVar[Any]
    conflict_columns: ClassVar[Tuple[str, ...]]
    required_fields: ClassVar[Tuple[str, ...]]
    count_field: ClassVar[str]
    enforce_token_expiry: ClassVar[bool] = False

    def validate_credentials(self, credentials: Dict[str, Any], *, now: Optional[datetime] = None) -> None:
        """Raise InvalidCredentials/TokenExpired before any remote call."""
        missing = [field for field in self.required_fields if not credentials.get(field)]
        if missing:
            logger.warning("[SYNC] %s credentials missing fields: %s", self.display_name, ", ".join(missing))
            raise InvalidCredentials("Invalid credentials", self.platform.value)

        if self.enforce_token_expiry:
            expires_at = parse_expiry(credentials.get("expires_at"))
            if expires_at is None:
                raise InvalidCredentials("Invalid credentials: missing token expiry", self.platform.value)
            if expires_at < (now or datetime.now(timezone.utc)):
                # Refresh-on-expiry is not implemented; the user must reconnect.
                raise TokenExpired("Token expired, refresh not implemented yet", self.platform.value)

    @abstractmethod
    def fetch_remote_metrics(self, credentials: Dict[str, Any], window: SyncWindow) -> List[Dict[str, Any]]:
        """Call the platform reporting API and return normalized records."""

    @abstractmethod
    def to_rows(
        self,
        agency_id: str,
        account_id: str,
        credentials: Dict[str, Any],
        records: Sequence[Dict[str, Any]],
    ) -> List[Dict[str, Any]]:
        """Map records onto `metric_model` columns, including the natural key."""

    def after_upsert(
        self,
        db: Session,
        agency_id: str,
        account_id: str,
        records: Sequence[Dict[str, Any]],
    ) -> None:
        """Hook for secondary tables written in the same transaction (caller commits)."""


def parse_expiry(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def request_json(
    client: httpx.Client,
    method: str,
    url: str,
    *,
    platform: PlatformEnum,
    access_token: Optional[str] = None,
    **kwargs: Any,
) -> Dict[str, Any]:
    """Perform an HTTP call and classify failures.

    - transport errors and transient statuses -> RemoteApiFailure (retried)
    - 401/403 -> InvalidCredentials (fatal)
    - other non-2xx -> RemoteApiFailure carrying the status code
    """
    headers = dict(kwargs.pop("headers", {}) or {})
    if access_token:
        headers["Authorization"] = f"Bearer {access_token}"

    try:
        response = client.request(method, url, headers=headers, **kwargs)
    except httpx.HTTPError as e:
        logger.warning("[SYNC] %s transport error calling %s: %s", platform.value, url, e)
        raise RemoteApiFailure(f"{platform.value} request failed: {e}", platform.value) from e

    if response.status_code in (401, 403):
        logger.warning("[SYNC] %s rejected credentials (%d)", platform.value, response.status_code)
        raise InvalidCredentials(
            f"Invalid credentials: {platform.value} returned {response.status_code}",
            platform.value,
        )

    if response.status_code >= 400:
        detail = _error_detail(response)
        level = logging.WARNING if response.status_code in TRANSIENT_STATUS_CODES else logging.ERROR
        logger.log(level, "[SYNC] %s API error %d: %s", platform.value, response.status_code, detail)
        raise RemoteApiFailure(
            f"{platform.value} API error {response.status_code}: {detail}",
            platform.value,
            status_code=response.status_code,
        )

    if not response.content:
        return {}
    return response.json()


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return str(error.get("message") or error)[:200]
    if error:
        return str(body.get("error_description") or error)[:200]
    return str(body)[:200]


def safe_div(numerator: float, denominator: float) -> float:
    return numerator / denominator if denominator else 0.0
