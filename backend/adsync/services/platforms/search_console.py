"""Search Console adapter (searchAnalytics.query, paged by page x date)."""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, List, Sequence
from urllib.parse import quote

import httpx

from adsync.models import PlatformEnum, SearchConsolePageDaily
from adsync.services.platforms.base import PlatformAdapter, SyncWindow, request_json

logger = logging.getLogger(__name__)

SEARCH_CONSOLE_API_URL = "https://www.googleapis.com/webmasters/v3"
ROW_LIMIT = 25000  # API maximum per request


class SearchConsoleAdapter(PlatformAdapter):
    platform = PlatformEnum.search_console
    display_name = "Search Console"
    metric_model = SearchConsolePageDaily
    conflict_columns = ("agency_id", "site_url", "page", "date")
    required_fields = ("access_token", "refresh_token", "site_url")
    count_field = "pages_synced"

    def __init__(self, http_client: httpx.Client, row_limit: int = ROW_LIMIT):
        self.http_client = http_client
        self.row_limit = row_limit

    def fetch_remote_metrics(self, credentials: Dict[str, Any], window: SyncWindow) -> List[Dict[str, Any]]:
        site_url = credentials["site_url"]
        url = f"{SEARCH_CONSOLE_API_URL}/sites/{quote(site_url, safe='')}/searchAnalytics/query"

        records: List[Dict[str, Any]] = []
        start_row = 0
        while True:
            payload = request_json(
                self.http_client,
                "POST",
                url,
                platform=self.platform,
                access_token=credentials["access_token"],
                json={
                    "startDate": window.start.isoformat(),
                    "endDate": window.end.isoformat(),
                    "dimensions": ["page", "date"],
                    "rowLimit": self.row_limit,
                    "startRow": start_row,
                },
            )
            rows = payload.get("rows", []) or []
            for row in rows:
                page, day = row["keys"][0], row["keys"][1]
                records.append({
                    "page": page,
                    "date": date.fromisoformat(day),
                    "clicks": int(row.get("clicks", 0)),
                    "impressions": int(row.get("impressions", 0)),
                    "ctr": float(row.get("ctr", 0.0)),
                    "position": float(row.get("position", 0.0)),
                })

            if len(rows) < self.row_limit:
                break
            start_row += len(rows)
            logger.debug("[SYNC] Search Console paging, start_row=%d", start_row)

        logger.info("[SYNC] Search Console returned %d page rows for %s", len(records), site_url)
        return records

    def to_rows(
        self,
        agency_id: str,
        account_id: str,
        credentials: Dict[str, Any],
        records: Sequence[Dict[str, Any]],
    ) -> List[Dict[str, Any]]:
        site_url = credentials["site_url"]
        return [{"agency_id": agency_id, "site_url": site_url, **record} for record in records]
