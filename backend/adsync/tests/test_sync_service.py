"""Tests for the generic platform sync and its adapters."""

import json
from datetime import date, datetime, timedelta, timezone
from types import SimpleNamespace

import httpx
import pytest
import requests

from adsync.errors import (
    IntegrationNotFound,
    InvalidCredentials,
    InvalidRequest,
    RemoteApiFailure,
    TokenExpired,
)
from adsync.models import (
    AdCampaign,
    EntityLevelEnum,
    Ga4Daily,
    GoogleAdsCampaignKpi,
    Integration,
    MetaAdsInsightDaily,
    PlatformEnum,
    SearchConsolePageDaily,
    SyncLog,
    SyncStatusEnum,
)
from adsync.services import sync_service
from adsync.services.platforms import SyncWindow
from adsync.services.platforms.ga4 import GA4Adapter
from adsync.services.platforms.google_ads import GoogleAdsAdapter
from adsync.services.platforms.meta_ads import MetaAdsAdapter
from adsync.services.platforms.search_console import SEARCH_CONSOLE_API_URL, SearchConsoleAdapter
from adsync.services.sync_service import sync_platform

TODAY = date(2024, 3, 31)


# ----------------------------------------------------------------------------
# Fakes
# ----------------------------------------------------------------------------

def _gads_row(campaign_id, name, day, impressions=100, clicks=10, cost_micros=5_000_000):
    return SimpleNamespace(
        campaign=SimpleNamespace(id=campaign_id, name=name, status=SimpleNamespace(name="ENABLED")),
        segments=SimpleNamespace(date=day),
        metrics=SimpleNamespace(
            impressions=impressions,
            clicks=clicks,
            cost_micros=cost_micros,
            conversions=2.0,
            conversions_value=80.0,
        ),
    )


class _FakeGoogleAdsService:
    def __init__(self, rows):
        self.rows = rows
        self.calls = []

    def search_stream(self, customer_id, query):
        self.calls.append((customer_id, query))
        return [SimpleNamespace(results=self.rows)]


class _FakeGoogleAdsClient:
    def __init__(self, service):
        self.service = service

    def get_service(self, name):
        assert name == "GoogleAdsService"
        return self.service


@pytest.fixture
def run_sync(db, settings, cipher, mock_http, sleeps):
    """Call sync_platform with adapters backed by the mock transport."""
    http_client = mock_http.client()

    def _run(platform, account_id, adapters=None, **kwargs):
        adapters = adapters or {
            PlatformEnum.ga4: GA4Adapter(http_client),
            PlatformEnum.search_console: SearchConsoleAdapter(http_client),
        }
        kwargs.setdefault("today", TODAY)
        return sync_platform(
            db,
            settings=settings,
            cipher=cipher,
            adapters=adapters,
            platform=platform,
            agency_id="agency-1",
            account_id=account_id,
            sleep=sleeps.append,
            **kwargs,
        )

    yield _run
    http_client.close()


# ----------------------------------------------------------------------------
# Window
# ----------------------------------------------------------------------------

def test_window_defaults_to_thirty_one_days():
    window = SyncWindow.resolve(None, None, today=TODAY)

    assert window.start == date(2024, 3, 1)
    assert window.end == TODAY
    assert (window.end - window.start).days + 1 == 31


def test_window_start_defaults_relative_to_end():
    window = SyncWindow.resolve(None, date(2024, 2, 10), today=TODAY)

    assert window.start == date(2024, 1, 11)


def test_window_rejects_inverted_range():
    with pytest.raises(InvalidRequest):
        SyncWindow.resolve(date(2024, 2, 2), date(2024, 2, 1))


# ----------------------------------------------------------------------------
# GA4 (httpx)
# ----------------------------------------------------------------------------

def test_ga4_sync_without_dates_writes_one_row_per_day(db, make_integration, ga4_api, run_sync):
    make_integration(PlatformEnum.ga4, "123", extra={"property_id": "123"})

    result = run_sync(PlatformEnum.ga4, "123")

    rows = db.query(Ga4Daily).order_by(Ga4Daily.date).all()
    assert len(rows) == 31
    assert rows[0].date == date(2024, 3, 1)
    assert rows[-1].date == TODAY
    assert result.records_synced == 31
    assert result.as_payload() == {
        "message": "GA4 data synced successfully",
        "days_synced": 31,
        "start_date": "2024-03-01",
        "end_date": "2024-03-31",
    }


def test_ga4_sends_bearer_token_and_window(make_integration, ga4_api, mock_http, run_sync):
    make_integration(PlatformEnum.ga4, "123", extra={"property_id": "123"}, access_token="ya29.token")

    run_sync(PlatformEnum.ga4, "123", start_date=date(2024, 3, 1), end_date=date(2024, 3, 3))

    (request,) = mock_http.requests
    assert str(request.url).endswith("/properties/123:runReport")
    assert request.headers["Authorization"] == "Bearer ya29.token"


def test_resync_overwrites_instead_of_duplicating(db, make_integration, ga4_api, run_sync):
    make_integration(PlatformEnum.ga4, "123", extra={"property_id": "123"})
    window = dict(start_date=date(2024, 3, 1), end_date=date(2024, 3, 5))

    run_sync(PlatformEnum.ga4, "123", **window)
    ga4_api.sessions = 77
    run_sync(PlatformEnum.ga4, "123", **window)

    db.expire_all()
    rows = db.query(Ga4Daily).all()
    assert len(rows) == 5
    assert {row.sessions for row in rows} == {77}


def test_success_stamps_integration_and_logs(db, make_integration, ga4_api, run_sync):
    integration = make_integration(PlatformEnum.ga4, "123", extra={"property_id": "123"})

    run_sync(PlatformEnum.ga4, "123", start_date=date(2024, 3, 1), end_date=date(2024, 3, 2))

    db.refresh(integration)
    assert integration.last_sync is not None
    assert integration.sync_status == SyncStatusEnum.idle
    (log,) = db.query(SyncLog).all()
    assert log.sync_status == "success"
    assert log.records_synced == 2
    assert log.window_start == date(2024, 3, 1)


def test_failing_success_bookkeeping_keeps_synced_rows(db, make_integration, ga4_api, run_sync, monkeypatch):
    make_integration(PlatformEnum.ga4, "123", extra={"property_id": "123"})

    def _broken(*args, **kwargs):
        raise RuntimeError("sync_logs unavailable")

    monkeypatch.setattr(sync_service, "_record_success", _broken)

    result = run_sync(PlatformEnum.ga4, "123", start_date=date(2024, 3, 1), end_date=date(2024, 3, 3))

    assert result.records_synced == 3
    assert result.as_payload()["message"] == "GA4 data synced successfully"
    assert db.query(Ga4Daily).count() == 3
    assert db.query(SyncLog).count() == 0


def test_transient_failures_are_retried(db, make_integration, ga4_api, sleeps, run_sync):
    make_integration(PlatformEnum.ga4, "123", extra={"property_id": "123"})
    ga4_api.fail_next = 2

    result = run_sync(PlatformEnum.ga4, "123", start_date=date(2024, 3, 1), end_date=date(2024, 3, 1))

    assert result.records_synced == 1
    assert ga4_api.calls == 3
    assert sleeps == [2.0, 4.0]


def test_exhausted_retries_record_failure(db, make_integration, ga4_api, sleeps, run_sync):
    integration = make_integration(PlatformEnum.ga4, "123", extra={"property_id": "123"})
    ga4_api.fail_next = 5

    with pytest.raises(RemoteApiFailure) as exc:
        run_sync(PlatformEnum.ga4, "123")

    assert exc.value.message.startswith("Failed after 3 attempts: ")
    assert "Backend unavailable" in exc.value.message
    assert db.query(Ga4Daily).count() == 0
    db.refresh(integration)
    assert integration.sync_status == SyncStatusEnum.error
    assert integration.last_sync is None
    (log,) = db.query(SyncLog).all()
    assert log.sync_status == "error"
    assert "Failed after 3 attempts" in log.error_message


def test_rejected_token_is_not_retried(db, make_integration, ga4_api, sleeps, run_sync):
    make_integration(PlatformEnum.ga4, "123", extra={"property_id": "123"})
    ga4_api.fail_next = 1
    ga4_api.fail_status = 401

    with pytest.raises(InvalidCredentials):
        run_sync(PlatformEnum.ga4, "123")

    assert ga4_api.calls == 1
    assert sleeps == []


def test_missing_integration(db, agency, run_sync):
    with pytest.raises(IntegrationNotFound):
        run_sync(PlatformEnum.ga4, "does-not-exist")


def test_missing_platform_field_is_invalid_credentials(db, make_integration, ga4_api, run_sync):
    make_integration(PlatformEnum.ga4, "123")  # no property_id

    with pytest.raises(InvalidCredentials):
        run_sync(PlatformEnum.ga4, "123")

    assert ga4_api.calls == 0


def test_inverted_window_is_rejected_before_any_call(db, make_integration, ga4_api, run_sync):
    make_integration(PlatformEnum.ga4, "123", extra={"property_id": "123"})

    with pytest.raises(InvalidRequest):
        run_sync(PlatformEnum.ga4, "123", start_date=date(2024, 3, 5), end_date=date(2024, 3, 1))

    assert ga4_api.calls == 0


# ----------------------------------------------------------------------------
# Search Console (httpx, paged)
# ----------------------------------------------------------------------------

def test_search_console_pages_through_results(db, make_integration, mock_http, settings, cipher, run_sync):
    site = "https://example.com/"
    make_integration(PlatformEnum.search_console, site, extra={"site_url": site})
    pages = [
        [{"keys": [f"{site}a", "2024-03-01"], "clicks": 5, "impressions": 50, "ctr": 0.1, "position": 2.5},
         {"keys": [f"{site}b", "2024-03-01"], "clicks": 1, "impressions": 20, "ctr": 0.05, "position": 7.0}],
        [{"keys": [f"{site}c", "2024-03-01"], "clicks": 0, "impressions": 3, "ctr": 0.0, "position": 30.0}],
    ]
    start_rows = []

    def handler(request):
        body = json.loads(request.content)
        start_rows.append(body["startRow"])
        return httpx.Response(200, json={"rows": pages[len(start_rows) - 1]})

    mock_http.add("POST", f"{SEARCH_CONSOLE_API_URL}/sites/", handler)
    adapters = {PlatformEnum.search_console: SearchConsoleAdapter(mock_http.client(), row_limit=2)}

    result = run_sync(PlatformEnum.search_console, site, adapters=adapters,
                      start_date=date(2024, 3, 1), end_date=date(2024, 3, 1))

    assert start_rows == [0, 2]
    assert result.count_field == "pages_synced"
    assert result.records_synced == 3
    assert db.query(SearchConsolePageDaily).filter_by(site_url=site).count() == 3


# ----------------------------------------------------------------------------
# Google Ads (SDK client injected)
# ----------------------------------------------------------------------------

def test_google_ads_sync_writes_kpis_and_campaigns(db, settings, make_integration, run_sync):
    make_integration(PlatformEnum.google_ads, "1234567890", extra={"customer_id": "123-456-7890"})
    service = _FakeGoogleAdsService([
        _gads_row(11, "Brand", "2024-03-01"),
        _gads_row(11, "Brand", "2024-03-02"),
        _gads_row(22, "Generic", "2024-03-01", cost_micros=0),
    ])
    adapter = GoogleAdsAdapter(settings, client_factory=lambda credentials, s: _FakeGoogleAdsClient(service))

    result = run_sync(PlatformEnum.google_ads, "1234567890", adapters={PlatformEnum.google_ads: adapter},
                      start_date=date(2024, 3, 1), end_date=date(2024, 3, 2))

    assert result.as_payload()["campaigns_synced"] == 3
    customer_id, query = service.calls[0]
    assert customer_id == "1234567890"
    assert "BETWEEN '2024-03-01' AND '2024-03-02'" in query

    kpi = db.query(GoogleAdsCampaignKpi).filter_by(campaign_id="11", date=date(2024, 3, 1)).one()
    assert kpi.campaign_name == "Brand"
    assert float(kpi.cost) == pytest.approx(5.0)

    campaigns = db.query(AdCampaign).order_by(AdCampaign.external_id).all()
    assert [(c.external_id, c.name, c.status) for c in campaigns] == [
        ("11", "Brand", "ENABLED"),
        ("22", "Generic", "ENABLED"),
    ]


def test_google_ads_resync_refreshes_campaign_mirror(db, settings, make_integration, run_sync):
    make_integration(PlatformEnum.google_ads, "1234567890", extra={"customer_id": "1234567890"})
    stale = datetime(2020, 1, 1, tzinfo=timezone.utc)
    db.add(AdCampaign(
        agency_id="agency-1",
        platform=PlatformEnum.google_ads,
        account_id="1234567890",
        level=EntityLevelEnum.campaign,
        external_id="11",
        name="Old",
        status="PAUSED",
        updated_at=stale,
    ))
    db.commit()
    service = _FakeGoogleAdsService([_gads_row(11, "Brand", "2024-03-01")])
    adapter = GoogleAdsAdapter(settings, client_factory=lambda credentials, s: _FakeGoogleAdsClient(service))

    run_sync(PlatformEnum.google_ads, "1234567890", adapters={PlatformEnum.google_ads: adapter},
             start_date=date(2024, 3, 1), end_date=date(2024, 3, 1))

    db.expire_all()
    (campaign,) = db.query(AdCampaign).all()
    assert (campaign.name, campaign.status) == ("Brand", "ENABLED")
    assert campaign.updated_at.replace(tzinfo=None) > datetime(2021, 1, 1)


def test_google_ads_expired_token_fails_without_remote_call(db, settings, make_integration, run_sync):
    integration = make_integration(
        PlatformEnum.google_ads,
        "1234567890",
        extra={"customer_id": "1234567890"},
        expires_at=datetime.now(timezone.utc) - timedelta(minutes=5),
    )
    service = _FakeGoogleAdsService([])
    adapter = GoogleAdsAdapter(settings, client_factory=lambda credentials, s: _FakeGoogleAdsClient(service))

    with pytest.raises(TokenExpired):
        run_sync(PlatformEnum.google_ads, "1234567890", adapters={PlatformEnum.google_ads: adapter})

    assert service.calls == []
    db.refresh(integration)
    assert integration.sync_status == SyncStatusEnum.error
    assert db.query(SyncLog).filter_by(sync_status="error").count() == 1


def test_google_ads_sdk_errors_become_remote_failures(db, settings, make_integration, sleeps, run_sync):
    make_integration(PlatformEnum.google_ads, "1234567890", extra={"customer_id": "1234567890"})

    class _Unavailable:
        def search_stream(self, customer_id, query):
            raise ConnectionError("UNAVAILABLE: upstream connect error")

    adapter = GoogleAdsAdapter(settings, client_factory=lambda credentials, s: _FakeGoogleAdsClient(_Unavailable()))

    with pytest.raises(RemoteApiFailure) as exc:
        run_sync(PlatformEnum.google_ads, "1234567890", adapters={PlatformEnum.google_ads: adapter})

    assert "UNAVAILABLE" in exc.value.message
    assert sleeps == [2.0, 4.0]


# ----------------------------------------------------------------------------
# Meta (insights fetcher injected)
# ----------------------------------------------------------------------------

def test_meta_sync_derives_ratios_with_zero_denominators(db, settings, make_integration, run_sync):
    make_integration(PlatformEnum.meta_ads, "555", extra={"ad_account_id": "act_555"})
    requested = []

    def fetcher(credentials, window):
        requested.append((credentials["ad_account_id"], window))
        return [
            {
                "campaign_id": "c1", "adset_id": "as1", "ad_id": "ad1", "date_start": "2024-03-01",
                "impressions": "1000", "clicks": "50", "spend": "100.0",
                "actions": [{"action_type": "purchase", "value": "4"}],
                "action_values": [{"action_type": "purchase", "value": "400.0"}],
            },
            {
                "campaign_id": "c1", "adset_id": "as1", "ad_id": "ad2", "date_start": "2024-03-01",
                "impressions": "0", "clicks": "0", "spend": "0",
            },
        ]

    adapter = MetaAdsAdapter(settings, insights_fetcher=fetcher)
    result = run_sync(PlatformEnum.meta_ads, "555", adapters={PlatformEnum.meta_ads: adapter},
                      start_date=date(2024, 3, 1), end_date=date(2024, 3, 1))

    assert result.as_payload()["insights_synced"] == 2
    assert requested[0][0] == "act_555"

    ad1 = db.query(MetaAdsInsightDaily).filter_by(ad_id="ad1").one()
    assert ad1.conversions == 4
    assert ad1.cpc == pytest.approx(2.0)
    assert ad1.cpa == pytest.approx(25.0)
    assert ad1.roas == pytest.approx(4.0)

    ad2 = db.query(MetaAdsInsightDaily).filter_by(ad_id="ad2").one()
    assert (ad2.cpc, ad2.cpa, ad2.roas) == (0.0, 0.0, 0.0)


def test_meta_connection_errors_are_retried_and_recorded(db, settings, make_integration, sleeps, run_sync):
    integration = make_integration(PlatformEnum.meta_ads, "555", extra={"ad_account_id": "act_555"})
    calls = []

    def fetcher(credentials, window):
        calls.append(window)
        raise requests.exceptions.ConnectionError("connection reset by peer")

    adapter = MetaAdsAdapter(settings, insights_fetcher=fetcher)

    with pytest.raises(RemoteApiFailure) as exc:
        run_sync(PlatformEnum.meta_ads, "555", adapters={PlatformEnum.meta_ads: adapter})

    assert exc.value.message.startswith("Failed after 3 attempts: ")
    assert "connection reset by peer" in exc.value.message
    assert len(calls) == 3
    assert sleeps == [2.0, 4.0]
    db.refresh(integration)
    assert integration.sync_status == SyncStatusEnum.error
    (log,) = db.query(SyncLog).all()
    assert log.sync_status == "error"
    assert "Meta API unreachable" in log.error_message


def test_unexpected_error_is_recorded_and_reraised(db, settings, make_integration, sleeps, run_sync):
    integration = make_integration(PlatformEnum.meta_ads, "555", extra={"ad_account_id": "act_555"})

    def fetcher(credentials, window):
        # ad_id missing
        return [{"campaign_id": "c1", "date_start": "2024-03-01", "impressions": "1"}]

    adapter = MetaAdsAdapter(settings, insights_fetcher=fetcher)

    with pytest.raises(KeyError):
        run_sync(PlatformEnum.meta_ads, "555", adapters={PlatformEnum.meta_ads: adapter})

    assert sleeps == []
    assert db.query(MetaAdsInsightDaily).count() == 0
    db.refresh(integration)
    assert integration.sync_status == SyncStatusEnum.error
    assert integration.last_sync_error.startswith("Unexpected error: KeyError")
    (log,) = db.query(SyncLog).all()
    assert log.sync_status == "error"
    assert log.error_message.startswith("Unexpected error: KeyError")


def test_sync_only_touches_requested_integration(db, make_integration, ga4_api, run_sync):
    make_integration(PlatformEnum.ga4, "123", extra={"property_id": "123"})
    other = make_integration(PlatformEnum.ga4, "456", extra={"property_id": "456"})

    run_sync(PlatformEnum.ga4, "123", start_date=date(2024, 3, 1), end_date=date(2024, 3, 1))

    db.refresh(other)
    assert other.last_sync is None
    assert db.query(Ga4Daily).filter_by(property_id="456").count() == 0
    assert db.query(Integration).count() == 2
