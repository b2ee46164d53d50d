"""Pytest configuration for adsync tests

WHAT: Shared fixtures for service-level and HTTP endpoint tests
WHY: One in-memory database, one deterministic Settings object, and one
     mock HTTP transport per test, so no test touches the network or sleeps
REFERENCES:
    - adsync/main.py: create_app(settings, session_factory, ...)
    - adsync/database.py: build_engine / build_session_factory
"""

import json
import os
import sys
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Generator

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

# Ensure backend is in path
BACKEND_ROOT = Path(__file__).resolve().parents[2]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

# Set test environment before adsync.main builds its module-level app
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from adsync.config import Settings  # noqa: E402
from adsync.database import build_engine, build_session_factory  # noqa: E402
from adsync.models import Agency, Base, PlatformEnum  # noqa: E402
from adsync.security import TokenCipher  # noqa: E402
from adsync.services.credential_store import upsert_integration  # noqa: E402
from adsync.services.platforms.ga4 import GA4_DATA_API_URL  # noqa: E402

# Must be URL-safe base64-encoded 32-byte string
TEST_FERNET_KEY = "MDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDA="


# ============================================================================
# Settings & Database Fixtures
# ============================================================================

@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        ENVIRONMENT="test",
        DATABASE_URL="sqlite:///:memory:",
        TOKEN_ENCRYPTION_KEY=TEST_FERNET_KEY,
        GOOGLE_CLIENT_ID="google-client-id",
        GOOGLE_CLIENT_SECRET="google-client-secret",
        GOOGLE_ADS_DEVELOPER_TOKEN="dev-token",
        META_APP_ID="meta-app-id",
        META_APP_SECRET="meta-app-secret",
        OAUTH_STATE_SECRET="state-secret",
        GOOGLE_ADS_WEBHOOK_SECRET="google-ads-hook-secret",
        META_WEBHOOK_SECRET="meta-hook-secret",
        AUTOMATION_WEBHOOK_URL=None,
        SENTRY_DSN=None,
    )


@pytest.fixture
def engine():
    """In-memory SQLite engine (StaticPool) with all tables."""
    engine = build_engine("sqlite:///:memory:")
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def db(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def cipher(settings) -> TokenCipher:
    return TokenCipher(settings.TOKEN_ENCRYPTION_KEY)


@pytest.fixture
def agency(db) -> Agency:
    agency = Agency(id="agency-1", name="Acme Agency")
    db.add(agency)
    db.commit()
    return agency


@pytest.fixture
def make_integration(db, cipher, agency):
    """Factory storing an integration through the real credential store."""

    def _make(
        platform: PlatformEnum,
        account_id: str,
        extra=None,
        expires_at=None,
        access_token="access-token",
        refresh_token="refresh-token",
    ):
        return upsert_integration(
            db,
            cipher,
            agency_id=agency.id,
            platform=platform,
            account_id=account_id,
            account_name=f"{platform.value} {account_id}",
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=expires_at or datetime.now(timezone.utc) + timedelta(hours=1),
            extra=extra,
        )

    return _make


# ============================================================================
# Outbound HTTP Fakes
# ============================================================================

class MockHttp:
    """Route table behind an httpx.MockTransport.

    Unmatched requests raise ConnectError, which is how an unreachable
    host looks to httpx callers.
    """

    def __init__(self):
        self.routes = []
        self.requests = []

    def add(self, method: str, url_prefix: str, handler) -> None:
        self.routes.append((method.upper(), url_prefix, handler))

    def respond(self, method: str, url_prefix: str, status_code: int = 200, json_body=None) -> None:
        self.add(method, url_prefix, lambda request: httpx.Response(status_code, json=json_body or {}))

    def calls_to(self, url_prefix: str):
        return [r for r in self.requests if str(r.url).startswith(url_prefix)]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        for method, prefix, handler in self.routes:
            if request.method == method and str(request.url).startswith(prefix):
                return handler(request)
        raise httpx.ConnectError(f"No route for {request.method} {request.url}", request=request)

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self))


class FakeGA4Api:
    """runReport fake returning one row per requested day."""

    def __init__(self):
        self.sessions = 10
        self.revenue = "125.5"
        self.fail_next = 0
        self.fail_status = 503
        self.calls = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls += 1
        if self.fail_next:
            self.fail_next -= 1
            return httpx.Response(self.fail_status, json={"error": {"message": "Backend unavailable"}})

        body = json.loads(request.content)
        start = date.fromisoformat(body["dateRanges"][0]["startDate"])
        end = date.fromisoformat(body["dateRanges"][0]["endDate"])
        rows = []
        day = start
        while day <= end:
            values = [self.sessions, 8, 3, 40, 2, self.revenue, "0.42"]
            rows.append({
                "dimensionValues": [{"value": day.strftime("%Y%m%d")}],
                "metricValues": [{"value": str(v)} for v in values],
            })
            day += timedelta(days=1)
        return httpx.Response(200, json={"rows": rows, "rowCount": len(rows)})


@pytest.fixture
def mock_http() -> MockHttp:
    return MockHttp()


@pytest.fixture
def ga4_api(mock_http) -> FakeGA4Api:
    api = FakeGA4Api()
    mock_http.add("POST", GA4_DATA_API_URL, api)
    return api


@pytest.fixture
def sleeps():
    """Backoff delays recorded instead of slept."""
    return []


# ============================================================================
# Application & Client Fixtures
# ============================================================================

@pytest.fixture
def app(settings, session_factory, mock_http, sleeps):
    """FastAPI app wired to the in-memory database and mock transport."""
    from adsync.main import create_app

    return create_app(
        settings=settings,
        session_factory=session_factory,
        http_client_factory=mock_http.client,
        sleep=sleeps.append,
    )


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app, raise_server_exceptions=False)
