"""Tests for credential persistence and integration bookkeeping."""

from datetime import datetime, timezone

import pytest

from adsync.errors import IntegrationNotFound, InvalidCredentials
from adsync.models import Integration, PlatformEnum, SyncStatusEnum
from adsync.services.credential_store import (
    deactivate_integration,
    get_integration,
    load_credentials,
    mark_sync_pending,
    upsert_integration,
)


def test_tokens_are_encrypted_at_rest(db, cipher, make_integration):
    integration = make_integration(
        PlatformEnum.ga4,
        "123",
        extra={"property_id": "123"},
        access_token="ya29.access",
        refresh_token="1//refresh",
    )

    stored = integration.credentials
    assert stored["access_token"] != "ya29.access"
    assert stored["refresh_token"] != "1//refresh"
    assert stored["property_id"] == "123"

    credentials = load_credentials(integration, cipher)
    assert credentials["access_token"] == "ya29.access"
    assert credentials["refresh_token"] == "1//refresh"
    assert credentials["property_id"] == "123"


def test_repeat_exchange_overwrites_single_row(db, cipher, agency, make_integration):
    first = make_integration(PlatformEnum.meta_ads, "555", access_token="old-token")
    first.last_sync = datetime(2024, 1, 1, tzinfo=timezone.utc)
    first.is_active = False
    db.commit()

    upsert_integration(
        db,
        cipher,
        agency_id=agency.id,
        platform=PlatformEnum.meta_ads,
        account_id="555",
        account_name="Renamed",
        access_token="new-token",
    )

    rows = db.query(Integration).all()
    assert len(rows) == 1
    assert rows[0].is_active is True
    assert rows[0].last_sync is None
    assert rows[0].account_name == "Renamed"
    assert load_credentials(rows[0], cipher)["access_token"] == "new-token"


def test_exchanges_from_separate_sessions_converge_on_one_row(db, cipher, agency, session_factory):
    def exchange(session, token, name):
        return upsert_integration(
            session,
            cipher,
            agency_id=agency.id,
            platform=PlatformEnum.ga4,
            account_id="123",
            account_name=name,
            access_token=token,
            extra={"property_id": "123"},
        )

    first_session, second_session = session_factory(), session_factory()
    try:
        stale = exchange(first_session, "token-a", "First")
        exchange(second_session, "token-b", "Second")
        latest = exchange(first_session, "token-c", "Third")

        assert latest is stale
        assert latest.account_name == "Third"
        assert load_credentials(latest, cipher)["access_token"] == "token-c"
    finally:
        first_session.close()
        second_session.close()

    (row,) = db.query(Integration).all()
    assert row.account_name == "Third"
    assert load_credentials(row, cipher)["access_token"] == "token-c"


def test_get_integration_missing(db, agency):
    with pytest.raises(IntegrationNotFound):
        get_integration(db, agency.id, PlatformEnum.ga4, "nope")


def test_get_integration_ignores_other_agency(db, make_integration):
    make_integration(PlatformEnum.ga4, "123")

    with pytest.raises(IntegrationNotFound):
        get_integration(db, "agency-2", PlatformEnum.ga4, "123")


def test_deactivated_integration_is_not_found(db, agency, make_integration):
    make_integration(PlatformEnum.ga4, "123")

    deactivate_integration(db, agency.id, PlatformEnum.ga4, "123")

    assert db.query(Integration).count() == 1
    with pytest.raises(IntegrationNotFound):
        get_integration(db, agency.id, PlatformEnum.ga4, "123")


def test_undecryptable_token_is_invalid_credentials(db, cipher, make_integration):
    integration = make_integration(PlatformEnum.ga4, "123")
    integration.credentials = dict(integration.credentials, access_token="garbage")
    db.commit()

    with pytest.raises(InvalidCredentials):
        load_credentials(integration, cipher)


def test_missing_blob_is_invalid_credentials(db, cipher, make_integration):
    integration = make_integration(PlatformEnum.ga4, "123")
    integration.credentials = None
    db.commit()

    with pytest.raises(InvalidCredentials):
        load_credentials(integration, cipher)


def test_mark_sync_pending(db, agency, make_integration):
    integration = make_integration(PlatformEnum.google_ads, "1234567890")

    touched = mark_sync_pending(db, agency.id, PlatformEnum.google_ads, "1234567890")
    db.commit()
    db.refresh(integration)

    assert touched == 1
    assert integration.sync_status == SyncStatusEnum.pending
    assert integration.last_sync_attempted_at is not None
