"""Credential store for per-tenant, per-platform OAuth credentials.

WHAT:
    Encrypts and persists provider tokens on `Integration` rows, loads and
    decrypts them for sync, and owns integration bookkeeping (last_sync,
    sync_status, deactivation).

WHY:
    - Keeps encryption logic out of handlers.
    - The integrations table is the only place live tokens exist; nothing
      else caches them.

REFERENCES:
    - adsync/security.py (TokenCipher)
    - adsync/services/oauth_service.py (writer)
    - adsync/services/sync_service.py (reader)
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from adsync.errors import IntegrationNotFound, InvalidCredentials, StorageWriteFailure
from adsync.models import Integration, PlatformEnum, SyncStatusEnum, utcnow
from adsync.security import TokenCipher
from adsync.services.upsert import upsert_rows

logger = logging.getLogger(__name__)

ENCRYPTED_FIELDS = ("access_token", "refresh_token")
INTEGRATION_KEY = ("agency_id", "platform", "account_id")


def _label(platform: PlatformEnum, account_id: str) -> str:
    return f"{platform.value}:{account_id}"


def upsert_integration(
    db: Session,
    cipher: TokenCipher,
    *,
    agency_id: str,
    platform: PlatformEnum,
    account_id: str,
    account_name: Optional[str] = None,
    access_token: str,
    refresh_token: Optional[str] = None,
    expires_at: Optional[datetime] = None,
    scope: Optional[str] = None,
    extra: Optional[Dict[str, Any]] = None,
) -> Integration:
    """Encrypt and persist credentials for (agency, platform, account).

    WHAT:
        Creates the Integration row or overwrites the existing one.
        Last exchange wins: credentials replaced, is_active=True, last_sync reset.
    WHY:
        Re-running OAuth for the same account must not create duplicates.

    Raises:
        StorageWriteFailure: if the write or commit fails (session rolled back).
    """
    label = _label(platform, account_id)
    credentials: Dict[str, Any] = {
        "access_token": cipher.encrypt_secret(access_token, context=f"{label}:access"),
        "refresh_token": (
            cipher.encrypt_secret(refresh_token, context=f"{label}:refresh") if refresh_token else None
        ),
        "expires_at": expires_at.isoformat() if expires_at else None,
        "scope": scope,
    }
    if extra:
        credentials.update(extra)

    row = {
        "agency_id": agency_id,
        "platform": platform,
        "account_id": account_id,
        "account_name": account_name,
        "credentials": credentials,
        "is_active": True,
        "last_sync": None,
        "sync_status": SyncStatusEnum.idle,
        "last_sync_error": None,
        "updated_at": utcnow(),
    }

    try:
        # Concurrent exchanges for the same key converge on the last writer.
        upsert_rows(db, Integration, [row], conflict_columns=INTEGRATION_KEY)
        db.commit()
    except StorageWriteFailure as e:
        db.rollback()
        logger.error("[CREDENTIALS] Failed to store integration for %s: %s", label, e.message)
        e.platform = platform.value
        raise
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("[CREDENTIALS] Failed to store integration for %s: %s", label, e)
        raise StorageWriteFailure(f"Failed to store integration: {e}", platform.value) from e

    logger.info("[CREDENTIALS] Stored integration for %s (agency=%s)", label, agency_id)
    return (
        db.query(Integration)
        .filter(
            Integration.agency_id == agency_id,
            Integration.platform == platform,
            Integration.account_id == account_id,
        )
        .populate_existing()
        .one()
    )


def get_integration(
    db: Session,
    agency_id: str,
    platform: PlatformEnum,
    account_id: str,
) -> Integration:
    """Return the active integration or raise IntegrationNotFound."""
    integration = (
        db.query(Integration)
        .filter(
            Integration.agency_id == agency_id,
            Integration.platform == platform,
            Integration.account_id == account_id,
        )
        .first()
    )
    if not integration or not integration.is_active:
        logger.warning(
            "[CREDENTIALS] No active integration for %s (agency=%s)",
            _label(platform, account_id),
            agency_id,
        )
        raise IntegrationNotFound(
            f"Integration not found for {platform.value} account {account_id}",
            platform.value,
        )
    return integration


def load_credentials(integration: Integration, cipher: TokenCipher) -> Dict[str, Any]:
    """Return the credential blob with tokens decrypted.

    Raises:
        InvalidCredentials: blob missing, or a stored token cannot be decrypted.
    """
    platform = integration.platform
    label = _label(platform, integration.account_id)
    stored = integration.credentials
    if not stored or not isinstance(stored, dict):
        raise InvalidCredentials("Invalid credentials", platform.value)

    credentials = dict(stored)
    for field in ENCRYPTED_FIELDS:
        ciphertext = stored.get(field)
        if not ciphertext:
            credentials[field] = None
            continue
        try:
            credentials[field] = cipher.decrypt_secret(ciphertext, context=f"{label}:{field}")
        except ValueError as e:
            raise InvalidCredentials(f"Invalid credentials: {e}", platform.value) from e
    return credentials


def mark_synced(db: Session, integration: Integration, when: Optional[datetime] = None) -> None:
    """Stamp last_sync and clear error state (bookkeeping, caller commits)."""
    integration.last_sync = when or utcnow()
    integration.sync_status = SyncStatusEnum.idle
    integration.last_sync_error = None


def mark_sync_pending(
    db: Session,
    agency_id: str,
    platform: PlatformEnum,
    account_id: str,
    when: Optional[datetime] = None,
) -> int:
    """Flag an integration for the sync worker. Returns rows touched (caller commits)."""
    return (
        db.query(Integration)
        .filter(
            Integration.agency_id == agency_id,
            Integration.platform == platform,
            Integration.account_id == account_id,
        )
        .update(
            {
                Integration.sync_status: SyncStatusEnum.pending,
                Integration.last_sync_attempted_at: when or utcnow(),
            },
            synchronize_session=False,
        )
    )


def deactivate_integration(db: Session, agency_id: str, platform: PlatformEnum, account_id: str) -> Integration:
    """Soft-disable an integration; rows are never hard-deleted."""
    integration = get_integration(db, agency_id, platform, account_id)
    integration.is_active = False
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise StorageWriteFailure(f"Failed to deactivate integration: {e}", platform.value) from e
    logger.info("[CREDENTIALS] Deactivated %s (agency=%s)", _label(platform, account_id), agency_id)
    return integration
