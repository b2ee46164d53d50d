"""
Integration Errors
==================

Exception taxonomy for the OAuth, sync, webhook and alert handlers.

WHY THIS FILE EXISTS
--------------------
Every primary-path failure surfaces to the caller as HTTP 500 with a message,
but callers inside the service (worker, tests, retry helper) need to tell the
failure modes apart:
- CSRF state mismatch during OAuth
- Token exchange / expired tokens
- Missing integration or incomplete credentials
- Flaky remote APIs (the only retried category)
- Storage writes and webhook signatures

RELATED FILES
-------------
- adsync/main.py: renders AdSyncError subclasses as {error, timestamp}
- adsync/services/retry.py: retries RemoteApiFailure only
"""

from typing import Optional


class AdSyncError(Exception):
    """
    Base exception for all integration lifecycle errors.

    PARAMETERS:
        message: Human-readable error description
        platform: The platform (ga4, google_ads, ...) if applicable
    """

    def __init__(self, message: str, platform: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.platform = platform


class InvalidState(AdSyncError):
    """OAuth state token did not match the recomputed value (possible CSRF)."""


class TokenExchangeFailed(AdSyncError):
    """Provider refused the authorization code or account discovery failed."""


class TokenExpired(AdSyncError):
    """Stored access token is past its expiry; refresh is not implemented."""


class IntegrationNotFound(AdSyncError):
    """No active integration row for (tenant, platform, account)."""


class InvalidCredentials(AdSyncError):
    """Integration exists but lacks fields the platform needs."""


class RemoteApiFailure(AdSyncError):
    """
    Remote platform call failed.

    Transient by assumption: the retry helper retries these and only these.
    """

    def __init__(self, message: str, platform: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message, platform)
        self.status_code = status_code


class StorageWriteFailure(AdSyncError):
    """A primary write to the data store failed."""


class InvalidSignature(AdSyncError):
    """Inbound webhook signature is missing or does not verify."""


class RecordNotFound(AdSyncError):
    """Webhook or alert referenced a record that does not exist."""


class InvalidRequest(AdSyncError):
    """Request body is structurally valid JSON but semantically unusable."""


class UnsupportedPlatform(AdSyncError):
    """Platform identifier has no handler."""
