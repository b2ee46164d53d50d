"""
Sentry Error Tracking
=====================

Centralized error tracking for the integration service.

Related files:
- adsync/main.py: Initializes Sentry in create_app and captures primary-path failures
- adsync/workers/sync_worker.py: Captures per-integration sync failures

Setup:
1. Create a project with the "FastAPI" platform
2. Copy the DSN to the SENTRY_DSN environment variable

Settings:
- SENTRY_DSN: project DSN (Sentry stays disabled when unset)
- ENVIRONMENT: environment name (production, staging, development)
"""

from __future__ import annotations

import logging
from typing import Optional

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from adsync.config import Settings

logger = logging.getLogger(__name__)


def init_sentry(settings: Settings) -> bool:
    """
    Initialize the Sentry SDK.

    Should be called once, before the FastAPI app starts serving.

    Returns:
        True if Sentry was initialized, False if no DSN is configured.
    """
    if not settings.SENTRY_DSN:
        logger.debug("[SENTRY] No DSN configured - error tracking disabled")
        return False

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENVIRONMENT,
        integrations=[
            FastApiIntegration(
                transaction_style="endpoint",
            ),
            SqlalchemyIntegration(),
            LoggingIntegration(
                level=logging.INFO,         # INFO+ as breadcrumbs
                event_level=logging.ERROR,  # ERROR+ as events
            ),
        ],
        traces_sample_rate=0.1,
        # Credential payloads must never leave the service.
        send_default_pii=False,
    )
    logger.info("[SENTRY] Initialized for %s environment", settings.ENVIRONMENT)
    return True


def set_tenant_context(agency_id: str, platform: Optional[str] = None) -> None:
    """Tag subsequent events with the agency (and platform) being processed."""
    sentry_sdk.set_tag("agency_id", agency_id)
    if platform:
        sentry_sdk.set_tag("platform", platform)


def capture_exception(exception: Exception, extra: Optional[dict] = None) -> None:
    """
    Report an exception that was handled but should still be tracked.

    A no-op transport is used by the SDK when init_sentry was never called,
    so this is safe to call unconditionally.
    """
    sentry_sdk.capture_exception(exception, extras=extra or {})
