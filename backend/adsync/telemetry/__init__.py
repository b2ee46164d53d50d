"""
Telemetry Module
================

Error tracking for the integration service.

Components:
- sentry.py: Error tracking (FastAPI, SQLAlchemy and logging integrations)

Usage:
    from adsync.telemetry import init_sentry, capture_exception

    init_sentry(settings)
"""

from adsync.telemetry.sentry import (
    capture_exception,
    init_sentry,
    set_tenant_context,
)

__all__ = [
    "capture_exception",
    "init_sentry",
    "set_tenant_context",
]
