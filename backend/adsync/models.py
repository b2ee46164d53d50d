"""SQLAlchemy ORM models and enums.

This module defines the persisted state owned by the integration core:
tenants (agencies), integrations with their encrypted credential blob,
platform-specific metric tables keyed by natural keys, campaign records
mutated by webhooks, append-only audit logs, and alert configuration.

Every table carries `agency_id`; every query filters on it.
"""

import uuid
from datetime import datetime, timezone
import enum

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship, declarative_base


# Single Base used by the entire application
Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Enums ---------------------------------------------------------

class PlatformEnum(str, enum.Enum):
    meta_ads = "meta_ads"
    google_ads = "google_ads"
    ga4 = "ga4"
    search_console = "search_console"


class SyncStatusEnum(str, enum.Enum):
    idle = "idle"
    pending = "pending"  # flagged by a webhook, picked up by the sync worker
    syncing = "syncing"
    error = "error"


class EntityLevelEnum(str, enum.Enum):
    campaign = "campaign"
    adset = "adset"
    ad = "ad"


class AlertTypeEnum(str, enum.Enum):
    low_budget = "low_budget"
    account_blocked = "account_blocked"
    api_error = "api_error"
    performance_drop = "performance_drop"


def _enum_column(enum_cls, **kwargs):
    return Column(Enum(enum_cls, values_callable=lambda obj: [e.value for e in obj]), **kwargs)


# Core models ----------------------------------------------------

class Agency(Base):
    """Agency is the tenant.

    All integrations, metric rows and logs belong to exactly one agency.
    The identifier is opaque (issued by the auth provider upstream).
    """
    __tablename__ = "agencies"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    integrations = relationship("Integration", back_populates="agency")

    def __str__(self):
        return self.name


class Integration(Base):
    """Stored OAuth credential bundle for one (agency, platform, account).

    WHAT:
        `credentials` is a JSON blob: encrypted access/refresh tokens, expiry,
        scope, and platform-specific identifiers (property_id, customer_id,
        site_url, ad_account_id).
    WHY:
        One row per remote account lets Meta agencies connect several ad
        accounts under one authorization.
    LIFECYCLE:
        Created/overwritten by OAuth (upsert), stamped by sync, flagged by
        webhooks. Never deleted; deactivation flips `is_active`.
    """
    __tablename__ = "integrations"
    __table_args__ = (
        UniqueConstraint("agency_id", "platform", "account_id", name="uq_integrations_agency_platform_account"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    agency_id = Column(String, ForeignKey("agencies.id"), nullable=False, index=True)
    platform = _enum_column(PlatformEnum, nullable=False)
    account_id = Column(String, nullable=False)
    account_name = Column(String, nullable=True)
    credentials = Column(JSON, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    # Sync bookkeeping
    last_sync = Column(DateTime(timezone=True), nullable=True)  # Last successful data sync
    last_sync_attempted_at = Column(DateTime(timezone=True), nullable=True)
    sync_status = _enum_column(SyncStatusEnum, default=SyncStatusEnum.idle, nullable=False)
    last_sync_error = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    agency = relationship("Agency", back_populates="integrations")

    def __str__(self):
        return f"{self.account_name or self.account_id} ({self.platform.value})"


# Metric tables ---------------------------------------------------
# Each table is written through upserts on its natural key so that
# re-syncing an overlapping window overwrites instead of duplicating.

class Ga4Daily(Base):
    """GA4 property metrics, one row per (agency, property, day)."""
    __tablename__ = "ga4_daily"
    __table_args__ = (
        UniqueConstraint("agency_id", "property_id", "date", name="uq_ga4_daily_agency_property_date"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    agency_id = Column(String, nullable=False, index=True)
    property_id = Column(String, nullable=False)
    date = Column(Date, nullable=False)
    sessions = Column(Integer, default=0)
    users = Column(Integer, default=0)
    new_users = Column(Integer, default=0)
    pageviews = Column(Integer, default=0)
    conversions = Column(Integer, default=0)
    revenue = Column(Numeric(18, 4), default=0)
    bounce_rate = Column(Float, default=0.0)
    synced_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class GoogleAdsCampaignKpi(Base):
    """Google Ads campaign KPIs, one row per (agency, account, campaign, day)."""
    __tablename__ = "google_ads_campaigns_kpi"
    __table_args__ = (
        UniqueConstraint(
            "agency_id", "account_id", "campaign_id", "date",
            name="uq_google_ads_kpi_agency_account_campaign_date",
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    agency_id = Column(String, nullable=False, index=True)
    account_id = Column(String, nullable=False)
    campaign_id = Column(String, nullable=False)
    campaign_name = Column(String, nullable=True)
    date = Column(Date, nullable=False)
    impressions = Column(Integer, default=0)
    clicks = Column(Integer, default=0)
    cost = Column(Numeric(18, 4), default=0)
    conversions = Column(Numeric(18, 4), default=0)
    conversion_value = Column(Numeric(18, 4), default=0)
    synced_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class SearchConsolePageDaily(Base):
    """Search Console page metrics, one row per (agency, site, page, day)."""
    __tablename__ = "search_console_pages_daily"
    __table_args__ = (
        UniqueConstraint("agency_id", "site_url", "page", "date", name="uq_search_console_agency_site_page_date"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    agency_id = Column(String, nullable=False, index=True)
    site_url = Column(String, nullable=False)
    page = Column(String, nullable=False)
    date = Column(Date, nullable=False)
    clicks = Column(Integer, default=0)
    impressions = Column(Integer, default=0)
    ctr = Column(Float, default=0.0)
    position = Column(Float, default=0.0)
    synced_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class MetaAdsInsightDaily(Base):
    """Meta ad-level insights, one row per (agency, account, ad, day).

    cpc/cpa/roas are stored alongside the base measures because the
    dashboard reads them directly; each is 0 when its denominator is 0.
    """
    __tablename__ = "meta_ads_insights_daily"
    __table_args__ = (
        UniqueConstraint("agency_id", "account_id", "ad_id", "date", name="uq_meta_insights_agency_account_ad_date"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    agency_id = Column(String, nullable=False, index=True)
    account_id = Column(String, nullable=False)
    campaign_id = Column(String, nullable=True)
    adset_id = Column(String, nullable=True)
    ad_id = Column(String, nullable=False)
    date = Column(Date, nullable=False)
    impressions = Column(Integer, default=0)
    clicks = Column(Integer, default=0)
    spend = Column(Numeric(18, 4), default=0)
    conversions = Column(Integer, default=0)
    revenue = Column(Numeric(18, 4), default=0)
    cpc = Column(Float, default=0.0)
    cpa = Column(Float, default=0.0)
    roas = Column(Float, default=0.0)
    synced_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class AdCampaign(Base):
    """Campaign/adset/ad record mutated incrementally by platform webhooks.

    Removal is logical: status becomes REMOVED, the row stays.
    """
    __tablename__ = "ad_campaigns"
    __table_args__ = (
        UniqueConstraint(
            "agency_id", "platform", "account_id", "level", "external_id",
            name="uq_ad_campaigns_agency_platform_account_level_external",
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    agency_id = Column(String, nullable=False, index=True)
    platform = _enum_column(PlatformEnum, nullable=False)
    account_id = Column(String, nullable=False)
    level = _enum_column(EntityLevelEnum, nullable=False)
    external_id = Column(String, nullable=False)
    name = Column(String, nullable=True)
    status = Column(String, nullable=True)  # ENABLED, PAUSED, REMOVED, ...
    budget = Column(Numeric(18, 4), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


# Audit logs (append-only) ----------------------------------------

class WebhookLog(Base):
    """One row per received webhook event, whatever the dispatch outcome."""
    __tablename__ = "webhook_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    agency_id = Column(String, nullable=False, index=True)
    platform = _enum_column(PlatformEnum, nullable=False)
    account_id = Column(String, nullable=False)
    event_type = Column(String, nullable=False)
    payload = Column(JSON, nullable=True)
    status = Column(String, nullable=False)  # processed, ignored, error
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class SyncLog(Base):
    """One row per sync attempt outcome. Diagnostics only, never read for control flow."""
    __tablename__ = "sync_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    agency_id = Column(String, nullable=False, index=True)
    platform = _enum_column(PlatformEnum, nullable=False)
    account_id = Column(String, nullable=False)
    sync_status = Column(String, nullable=False)  # success, error
    records_synced = Column(Integer, default=0)
    window_start = Column(Date, nullable=True)
    window_end = Column(Date, nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)


# Alerts -----------------------------------------------------------

class AlertConfig(Base):
    __tablename__ = "alerts_config"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    agency_id = Column(String, ForeignKey("agencies.id"), nullable=False, index=True)
    alert_type = _enum_column(AlertTypeEnum, nullable=False)
    is_active = Column(Boolean, default=False, nullable=False)
    threshold_value = Column(Float, nullable=True)
    webhook_url = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class AlertWebhookLog(Base):
    __tablename__ = "alert_webhook_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    alert_id = Column(String, nullable=False, index=True)
    action = Column(String, nullable=False)
    webhook_url = Column(String, nullable=True)
    status = Column(String, nullable=False)
    notification_status = Column(String, nullable=False)  # delivered, failed, skipped
    triggered_at = Column(DateTime(timezone=True), default=utcnow)
