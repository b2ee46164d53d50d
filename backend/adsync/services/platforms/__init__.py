"""Platform adapter registry.

`build_adapters` wires one adapter per PlatformEnum member. Tests and the
worker pass their own map to swap in fakes.
"""

from typing import Dict, Optional

import httpx

from adsync.config import Settings
from adsync.errors import UnsupportedPlatform
from adsync.models import PlatformEnum
from adsync.services.platforms.base import PlatformAdapter, SyncWindow
from adsync.services.platforms.ga4 import GA4Adapter
from adsync.services.platforms.google_ads import GoogleAdsAdapter
from adsync.services.platforms.meta_ads import MetaAdsAdapter
from adsync.services.platforms.search_console import SearchConsoleAdapter

AdapterMap = Dict[PlatformEnum, PlatformAdapter]


def build_adapters(settings: Settings, http_client: Optional[httpx.Client] = None) -> AdapterMap:
    client = http_client or httpx.Client(timeout=settings.HTTP_TIMEOUT_SECONDS)
    return {
        PlatformEnum.ga4: GA4Adapter(client),
        PlatformEnum.google_ads: GoogleAdsAdapter(settings),
        PlatformEnum.search_console: SearchConsoleAdapter(client),
        PlatformEnum.meta_ads: MetaAdsAdapter(settings),
    }


def adapter_for(adapters: AdapterMap, platform: PlatformEnum) -> PlatformAdapter:
    try:
        return adapters[platform]
    except KeyError:
        raise UnsupportedPlatform(f"No sync handler for platform {platform}", str(platform))


__all__ = [
    "AdapterMap",
    "PlatformAdapter",
    "SyncWindow",
    "adapter_for",
    "build_adapters",
]
