from __future__ import annotations

from siteqa.core.config import get_settings
from siteqa.providers.sitemeta.base import SiteMetadataProvider
from siteqa.providers.sitemeta.fake import FakeSiteMetadataProvider
from siteqa.providers.sitemeta.http_fetch import HttpSiteMetadataProvider


def get_site_metadata_provider() -> SiteMetadataProvider:
    settings = get_settings()
    provider = (settings.site_metadata_provider or "http").lower()

    if provider == "fake":
        return FakeSiteMetadataProvider()
    if provider == "http":
        return HttpSiteMetadataProvider()

    raise ValueError(f"Unsupported site metadata provider: {provider}")
