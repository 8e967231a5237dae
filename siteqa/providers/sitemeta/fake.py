from __future__ import annotations

from siteqa.providers.sitemeta.base import bare_domain


class FakeSiteMetadataProvider:
    async def resolve_site_name(self, url: str) -> str:
        # No network in tests; behave like a page with no metadata.
        return bare_domain(url)
