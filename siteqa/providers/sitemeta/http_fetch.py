from __future__ import annotations

import logging

from bs4 import BeautifulSoup
import httpx

from siteqa.core.config import get_settings
from siteqa.providers.sitemeta.base import bare_domain


logger = logging.getLogger(__name__)

_USER_AGENT = "SiteQA/1.0 (+site-name-lookup)"


def extract_site_name(html: str) -> str | None:
    # Open Graph site name first, then the document title.
    soup = BeautifulSoup(html, "html.parser")
    og_tag = soup.find("meta", attrs={"property": "og:site_name"})
    if og_tag is not None:
        content = (og_tag.get("content") or "").strip()
        if content:
            return content
    if soup.title is not None and soup.title.string:
        title = soup.title.string.strip()
        if title:
            return title
    return None


class HttpSiteMetadataProvider:
    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._settings = get_settings()
        self._client = client

    def _new_client(self) -> httpx.AsyncClient:
        timeout_s = self._settings.site_fetch_timeout_ms / 1000.0
        return httpx.AsyncClient(
            timeout=timeout_s,
            follow_redirects=True,
            headers={"User-Agent": _USER_AGENT},
        )

    async def _fetch(self, url: str) -> httpx.Response:
        if self._client is not None:
            return await self._client.get(url)
        async with self._new_client() as client:
            return await client.get(url)

    async def resolve_site_name(self, url: str) -> str:
        # Never raises: any fetch or parse problem degrades to the bare domain.
        fallback = bare_domain(url)
        try:
            response = await self._fetch(url)
            response.raise_for_status()
            name = extract_site_name(response.text)
        except (httpx.HTTPError, httpx.InvalidURL, ValueError):
            logger.warning("site_name_fetch_failed url=%s", url, exc_info=True)
            return fallback
        return name or fallback
