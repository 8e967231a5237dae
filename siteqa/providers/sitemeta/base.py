from __future__ import annotations

from typing import Protocol
from urllib.parse import urlparse


class SiteMetadataProvider(Protocol):
    async def resolve_site_name(self, url: str) -> str:
        ...


def bare_domain(url: str) -> str:
    # Hostname without scheme, port or a leading "www.".
    candidate = url.strip()
    if "://" not in candidate:
        candidate = f"http://{candidate}"
    host = (urlparse(candidate).hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]
    return host
