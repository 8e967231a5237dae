from __future__ import annotations

import logging

import httpx

from siteqa.core.config import get_settings
from siteqa.core.errors import UpstreamError


logger = logging.getLogger(__name__)


class HttpApiMailer:
    """Transactional mail through a Resend-compatible JSON API."""

    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._settings = get_settings()
        self._client = client

    async def _post(self, payload: dict, headers: dict[str, str]) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(self._settings.mail_api_url, json=payload, headers=headers)
        timeout_s = self._settings.mail_timeout_ms / 1000.0
        async with httpx.AsyncClient(timeout=timeout_s) as client:
            return await client.post(self._settings.mail_api_url, json=payload, headers=headers)

    async def send(self, to: str, subject: str, html: str) -> None:
        api_key = self._settings.mail_api_key
        if not api_key:
            raise UpstreamError("MAIL_API_KEY is required for the http mail provider")
        payload = {
            "from": self._settings.mail_from,
            "to": [to],
            "subject": subject,
            "html": html,
        }
        headers = {"Authorization": f"Bearer {api_key}"}
        try:
            response = await self._post(payload, headers)
        except httpx.HTTPError as exc:
            logger.warning("mail_send_failed to=%s", to, exc_info=True)
            raise UpstreamError("Mail delivery failed") from exc
        if response.status_code >= 300:
            logger.warning("mail_send_rejected to=%s status=%s", to, response.status_code)
            raise UpstreamError("Mail delivery failed", status=response.status_code)
