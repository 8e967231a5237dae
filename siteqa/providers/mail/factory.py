from __future__ import annotations

from siteqa.core.config import get_settings
from siteqa.core.errors import UpstreamError
from siteqa.providers.mail.base import Mailer
from siteqa.providers.mail.fake import FakeMailer
from siteqa.providers.mail.http_api import HttpApiMailer


_fake_mailer: FakeMailer | None = None


class _DisabledMailer:
    async def send(self, to: str, subject: str, html: str) -> None:
        # Sending must never be reported as success when no provider is configured.
        raise UpstreamError("MAIL_PROVIDER is set to none")


def get_mailer() -> Mailer:
    global _fake_mailer
    settings = get_settings()
    provider = (settings.mail_provider or "none").lower()

    if provider == "none":
        return _DisabledMailer()
    if provider == "fake":
        if _fake_mailer is None:
            _fake_mailer = FakeMailer()
        return _fake_mailer
    if provider == "http":
        return HttpApiMailer()

    raise ValueError(f"Unsupported mail provider: {provider}")


def reset_fake_mailer() -> None:
    global _fake_mailer
    _fake_mailer = None
