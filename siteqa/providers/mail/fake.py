from __future__ import annotations

from dataclasses import dataclass

from siteqa.core.errors import UpstreamError


@dataclass(frozen=True)
class SentMessage:
    to: str
    subject: str
    html: str


class FakeMailer:
    def __init__(self) -> None:
        self.sent: list[SentMessage] = []
        self.fail = False

    async def send(self, to: str, subject: str, html: str) -> None:
        if self.fail:
            raise UpstreamError("Mail delivery failed")
        self.sent.append(SentMessage(to=to, subject=subject, html=html))
