from __future__ import annotations

from typing import Protocol


class ObjectStorage(Protocol):
    async def upload(self, data: bytes, key: str, content_type: str) -> None:
        ...

    async def signed_read_url(self, key: str, ttl_s: int | None = None) -> str:
        ...

    async def delete(self, key: str) -> None:
        ...
