from __future__ import annotations

from siteqa.core.errors import UpstreamError


class InMemoryObjectStorage:
    def __init__(self) -> None:
        # Objects keyed by storage key: (bytes, content type).
        self.objects: dict[str, tuple[bytes, str]] = {}
        self.fail_uploads = False

    async def upload(self, data: bytes, key: str, content_type: str) -> None:
        if self.fail_uploads:
            raise UpstreamError("Object storage upload failed", key=key)
        self.objects[key] = (data, content_type)

    async def signed_read_url(self, key: str, ttl_s: int | None = None) -> str:
        expires = ttl_s if ttl_s is not None else 0
        return f"memory://{key}?expires={expires}"

    async def delete(self, key: str) -> None:
        self.objects.pop(key, None)
