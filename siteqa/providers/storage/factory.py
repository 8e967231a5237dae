from __future__ import annotations

from siteqa.core.config import get_settings
from siteqa.providers.storage.base import ObjectStorage
from siteqa.providers.storage.memory import InMemoryObjectStorage
from siteqa.providers.storage.s3 import S3ObjectStorage


_memory_storage: InMemoryObjectStorage | None = None


def get_object_storage() -> ObjectStorage:
    global _memory_storage
    settings = get_settings()
    provider = (settings.storage_provider or "s3").lower()

    if provider == "memory":
        # One shared store per process so reads see earlier writes.
        if _memory_storage is None:
            _memory_storage = InMemoryObjectStorage()
        return _memory_storage
    if provider == "s3":
        return S3ObjectStorage()

    raise ValueError(f"Unsupported storage provider: {provider}")


def reset_memory_storage() -> None:
    global _memory_storage
    _memory_storage = None
