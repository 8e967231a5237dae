from __future__ import annotations

import asyncio
import logging
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from siteqa.core.config import get_settings
from siteqa.core.errors import UpstreamError


logger = logging.getLogger(__name__)


class S3ObjectStorage:
    """Object storage backed by any S3-compatible endpoint (AWS, R2, MinIO)."""

    def __init__(self, client: Any | None = None) -> None:
        self._settings = get_settings()
        self._bucket = self._settings.s3_bucket
        self._client = client

    def _get_client(self) -> Any:
        if self._client is not None:
            return self._client
        self._client = boto3.client(
            "s3",
            endpoint_url=self._settings.s3_endpoint_url,
            aws_access_key_id=self._settings.s3_access_key,
            aws_secret_access_key=self._settings.s3_secret_key,
            region_name=self._settings.s3_region,
        )
        return self._client

    async def upload(self, data: bytes, key: str, content_type: str) -> None:
        client = self._get_client()
        try:
            # boto3 is blocking; keep it off the event loop.
            await asyncio.to_thread(
                client.put_object,
                Bucket=self._bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except (BotoCoreError, ClientError) as exc:
            logger.warning("storage_upload_failed key=%s", key, exc_info=True)
            raise UpstreamError("Object storage upload failed", key=key) from exc

    async def signed_read_url(self, key: str, ttl_s: int | None = None) -> str:
        client = self._get_client()
        expires_in = ttl_s if ttl_s is not None else self._settings.signed_url_ttl_s
        try:
            return await asyncio.to_thread(
                client.generate_presigned_url,
                "get_object",
                Params={"Bucket": self._bucket, "Key": key},
                ExpiresIn=expires_in,
            )
        except (BotoCoreError, ClientError) as exc:
            raise UpstreamError("Could not sign object URL", key=key) from exc

    async def delete(self, key: str) -> None:
        client = self._get_client()
        try:
            await asyncio.to_thread(client.delete_object, Bucket=self._bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            raise UpstreamError("Object storage delete failed", key=key) from exc
