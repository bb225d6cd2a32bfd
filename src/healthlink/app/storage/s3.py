"""S3 artifact storage backend.

boto3 is synchronous; each call runs in a worker thread so the event loop
never blocks on S3. Objects are private; readers only ever get presigned
GET URLs.
"""

from __future__ import annotations

import asyncio
from typing import Any

import boto3


class S3ArtifactStorage:
    """``ArtifactStorage`` over a single S3 bucket."""

    def __init__(
        self,
        bucket: str,
        *,
        region: str | None = None,
        client: Any | None = None,
    ) -> None:
        if not bucket:
            raise ValueError('bucket is required')
        self._bucket = bucket
        self._client = client or boto3.client('s3', region_name=region)

    async def put(
        self, key: str, data: bytes, *, content_type: str, metadata: dict[str, str],
    ) -> None:
        await asyncio.to_thread(
            self._client.put_object,
            Bucket=self._bucket,
            Key=key,
            Body=data,
            ContentType=content_type,
            Metadata=metadata,
        )

    async def signed_url(self, key: str, ttl_seconds: int) -> str:
        return await asyncio.to_thread(
            self._client.generate_presigned_url,
            'get_object',
            Params={'Bucket': self._bucket, 'Key': key},
            ExpiresIn=ttl_seconds,
        )

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(
            self._client.delete_object, Bucket=self._bucket, Key=key,
        )
