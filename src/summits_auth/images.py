"""Object storage for profile images.

Avatars fetched from OAuth providers during registration are uploaded here.
The S3 implementation talks to any S3-compatible endpoint with path-style
addressing.

## Configuration

- S3_ENDPOINT: Endpoint URL (default: https://s3.timeweb.cloud)
- S3_BUCKET: Bucket name
- S3_ACCESS_KEY / S3_SECRET_KEY: Static credentials
- S3_REGION: Region name passed to the client
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from summits_auth.config import Settings

logger = logging.getLogger(__name__)


class ImageUploadError(Exception):
    """Raised when an image cannot be stored."""


class ImageManager(ABC):
    """Destination for uploaded profile images."""

    @abstractmethod
    async def upload(self, data: bytes, key: str) -> None:
        """Store image bytes under the given key.

        Raises:
            ImageUploadError: If the upload fails
        """


class S3ImageManager(ImageManager):
    """Uploads images to an S3 bucket.

    boto3 is synchronous, so uploads run in a worker thread.
    """

    def __init__(
        self,
        bucket: str,
        access_key: str,
        secret_key: str,
        endpoint: str,
        region: str,
        client: Any | None = None,
    ):
        self.bucket = bucket
        self._client = client if client is not None else boto3.client(
            "s3",
            endpoint_url=endpoint,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            region_name=region,
            config=Config(s3={"addressing_style": "path"}),
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> S3ImageManager:
        return cls(
            bucket=settings.s3_bucket or "",
            access_key=settings.s3_access_key or "",
            secret_key=settings.s3_secret_key or "",
            endpoint=settings.s3_endpoint,
            region=settings.s3_region,
        )

    async def upload(self, data: bytes, key: str) -> None:
        try:
            await asyncio.to_thread(
                self._client.put_object,
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType="image/jpeg",
            )
        except (BotoCoreError, ClientError) as e:
            raise ImageUploadError(f"Failed to upload image to S3: {e}") from e

        logger.debug(f"Uploaded image {key} ({len(data)} bytes)")
