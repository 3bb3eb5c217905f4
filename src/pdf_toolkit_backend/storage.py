"""
Object storage for transformation results.

This module provides functionality for:
- Uploading result files to an S3-compatible bucket
- Returning a durable link (public base URL or presigned URL) for each upload

Credentials and bucket details are injected at construction from settings;
nothing is read from module-level globals. When no bucket is configured the
factory returns ``None`` and the pipeline refuses ``upload`` requests.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional
from uuid import uuid4

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .configuration import StorageSettings
from .errors import DeliveryError

logger = logging.getLogger(__name__)


@dataclass
class StoredObject:
    key: str
    url: str


class S3Storage:
    """
    Upload results to S3 and hand back links.

    Args:
        bucket: Target bucket name
        prefix: Key prefix for every upload
        region: AWS region passed to the client
        endpoint_url: Custom endpoint for S3-compatible services
        public_base_url: If set, links are ``<public_base_url>/<key>`` instead of presigned URLs
        presign_expiration: Presigned URL lifetime in seconds
        access_key_id: Explicit credentials; boto3's default chain is used when omitted
        secret_access_key: Explicit credentials; boto3's default chain is used when omitted
        client: Pre-built boto3 client (used by tests)
    """

    def __init__(
        self,
        bucket: str,
        prefix: str = "",
        region: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        public_base_url: Optional[str] = None,
        presign_expiration: int = 3600,
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        client: Any = None,
    ) -> None:
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        self.region = region
        self.endpoint_url = endpoint_url
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None
        self.presign_expiration = presign_expiration
        self._access_key_id = access_key_id
        self._secret_access_key = secret_access_key
        self._client = client

    @classmethod
    def from_settings(cls, settings: StorageSettings) -> "S3Storage":
        return cls(
            bucket=settings.bucket,
            prefix=settings.prefix,
            region=settings.region,
            endpoint_url=settings.endpoint_url,
            public_base_url=settings.public_base_url,
            presign_expiration=settings.presign_expiration,
            access_key_id=settings.access_key_id,
            secret_access_key=settings.secret_access_key,
        )

    @property
    def client(self) -> Any:
        """Lazily create the boto3 client on first use."""
        if self._client is None:
            kwargs = {"region_name": self.region, "endpoint_url": self.endpoint_url}
            if self._access_key_id and self._secret_access_key:
                kwargs["aws_access_key_id"] = self._access_key_id
                kwargs["aws_secret_access_key"] = self._secret_access_key
            self._client = boto3.client("s3", **kwargs)
        return self._client

    def build_key(self, filename: str) -> str:
        name = f"{uuid4().hex}-{filename}"
        return f"{self.prefix}/{name}" if self.prefix else name

    def upload_file(self, path: Path, filename: str, content_type: str = "application/pdf") -> StoredObject:
        """
        Upload a local file and return its key and link.

        Raises:
            DeliveryError: If the upload or link generation fails
        """
        key = self.build_key(filename)
        try:
            logger.info(f"Uploading {path.name} to s3://{self.bucket}/{key}")
            self.client.upload_file(
                str(path),
                self.bucket,
                key,
                ExtraArgs={
                    "ContentType": content_type,
                    "ContentDisposition": f'attachment; filename="{filename}"',
                },
            )
            url = self.link_for(key)
        except (ClientError, BotoCoreError) as exc:
            logger.error(f"S3 upload failed: {exc}")
            raise DeliveryError(f"Upload to storage failed: {exc}") from exc
        logger.info(f"Upload successful: s3://{self.bucket}/{key}")
        return StoredObject(key=key, url=url)

    def link_for(self, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{key}"
        return self.client.generate_presigned_url(
            "get_object",
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=self.presign_expiration,
        )


def build_storage(settings: StorageSettings) -> Optional[S3Storage]:
    """Create the storage collaborator, or None if no bucket is configured."""
    if not settings.enabled:
        logger.warning("S3_BUCKET_NAME not configured, upload delivery disabled")
        return None
    return S3Storage.from_settings(settings)
