"""
Storage abstraction for S3-compatible object storage and in-memory testing.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol
from urllib.parse import urlparse

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from atelier.errors import StorageError


class StorageClient(Protocol):
    """Defines the operations the API needs from object storage."""

    def upload_bytes(
        self, bucket: str, key: str, data: bytes, content_type: str | None = None
    ) -> None:
        ...

    def public_url(self, bucket: str, key: str) -> str:
        ...

    def delete_object(self, bucket: str, key: str) -> None:
        ...


def key_from_url(url: str, segments: int = 1) -> str:
    """
    Recover an object key from its public URL.

    Product images live under a ``{product_id}/`` folder, so callers pass
    ``segments=2`` for them.
    """
    parts = [part for part in urlparse(url).path.split("/") if part]
    return "/".join(parts[-segments:])


@dataclass
class InMemoryStorageClient:
    """Test double for storage interactions."""

    base_url: str = "https://example.test/storage"
    stored_objects: dict = None

    def __post_init__(self):
        if self.stored_objects is None:
            self.stored_objects = {}

    def upload_bytes(
        self, bucket: str, key: str, data: bytes, content_type: str | None = None
    ) -> None:
        self.stored_objects[(bucket, key)] = (
            bytes(data),
            content_type or "application/octet-stream",
        )

    def public_url(self, bucket: str, key: str) -> str:
        return f"{self.base_url}/{bucket}/{key}"

    def delete_object(self, bucket: str, key: str) -> None:
        self.stored_objects.pop((bucket, key), None)

    def keys(self, bucket: str) -> list[str]:
        return [key for (stored_bucket, key) in self.stored_objects if stored_bucket == bucket]


@dataclass
class S3StorageClient:
    """
    S3-compatible storage client (Supabase Storage exposes an S3 endpoint).
    """

    endpoint: str
    region: str
    access_key_id: str
    secret_access_key: str
    public_base_url: str

    def __post_init__(self):
        config = Config(
            s3={"addressing_style": "path"},
            signature_version="s3v4",
        )
        self._client = boto3.client(
            "s3",
            endpoint_url=self.endpoint,
            region_name=self.region,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
            config=config,
        )
        self.public_base_url = self.public_base_url.rstrip("/")

    def upload_bytes(
        self, bucket: str, key: str, data: bytes, content_type: str | None = None
    ) -> None:
        try:
            self._client.put_object(
                Bucket=bucket,
                Key=key,
                Body=data,
                ContentType=content_type or "application/octet-stream",
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(str(exc)) from exc

    def public_url(self, bucket: str, key: str) -> str:
        return f"{self.public_base_url}/{bucket}/{key}"

    def delete_object(self, bucket: str, key: str) -> None:
        try:
            self._client.delete_object(Bucket=bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(str(exc)) from exc
