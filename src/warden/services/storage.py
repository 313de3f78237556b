"""Object store integration for user avatars.

S3-compatible client wrapper (AWS S3, MinIO). Uploads record a SHA-256
digest in object metadata. boto3 is synchronous; async callers run these
methods through ``asyncio.to_thread``.

Example:
    from warden.services.storage import ObjectStoreClient
    from warden.core.settings import get_settings

    client = ObjectStoreClient.from_settings(get_settings().s3)
    client.ensure_bucket()
    result = client.upload("avatars/u1/abc.png", data, content_type="image/png")
    url = client.object_url(result.key)
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

if TYPE_CHECKING:
    from mypy_boto3_s3 import S3Client

    from warden.core.config import S3Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UploadResult:
    """Result of an upload operation.

    Attributes:
        key: The object key in the bucket.
        bucket: The bucket name.
        sha256_digest: SHA-256 hex digest of the uploaded content.
        size_bytes: Size of the uploaded content in bytes.
        etag: S3 ETag.
    """

    key: str
    bucket: str
    sha256_digest: str
    size_bytes: int
    etag: str


class StorageError(Exception):
    """Base exception for storage operations.

    Attributes:
        message: Human-readable error description.
        bucket: The bucket involved in the operation.
        key: The object key involved (if applicable).
        operation: The operation that failed.
    """

    def __init__(
        self,
        message: str,
        *,
        bucket: str | None = None,
        key: str | None = None,
        operation: str | None = None,
    ) -> None:
        self.message = message
        self.bucket = bucket
        self.key = key
        self.operation = operation
        super().__init__(message)


class BucketNotFoundError(StorageError):
    """Raised when the bucket does not exist."""


class ObjectStoreClient:
    """S3-compatible client bound to a single bucket."""

    def __init__(
        self,
        *,
        bucket: str,
        endpoint_url: str | None = None,
        access_key: str | None = None,
        secret_key: str | None = None,
        region: str = "us-east-1",
        public_base_url: str | None = None,
        connect_timeout: float = 5.0,
        read_timeout: float = 30.0,
        max_retries: int = 3,
    ) -> None:
        """Initialize the object store client.

        Args:
            bucket: Bucket holding the objects.
            endpoint_url: S3-compatible endpoint; None for AWS.
            access_key: Access key id; None for the default credential chain.
            secret_key: Secret access key.
            region: Region (use us-east-1 for MinIO).
            public_base_url: Base URL objects are served from. Defaults to
                ``<endpoint>/<bucket>``.
            connect_timeout: Connection timeout in seconds.
            read_timeout: Read timeout in seconds.
            max_retries: Retry attempts for transient failures.
        """
        self._bucket = bucket
        self._region = region
        self._endpoint_url = endpoint_url
        self._public_base_url = public_base_url

        config = Config(
            connect_timeout=connect_timeout,
            read_timeout=read_timeout,
            retries={"max_attempts": max_retries, "mode": "standard"},
            signature_version="s3v4",
        )
        self._client: S3Client = boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key or None,
            aws_secret_access_key=secret_key or None,
            region_name=region,
            config=config,
        )
        logger.debug("Initialized ObjectStoreClient for bucket=%s region=%s", bucket, region)

    @classmethod
    def from_settings(cls, settings: S3Settings) -> ObjectStoreClient:
        """Create a client from S3Settings."""
        return cls(
            bucket=settings.bucket,
            endpoint_url=settings.endpoint,
            access_key=settings.access_key.get_secret_value(),
            secret_key=settings.secret_key.get_secret_value(),
            region=settings.region,
            public_base_url=settings.public_base_url,
        )

    @property
    def bucket(self) -> str:
        return self._bucket

    def ensure_bucket(self) -> bool:
        """Ensure the bucket exists, creating it if necessary.

        Returns:
            True if the bucket was created, False if it already existed.

        Raises:
            StorageError: If the check or creation fails.
        """
        try:
            self._client.head_bucket(Bucket=self._bucket)
            return False
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "")
            if error_code not in ("404", "NoSuchBucket"):
                raise StorageError(
                    f"Failed to check bucket existence: {e}",
                    bucket=self._bucket,
                    operation="head_bucket",
                ) from e

        try:
            # us-east-1 rejects an explicit LocationConstraint
            if self._region == "us-east-1":
                self._client.create_bucket(Bucket=self._bucket)
            else:
                self._client.create_bucket(
                    Bucket=self._bucket,
                    CreateBucketConfiguration={"LocationConstraint": self._region},
                )
        except ClientError as e:
            raise StorageError(
                f"Failed to create bucket: {e}",
                bucket=self._bucket,
                operation="create_bucket",
            ) from e
        logger.info("Created bucket: %s", self._bucket)
        return True

    def upload(
        self,
        key: str,
        data: bytes,
        *,
        content_type: str = "application/octet-stream",
        metadata: dict[str, str] | None = None,
    ) -> UploadResult:
        """Upload an object, recording its SHA-256 digest in metadata.

        Raises:
            BucketNotFoundError: If the bucket does not exist.
            StorageError: If the upload fails otherwise.
        """
        sha256_digest = hashlib.sha256(data).hexdigest()
        upload_metadata = {"sha256-digest": sha256_digest, **(metadata or {})}

        try:
            response = self._client.put_object(
                Bucket=self._bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                Metadata=upload_metadata,
            )
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "")
            if error_code == "NoSuchBucket":
                raise BucketNotFoundError(
                    f"Bucket does not exist: {self._bucket}",
                    bucket=self._bucket,
                    key=key,
                    operation="upload",
                ) from e
            raise StorageError(
                f"Upload failed: {e}",
                bucket=self._bucket,
                key=key,
                operation="upload",
            ) from e

        logger.debug("Uploaded %s/%s (%d bytes)", self._bucket, key, len(data))
        return UploadResult(
            key=key,
            bucket=self._bucket,
            sha256_digest=sha256_digest,
            size_bytes=len(data),
            etag=response.get("ETag", ""),
        )

    def delete(self, key: str) -> None:
        """Delete an object; deleting a missing key is not an error.

        Raises:
            StorageError: If the deletion fails.
        """
        try:
            self._client.delete_object(Bucket=self._bucket, Key=key)
        except ClientError as e:
            raise StorageError(
                f"Delete failed: {e}",
                bucket=self._bucket,
                key=key,
                operation="delete",
            ) from e

    def exists(self, key: str) -> bool:
        """Tell whether an object exists."""
        try:
            self._client.head_object(Bucket=self._bucket, Key=key)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code", "") in ("404", "NoSuchKey"):
                return False
            raise StorageError(
                f"Head failed: {e}",
                bucket=self._bucket,
                key=key,
                operation="head_object",
            ) from e
        return True

    def object_url(self, key: str) -> str:
        """Public URL of an object."""
        if self._public_base_url:
            return f"{self._public_base_url.rstrip('/')}/{key}"
        if self._endpoint_url:
            return f"{self._endpoint_url.rstrip('/')}/{self._bucket}/{key}"
        return f"https://{self._bucket}.s3.{self._region}.amazonaws.com/{key}"
