"""Tests for object storage integration.

Tests cover:
- Bucket creation (idempotent)
- Upload with SHA-256 metadata
- Existence checks and idempotent deletes
- Public URL construction
- Error mapping

Uses moto for S3 mocking so no object store is needed.
"""

import hashlib

import pytest
from moto import mock_aws

from warden.core.config import S3Settings
from warden.services.storage import (
    BucketNotFoundError,
    ObjectStoreClient,
    StorageError,
    UploadResult,
)

BUCKET = "warden-test-avatars"


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def mock_s3_client():
    """Client against moto's in-memory S3.

    endpoint_url stays None so moto intercepts the AWS endpoint.
    """
    with mock_aws():
        yield ObjectStoreClient(
            bucket=BUCKET,
            access_key="testing",
            secret_key="testing",  # noqa: S106
            region="us-east-1",
        )


@pytest.fixture
def mock_s3_client_with_bucket(mock_s3_client):
    """Mocked client whose bucket already exists."""
    mock_s3_client.ensure_bucket()
    return mock_s3_client


@pytest.fixture
def sample_content() -> bytes:
    return b"\x89PNG\r\n\x1a\n fake image payload"


# ---------------------------------------------------------------------------
# Bucket management
# ---------------------------------------------------------------------------
class TestBuckets:
    """Tests for ensure_bucket."""

    def test_ensure_bucket_creates_new(self, mock_s3_client):
        """Test that a missing bucket is created."""
        assert mock_s3_client.ensure_bucket() is True

    def test_ensure_bucket_existing(self, mock_s3_client):
        """Test that an existing bucket is left alone."""
        mock_s3_client.ensure_bucket()
        assert mock_s3_client.ensure_bucket() is False

    def test_ensure_bucket_other_region(self):
        """Test bucket creation outside us-east-1."""
        with mock_aws():
            client = ObjectStoreClient(
                bucket=BUCKET,
                access_key="testing",
                secret_key="testing",  # noqa: S106
                region="eu-west-3",
            )
            assert client.ensure_bucket() is True


# ---------------------------------------------------------------------------
# Objects
# ---------------------------------------------------------------------------
class TestObjects:
    """Tests for upload, exists and delete."""

    def test_upload_records_digest(self, mock_s3_client_with_bucket, sample_content):
        """Test that uploads report and store the SHA-256 digest."""
        result = mock_s3_client_with_bucket.upload(
            "avatars/u1/a.png",
            sample_content,
            content_type="image/png",
            metadata={"user-id": "u1"},
        )

        assert isinstance(result, UploadResult)
        assert result.sha256_digest == hashlib.sha256(sample_content).hexdigest()
        assert result.size_bytes == len(sample_content)
        assert result.bucket == BUCKET

        head = mock_s3_client_with_bucket._client.head_object(
            Bucket=BUCKET, Key="avatars/u1/a.png"
        )
        assert head["ContentType"] == "image/png"
        assert head["Metadata"]["sha256-digest"] == result.sha256_digest
        assert head["Metadata"]["user-id"] == "u1"

    def test_upload_to_missing_bucket(self, mock_s3_client, sample_content):
        """Test that uploading without a bucket raises BucketNotFoundError."""
        with pytest.raises(BucketNotFoundError) as exc_info:
            mock_s3_client.upload("avatars/u1/a.png", sample_content)
        assert exc_info.value.operation == "upload"
        assert isinstance(exc_info.value, StorageError)

    def test_exists(self, mock_s3_client_with_bucket, sample_content):
        """Test existence checks before and after upload."""
        assert mock_s3_client_with_bucket.exists("avatars/u1/a.png") is False
        mock_s3_client_with_bucket.upload("avatars/u1/a.png", sample_content)
        assert mock_s3_client_with_bucket.exists("avatars/u1/a.png") is True

    def test_delete(self, mock_s3_client_with_bucket, sample_content):
        """Test that delete removes the object and tolerates missing keys."""
        mock_s3_client_with_bucket.upload("avatars/u1/a.png", sample_content)
        mock_s3_client_with_bucket.delete("avatars/u1/a.png")
        assert mock_s3_client_with_bucket.exists("avatars/u1/a.png") is False

        mock_s3_client_with_bucket.delete("avatars/u1/a.png")


# ---------------------------------------------------------------------------
# URLs and construction
# ---------------------------------------------------------------------------
class TestUrls:
    """Tests for object_url and from_settings."""

    def test_aws_url(self, mock_s3_client):
        """Test the virtual-hosted AWS URL when no endpoint is set."""
        assert mock_s3_client.object_url("avatars/u1/a.png") == (
            f"https://{BUCKET}.s3.us-east-1.amazonaws.com/avatars/u1/a.png"
        )

    def test_endpoint_url(self):
        """Test path-style URLs for a custom endpoint."""
        with mock_aws():
            client = ObjectStoreClient(bucket=BUCKET, endpoint_url="http://minio:9000/")
            assert client.object_url("k.png") == f"http://minio:9000/{BUCKET}/k.png"

    def test_public_base_url_wins(self):
        """Test that a configured public base URL is used as is."""
        with mock_aws():
            client = ObjectStoreClient(
                bucket=BUCKET,
                endpoint_url="http://minio:9000",
                public_base_url="https://cdn.example.com/avatars/",
            )
            assert client.object_url("k.png") == "https://cdn.example.com/avatars/k.png"

    def test_from_settings(self):
        """Test construction from S3Settings."""
        settings = S3Settings(
            bucket="from-settings",
            endpoint="http://localhost:9000",
            access_key="key",
            secret_key="secret",  # noqa: S106
        )
        with mock_aws():
            client = ObjectStoreClient.from_settings(settings)
        assert client.bucket == "from-settings"
        assert client.object_url("x") == "http://localhost:9000/from-settings/x"
