"""
Storage Service

S3-compatible artifact storage for MinIO.

Derived images are stored under content-addressed keys and referenced from
the database by their public URL.
"""

import hashlib
import io
import logging
import re
from typing import Optional

import boto3
import httpx
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from ..config import get_settings
from .exceptions import ArtifactFetchError

logger = logging.getLogger(__name__)
settings = get_settings()


def sanitize_for_log(value: str) -> str:
    """Sanitize a value for safe logging (prevent log injection)."""
    return re.sub(r'[\r\n\t]', '', str(value))


def artifact_key(scope: str, data: bytes, name: str) -> str:
    """
    Content-addressed key within an owner scope (the photo id).

    Identical bytes map to the same key only within one scope, so deleting
    one photo's artifacts never touches another photo's.
    """
    digest = hashlib.sha256(data).hexdigest()
    return f"artifacts/{scope}/{digest}/{name}"


class StorageService:
    """
    S3-compatible storage service.

    Handles derived artifact uploads, deletions by URL, and reading image
    bytes back for the pipeline and similarity verification.
    """

    def __init__(self, client=None, bucket: Optional[str] = None, public_url: Optional[str] = None):
        """Initialize S3 client."""
        if client is None:
            endpoint_url = f"{'https' if settings.minio_secure else 'http'}://{settings.minio_endpoint}"
            client = boto3.client(
                "s3",
                endpoint_url=endpoint_url,
                aws_access_key_id=settings.minio_access_key,
                aws_secret_access_key=settings.minio_secret_key,
                config=Config(signature_version="s3v4"),
                region_name="us-east-1",  # Required for MinIO
            )
        self.client = client
        self.bucket = bucket or settings.minio_bucket
        self.public_url = (public_url or settings.storage_public_url).rstrip("/")

    def ensure_bucket(self):
        """Create bucket if it doesn't exist."""
        try:
            self.client.head_bucket(Bucket=self.bucket)
            logger.info(f"Bucket '{self.bucket}' exists")
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code")
            if error_code == "404":
                logger.info(f"Creating bucket '{self.bucket}'")
                self.client.create_bucket(Bucket=self.bucket)
            else:
                logger.error(f"Error checking bucket: {e}")
                raise

    def url_for_key(self, key: str) -> str:
        """Public URL for an object key."""
        return f"{self.public_url}/{self.bucket}/{key}"

    def key_for_url(self, url: str) -> Optional[str]:
        """Object key for a public URL, or None if the URL is not in this bucket."""
        prefix = f"{self.public_url}/{self.bucket}/"
        if url.startswith(prefix) and len(url) > len(prefix):
            return url[len(prefix):]
        return None

    def put(
        self,
        data: bytes,
        content_type: str = "image/jpeg",
        name: str = "artifact.jpg",
        *,
        scope: str,
    ) -> str:
        """
        Upload bytes under a content-addressed key.

        Args:
            data: Bytes to upload
            content_type: MIME type
            name: Final path segment of the key
            scope: Owning photo id; keys never collide across scopes

        Returns:
            Public URL of the stored object
        """
        key = artifact_key(scope, data, name)
        try:
            self.client.upload_fileobj(
                io.BytesIO(data),
                self.bucket,
                key,
                ExtraArgs={"ContentType": content_type},
            )
            logger.info(f"Uploaded s3://{self.bucket}/{sanitize_for_log(key)}")
            return self.url_for_key(key)
        except ClientError as e:
            logger.error(f"Failed to upload file: {e}")
            raise

    def delete(self, url: str) -> bool:
        """
        Delete an object by its public URL.

        Never raises; an artifact that cannot be deleted is only leaked storage.

        Returns:
            True if deleted successfully
        """
        key = self.key_for_url(url)
        if key is None:
            logger.warning("Not deleting %s: outside bucket %s", sanitize_for_log(url), self.bucket)
            return False
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
            logger.info(f"Deleted s3://{self.bucket}/{sanitize_for_log(key)}")
            return True
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to delete file: {e}")
            return False

    def fetch(self, url: str) -> bytes:
        """
        Read image bytes by URL.

        Objects in this bucket are read through S3; anything else over HTTP.

        Raises:
            ArtifactFetchError: if the bytes cannot be read
        """
        key = self.key_for_url(url)
        if key is not None:
            try:
                response = self.client.get_object(Bucket=self.bucket, Key=key)
                return response["Body"].read()
            except (ClientError, BotoCoreError) as e:
                logger.error(f"Failed to download file: {e}")
                raise ArtifactFetchError(f"Failed to fetch image: {key}") from e

        try:
            with httpx.Client(timeout=settings.fetch_timeout_seconds, follow_redirects=True) as client:
                response = client.get(url)
                response.raise_for_status()
                return response.content
        except httpx.HTTPError as e:
            logger.error("Failed to fetch %s: %s", sanitize_for_log(url), type(e).__name__)
            raise ArtifactFetchError(f"Failed to fetch image: {e}") from e

    def health_check(self) -> bool:
        """Check the bucket is reachable."""
        try:
            self.client.head_bucket(Bucket=self.bucket)
            return True
        except (ClientError, BotoCoreError):
            return False


# Singleton instance
_storage_service: StorageService | None = None


def get_storage_service() -> StorageService:
    """Get or create storage service singleton."""
    global _storage_service
    if _storage_service is None:
        _storage_service = StorageService()
    return _storage_service
