"""
Object storage for tracked attachments.
Bytes live in an S3-compatible bucket (Cloudflare R2 in production); the
database only keeps the object key.
"""
import logging
import re
from functools import lru_cache
from typing import Iterator, Optional

import boto3
from botocore.exceptions import ClientError

from config import settings

logger = logging.getLogger(__name__)

STREAM_CHUNK_SIZE = 64 * 1024


class AttachmentNotFound(Exception):
    pass


def safe_filename(filename: Optional[str]) -> str:
    """Strip path components and anything that is awkward in an object key"""
    name = (filename or "").replace("\\", "/").split("/")[-1].strip()
    name = re.sub(r"[^A-Za-z0-9._ -]", "_", name)
    return name or "attachment"


class AttachmentStorage:
    """Thin wrapper over the S3 API used by the upload and download endpoints"""

    def __init__(self, client=None, bucket: str = None, prefix: str = None):
        if client is None:
            if not settings.R2_ACCESS_KEY_ID or not settings.R2_SECRET_ACCESS_KEY:
                logger.warning("R2 credentials not configured. Attachment storage operations will fail.")
            client = boto3.client(
                "s3",
                endpoint_url=settings.R2_ENDPOINT_URL,
                aws_access_key_id=settings.R2_ACCESS_KEY_ID,
                aws_secret_access_key=settings.R2_SECRET_ACCESS_KEY,
                region_name="auto",
            )
        self.client = client
        self.bucket = bucket or settings.R2_BUCKET
        self.prefix = (prefix if prefix is not None else settings.R2_KEY_PREFIX).rstrip("/")

    def build_key(self, attachment_id: str, filename: str) -> str:
        return f"{self.prefix}/{attachment_id}/{safe_filename(filename)}"

    def put_file(self, key: str, content: bytes, content_type: Optional[str] = None) -> None:
        if not self.bucket:
            raise ValueError("R2_BUCKET not configured")

        extra_args = {}
        if content_type:
            extra_args["ContentType"] = content_type

        try:
            self.client.put_object(Bucket=self.bucket, Key=key, Body=content, **extra_args)
        except ClientError as e:
            logger.error(f"Error uploading attachment {key}: {e}", exc_info=True)
            raise
        logger.info(f"Uploaded attachment to storage: {key} ({len(content)} bytes)")

    def get_file(self, key: str) -> Iterator[bytes]:
        """Return an iterator over the object body; AttachmentNotFound when the key is gone"""
        if not self.bucket:
            raise ValueError("R2_BUCKET not configured")
        try:
            obj = self.client.get_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "")
            if error_code in ("NoSuchKey", "404"):
                raise AttachmentNotFound(key) from e
            logger.error(f"Error fetching attachment {key}: {e}", exc_info=True)
            raise
        return obj["Body"].iter_chunks(chunk_size=STREAM_CHUNK_SIZE)

    def delete_file(self, key: str) -> bool:
        if not self.bucket:
            return False
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            logger.error(f"Error deleting attachment {key}: {e}", exc_info=True)
            return False
        return True


@lru_cache
def get_attachment_storage() -> AttachmentStorage:
    """FastAPI dependency, one client per process"""
    return AttachmentStorage()
