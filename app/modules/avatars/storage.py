"""Avatar blob storage: Supabase Storage bucket, or S3 when configured."""
import logging
import mimetypes
import os
import time
from typing import Callable, Optional
from urllib.parse import quote

import boto3
from botocore.exceptions import ClientError
from supabase import Client

from app.config import settings
from app.core.exceptions import FailureKind, ServiceError
logger = logging.getLogger(__name__)

FALLBACK_AVATAR_URL = "https://ui-avatars.com/api/?name={name}&background=random&size=128"


def avatar_key(account_id: str, filename: str, content_type: Optional[str] = None) -> str:
    """``{account_id}{.ext}``; one key per account so re-uploads overwrite."""
    extension = os.path.splitext(filename or "")[1].lower()
    if not extension and content_type:
        extension = mimetypes.guess_extension(content_type) or ""
    return f"{account_id}{extension}"


def fallback_avatar_url(display_name: Optional[str]) -> str:
    return FALLBACK_AVATAR_URL.format(name=quote(display_name or "?", safe=""))


class S3AvatarBackend:
    def __init__(self):
        if not settings.use_s3_avatars:
            raise ValueError("AWS S3 credentials and bucket name must be configured")

        self.s3_client = boto3.client(
            's3',
            aws_access_key_id=settings.aws_access_key_id,
            aws_secret_access_key=settings.aws_secret_access_key,
            region_name=settings.aws_region
        )
        self.bucket_name = settings.s3_bucket_name

    def upload(self, key: str, content: bytes, content_type: str) -> None:
        # put_object replaces any existing object under the key
        try:
            self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=key,
                Body=content,
                ContentType=content_type
            )
        except ClientError as e:
            logger.error(f"Failed to upload avatar to S3: {str(e)}")
            raise

    def public_url(self, key: str) -> str:
        if settings.s3_public_base_url:
            return f"{settings.s3_public_base_url.rstrip('/')}/{key}"
        return f"https://{self.bucket_name}.s3.{settings.aws_region}.amazonaws.com/{key}"


class SupabaseAvatarBackend:
    def __init__(self, supabase: Client, bucket: Optional[str] = None):
        self.supabase = supabase
        self.bucket = bucket or settings.avatars_bucket

    def upload(self, key: str, content: bytes, content_type: str) -> None:
        self.supabase.storage.from_(self.bucket).upload(
            key,
            content,
            file_options={"content-type": content_type, "upsert": "true"}
        )

    def public_url(self, key: str) -> str:
        return self.supabase.storage.from_(self.bucket).get_public_url(key)


class AvatarStorage:
    """Blob store for avatars with overwrite-on-conflict uploads."""

    def __init__(self, supabase: Client, backend=None, clock: Callable[[], float] = time.time):
        if backend is None:
            backend = S3AvatarBackend() if settings.use_s3_avatars else SupabaseAvatarBackend(supabase)
        self.backend = backend
        self.clock = clock

    def upload(self, key: str, content: bytes, content_type: str) -> str:
        try:
            self.backend.upload(key, content, content_type)
        except Exception as e:
            message = getattr(e, "message", None) or str(e)
            logger.error(f"Avatar upload failed for {key}: {message}")
            raise ServiceError(message, FailureKind.AVATAR_UPLOAD_FAILED, {"key": key})
        logger.info(f"Uploaded avatar {key} ({len(content)} bytes)")
        return key

    def public_url(self, key: str) -> str:
        return self.backend.public_url(key)

    def cache_busted_url(self, key: str) -> str:
        """Public URL plus ``t=<epoch ms>`` so clients refetch after an overwrite."""
        url = self.public_url(key).rstrip("?")
        separator = "&" if "?" in url else "?"
        return f"{url}{separator}t={int(self.clock() * 1000)}"
