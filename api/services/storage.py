from __future__ import annotations

import io
import logging
import uuid
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import BinaryIO, Optional

from botocore.exceptions import BotoCoreError, ClientError

from ..config import settings
from .aws import boto3_client, public_object_url

logger = logging.getLogger(__name__)

DOCUMENT_CONTENT_TYPES = frozenset(
    {
        "application/pdf",
        "image/jpeg",
        "image/png",
        "image/webp",
        "image/gif",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "application/vnd.ms-excel",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    }
)

AVATAR_CONTENT_TYPES = frozenset({"image/jpeg", "image/png", "image/webp", "image/gif"})


@dataclass
class StoredFile:
    key: str
    storage_url: str
    size: int
    content_type: str
    presigned_url: Optional[str] = None


class StorageService:
    """Thin S3 adapter bound to one bucket. Keys are ``<user_id>/<uuid><ext>``."""

    def __init__(self, bucket: Optional[str] = None, *, public: bool = False) -> None:
        self.bucket = bucket or settings.aws.documents_bucket
        self.public = public
        self._client = boto3_client("s3")

    def _build_key(self, user_id: str | uuid.UUID, original_name: str) -> str:
        suffix = Path(original_name or "").suffix.lower() or ".bin"
        return f"{user_id}/{uuid.uuid4()}{suffix}"

    def upload_fileobj(
        self,
        user_id: str | uuid.UUID,
        file_obj: BinaryIO | bytes,
        filename: str,
        content_type: str,
        presign_ttl: timedelta | None = None,
    ) -> StoredFile:
        buffer: BinaryIO
        if isinstance(file_obj, (bytes, bytearray)):
            buffer = io.BytesIO(file_obj)
        else:
            buffer = file_obj
        buffer.seek(0, io.SEEK_END)
        size = buffer.tell()
        buffer.seek(0)

        key = self._build_key(user_id, filename)
        extra_args = {"ContentType": content_type}

        try:
            self._client.upload_fileobj(buffer, self.bucket, key, ExtraArgs=extra_args)
        except (BotoCoreError, ClientError) as exc:
            raise RuntimeError(f"Failed to upload to S3: {exc}") from exc

        presigned_url = None
        if self.public:
            presigned_url = self.public_url(key)
        elif presign_ttl:
            presigned_url = self.generate_presigned_url(key, presign_ttl)

        return StoredFile(
            key=key,
            storage_url=f"s3://{self.bucket}/{key}",
            size=size,
            content_type=content_type,
            presigned_url=presigned_url,
        )

    def generate_presigned_url(self, key: str, ttl: timedelta = timedelta(hours=1)) -> str:
        try:
            return self._client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=int(ttl.total_seconds()),
            )
        except (BotoCoreError, ClientError) as exc:
            raise RuntimeError(f"Failed to generate presigned URL: {exc}") from exc

    def public_url(self, key: str) -> str:
        return public_object_url(self.bucket, key)

    def key_from_public_url(self, url: str | None) -> str | None:
        if not url:
            return None
        prefix = public_object_url(self.bucket, "")
        if url.startswith(prefix):
            return url[len(prefix):] or None
        return None

    def delete(self, key: str) -> None:
        try:
            self._client.delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            raise RuntimeError(f"Failed to delete S3 object: {exc}") from exc

    def delete_quietly(self, key: str | None) -> bool:
        """Best-effort delete: failures are logged, never raised."""
        if not key:
            return False
        try:
            self.delete(key)
        except RuntimeError:
            logger.warning("Stored file cleanup failed: bucket=%s key=%s", self.bucket, key, exc_info=True)
            return False
        return True

    def open_stream(self, key: str):
        try:
            obj = self._client.get_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            raise RuntimeError(f"Failed to download S3 object: {exc}") from exc

        body = obj["Body"]
        metadata = {
            "content_type": obj.get("ContentType", "application/octet-stream"),
            "content_length": obj.get("ContentLength"),
        }

        def iterator(chunk_size: int = 1024 * 64):
            for chunk in body.iter_chunks(chunk_size):
                if chunk:
                    yield chunk

        def closer():
            try:
                body.close()
            except (BotoCoreError, ClientError, OSError):  # pragma: no cover - best effort
                logger.debug("S3 body close failed for %s", key)

        return iterator, metadata, closer


def get_storage_service() -> StorageService:
    return StorageService(settings.aws.documents_bucket)


def get_avatar_storage() -> StorageService:
    return StorageService(settings.aws.avatars_bucket, public=True)
