"""
Blob storage for uploaded leaf photos (Supabase Storage).

Not on the analysis critical path: the analyze pipeline only stores images
when STORE_UPLOADS is enabled and ignores storage failures.
"""
import logging
import re
import time
from typing import Any, Optional

from leafscan.config import SIGNED_URL_TTL, STORAGE_BUCKET
from leafscan.errors import StorageError
from leafscan.models import StoredObject

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r'\s+')


def build_object_key(filename: str, now_ms: Optional[int] = None) -> str:
    """uploads/<epoch ms>-<filename with whitespace replaced by '-'>"""
    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"uploads/{stamp}-{_WHITESPACE.sub('-', filename or 'upload')}"


class BlobStorage:
    def __init__(self, client: Any, bucket: str = STORAGE_BUCKET):
        self.client = client
        self.bucket = bucket

    def _bucket(self):
        if self.client is None:
            raise StorageError("Storage is not configured", details={"bucket": self.bucket})
        return self.client.storage.from_(self.bucket)

    def upload_image(self, data: bytes, filename: str, content_type: str) -> StoredObject:
        key = build_object_key(filename)
        logger.info(f"Uploading to storage: bucket={self.bucket} key={key} size={len(data)} type={content_type}")
        try:
            self._bucket().upload(key, data, {"content-type": content_type})
            url = self._bucket().get_public_url(key)
        except StorageError:
            raise
        except Exception as e:
            logger.error(f"Storage upload error: {e}")
            raise StorageError("Failed to upload file to storage", details={"bucket": self.bucket})

        logger.info(f"✓ Upload successful: {url}")
        return StoredObject(
            fileKey=key,
            fileName=filename,
            fileUrl=url,
            fileType=content_type,
            fileSize=len(data),
        )

    def get_public_url(self, key: str) -> str:
        if not key:
            raise StorageError("File key is required", code="BAD_REQUEST")
        return self._bucket().get_public_url(key)

    def get_signed_url(self, key: str, expires_in: int = SIGNED_URL_TTL) -> str:
        try:
            result = self._bucket().create_signed_url(key, expires_in)
        except StorageError:
            raise
        except Exception as e:
            logger.error(f"Error generating signed URL: {e}")
            raise StorageError("Failed to generate signed URL")

        url = result.get("signedURL") or result.get("signedUrl") if isinstance(result, dict) else None
        if not url:
            raise StorageError("Failed to generate signed URL")
        return url

    def delete_object(self, key: str) -> None:
        try:
            self._bucket().remove([key])
        except StorageError:
            raise
        except Exception as e:
            logger.error(f"Error deleting file from storage: {e}")
            raise StorageError("Failed to delete file from storage")
