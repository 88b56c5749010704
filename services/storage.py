"""
Document storage backends: local disk, AWS S3, Cloudinary and Supabase Storage.

Every backend exposes the same two operations, `store` and `remove`; the route
and service layers never branch on which one is configured. The backend is
chosen once at startup by `build_storage`.
"""

from __future__ import annotations

import io
import logging
import mimetypes
import random
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol
from urllib.parse import unquote, urlparse

import boto3
import cloudinary.uploader
import httpx
from botocore.exceptions import BotoCoreError, ClientError
from cloudinary.exceptions import Error as CloudinaryError
from storage3.utils import StorageException
from supabase import create_client

from config import Settings
from services.errors import DocumentTooLarge, StorageError, UnsupportedDocumentType

logger = logging.getLogger(__name__)

ALLOWED_DOCUMENT_TYPES = {
    "pdf": "application/pdf",
    "doc": "application/msword",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
}
_GENERIC_CONTENT_TYPES = {"", "application/octet-stream", "binary/octet-stream"}


class StorageBackend(Protocol):
    """Defines the operations the API needs from document storage."""

    provider: str

    def store(self, data: bytes, filename: str, content_type: str) -> str:
        ...

    def remove(self, reference: str) -> None:
        ...


def file_extension(filename: str) -> str:
    return Path(filename or "").suffix.lower().lstrip(".")


def validate_document(filename: str, content_type: Optional[str], size: int, max_bytes: int) -> str:
    """
    Check an upload before anything is persisted. Returns the effective content type.
    """
    if size > max_bytes:
        raise DocumentTooLarge()
    ext = file_extension(filename)
    expected = ALLOWED_DOCUMENT_TYPES.get(ext)
    if expected is None:
        raise UnsupportedDocumentType()
    ctype = (content_type or "").split(";")[0].strip().lower()
    if ctype in _GENERIC_CONTENT_TYPES:
        return expected
    if ctype not in ALLOWED_DOCUMENT_TYPES.values():
        raise UnsupportedDocumentType()
    return ctype


def generate_object_name(filename: str) -> str:
    """`{timestamp}-{random}.{ext}` so concurrent uploads never collide."""
    unique = f"{int(time.time() * 1000)}-{random.randint(0, 10**9)}"
    ext = file_extension(filename)
    return f"{unique}.{ext}" if ext else unique


def is_remote_reference(reference: str) -> bool:
    return reference.startswith(("http://", "https://"))


def guess_content_type(reference: str) -> str:
    ext = file_extension(urlparse(reference).path if is_remote_reference(reference) else reference)
    return ALLOWED_DOCUMENT_TYPES.get(ext) or mimetypes.guess_type(reference)[0] or "application/octet-stream"


@dataclass
class LocalStorage:
    """Zero-configuration fallback: files live under `upload_dir`."""

    upload_dir: str = "uploads"
    provider: str = "local"

    def __post_init__(self):
        Path(self.upload_dir).mkdir(parents=True, exist_ok=True)

    def store(self, data: bytes, filename: str, content_type: str) -> str:
        dest = Path(self.upload_dir) / generate_object_name(filename)
        tmp = dest.with_suffix(dest.suffix + ".part")
        tmp.write_bytes(data)
        tmp.replace(dest)
        return str(dest)

    def remove(self, reference: str) -> None:
        Path(reference).unlink(missing_ok=True)


@dataclass
class S3Storage:
    bucket: str
    region: str
    access_key_id: str
    secret_access_key: str
    prefix: str = "applications"
    provider: str = "s3"

    def __post_init__(self):
        self._client = boto3.client(
            "s3",
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
        )

    def _public_url(self, key: str) -> str:
        if self.region:
            return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"
        return f"https://{self.bucket}.s3.amazonaws.com/{key}"

    def key_from_reference(self, reference: str) -> str:
        return unquote(urlparse(reference).path.lstrip("/"))

    def store(self, data: bytes, filename: str, content_type: str) -> str:
        key = f"{self.prefix.strip('/')}/{generate_object_name(filename)}"
        try:
            self._client.put_object(Bucket=self.bucket, Key=key, Body=data, ContentType=content_type)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to upload document to S3: {e}") from e
        return self._public_url(key)

    def remove(self, reference: str) -> None:
        # delete_object succeeds for missing keys, so removal is naturally idempotent
        self._client.delete_object(Bucket=self.bucket, Key=self.key_from_reference(reference))


@dataclass
class CloudinaryStorage:
    cloud_name: str
    api_key: str
    api_secret: str
    folder: str = "visa-applications"
    timeout: float = 30.0
    provider: str = "cloudinary"

    def _options(self) -> dict:
        # Documents are raw assets so the extension stays part of the public id
        return {
            "resource_type": "raw",
            "cloud_name": self.cloud_name,
            "api_key": self.api_key,
            "api_secret": self.api_secret,
            "timeout": self.timeout,
        }

    def public_id_from_reference(self, reference: str) -> Optional[str]:
        parts = urlparse(reference).path.split("/")
        if self.folder not in parts:
            return None
        idx = parts.index(self.folder)
        if idx >= len(parts) - 1:
            return None
        return unquote("/".join(parts[idx:]))

    def store(self, data: bytes, filename: str, content_type: str) -> str:
        try:
            result = cloudinary.uploader.upload(
                io.BytesIO(data),
                public_id=f"{self.folder}/{generate_object_name(filename)}",
                overwrite=False,
                **self._options(),
            )
        except CloudinaryError as e:
            raise StorageError(f"Failed to upload document to Cloudinary: {e}") from e
        url = result.get("secure_url") or result.get("url")
        if not url:
            raise StorageError("Cloudinary upload returned no URL")
        return url

    def remove(self, reference: str) -> None:
        public_id = self.public_id_from_reference(reference)
        if public_id is None:
            logger.warning("Not a Cloudinary asset in folder %s: %s", self.folder, reference)
            return
        result = cloudinary.uploader.destroy(public_id, invalidate=True, **self._options()).get("result")
        if result not in ("ok", "not found"):
            raise StorageError(f"Cloudinary destroy failed for {public_id}: {result}")


@dataclass
class SupabaseStorage:
    url: str
    service_role_key: str
    bucket: str = "visa-documents"
    prefix: str = "applications"
    provider: str = "supabase"

    def __post_init__(self):
        self._client = create_client(self.url, self.service_role_key)

    def _bucket(self):
        return self._client.storage.from_(self.bucket)

    def path_from_reference(self, reference: str) -> Optional[str]:
        marker = f"/object/public/{self.bucket}/"
        path = urlparse(reference).path
        if marker not in path:
            return None
        return unquote(path.split(marker, 1)[1])

    def store(self, data: bytes, filename: str, content_type: str) -> str:
        path = f"{self.prefix.strip('/')}/{generate_object_name(filename)}"
        try:
            self._bucket().upload(path, data, {"content-type": content_type, "upsert": "false"})
        except (StorageException, httpx.HTTPError) as e:
            raise StorageError(f"Failed to upload document to Supabase: {e}") from e
        # Some client versions leave an empty query string on the URL
        return self._bucket().get_public_url(path).rstrip("?")

    def remove(self, reference: str) -> None:
        path = self.path_from_reference(reference)
        if path is None:
            logger.warning("Not a Supabase object in bucket %s: %s", self.bucket, reference)
            return
        self._bucket().remove([path])


def build_storage(settings: Settings) -> StorageBackend:
    """
    Pick the storage backend once at startup.
    An explicit STORAGE_PROVIDER wins; otherwise the first provider whose
    credentials are present is used, falling back to local disk.
    """
    provider = (settings.storage_provider or "").strip().lower()
    if not provider:
        if settings.has_cloudinary:
            provider = "cloudinary"
        elif settings.has_s3:
            provider = "s3"
        elif settings.has_supabase:
            provider = "supabase"
        else:
            provider = "local"

    if provider == "cloudinary":
        if not settings.has_cloudinary:
            raise RuntimeError("STORAGE_PROVIDER=cloudinary requires CLOUDINARY_* credentials")
        backend: StorageBackend = CloudinaryStorage(
            cloud_name=settings.cloudinary_cloud_name,
            api_key=settings.cloudinary_api_key,
            api_secret=settings.cloudinary_api_secret,
            folder=settings.cloudinary_folder,
            timeout=settings.document_fetch_timeout,
        )
    elif provider == "s3":
        if not settings.has_s3:
            raise RuntimeError("STORAGE_PROVIDER=s3 requires AWS_BUCKET_NAME and AWS credentials")
        backend = S3Storage(
            bucket=settings.aws_bucket_name,
            region=settings.aws_region or "",
            access_key_id=settings.aws_access_key_id,
            secret_access_key=settings.aws_secret_access_key,
            prefix=settings.aws_s3_prefix,
        )
    elif provider == "supabase":
        if not settings.has_supabase:
            raise RuntimeError("STORAGE_PROVIDER=supabase requires SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY")
        backend = SupabaseStorage(
            url=settings.supabase_url,
            service_role_key=settings.supabase_service_role_key,
            bucket=settings.supabase_bucket,
        )
    elif provider == "local":
        backend = LocalStorage(upload_dir=settings.upload_dir)
    else:
        raise RuntimeError(f"Unknown STORAGE_PROVIDER: {provider}")

    logger.info("Document storage backend: %s", backend.provider)
    return backend
