import logging
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import httpx

from bookstore.config import settings
from bookstore.errors import ApiError, ValidationFailed

logger = logging.getLogger(__name__)

ALLOWED_IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp", ".gif"}


class StorageError(Exception):
    pass


@dataclass(frozen=True)
class StoredFile:
    url: str
    storage_id: str


class SupabaseStorage:
    """Cover images in a Supabase storage bucket. ``storage_id`` is the object path."""

    def __init__(self, url: Optional[str], service_role_key: Optional[str], bucket: Optional[str]):
        self.url = (url or "").rstrip("/")
        self.service_role_key = service_role_key
        self.bucket = bucket

    @classmethod
    def from_settings(cls) -> "SupabaseStorage":
        return cls(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY, settings.SUPABASE_BUCKET)

    @property
    def configured(self) -> bool:
        return bool(self.url and self.service_role_key and self.bucket)

    def _ensure_configured(self) -> None:
        if not self.configured:
            raise ApiError(
                "Image uploads are disabled or not configured.",
                status_code=503,
            )

    def _headers(self, content_type: str | None = None) -> dict:
        self._ensure_configured()
        headers = {
            "apikey": self.service_role_key,
            "Authorization": f"Bearer {self.service_role_key}",
            "x-upsert": "true",
        }
        if content_type:
            headers["Content-Type"] = content_type
        return headers

    def public_url(self, object_path: str) -> str:
        return f"{self.url}/storage/v1/object/public/{self.bucket}/{object_path}"

    async def store(self, content: bytes, filename: str, content_type: str | None = None) -> StoredFile:
        self._ensure_configured()
        ext = Path(filename or "").suffix.lower()
        if ext not in ALLOWED_IMAGE_EXTENSIONS:
            raise ValidationFailed("Unsupported image format. Use jpg, jpeg, png, webp, or gif.")

        object_path = f"books/{uuid.uuid4().hex}{ext}"
        upload_url = f"{self.url}/storage/v1/object/{self.bucket}/{object_path}"

        async with httpx.AsyncClient() as client:
            try:
                response = await client.post(
                    upload_url,
                    content=content,
                    headers=self._headers(content_type=content_type or "application/octet-stream"),
                    timeout=30,
                )
            except httpx.RequestError as exc:
                logger.error(f"Error communicating with Supabase: {exc}")
                raise StorageError("Storage service unavailable") from exc

        if response.status_code not in (200, 201):
            logger.error(f"Failed to upload image to Supabase: {response.text}")
            raise StorageError("Failed to upload image to storage.")

        return StoredFile(url=self.public_url(object_path), storage_id=object_path)

    async def delete(self, storage_id: str) -> None:
        self._ensure_configured()
        delete_url = f"{self.url}/storage/v1/object/{self.bucket}/{storage_id}"

        async with httpx.AsyncClient() as client:
            try:
                response = await client.delete(delete_url, headers=self._headers(), timeout=20)
            except httpx.RequestError as exc:
                logger.error(f"Error communicating with Supabase: {exc}")
                raise StorageError("Storage service unavailable") from exc

        # Ignore 404; the object may already be gone.
        if response.status_code not in (200, 204, 404):
            logger.error(f"Failed to delete image from Supabase: {response.text}")
            raise StorageError("Failed to delete existing image from storage.")
