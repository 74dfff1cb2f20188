"""Statement file storage: local filesystem or Supabase Storage."""

import logging
import mimetypes
import os
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Tuple
from uuid import UUID

import httpx

from ledgerlens.core.config import settings

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when a blob cannot be stored, fetched or removed."""

    pass


def build_object_path(statement_id: UUID, filename: str, now: Optional[datetime] = None) -> str:
    """
    Object key for a statement file: "{statement_id}/{epoch_ms}.{ext}".

    The extension comes from the uploaded filename; files without one get
    "bin".
    """
    now = now or datetime.now(timezone.utc)
    timestamp = int(now.timestamp() * 1000)

    ext = os.path.splitext(filename or "")[1].lstrip(".").lower()
    ext = re.sub(r"[^a-z0-9]", "", ext) or "bin"

    return f"{statement_id}/{timestamp}.{ext}"


def guess_content_type(path: str) -> str:
    content_type, _ = mimetypes.guess_type(path)
    return content_type or "application/octet-stream"


class LocalStorage:
    """Stores blobs under a base directory (STORAGE_LOCAL_DIR)."""

    def __init__(self, base_dir: str):
        self.base_dir = Path(base_dir)

    def _resolve(self, path: str) -> Path:
        target = (self.base_dir / path).resolve()
        if self.base_dir.resolve() not in target.parents:
            raise StorageError(f"Invalid object path: {path}")
        return target

    def upload(self, path: str, content: bytes, content_type: str) -> str:
        target = self._resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(content)
        except OSError as e:
            raise StorageError(f"Storage upload error: {e}") from e
        return path

    def download(self, path: str) -> Tuple[bytes, str]:
        target = self._resolve(path)
        try:
            return target.read_bytes(), guess_content_type(path)
        except OSError as e:
            raise StorageError(f"Failed to download statement file: {e}") from e

    def delete(self, path: str) -> None:
        target = self._resolve(path)
        try:
            target.unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(f"Storage delete error: {e}") from e


class SupabaseStorage:
    """Stores blobs in a Supabase Storage bucket through its REST API."""

    def __init__(
        self,
        url: str,
        service_role_key: str,
        bucket: str,
        timeout: float = 60.0,
        http_client: Optional[httpx.Client] = None,
    ):
        self.url = url.rstrip("/")
        self.bucket = bucket
        self.base_api_url = f"{self.url}/storage/v1"
        self.headers = {
            "Authorization": f"Bearer {service_role_key}",
            "apikey": service_role_key,
        }
        self.timeout = timeout
        self._http_client = http_client

    def _object_url(self, path: str) -> str:
        return f"{self.base_api_url}/object/{self.bucket}/{path}"

    def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        client = self._http_client or httpx.Client(timeout=self.timeout)
        try:
            return client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise StorageError(f"Storage request failed: {e}") from e
        finally:
            if self._http_client is None:
                client.close()

    def upload(self, path: str, content: bytes, content_type: str) -> str:
        response = self._request(
            "POST",
            self._object_url(path),
            headers={**self.headers, "Content-Type": content_type},
            content=content,
        )
        if response.status_code != 200:
            logger.error(
                f"Failed to upload file to Supabase: {response.text}",
                extra={"bucket": self.bucket, "path": path, "status_code": response.status_code},
            )
            raise StorageError(f"Upload failed: {response.text}")
        return path

    def download(self, path: str) -> Tuple[bytes, str]:
        response = self._request("GET", self._object_url(path), headers=self.headers)
        if response.status_code != 200:
            logger.error(
                f"Failed to download file from Supabase: {response.text}",
                extra={"bucket": self.bucket, "path": path, "status_code": response.status_code},
            )
            raise StorageError("Failed to download statement file")

        content_type = response.headers.get("content-type", "").split(";")[0].strip()
        return response.content, content_type or guess_content_type(path)

    def delete(self, path: str) -> None:
        response = self._request("DELETE", self._object_url(path), headers=self.headers)
        if response.status_code not in (200, 204, 404):
            raise StorageError(f"Delete failed: {response.text}")


def get_storage():
    """FastAPI dependency: storage backend selected by STORAGE_BACKEND."""
    if settings.STORAGE_BACKEND == "supabase":
        return SupabaseStorage(
            url=settings.SUPABASE_URL,
            service_role_key=settings.SUPABASE_SERVICE_ROLE_KEY,
            bucket=settings.STORAGE_BUCKET,
        )
    return LocalStorage(settings.STORAGE_LOCAL_DIR)
