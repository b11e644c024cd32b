"""Local object storage with bucket/path addressing and signed download URLs."""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional
from urllib.parse import quote

from fastapi import status
from jose import JWTError

from tarot_panel.auth.security import create_access_token, decode_token
from tarot_panel.core.config import settings
from tarot_panel.core.exceptions import StorageError

logger = logging.getLogger(__name__)

INVOICES_BUCKET = "invoices"


class LocalStorage:
    def __init__(self, root: Optional[str] = None) -> None:
        self.root = Path(root or settings.storage_dir)

    def _resolve(self, bucket: str, path: str) -> Path:
        base = (self.root / bucket).resolve()
        target = (base / path).resolve()
        if base != target and base not in target.parents:
            raise StorageError("BAD_PATH", status.HTTP_400_BAD_REQUEST)
        return target

    def upload(self, bucket: str, path: str, data: bytes, *, upsert: bool = False) -> str:
        target = self._resolve(bucket, path)
        if target.exists() and not upsert:
            raise StorageError("FILE_EXISTS", status.HTTP_409_CONFLICT)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        logger.info("Stored %s/%s (%d bytes)", bucket, path, len(data))
        return path

    def remove(self, bucket: str, path: str) -> None:
        self._resolve(bucket, path).unlink(missing_ok=True)
        logger.info("Removed %s/%s", bucket, path)

    def read(self, bucket: str, path: str) -> bytes:
        target = self._resolve(bucket, path)
        if not target.is_file():
            raise StorageError("FILE_NOT_FOUND", status.HTTP_404_NOT_FOUND)
        return target.read_bytes()

    def local_path(self, bucket: str, path: str) -> Path:
        target = self._resolve(bucket, path)
        if not target.is_file():
            raise StorageError("FILE_NOT_FOUND", status.HTTP_404_NOT_FOUND)
        return target

    def create_signed_url(self, bucket: str, path: str, expires_in: Optional[int] = None) -> str:
        seconds = expires_in or settings.signed_url_expire_seconds
        token = create_access_token(
            subject={"bucket": bucket, "path": path, "purpose": "download"},
            expires_minutes=max(1, seconds // 60),
        )
        return f"/api/storage/{bucket}/{quote(path)}?token={token}"

    def verify_signed_token(self, bucket: str, path: str, token: str) -> None:
        try:
            payload = decode_token(token)
        except JWTError:
            raise StorageError("BAD_SIGNATURE", status.HTTP_403_FORBIDDEN)
        if (
            payload.get("purpose") != "download"
            or payload.get("bucket") != bucket
            or payload.get("path") != path
        ):
            raise StorageError("BAD_SIGNATURE", status.HTTP_403_FORBIDDEN)


def get_storage() -> LocalStorage:
    return LocalStorage()


def invoice_object_path(month_date, worker_id, now: Optional[datetime] = None) -> str:
    ts = now or datetime.now(timezone.utc)
    millis = int(ts.timestamp() * 1000)
    return f"{month_date.isoformat()}/{worker_id}-{millis}.pdf"
