"""Signed downloads from local object storage."""

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import FileResponse

from tarot_panel.core.exceptions import ServiceError
from tarot_panel.core.storage import LocalStorage, get_storage

router = APIRouter(prefix="/api/storage", tags=["storage"])


@router.get("/{bucket}/{path:path}")
async def download(
    bucket: str,
    path: str,
    token: str = Query(...),
    storage: LocalStorage = Depends(get_storage),
) -> FileResponse:
    """Serve a stored object when ``token`` was signed for this exact bucket/path."""
    try:
        storage.verify_signed_token(bucket, path, token)
        target = storage.local_path(bucket, path)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    media_type = "application/pdf" if target.suffix.lower() == ".pdf" else "application/octet-stream"
    return FileResponse(target, media_type=media_type, headers={"Cache-Control": "no-store"})
