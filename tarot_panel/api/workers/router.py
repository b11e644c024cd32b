"""Admin management of worker accounts."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from tarot_panel.auth.rbac import require_admin
from tarot_panel.core.exceptions import ServiceError
from tarot_panel.db.session import get_db

from . import service
from .schemas import CreateWorkerRequest, CredentialsUpdateRequest, WorkerUpdateRequest

router = APIRouter(prefix="/api/admin", tags=["workers"], dependencies=[Depends(require_admin)])


@router.post("/create-worker", status_code=status.HTTP_201_CREATED)
async def create_worker(payload: CreateWorkerRequest, db: AsyncSession = Depends(get_db)) -> dict:
    try:
        result = await service.create_worker(db, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {"ok": True, **result}


@router.get("/workers")
async def list_workers(
    role: Optional[str] = None,
    active: Optional[bool] = None,
    db: AsyncSession = Depends(get_db),
) -> dict:
    return {"ok": True, "items": await service.list_workers(db, role, active)}


@router.post("/workers/update")
async def update_worker(payload: WorkerUpdateRequest, db: AsyncSession = Depends(get_db)) -> dict:
    try:
        item = await service.update_worker(db, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {"ok": True, "item": item}


@router.post("/workers/credentials")
@router.post("/update-user")
@router.post("/users/update")
@router.post("/auth/update-user")
async def update_credentials(payload: CredentialsUpdateRequest, db: AsyncSession = Depends(get_db)) -> dict:
    try:
        result = await service.update_credentials(db, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {"ok": True, **result}
