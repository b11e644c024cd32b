"""Clock-in / presence endpoints for workers, plus the admin live board and planned shifts."""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from tarot_panel.auth.dependencies import get_current_user
from tarot_panel.auth.rbac import require_admin, require_staff
from tarot_panel.auth.schemas import CurrentUser
from tarot_panel.core.exceptions import ServiceError
from tarot_panel.core.timeutils import utcnow
from tarot_panel.db.session import get_db

from . import service
from .schemas import PresenceStateRequest, ShiftBulkUpsert

router = APIRouter(prefix="/api", tags=["presence"])


@router.post("/presence/login")
async def presence_login(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> dict:
    """Clock in. Reuses the open session if there is one."""
    try:
        return {"ok": True, **await service.presence_login(db, current_user.id)}
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/presence/logout")
async def presence_logout(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> dict:
    try:
        return {"ok": True, **await service.presence_logout(db, current_user.id)}
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/presence/state")
async def presence_state(
    payload: PresenceStateRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> dict:
    """Switch between online, pause and bathroom."""
    try:
        return {"ok": True, **await service.presence_set_state(db, current_user.id, payload.state)}
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/presence/me")
async def presence_me(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> dict:
    try:
        return {"ok": True, **await service.presence_me(db, current_user.id)}
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/admin/presence/live", dependencies=[Depends(require_staff)])
async def presence_live(db: AsyncSession = Depends(get_db)) -> dict:
    """Current state of every active central/tarotista and who is missing from a running shift."""
    return {"ok": True, **await service.live_presence(db)}


@router.get("/admin/shifts", dependencies=[Depends(require_admin)])
async def list_shifts(
    shift_date: Optional[date] = None,
    db: AsyncSession = Depends(get_db),
) -> dict:
    day = shift_date or utcnow().date()
    return {"ok": True, "shift_date": day, "items": await service.list_shifts(db, day)}


@router.post("/admin/shifts", dependencies=[Depends(require_admin)])
async def upsert_shifts(payload: ShiftBulkUpsert, db: AsyncSession = Depends(get_db)) -> dict:
    """Create or replace planned shifts (one per worker and date)."""
    try:
        items = await service.upsert_shifts(db, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {"ok": True, "items": items}
