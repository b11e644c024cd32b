from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from tarot_panel.auth.rbac import require_admin
from tarot_panel.core.exceptions import ServiceError
from tarot_panel.db.session import get_db

from . import service
from .schemas import TeamCreate, TeamMemberAdd

router = APIRouter(prefix="/api/admin/teams", tags=["teams"], dependencies=[Depends(require_admin)])


@router.get("")
async def list_teams(db: AsyncSession = Depends(get_db)) -> dict:
    return {"ok": True, "items": await service.list_teams(db)}


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_team(payload: TeamCreate, db: AsyncSession = Depends(get_db)) -> dict:
    try:
        item = await service.create_team(db, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {"ok": True, "item": item}


@router.post("/{team_id}/members")
async def add_member(team_id: UUID, payload: TeamMemberAdd, db: AsyncSession = Depends(get_db)) -> dict:
    try:
        item = await service.add_member(db, team_id, payload.worker_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {"ok": True, "item": item}


@router.delete("/{team_id}/members/{worker_id}")
async def remove_member(team_id: UUID, worker_id: UUID, db: AsyncSession = Depends(get_db)) -> dict:
    try:
        item = await service.remove_member(db, team_id, worker_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {"ok": True, "item": item}
