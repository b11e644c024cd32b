"""Incident reporting (central/admin), admin decisions and worker listings."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from tarot_panel.auth.dependencies import get_current_worker
from tarot_panel.auth.rbac import require_admin, require_staff
from tarot_panel.auth.schemas import CurrentWorker
from tarot_panel.core.exceptions import ServiceError
from tarot_panel.core.months import parse_month
from tarot_panel.db.session import get_db

from . import service
from .schemas import AdminIncidentCreate, CentralIncidentCreate, IncidentAction, IncidentCreateByName, IncidentResolve

router = APIRouter(prefix="/api", tags=["incidents"])


@router.post("/incidents/create", status_code=status.HTTP_201_CREATED)
async def create_incident(
    payload: IncidentCreateByName,
    db: AsyncSession = Depends(get_db),
    actor: CurrentWorker = Depends(require_staff),
) -> dict:
    """Report an incident for a tarotista by display name."""
    try:
        item = await service.create_incident_by_name(db, actor, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {
        "ok": True,
        "id": item.id,
        "created_for": item.worker_name,
        "status": item.status,
        "penalty_eur": item.penalty_eur,
        "item": item,
    }


@router.post("/central/incidents/create", status_code=status.HTTP_201_CREATED)
async def central_create_incident(
    payload: CentralIncidentCreate,
    db: AsyncSession = Depends(get_db),
    actor: CurrentWorker = Depends(require_staff),
) -> dict:
    try:
        item = await service.create_incident_for_worker(db, actor, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {"ok": True, "item": item}


@router.post("/admin/incidents/create", status_code=status.HTTP_201_CREATED)
async def admin_create_incident(
    payload: AdminIncidentCreate,
    db: AsyncSession = Depends(get_db),
    actor: CurrentWorker = Depends(require_admin),
) -> dict:
    try:
        item = await service.admin_create_incident(db, actor, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {"ok": True, "item": item}


@router.get("/incidents/me")
@router.get("/incidents/my")
async def my_incidents(
    month_date: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    worker: CurrentWorker = Depends(get_current_worker),
) -> dict:
    """The caller's incidents for a month (latest month with incidents by default)."""
    try:
        data = await service.my_incidents(db, worker.id, parse_month(month_date))
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {"ok": True, "user": {"isAdmin": worker.is_admin}, **data}


@router.get("/panel/incidents/my")
async def panel_my_incidents(
    month_date: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    worker: CurrentWorker = Depends(get_current_worker),
) -> dict:
    try:
        data = await service.my_incidents(db, worker.id, parse_month(month_date))
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {
        "ok": True,
        "worker": {"id": worker.id, "display_name": worker.display_name, "role": worker.role},
        **data,
    }


@router.get("/admin/incidents/list", dependencies=[Depends(require_admin)])
async def list_incidents(
    month_date: Optional[str] = None,
    worker_id: Optional[UUID] = None,
    status: Optional[str] = None,
    kind: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        data = await service.list_incidents(
            db,
            month=parse_month(month_date),
            worker_id=worker_id,
            status_filter=status,
            kind=kind,
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {"ok": True, **data}


@router.get("/admin/incidents/pending", dependencies=[Depends(require_admin)])
async def pending_incidents(db: AsyncSession = Depends(get_db)) -> dict:
    items = await service.pending_incidents(db)
    return {"ok": True, "count": len(items), "items": items}


@router.post("/admin/incidents/action")
async def incident_action(
    payload: IncidentAction,
    db: AsyncSession = Depends(get_db),
    actor: CurrentWorker = Depends(require_admin),
) -> dict:
    """Mark a pending incident justified, unjustified, dismissed or resolved."""
    try:
        item = await service.apply_action(db, actor, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {"ok": True, "item": item}


@router.post("/admin/incidents/resolve")
async def resolve_incident(
    payload: IncidentResolve,
    db: AsyncSession = Depends(get_db),
    actor: CurrentWorker = Depends(require_admin),
) -> dict:
    try:
        return {"ok": True, **await service.resolve_incident(db, actor, payload)}
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
