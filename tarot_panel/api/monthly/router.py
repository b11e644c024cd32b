"""Monthly recompute/close, hours export, bonus rules and dashboards."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from tarot_panel.auth.dependencies import get_current_worker
from tarot_panel.auth.rbac import require_admin
from tarot_panel.auth.schemas import CurrentWorker
from tarot_panel.core.exceptions import ServiceError
from tarot_panel.core.months import current_month, parse_month, previous_month
from tarot_panel.db.session import get_db

from . import procedures, service
from .schemas import BonusRuleUpsert, CloseMonthRequest, RecomputeRequest

router = APIRouter(prefix="/api", tags=["monthly"])

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@router.post("/admin/recompute", dependencies=[Depends(require_admin)])
async def recompute(payload: Optional[RecomputeRequest] = None, db: AsyncSession = Depends(get_db)) -> dict:
    """Run rankings, earnings, bonuses, cap and invoices for ``month``."""
    payload = payload or RecomputeRequest()
    try:
        result = await service.recompute(db, payload.month)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {"ok": True, **result}


@router.post("/admin/close-month")
async def close_month(
    payload: Optional[CloseMonthRequest] = None,
    db: AsyncSession = Depends(get_db),
    admin: CurrentWorker = Depends(require_admin),
) -> dict:
    """Close ``month_date`` (default: previous month). Closing twice is a no-op."""
    month = (payload.month_date if payload else None) or previous_month(current_month())
    try:
        result = await service.close(db, month, closed_by=admin.id, source="manual")
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {"ok": True, **result}


@router.get("/admin/hours", dependencies=[Depends(require_admin)])
async def hours(
    month: Optional[str] = None,
    fmt: str = Query("json", alias="format"),
    db: AsyncSession = Depends(get_db),
):
    try:
        month_date = parse_month(month, default=current_month())
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    if fmt not in ("json", "xlsx"):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="BAD_FORMAT")

    rows = await procedures.admin_hours_summary(db, month_date)
    if fmt == "xlsx":
        return Response(
            content=service.hours_workbook(rows, month_date),
            media_type=XLSX_MEDIA_TYPE,
            headers={"Content-Disposition": f'attachment; filename="horas_{month_date.isoformat()}.xlsx"'},
        )
    return {"ok": True, "month_date": month_date, "rows": rows}


@router.get("/bonus/rules")
async def bonus_rules(
    db: AsyncSession = Depends(get_db),
    worker: CurrentWorker = Depends(get_current_worker),
) -> dict:
    return {"ok": True, "rules": await service.list_bonus_rules(db, only_active=not worker.is_admin)}


@router.post("/admin/bonus/rules", dependencies=[Depends(require_admin)])
async def upsert_bonus_rule(payload: BonusRuleUpsert, db: AsyncSession = Depends(get_db)) -> dict:
    try:
        rule = await service.upsert_bonus_rule(db, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {"ok": True, "rule": rule}


@router.get("/dashboard/full")
async def dashboard_full(
    month_date: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    worker: CurrentWorker = Depends(get_current_worker),
) -> dict:
    try:
        data = await service.dashboard_full(db, worker, month_date)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {"ok": True, **data}


@router.get("/admin/dashboard/overview")
async def admin_overview(
    month_date: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    admin: CurrentWorker = Depends(require_admin),
) -> dict:
    try:
        data = await service.admin_overview(db, admin, month_date)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {"ok": True, **data}
