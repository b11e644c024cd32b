"""Attendance ingestion, call mappings and attendance statistics."""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from tarot_panel.auth.dependencies import get_current_worker
from tarot_panel.auth.rbac import require_admin, require_staff
from tarot_panel.auth.schemas import CurrentWorker
from tarot_panel.core.exceptions import ServiceError
from tarot_panel.core.months import current_month, parse_month, parse_month_date
from tarot_panel.db.session import get_db

from . import service
from .csv_import import read_csv_rows, read_xlsx_rows
from .schemas import CallMappingUpsert, MonthSyncRequest, SyncRequest

router = APIRouter(prefix="/api", tags=["attendance"])

XLSX_CONTENT_TYPES = {
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/vnd.ms-excel",
}


@router.post("/admin/sync-csv", dependencies=[Depends(require_admin)])
async def sync_csv_full(
    payload: Optional[SyncRequest] = None,
    db: AsyncSession = Depends(get_db),
) -> dict:
    """Replace the whole attendance table with the sheet. No recompute."""
    payload = payload or SyncRequest()
    try:
        text = await service.load_csv_text(payload.csv_text, payload.csv_url)
        report = await service.sync_from_text(db, text, header_row_index=payload.header_row_index)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {"ok": True, **report}


@router.post("/admin/sync", dependencies=[Depends(require_admin)])
async def sync_month(
    payload: Optional[MonthSyncRequest] = None,
    db: AsyncSession = Depends(get_db),
) -> dict:
    """Replace one month of attendance (default: current month) and run the monthly pipeline."""
    payload = payload or MonthSyncRequest()
    month = payload.month_date or current_month()
    try:
        text = await service.load_csv_text(payload.csv_text, payload.csv_url)
        report = await service.sync_from_text(
            db,
            text,
            month=month,
            header_row_index=payload.header_row_index,
            recompute=payload.recompute,
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {"ok": True, **report}


@router.post("/admin/attendance/upload", dependencies=[Depends(require_admin)])
async def upload_attendance(
    file: UploadFile = File(...),
    month_date: Optional[str] = Form(None),
    header_row_index: Optional[int] = Form(None),
    db: AsyncSession = Depends(get_db),
) -> dict:
    """Import a CSV or XLSX export. With month_date, behaves like /admin/sync for that month."""
    content = await file.read()
    if not content:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="EMPTY_FILE")
    filename = (file.filename or "").lower()
    try:
        month = parse_month_date(month_date) if month_date else None
        if filename.endswith(".xlsx") or file.content_type in XLSX_CONTENT_TYPES:
            rows, separator = read_xlsx_rows(content), None
        else:
            rows, separator = read_csv_rows(content.decode("utf-8-sig", errors="replace"))
        sheet = service.parse_rows(rows, header_row_index=header_row_index, separator=separator)
        report = await service.import_sheet(db, sheet, month=month, recompute=month is not None)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {"ok": True, "filename": file.filename, **report}


@router.get("/admin/mappings", dependencies=[Depends(require_admin)])
async def list_mappings(db: AsyncSession = Depends(get_db)) -> dict:
    return {"ok": True, "items": await service.list_mappings(db)}


@router.post("/admin/mappings", dependencies=[Depends(require_admin)])
async def upsert_mapping(payload: CallMappingUpsert, db: AsyncSession = Depends(get_db)) -> dict:
    """Create or repoint a sheet-name -> worker mapping."""
    try:
        item = await service.upsert_mapping(db, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {"ok": True, "item": item}


@router.delete("/admin/mappings/{mapping_id}", dependencies=[Depends(require_admin)])
async def delete_mapping(mapping_id: int, db: AsyncSession = Depends(get_db)) -> dict:
    try:
        await service.delete_mapping(db, mapping_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {"ok": True}


@router.get("/stats/global", dependencies=[Depends(require_staff)])
async def stats_global(
    month_date: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
) -> dict:
    """Per-worker attendance aggregates; all months when month_date is omitted."""
    try:
        month: Optional[date] = parse_month(month_date)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {"ok": True, **await service.global_stats(db, month)}


@router.get("/stats/me")
async def stats_me(
    month_date: Optional[str] = None,
    worker: CurrentWorker = Depends(get_current_worker),
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        month = parse_month(month_date)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {"ok": True, "worker_id": worker.id, **await service.worker_stats(db, worker.id, month)}
