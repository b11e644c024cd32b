"""Attendance ingestion (full replace / month-scoped), call mappings and attendance stats."""

import logging
from collections import Counter
from datetime import date
from typing import Dict, List, Optional
from uuid import UUID

import httpx
from fastapi import status
from sqlalchemy import case, delete, func, insert, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tarot_panel.api.monthly import procedures
from tarot_panel.core.config import settings
from tarot_panel.core.exceptions import ServiceError
from tarot_panel.core.models import AttendanceRow, CallMapping, Worker
from tarot_panel.core.models.attendance import CALL_CODES
from tarot_panel.core.models.worker import ROLE_CENTRAL, ROLE_TAROTISTA
from tarot_panel.core.months import month_start
from tarot_panel.core.timeutils import utcnow

from .csv_import import REASON_BAD_DATE, ParsedSheet, WorkerResolver, parse_attendance_rows, read_csv_rows
from .schemas import CallMappingResponse, CallMappingUpsert

logger = logging.getLogger(__name__)

BAD_EXAMPLES_LIMIT = 8
TOP_LIMIT = 20


async def fetch_csv_text(url: str) -> str:
    """Download the published sheet as text."""
    try:
        async with httpx.AsyncClient(timeout=settings.csv_fetch_timeout_seconds, follow_redirects=True) as client:
            response = await client.get(url)
    except httpx.HTTPError as exc:
        logger.warning("CSV fetch failed for %s: %s", url, exc)
        raise ServiceError("CSV_FETCH_FAILED", status.HTTP_502_BAD_GATEWAY)
    if response.status_code >= 400:
        raise ServiceError(f"CSV_FETCH_FAILED_{response.status_code}", status.HTTP_502_BAD_GATEWAY)
    return response.text


async def load_csv_text(csv_text: Optional[str], csv_url: Optional[str]) -> str:
    if csv_text and csv_text.strip():
        return csv_text
    url = csv_url or settings.attendance_csv_url
    if not url:
        raise ServiceError("NO_CSV_URL", status.HTTP_400_BAD_REQUEST)
    return await fetch_csv_text(url)


async def build_resolver(db: AsyncSession) -> WorkerResolver:
    mappings = (await db.execute(select(CallMapping.csv_tarotista, CallMapping.worker_id))).all()
    workers = (
        await db.execute(
            select(Worker.id, Worker.external_ref, Worker.display_name).where(
                Worker.role.in_([ROLE_TAROTISTA, ROLE_CENTRAL])
            )
        )
    ).all()
    return WorkerResolver(mappings, workers)


def parse_rows(rows: List[List[str]], *, header_row_index: Optional[int], separator: Optional[str]) -> ParsedSheet:
    try:
        return parse_attendance_rows(rows, header_row_index=header_row_index, separator=separator)
    except ValueError as exc:
        raise ServiceError(str(exc), status.HTTP_400_BAD_REQUEST)


async def import_sheet(
    db: AsyncSession,
    sheet: ParsedSheet,
    *,
    month: Optional[date] = None,
    recompute: bool = False,
) -> dict:
    """Replace attendance with the sheet's rows in one transaction.

    With ``month`` only that month's rows are replaced (other months are
    counted as skipped); without it the whole table is replaced.
    """
    resolver = await build_resolver(db)
    unmatched: Counter = Counter()
    skipped_other_month = 0
    values: List[dict] = []
    for record in sheet.records:
        record_month = month_start(record.call_date)
        if month is not None and record_month != month:
            skipped_other_month += 1
            continue
        worker_id = resolver.resolve(record.tarotista)
        if worker_id is None:
            unmatched[record.tarotista] += 1
            continue
        values.append(
            {
                "worker_id": worker_id,
                "call_date": record.call_date,
                "month_date": record_month,
                "minutes": record.minutes,
                "codigo": record.codigo,
                "captado": record.captado,
                "telefonista": record.telefonista,
                "importe_eur": record.importe_eur,
                "raw": record.raw,
                "created_at": utcnow(),
            }
        )

    reasons = sheet.reason_counts()
    report = {
        "month_date": month,
        "totalRows": sheet.total_rows,
        "inserted": len(values),
        "skippedBad": sum(n for r, n in reasons.items() if r != REASON_BAD_DATE),
        "skippedBadDate": reasons.get(REASON_BAD_DATE, 0),
        "skippedNoWorker": sum(unmatched.values()),
        "skippedOtherMonth": skipped_other_month,
        "defaultedCodigoToCliente": sheet.defaulted_count,
        "badTop20": [{"reason": r, "count": n} for r, n in reasons.most_common(TOP_LIMIT)],
        "badExamples": [
            {"row": r.row_number, "reason": r.reason, "raw": r.raw} for r in sheet.rejected[:BAD_EXAMPLES_LIMIT]
        ],
        "unmatchedTop": [{"tarotista": n, "count": c} for n, c in unmatched.most_common(TOP_LIMIT)],
        "debug": {
            "separator": sheet.separator,
            "headerRowIndex": sheet.header_row_index,
            "headers": sheet.headers,
        },
    }

    try:
        if month is None:
            await db.execute(delete(AttendanceRow))
        else:
            await db.execute(delete(AttendanceRow).where(AttendanceRow.month_date == month))
        batch = max(1, settings.sync_batch_size)
        for start in range(0, len(values), batch):
            await db.execute(insert(AttendanceRow), values[start:start + batch])
        if recompute and month is not None:
            if await procedures.is_month_closed(db, month):
                report["recompute"] = {"skipped": "MONTH_CLOSED"}
            else:
                report["recompute"] = await procedures.run_monthly_pipeline(db, month)
        await db.commit()
    except ServiceError:
        await db.rollback()
        raise
    except SQLAlchemyError:
        await db.rollback()
        logger.exception("Attendance sync failed; previous rows kept")
        raise ServiceError("SYNC_FAILED", status.HTTP_500_INTERNAL_SERVER_ERROR)

    logger.info(
        "Attendance sync (%s): inserted=%d total=%d bad=%d badDate=%d noWorker=%d otherMonth=%d",
        month or "all",
        report["inserted"],
        report["totalRows"],
        report["skippedBad"],
        report["skippedBadDate"],
        report["skippedNoWorker"],
        report["skippedOtherMonth"],
    )
    return report


async def sync_from_text(
    db: AsyncSession,
    text: str,
    *,
    month: Optional[date] = None,
    header_row_index: Optional[int] = None,
    recompute: bool = False,
) -> dict:
    rows, separator = read_csv_rows(text)
    sheet = parse_rows(rows, header_row_index=header_row_index, separator=separator)
    return await import_sheet(db, sheet, month=month, recompute=recompute)


# ----- Call mappings -----

async def list_mappings(db: AsyncSession) -> List[CallMappingResponse]:
    result = await db.execute(
        select(CallMapping, Worker.display_name)
        .join(Worker, Worker.id == CallMapping.worker_id)
        .order_by(CallMapping.csv_tarotista)
    )
    return [
        CallMappingResponse(
            id=m.id,
            csv_tarotista=m.csv_tarotista,
            worker_id=m.worker_id,
            worker_name=name,
            created_at=m.created_at,
        )
        for m, name in result.all()
    ]


async def upsert_mapping(db: AsyncSession, payload: CallMappingUpsert) -> CallMappingResponse:
    name = payload.csv_tarotista.strip()
    if not name:
        raise ServiceError("MISSING_FIELDS", status.HTTP_400_BAD_REQUEST)
    worker = await db.get(Worker, payload.worker_id)
    if worker is None:
        raise ServiceError("WORKER_NOT_FOUND", status.HTTP_404_NOT_FOUND)

    result = await db.execute(select(CallMapping).where(CallMapping.csv_tarotista == name))
    mapping = result.scalar_one_or_none()
    if mapping is None:
        mapping = CallMapping(csv_tarotista=name, worker_id=worker.id)
        db.add(mapping)
    else:
        mapping.worker_id = worker.id
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ServiceError("MAPPING_CONFLICT", status.HTTP_409_CONFLICT)
    await db.refresh(mapping)
    return CallMappingResponse(
        id=mapping.id,
        csv_tarotista=mapping.csv_tarotista,
        worker_id=mapping.worker_id,
        worker_name=worker.display_name,
        created_at=mapping.created_at,
    )


async def delete_mapping(db: AsyncSession, mapping_id: int) -> None:
    mapping = await db.get(CallMapping, mapping_id)
    if mapping is None:
        raise ServiceError("NOT_FOUND", status.HTTP_404_NOT_FOUND)
    await db.delete(mapping)
    await db.commit()


# ----- Stats -----

def _stats_columns():
    return [
        func.count(AttendanceRow.id).label("calls"),
        func.coalesce(func.sum(AttendanceRow.minutes), 0).label("minutes"),
        func.coalesce(func.sum(case((AttendanceRow.captado.is_(True), 1), else_=0)), 0).label("captadas"),
    ] + [
        func.coalesce(
            func.sum(case((AttendanceRow.codigo == code, AttendanceRow.minutes), else_=0)), 0
        ).label(f"{code}_minutes")
        for code in CALL_CODES
    ]


def _stats_dict(row) -> Dict[str, object]:
    minutes = int(row.minutes or 0)
    data = {
        "calls": int(row.calls or 0),
        "minutes": minutes,
        "captadas": int(row.captadas or 0),
    }
    for code in CALL_CODES:
        code_minutes = int(getattr(row, f"{code}_minutes") or 0)
        data[f"{code}_minutes"] = code_minutes
        data[f"{code}_pct"] = float(procedures.pct(code_minutes, minutes))
    return data


async def global_stats(db: AsyncSession, month: Optional[date]) -> dict:
    criteria = [AttendanceRow.month_date == month] if month else []
    stmt = (
        select(Worker.id, Worker.display_name, Worker.role, *_stats_columns())
        .select_from(AttendanceRow)
        .join(Worker, Worker.id == AttendanceRow.worker_id)
        .where(*criteria)
        .group_by(Worker.id, Worker.display_name, Worker.role)
    )
    per_worker = []
    for row in (await db.execute(stmt)).all():
        item = {"worker_id": row.id, "display_name": row.display_name, "role": row.role}
        item.update(_stats_dict(row))
        per_worker.append(item)
    per_worker.sort(key=lambda r: -r["minutes"])
    total_rows = (await db.execute(select(func.count(AttendanceRow.id)).where(*criteria))).scalar_one()
    return {
        "month_date": month,
        "totalRows": total_rows,
        "tarotistasTop": [r for r in per_worker if r["role"] == ROLE_TAROTISTA][:50],
        "centralesTop": [r for r in per_worker if r["role"] == ROLE_CENTRAL][:50],
    }


async def worker_stats(db: AsyncSession, worker_id: UUID, month: Optional[date]) -> dict:
    criteria = [AttendanceRow.worker_id == worker_id]
    if month:
        criteria.append(AttendanceRow.month_date == month)
    row = (await db.execute(select(*_stats_columns()).where(*criteria))).one()
    return {"month_date": month, "stats": _stats_dict(row)}
