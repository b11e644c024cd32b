"""Scheduled jobs, authenticated with the shared cron secret instead of a user token.

Every run is recorded in ``cron_logs`` (successes and failures).
"""

import logging
import secrets
from typing import Awaitable, Callable, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from fastapi.encoders import jsonable_encoder
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from tarot_panel.api.attendance import service as attendance_service
from tarot_panel.api.monthly import procedures
from tarot_panel.api.presence.service import detect_shift_incidents
from tarot_panel.core.config import settings
from tarot_panel.core.exceptions import ServiceError
from tarot_panel.core.models import AttendanceRow, CronLog
from tarot_panel.core.months import current_month, previous_month
from tarot_panel.core.timeutils import utcnow
from tarot_panel.db.session import get_db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cron", tags=["cron"])


def require_cron_secret(
    secret: Optional[str] = Query(None),
    authorization: Optional[str] = Header(None),
) -> None:
    expected = settings.cron_secret
    if not expected:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="CRON_SECRET_NOT_SET")
    provided = secret
    if not provided and authorization and authorization.lower().startswith("bearer "):
        provided = authorization[7:].strip()
    if not provided or not secrets.compare_digest(provided, expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="UNAUTHORIZED")


async def _run_job(db: AsyncSession, job: str, fn: Callable[[], Awaitable[dict]]) -> dict:
    started_at = utcnow()
    try:
        details = await fn()
    except Exception as exc:
        await db.rollback()
        error = exc.message if isinstance(exc, ServiceError) else type(exc).__name__
        logger.exception("Cron job %s failed", job)
        db.add(CronLog(job=job, ok=False, details={"error": error}, started_at=started_at, finished_at=utcnow()))
        await db.commit()
        raise

    db.add(
        CronLog(
            job=job,
            ok=True,
            details=jsonable_encoder(details),
            started_at=started_at,
            finished_at=utcnow(),
        )
    )
    await db.commit()
    logger.info("Cron job %s finished", job)
    return details


@router.get("/sync-csv", dependencies=[Depends(require_cron_secret)])
async def cron_sync_csv(db: AsyncSession = Depends(get_db)) -> dict:
    """Full-replace attendance sync from the configured sheet URL."""

    async def job() -> dict:
        text = await attendance_service.load_csv_text(None, None)
        return await attendance_service.sync_from_text(db, text)

    try:
        report = await _run_job(db, "sync-csv", job)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {"ok": True, **report}


@router.get("/rebuild-monthly", dependencies=[Depends(require_cron_secret)])
async def cron_rebuild_monthly(db: AsyncSession = Depends(get_db)) -> dict:
    """Rebuild rankings for the latest attendance month and the one before; closed months are skipped."""

    async def job() -> dict:
        latest = (await db.execute(select(func.max(AttendanceRow.month_date)))).scalar_one_or_none()
        if latest is None:
            return {"rebuilt": [], "note": "NO_MONTH_DATE_DATA", "at": utcnow()}
        rebuilt, skipped = [], []
        for month in (latest, previous_month(latest)):
            if await procedures.is_month_closed(db, month):
                skipped.append(month)
                continue
            workers = await procedures.rebuild_monthly_rankings(db, month)
            rebuilt.append({"month_date": month, "workers": workers})
        await db.commit()
        return {"rebuilt": rebuilt, "skippedClosed": skipped, "at": utcnow()}

    try:
        result = await _run_job(db, "rebuild-monthly", job)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {"ok": True, **result}


@router.get("/close-month", dependencies=[Depends(require_cron_secret)])
async def cron_close_month(db: AsyncSession = Depends(get_db)) -> dict:
    """Close the previous calendar month."""

    async def job() -> dict:
        result = await procedures.close_month(db, previous_month(current_month()), closed_by=None, source="cron")
        await db.commit()
        return result

    try:
        result = await _run_job(db, "close-month", job)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {"ok": True, **result}


@router.get("/detect-incidents", dependencies=[Depends(require_cron_secret)])
async def cron_detect_incidents(db: AsyncSession = Depends(get_db)) -> dict:
    try:
        result = await _run_job(db, "detect-incidents", lambda: detect_shift_incidents(db))
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {"ok": True, **result}
