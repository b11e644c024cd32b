"""Presence state machine, live board, planned shifts and shift-incident detection."""

import logging
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional
from uuid import UUID

from fastapi import status
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tarot_panel.core.config import settings
from tarot_panel.core.exceptions import ServiceError
from tarot_panel.core.models import PlannedShift, PresenceCurrent, PresenceEvent, PresenceSession, ShiftIncident, Worker
from tarot_panel.core.models.incident import (
    INCIDENT_KIND_ABSENCE,
    INCIDENT_KIND_LATE,
    INCIDENT_STATUS_PENDING,
    INCIDENT_TYPE_SYSTEM,
)
from tarot_panel.core.models.presence import (
    ALLOWED_TRANSITIONS,
    STATE_BATHROOM,
    STATE_OFFLINE,
    STATE_ONLINE,
    STATE_PAUSE,
)
from tarot_panel.core.models.worker import ROLE_CENTRAL, ROLE_TAROTISTA
from tarot_panel.core.months import month_start
from tarot_panel.core.timeutils import as_utc, utcnow

from .schemas import ShiftBulkUpsert, ShiftResponse

logger = logging.getLogger(__name__)

SETTABLE_STATES = (STATE_ONLINE, STATE_PAUSE, STATE_BATHROOM)
STATE_ORDER = {STATE_ONLINE: 0, STATE_PAUSE: 1, STATE_BATHROOM: 2, STATE_OFFLINE: 3}
# How far back the detection job looks for shifts
DETECTION_WINDOW = timedelta(hours=36)


async def _commit(db: AsyncSession, error: str) -> None:
    try:
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        raise ServiceError(error, status.HTTP_500_INTERNAL_SERVER_ERROR)


async def _get_worker_profile(db: AsyncSession, user_id: UUID) -> Worker:
    result = await db.execute(select(Worker).where(Worker.user_id == user_id))
    worker = result.scalar_one_or_none()
    if worker is None:
        raise ServiceError("NO_WORKER_PROFILE", status.HTTP_404_NOT_FOUND)
    if not worker.is_active:
        raise ServiceError("USER_DISABLED", status.HTTP_403_FORBIDDEN)
    return worker


async def _open_session(db: AsyncSession, worker_id: UUID) -> Optional[PresenceSession]:
    result = await db.execute(
        select(PresenceSession)
        .where(PresenceSession.worker_id == worker_id, PresenceSession.ended_at.is_(None))
        .order_by(PresenceSession.started_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def _lock_current(db: AsyncSession, worker_id: UUID) -> Optional[PresenceCurrent]:
    """Row lock serializing concurrent transitions of the same worker."""
    result = await db.execute(
        select(PresenceCurrent).where(PresenceCurrent.worker_id == worker_id).with_for_update()
    )
    return result.scalar_one_or_none()


def _set_current(
    db: AsyncSession,
    current: Optional[PresenceCurrent],
    worker_id: UUID,
    state: str,
    session_id: Optional[UUID],
    now: datetime,
) -> PresenceCurrent:
    if current is None:
        current = PresenceCurrent(worker_id=worker_id)
        db.add(current)
    current.state = state
    current.last_change_at = now
    current.active_session_id = session_id
    return current


async def presence_login(db: AsyncSession, user_id: UUID) -> dict:
    """Clock in: reuse the open session or start one, and go online."""
    worker = await _get_worker_profile(db, user_id)
    current = await _lock_current(db, worker.id)
    now = utcnow()

    session = await _open_session(db, worker.id)
    if session is None:
        session = PresenceSession(worker_id=worker.id, started_at=now)
        db.add(session)
        await db.flush()

    if current is None or current.state != STATE_ONLINE or current.active_session_id != session.id:
        db.add(PresenceEvent(session_id=session.id, worker_id=worker.id, state=STATE_ONLINE, at=now))
        _set_current(db, current, worker.id, STATE_ONLINE, session.id, now)

    await _commit(db, "PRESENCE_LOGIN_FAILED")
    return {
        "session_id": session.id,
        "started_at": session.started_at,
        "worker": {"id": worker.id, "role": worker.role, "display_name": worker.display_name},
    }


async def presence_logout(db: AsyncSession, user_id: UUID) -> dict:
    worker = await _get_worker_profile(db, user_id)
    current = await _lock_current(db, worker.id)
    session = await _open_session(db, worker.id)
    if session is None:
        return {"alreadyOff": True}

    now = utcnow()
    db.add(PresenceEvent(session_id=session.id, worker_id=worker.id, state=STATE_OFFLINE, at=now))
    session.ended_at = now
    _set_current(db, current, worker.id, STATE_OFFLINE, None, now)
    await _commit(db, "PRESENCE_LOGOUT_FAILED")
    return {"ended": True, "session_id": session.id}


async def presence_set_state(db: AsyncSession, user_id: UUID, state: Optional[str]) -> dict:
    """Move between online/pause/bathroom inside an open session."""
    state = (state or "").strip().lower()
    if state not in SETTABLE_STATES:
        raise ServiceError("BAD_STATE", status.HTTP_400_BAD_REQUEST)

    worker = await _get_worker_profile(db, user_id)
    current = await _lock_current(db, worker.id)
    session = await _open_session(db, worker.id)
    if session is None:
        raise ServiceError("NO_ACTIVE_SESSION", status.HTTP_400_BAD_REQUEST)

    previous = current.state if current is not None and current.state != STATE_OFFLINE else STATE_ONLINE
    if state == previous:
        return {"session_id": session.id, "state": state, "unchanged": True}
    if state not in ALLOWED_TRANSITIONS.get(previous, set()):
        raise ServiceError("BAD_TRANSITION", status.HTTP_409_CONFLICT)

    now = utcnow()
    db.add(PresenceEvent(session_id=session.id, worker_id=worker.id, state=state, at=now))
    _set_current(db, current, worker.id, state, session.id, now)
    await _commit(db, "PRESENCE_STATE_FAILED")
    return {"session_id": session.id, "state": state}


async def presence_me(db: AsyncSession, user_id: UUID) -> dict:
    worker = await _get_worker_profile(db, user_id)
    current = await db.get(PresenceCurrent, worker.id)
    session = await _open_session(db, worker.id)
    if session is None:
        state = STATE_OFFLINE
    elif current is not None and current.state != STATE_OFFLINE:
        state = current.state
    else:
        state = STATE_ONLINE
    return {
        "state": state,
        "session_id": session.id if session else None,
        "started_at": session.started_at if session else None,
        "last_change_at": current.last_change_at if current else None,
    }


async def missing_now(db: AsyncSession, now: Optional[datetime] = None) -> List[dict]:
    """Workers whose planned shift is running but who are not clocked in."""
    now = now or utcnow()
    result = await db.execute(
        select(PlannedShift, Worker, PresenceCurrent.state)
        .join(Worker, Worker.id == PlannedShift.worker_id)
        .outerjoin(PresenceCurrent, PresenceCurrent.worker_id == Worker.id)
        .where(
            Worker.is_active.is_(True),
            PlannedShift.starts_at <= now,
            PlannedShift.ends_at > now,
        )
        .order_by(PlannedShift.starts_at)
    )
    missing = []
    for shift, worker, state in result.all():
        if state in (None, STATE_OFFLINE):
            missing.append(
                {
                    "worker_id": worker.id,
                    "display_name": worker.display_name,
                    "role": worker.role,
                    "shift_date": shift.shift_date,
                    "starts_at": shift.starts_at,
                    "ends_at": shift.ends_at,
                }
            )
    return missing


async def live_presence(db: AsyncSession) -> dict:
    result = await db.execute(
        select(Worker, PresenceCurrent)
        .outerjoin(PresenceCurrent, PresenceCurrent.worker_id == Worker.id)
        .where(Worker.is_active.is_(True), Worker.role.in_([ROLE_CENTRAL, ROLE_TAROTISTA]))
    )
    rows = []
    for worker, current in result.all():
        rows.append(
            {
                "worker_id": worker.id,
                "name": worker.display_name,
                "role": worker.role,
                "state": current.state if current else STATE_OFFLINE,
                "last_change_at": as_utc(current.last_change_at) if current else None,
                "active_session_id": current.active_session_id if current else None,
            }
        )
    rows.sort(key=lambda r: (STATE_ORDER.get(r["state"], 9), r["name"].lower()))
    missing = await missing_now(db)
    return {"rows": rows, "missingCount": len(missing), "missing": missing}


async def presence_counts(db: AsyncSession) -> Dict[str, int]:
    live = await live_presence(db)
    counts = {state: 0 for state in STATE_ORDER}
    for row in live["rows"]:
        counts[row["state"]] = counts.get(row["state"], 0) + 1
    counts["total"] = len(live["rows"])
    return counts


# ----- Planned shifts -----

async def upsert_shifts(db: AsyncSession, payload: ShiftBulkUpsert) -> List[ShiftResponse]:
    worker_ids = {s.worker_id for s in payload.shifts}
    found = set((await db.execute(select(Worker.id).where(Worker.id.in_(worker_ids)))).scalars())
    if found != worker_ids:
        raise ServiceError("WORKER_NOT_FOUND", status.HTTP_404_NOT_FOUND)

    saved: List[PlannedShift] = []
    for item in payload.shifts:
        result = await db.execute(
            select(PlannedShift).where(
                PlannedShift.worker_id == item.worker_id, PlannedShift.shift_date == item.shift_date
            )
        )
        shift = result.scalar_one_or_none()
        if shift is None:
            shift = PlannedShift(worker_id=item.worker_id, shift_date=item.shift_date)
            db.add(shift)
        shift.starts_at = as_utc(item.starts_at)
        shift.ends_at = as_utc(item.ends_at)
        saved.append(shift)
    await _commit(db, "SHIFT_SAVE_FAILED")
    return [ShiftResponse.model_validate(s) for s in saved]


async def list_shifts(db: AsyncSession, shift_date: date) -> List[ShiftResponse]:
    result = await db.execute(
        select(PlannedShift, Worker.display_name)
        .join(Worker, Worker.id == PlannedShift.worker_id)
        .where(PlannedShift.shift_date == shift_date)
        .order_by(PlannedShift.starts_at)
    )
    items = []
    for shift, name in result.all():
        item = ShiftResponse.model_validate(shift)
        item.worker_name = name
        items.append(item)
    return items


async def _first_seen(db: AsyncSession, worker_id: UUID, starts_at: datetime, ends_at: datetime) -> Optional[datetime]:
    """Earliest moment the worker was clocked in during [starts_at, ends_at)."""
    result = await db.execute(
        select(PresenceSession.started_at).where(
            PresenceSession.worker_id == worker_id,
            PresenceSession.started_at < ends_at,
            (PresenceSession.ended_at.is_(None)) | (PresenceSession.ended_at > starts_at),
        )
    )
    starts = [as_utc(s) for s in result.scalars()]
    if not starts:
        return None
    return max(min(starts), as_utc(starts_at))


async def detect_shift_incidents(db: AsyncSession, now: Optional[datetime] = None) -> dict:
    """Raise system late/absence incidents for planned shifts (one incident per worker and date).

    A pending system ``late`` incident is upgraded to ``absence`` once the
    shift ends with no presence at all.
    """
    now = now or utcnow()
    grace = timedelta(minutes=settings.late_grace_minutes)
    shifts = (
        await db.execute(
            select(PlannedShift)
            .join(Worker, Worker.id == PlannedShift.worker_id)
            .where(
                Worker.is_active.is_(True),
                PlannedShift.starts_at <= now - grace,
                PlannedShift.starts_at >= now - DETECTION_WINDOW,
            )
        )
    ).scalars().all()

    created = updated = 0
    for shift in shifts:
        starts_at, ends_at = as_utc(shift.starts_at), as_utc(shift.ends_at)
        seen = await _first_seen(db, shift.worker_id, starts_at, ends_at)
        if seen is None:
            kind = INCIDENT_KIND_ABSENCE if now >= ends_at else INCIDENT_KIND_LATE
            minutes_late = None if kind == INCIDENT_KIND_ABSENCE else int((now - starts_at).total_seconds() // 60)
        elif seen > starts_at + grace:
            kind = INCIDENT_KIND_LATE
            minutes_late = int((seen - starts_at).total_seconds() // 60)
        else:
            continue

        existing = (
            await db.execute(
                select(ShiftIncident)
                .where(ShiftIncident.worker_id == shift.worker_id, ShiftIncident.incident_date == shift.shift_date)
                .order_by(ShiftIncident.created_at.desc())
                .limit(1)
            )
        ).scalar_one_or_none()
        if existing is not None:
            if (
                existing.incident_type == INCIDENT_TYPE_SYSTEM
                and existing.status == INCIDENT_STATUS_PENDING
                and existing.kind == INCIDENT_KIND_LATE
                and (kind != existing.kind or minutes_late != existing.minutes_late)
            ):
                existing.kind = kind
                existing.minutes_late = minutes_late
                updated += 1
            continue

        db.add(
            ShiftIncident(
                worker_id=shift.worker_id,
                incident_date=shift.shift_date,
                month_date=month_start(shift.shift_date),
                kind=kind,
                incident_type=INCIDENT_TYPE_SYSTEM,
                status=INCIDENT_STATUS_PENDING,
                minutes_late=minutes_late,
                penalty_eur=0,
                notes="Detectada automáticamente por turno planificado",
            )
        )
        created += 1

    await _commit(db, "DETECTION_FAILED")
    logger.info("Shift incident detection: checked=%d created=%d updated=%d", len(shifts), created, updated)
    return {"checked": len(shifts), "created": created, "updated": updated}
