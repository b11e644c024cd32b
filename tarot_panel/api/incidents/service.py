"""Incident creation by centrals/admins, admin decisions, and per-worker listings."""

import logging
import math
from datetime import date
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from fastapi import status
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tarot_panel.api.monthly import procedures
from tarot_panel.auth.schemas import CurrentWorker
from tarot_panel.core.exceptions import ServiceError
from tarot_panel.core.models import ShiftIncident, Worker
from tarot_panel.core.models.incident import (
    ADMIN_INCIDENT_TYPES,
    INCIDENT_KIND_ABSENCE,
    INCIDENT_KIND_LATE,
    INCIDENT_KIND_MANUAL,
    INCIDENT_KIND_OTHER,
    INCIDENT_STATUS_CANCELLED,
    INCIDENT_STATUS_JUSTIFIED,
    INCIDENT_STATUS_PENDING,
    INCIDENT_STATUS_RESOLVED,
    INCIDENT_STATUS_UNJUSTIFIED,
    INCIDENT_TYPE_MANUAL,
    REPORTABLE_KINDS,
)
from tarot_panel.core.models.worker import ROLE_TAROTISTA
from tarot_panel.core.months import current_month, month_start
from tarot_panel.core.timeutils import utcnow

from .schemas import (
    AdminIncidentCreate,
    CentralIncidentCreate,
    IncidentAction,
    IncidentCreateByName,
    IncidentResolve,
    IncidentResponse,
)

logger = logging.getLogger(__name__)

# Admin action -> resulting status
ACTION_STATUS = {
    "justified": INCIDENT_STATUS_JUSTIFIED,
    "unjustified": INCIDENT_STATUS_UNJUSTIFIED,
    "dismiss": INCIDENT_STATUS_CANCELLED,
    "resolved": INCIDENT_STATUS_RESOLVED,
}

ACTION_NOTES = {
    INCIDENT_STATUS_JUSTIFIED: "Justificada por admin",
    INCIDENT_STATUS_UNJUSTIFIED: "No justificada por admin",
    INCIDENT_STATUS_CANCELLED: "Descartada por admin",
    INCIDENT_STATUS_RESOLVED: "Resuelta por admin",
}

ABSENCE_PENALTY = Decimal("10.00")
DEFAULT_PENALTY = Decimal("5.00")
LATE_PENALTY_MIN = 2
LATE_PENALTY_MAX = 10
MONTHS_LIMIT = 48
PENDING_LIMIT = 200


def compute_penalty(kind: str, status_value: str, minutes_late: Optional[int] = None) -> Decimal:
    """Penalty in EUR for a decided incident. Only unjustified incidents are penalized."""
    if status_value != INCIDENT_STATUS_UNJUSTIFIED:
        return Decimal("0.00")
    if kind == INCIDENT_KIND_ABSENCE:
        return ABSENCE_PENALTY
    if minutes_late and minutes_late > 0:
        blocks = math.ceil(minutes_late / 30)
        return Decimal(min(LATE_PENALTY_MAX, max(LATE_PENALTY_MIN, blocks * 2))).quantize(Decimal("0.01"))
    return DEFAULT_PENALTY


def _normalize_kind(kind: Optional[str]) -> str:
    kind = (kind or "").strip().lower()
    return kind if kind in REPORTABLE_KINDS else INCIDENT_KIND_OTHER


def _parse_incident_date(value: Optional[str]) -> date:
    if value is None or not value.strip():
        return utcnow().date()
    try:
        return date.fromisoformat(value.strip()[:10])
    except ValueError:
        raise ServiceError("BAD_INCIDENT_DATE", status.HTTP_400_BAD_REQUEST)


def _to_response(incident: ShiftIncident, worker: Optional[Worker] = None) -> IncidentResponse:
    item = IncidentResponse.model_validate(incident)
    if worker is not None:
        item.worker_name = worker.display_name
        item.worker_role = worker.role
    return item


async def _commit(db: AsyncSession) -> None:
    try:
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        raise ServiceError("INCIDENT_SAVE_FAILED", status.HTTP_500_INTERNAL_SERVER_ERROR)


def _creator_note(actor: CurrentWorker, notes: Optional[str]) -> str:
    text = f"Creada por {actor.role.upper()} ({actor.display_name})"
    if notes and notes.strip():
        text += f"\nNotas: {notes.strip()}"
    return text


async def create_incident_by_name(
    db: AsyncSession, actor: CurrentWorker, payload: IncidentCreateByName
) -> IncidentResponse:
    """Central/admin reports an incident for a tarotista identified by display name."""
    name = payload.target_name.strip()
    result = await db.execute(
        select(Worker).where(func.lower(Worker.display_name) == name.lower()).limit(1)
    )
    target = result.scalar_one_or_none()
    if target is None:
        raise ServiceError("TAROTIST_NOT_FOUND", status.HTTP_404_NOT_FOUND)
    if not target.is_active:
        raise ServiceError("TARGET_INACTIVE", status.HTTP_400_BAD_REQUEST)
    if target.role != ROLE_TAROTISTA:
        raise ServiceError("TARGET_NOT_TAROTIST", status.HTTP_400_BAD_REQUEST)

    kind = _normalize_kind(payload.kind)
    incident_date = _parse_incident_date(payload.incident_date)
    incident = ShiftIncident(
        worker_id=target.id,
        incident_date=incident_date,
        month_date=month_start(incident_date),
        kind=kind,
        incident_type=INCIDENT_TYPE_MANUAL,
        status=INCIDENT_STATUS_PENDING,
        minutes_late=payload.minutes_late if kind == INCIDENT_KIND_LATE else None,
        penalty_eur=Decimal("0.00"),
        notes=_creator_note(actor, payload.notes),
        created_by=actor.id,
    )
    db.add(incident)
    await _commit(db)
    logger.info("Incident %s (%s) created for %s by %s", incident.id, kind, target.display_name, actor.display_name)
    return _to_response(incident, target)


async def create_incident_for_worker(
    db: AsyncSession, actor: CurrentWorker, payload: CentralIncidentCreate
) -> IncidentResponse:
    target = await db.get(Worker, payload.worker_id)
    if target is None:
        raise ServiceError("WORKER_NOT_FOUND", status.HTTP_404_NOT_FOUND)
    if not target.is_active:
        raise ServiceError("TARGET_INACTIVE", status.HTTP_400_BAD_REQUEST)

    kind = _normalize_kind(payload.kind)
    incident_date = payload.incident_date or utcnow().date()
    incident = ShiftIncident(
        worker_id=target.id,
        incident_date=incident_date,
        month_date=month_start(incident_date),
        kind=kind,
        incident_type=INCIDENT_TYPE_MANUAL,
        status=INCIDENT_STATUS_PENDING,
        minutes_late=payload.minutes_late if kind == INCIDENT_KIND_LATE else None,
        penalty_eur=Decimal("0.00"),
        notes=(payload.notes or "").strip() or "Creada manualmente por central",
        created_by=actor.id,
    )
    db.add(incident)
    await _commit(db)
    return _to_response(incident, target)


async def admin_create_incident(
    db: AsyncSession, actor: CurrentWorker, payload: AdminIncidentCreate
) -> IncidentResponse:
    if payload.worker_id is None:
        raise ServiceError("MISSING_WORKER", status.HTTP_400_BAD_REQUEST)
    if payload.incident_date is None:
        raise ServiceError("MISSING_DATE", status.HTTP_400_BAD_REQUEST)
    incident_type = (payload.incident_type or "leve").strip().lower()
    if incident_type not in ADMIN_INCIDENT_TYPES:
        raise ServiceError("BAD_INCIDENT_TYPE", status.HTTP_400_BAD_REQUEST)

    target = await db.get(Worker, payload.worker_id)
    if target is None:
        raise ServiceError("WORKER_NOT_FOUND", status.HTTP_400_BAD_REQUEST)
    if not target.is_active:
        raise ServiceError("WORKER_INACTIVE", status.HTTP_400_BAD_REQUEST)

    incident = ShiftIncident(
        worker_id=target.id,
        incident_date=payload.incident_date,
        month_date=month_start(payload.incident_date),
        kind=INCIDENT_KIND_MANUAL,
        incident_type=incident_type,
        status=INCIDENT_STATUS_PENDING,
        penalty_eur=Decimal("0.00"),
        notes=(payload.notes or "").strip() or None,
        created_by=actor.id,
    )
    db.add(incident)
    await _commit(db)
    return _to_response(incident, target)


async def _after_decision(db: AsyncSession, incident: ShiftIncident) -> None:
    await procedures.refresh_worker_earning(db, incident.worker_id, incident.month_date)
    await procedures.recalc_worker_invoice(db, incident.worker_id, incident.month_date)


async def apply_action(db: AsyncSession, actor: CurrentWorker, payload: IncidentAction) -> IncidentResponse:
    """Admin decision on a pending incident; recalculates the worker's open invoice for that month."""
    new_status = ACTION_STATUS.get((payload.action or "").strip().lower())
    if new_status is None:
        raise ServiceError("BAD_BODY", status.HTTP_400_BAD_REQUEST)

    incident = await db.get(ShiftIncident, payload.incident_id)
    if incident is None:
        raise ServiceError("NOT_FOUND", status.HTTP_404_NOT_FOUND)
    if incident.status != INCIDENT_STATUS_PENDING:
        raise ServiceError("ALREADY_RESOLVED", status.HTTP_409_CONFLICT)

    incident.status = new_status
    incident.penalty_eur = compute_penalty(incident.kind, new_status, incident.minutes_late)
    incident.admin_note = (payload.note or "").strip() or ACTION_NOTES[new_status]
    incident.resolved_by = actor.id
    incident.resolved_at = utcnow()
    await db.flush()
    await _after_decision(db, incident)
    await _commit(db)

    worker = await db.get(Worker, incident.worker_id)
    logger.info("Incident %s marked %s by %s", incident.id, new_status, actor.display_name)
    return _to_response(incident, worker)


async def resolve_incident(db: AsyncSession, actor: CurrentWorker, payload: IncidentResolve) -> dict:
    """Decide the latest pending incident of a worker/date, or record a new decided one."""
    new_status = (payload.status or "").strip().lower()
    if new_status not in (INCIDENT_STATUS_JUSTIFIED, INCIDENT_STATUS_UNJUSTIFIED):
        raise ServiceError("BAD_STATUS", status.HTTP_400_BAD_REQUEST)
    worker = await db.get(Worker, payload.worker_id)
    if worker is None:
        raise ServiceError("WORKER_NOT_FOUND", status.HTTP_404_NOT_FOUND)

    result = await db.execute(
        select(ShiftIncident)
        .where(
            ShiftIncident.worker_id == worker.id,
            ShiftIncident.incident_date == payload.incident_date,
            ShiftIncident.status == INCIDENT_STATUS_PENDING,
        )
        .order_by(ShiftIncident.created_at.desc())
        .limit(1)
    )
    incident = result.scalar_one_or_none()
    now = utcnow()
    if incident is not None:
        action = "updated"
        if payload.kind:
            incident.kind = _normalize_kind(payload.kind)
        if payload.minutes_late is not None:
            incident.minutes_late = payload.minutes_late
    else:
        action = "inserted"
        kind = _normalize_kind(payload.kind) if payload.kind else INCIDENT_KIND_ABSENCE
        incident = ShiftIncident(
            worker_id=worker.id,
            incident_date=payload.incident_date,
            month_date=month_start(payload.incident_date),
            kind=kind,
            incident_type=INCIDENT_TYPE_MANUAL,
            minutes_late=payload.minutes_late if kind == INCIDENT_KIND_LATE else None,
            created_by=actor.id,
        )
        db.add(incident)

    incident.status = new_status
    incident.penalty_eur = compute_penalty(incident.kind, new_status, incident.minutes_late)
    incident.admin_note = (payload.note or "").strip() or ACTION_NOTES[new_status]
    incident.resolved_by = actor.id
    incident.resolved_at = now
    await db.flush()
    await _after_decision(db, incident)
    await _commit(db)
    return {"action": action, "id": incident.id, "status": new_status, "penalty_eur": incident.penalty_eur}


async def _distinct_months(db: AsyncSession, *criteria) -> List[date]:
    result = await db.execute(
        select(ShiftIncident.month_date)
        .where(*criteria)
        .distinct()
        .order_by(ShiftIncident.month_date.desc())
        .limit(MONTHS_LIMIT)
    )
    return list(result.scalars())


def _totals(items: List[IncidentResponse]) -> dict:
    return {
        "count": len(items),
        "pending": sum(1 for i in items if i.status == INCIDENT_STATUS_PENDING),
        "unjustified": sum(1 for i in items if i.status == INCIDENT_STATUS_UNJUSTIFIED),
        "penalty_eur": sum(
            (i.penalty_eur for i in items if i.status == INCIDENT_STATUS_UNJUSTIFIED), Decimal("0.00")
        ),
    }


async def my_incidents(db: AsyncSession, worker_id: UUID, month: Optional[date]) -> dict:
    months = await _distinct_months(db, ShiftIncident.worker_id == worker_id)
    selected = month or (months[0] if months else current_month())
    result = await db.execute(
        select(ShiftIncident)
        .where(ShiftIncident.worker_id == worker_id, ShiftIncident.month_date == selected)
        .order_by(ShiftIncident.incident_date.desc(), ShiftIncident.created_at.desc())
    )
    items = [_to_response(i) for i in result.scalars()]
    return {"months": months, "month_date": selected, "items": items, "totals": _totals(items)}


async def list_incidents(
    db: AsyncSession,
    *,
    month: Optional[date],
    worker_id: Optional[UUID],
    status_filter: Optional[str],
    kind: Optional[str],
) -> dict:
    months = await _distinct_months(db)
    selected = month or (months[0] if months else current_month())
    stmt = (
        select(ShiftIncident, Worker)
        .join(Worker, Worker.id == ShiftIncident.worker_id)
        .where(ShiftIncident.month_date == selected)
    )
    if worker_id:
        stmt = stmt.where(ShiftIncident.worker_id == worker_id)
    if status_filter:
        stmt = stmt.where(ShiftIncident.status == status_filter)
    if kind:
        stmt = stmt.where(ShiftIncident.kind == kind)
    stmt = stmt.order_by(ShiftIncident.incident_date.desc(), ShiftIncident.created_at.desc())
    items = [_to_response(i, w) for i, w in (await db.execute(stmt)).all()]

    workers = (
        await db.execute(
            select(Worker.id, Worker.display_name)
            .where(Worker.role == ROLE_TAROTISTA, Worker.is_active.is_(True))
            .order_by(Worker.display_name)
        )
    ).all()
    return {
        "months": months,
        "month_date": selected,
        "workers": [{"id": wid, "display_name": name} for wid, name in workers],
        "items": items,
        "totals": _totals(items),
    }


async def pending_incidents(db: AsyncSession) -> List[IncidentResponse]:
    result = await db.execute(
        select(ShiftIncident, Worker)
        .join(Worker, Worker.id == ShiftIncident.worker_id)
        .where(ShiftIncident.status == INCIDENT_STATUS_PENDING)
        .order_by(ShiftIncident.incident_date.desc(), ShiftIncident.created_at.desc())
        .limit(PENDING_LIMIT)
    )
    return [_to_response(i, w) for i, w in result.all()]


async def month_summary(db: AsyncSession, worker_id: UUID, month: date) -> dict:
    """Incident count/penalty for dashboards; ``grave`` when 5+ incidents or any absence."""
    result = await db.execute(
        select(ShiftIncident).where(ShiftIncident.worker_id == worker_id, ShiftIncident.month_date == month)
    )
    incidents = list(result.scalars())
    penalty = sum(
        (Decimal(str(i.penalty_eur or 0)) for i in incidents if i.status == INCIDENT_STATUS_UNJUSTIFIED),
        Decimal("0.00"),
    )
    return {
        "count": len(incidents),
        "penalty_eur": penalty,
        "grave": len(incidents) >= 5 or any(i.kind == INCIDENT_KIND_ABSENCE for i in incidents),
    }
