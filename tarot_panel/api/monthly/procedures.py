"""Monthly aggregation procedures.

Everything here runs inside the caller's session and only flushes; committing
(or rolling back) is the caller's job, so a whole pipeline run is atomic.

Pipeline order for a month::

    rebuild_monthly_rankings -> recompute_monthly_earnings
        -> generate_monthly_bonus -> apply_bonus_cap -> sync_invoices
"""

import logging
from collections import defaultdict
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Optional
from uuid import UUID

from fastapi import status
from sqlalchemy import case, delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tarot_panel.api.attendance.csv_import import normalize_key
from tarot_panel.core.config import settings
from tarot_panel.core.exceptions import ServiceError
from tarot_panel.core.models import (
    AttendanceRow,
    BonusRule,
    Invoice,
    InvoiceLine,
    MonthlyBonusResult,
    MonthlyEarning,
    MonthlyRanking,
    PeriodClosure,
    PresenceSession,
    ShiftIncident,
    Team,
    TeamMember,
    TeamMonthlyResult,
    Worker,
)
from tarot_panel.core.models.attendance import CALL_CODES
from tarot_panel.core.models.incident import INCIDENT_STATUS_UNJUSTIFIED
from tarot_panel.core.models.invoice import LINE_KIND_BASE, LINE_KIND_BONUS, LINE_KIND_PENALTY
from tarot_panel.core.models.worker import ROLE_CENTRAL, ROLE_TAROTISTA
from tarot_panel.core.months import current_month, month_bounds
from tarot_panel.core.timeutils import as_utc, utcnow

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
BONUS_POSITIONS = 3
TEAM_WIN = "team_win"

# ranking_type -> MonthlyRanking attribute
RANKING_FIELDS = {
    "minutes": "minutes_total",
    "repite_pct": "repite_pct",
    "cliente_pct": "cliente_pct",
    "captadas": "captadas_total",
}

RANKING_LABELS = {
    "minutes": "minutos",
    "repite_pct": "% repite",
    "cliente_pct": "% cliente",
    "captadas": "captadas",
    TEAM_WIN: "equipo ganador",
}

INCIDENT_KIND_LABELS = {
    "late": "retraso",
    "absence": "ausencia",
    "call": "llamada",
    "other": "otra",
    "manual": "manual",
}


def money(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(CENT, rounding=ROUND_HALF_UP)


def pct(part, total) -> Decimal:
    """Share of ``total`` as a percentage with two decimals; 0 when total is 0."""
    if not total:
        return Decimal("0.00")
    return (Decimal(part) * 100 / Decimal(total)).quantize(CENT, rounding=ROUND_HALF_UP)


async def is_month_closed(db: AsyncSession, month: date) -> bool:
    closure = await db.get(PeriodClosure, month)
    return bool(closure and closure.is_closed)


async def ensure_month_open(db: AsyncSession, month: date) -> None:
    if await is_month_closed(db, month):
        raise ServiceError("MONTH_CLOSED", status.HTTP_409_CONFLICT)


async def rebuild_monthly_rankings(db: AsyncSession, month: date) -> int:
    """Aggregate the month's attendance per worker into MonthlyRanking rows."""
    code_sums = [
        func.coalesce(func.sum(case((AttendanceRow.codigo == code, AttendanceRow.minutes), else_=0)), 0)
        for code in CALL_CODES
    ]
    stmt = (
        select(
            AttendanceRow.worker_id,
            func.count(AttendanceRow.id),
            func.coalesce(func.sum(AttendanceRow.minutes), 0),
            func.coalesce(func.sum(case((AttendanceRow.captado.is_(True), 1), else_=0)), 0),
            *code_sums,
        )
        .where(AttendanceRow.month_date == month)
        .group_by(AttendanceRow.worker_id)
    )
    rows = (await db.execute(stmt)).all()

    await db.execute(delete(MonthlyRanking).where(MonthlyRanking.month_date == month))
    for worker_id, calls, minutes, captadas, *by_code in rows:
        per_code = dict(zip(CALL_CODES, (int(v) for v in by_code)))
        minutes = int(minutes)
        db.add(
            MonthlyRanking(
                month_date=month,
                worker_id=worker_id,
                calls_total=int(calls),
                minutes_total=minutes,
                captadas_total=int(captadas),
                free_minutes=per_code["free"],
                rueda_minutes=per_code["rueda"],
                cliente_minutes=per_code["cliente"],
                repite_minutes=per_code["repite"],
                cliente_pct=pct(per_code["cliente"], minutes),
                repite_pct=pct(per_code["repite"], minutes),
                computed_at=utcnow(),
            )
        )
    await db.flush()
    return len(rows)


def base_pay(ranking: MonthlyRanking) -> Decimal:
    total = Decimal("0")
    for code in CALL_CODES:
        minutes = getattr(ranking, f"{code}_minutes") or 0
        total += Decimal(minutes) * Decimal(str(settings.rate_for(code)))
    return money(total)


async def _sum_by_worker(db: AsyncSession, column, *criteria) -> Dict[UUID, Decimal]:
    entity = column.class_
    stmt = select(entity.worker_id, func.coalesce(func.sum(column), 0)).where(*criteria).group_by(entity.worker_id)
    return {wid: money(total) for wid, total in (await db.execute(stmt)).all()}


async def _penalties_by_worker(db: AsyncSession, month: date) -> Dict[UUID, Decimal]:
    return await _sum_by_worker(
        db,
        ShiftIncident.penalty_eur,
        ShiftIncident.month_date == month,
        ShiftIncident.status == INCIDENT_STATUS_UNJUSTIFIED,
    )


async def _bonuses_by_worker(db: AsyncSession, month: date) -> Dict[UUID, Decimal]:
    return await _sum_by_worker(db, MonthlyBonusResult.amount_eur, MonthlyBonusResult.month_date == month)


async def recompute_monthly_earnings(db: AsyncSession, month: date) -> int:
    """Rebuild rankings, then upsert base/bonus/penalty/total per worker."""
    await rebuild_monthly_rankings(db, month)
    rankings = {
        r.worker_id: r
        for r in (await db.execute(select(MonthlyRanking).where(MonthlyRanking.month_date == month))).scalars()
    }
    penalties = await _penalties_by_worker(db, month)
    bonuses = await _bonuses_by_worker(db, month)
    existing = {
        e.worker_id: e
        for e in (await db.execute(select(MonthlyEarning).where(MonthlyEarning.month_date == month))).scalars()
    }

    worker_ids = set(rankings) | set(penalties) | set(bonuses)
    for worker_id in worker_ids:
        ranking = rankings.get(worker_id)
        earning = existing.get(worker_id)
        if earning is None:
            earning = MonthlyEarning(month_date=month, worker_id=worker_id)
            db.add(earning)
        earning.minutes_total = ranking.minutes_total if ranking else 0
        earning.base_eur = base_pay(ranking) if ranking else Decimal("0.00")
        earning.penalty_eur = penalties.get(worker_id, Decimal("0.00"))
        earning.bonus_eur = bonuses.get(worker_id, Decimal("0.00"))
        earning.total_eur = money(earning.base_eur + earning.bonus_eur - earning.penalty_eur)
        earning.computed_at = utcnow()

    for worker_id, earning in existing.items():
        if worker_id not in worker_ids:
            await db.delete(earning)
    await db.flush()
    return len(worker_ids)


async def _refresh_earning_totals(db: AsyncSession, month: date) -> None:
    bonuses = await _bonuses_by_worker(db, month)
    capped_workers = set(
        (
            await db.execute(
                select(MonthlyBonusResult.worker_id).where(
                    MonthlyBonusResult.month_date == month, MonthlyBonusResult.capped.is_(True)
                )
            )
        ).scalars()
    )
    earnings = {
        e.worker_id: e
        for e in (await db.execute(select(MonthlyEarning).where(MonthlyEarning.month_date == month))).scalars()
    }
    for worker_id in set(bonuses) - set(earnings):
        earning = MonthlyEarning(
            month_date=month,
            worker_id=worker_id,
            minutes_total=0,
            base_eur=Decimal("0.00"),
            penalty_eur=Decimal("0.00"),
        )
        db.add(earning)
        earnings[worker_id] = earning
    for worker_id, earning in earnings.items():
        earning.bonus_eur = bonuses.get(worker_id, Decimal("0.00"))
        earning.bonus_capped = worker_id in capped_workers
        earning.total_eur = money(money(earning.base_eur) + earning.bonus_eur - money(earning.penalty_eur))
    await db.flush()


async def refresh_worker_earning(db: AsyncSession, worker_id: UUID, month: date) -> Optional[MonthlyEarning]:
    """Re-sum one worker's penalties after an incident decision (open months only)."""
    if await is_month_closed(db, month):
        return None
    result = await db.execute(
        select(MonthlyEarning).where(MonthlyEarning.month_date == month, MonthlyEarning.worker_id == worker_id)
    )
    earning = result.scalar_one_or_none()
    if earning is None:
        return None
    penalties = await _penalties_by_worker(db, month)
    earning.penalty_eur = penalties.get(worker_id, Decimal("0.00"))
    earning.total_eur = money(money(earning.base_eur) + money(earning.bonus_eur) - earning.penalty_eur)
    await db.flush()
    return earning


async def compute_team_stats(db: AsyncSession, month: date) -> List[dict]:
    """Active teams ranked by team_score (minutes-weighted cliente% + repite%), then minutes."""
    teams = (await db.execute(select(Team).where(Team.is_active.is_(True)))).scalars().all()
    if not teams:
        return []
    members = (
        await db.execute(
            select(TeamMember.team_id, Worker.id, Worker.display_name).join(
                Worker, Worker.id == TeamMember.tarotista_worker_id
            )
        )
    ).all()
    rankings = {
        r.worker_id: r
        for r in (await db.execute(select(MonthlyRanking).where(MonthlyRanking.month_date == month))).scalars()
    }
    central_ids = [t.central_worker_id for t in teams if t.central_worker_id]
    central_names = {}
    if central_ids:
        central_names = dict(
            (await db.execute(select(Worker.id, Worker.display_name).where(Worker.id.in_(central_ids)))).all()
        )

    by_team: Dict[UUID, List[dict]] = defaultdict(list)
    for team_id, worker_id, display_name in members:
        r = rankings.get(worker_id)
        by_team[team_id].append(
            {
                "worker_id": worker_id,
                "display_name": display_name,
                "minutes_total": r.minutes_total if r else 0,
                "captadas_total": r.captadas_total if r else 0,
                "cliente_minutes": r.cliente_minutes if r else 0,
                "repite_minutes": r.repite_minutes if r else 0,
            }
        )

    stats = []
    for team in teams:
        team_members = by_team.get(team.id, [])
        minutes = sum(m["minutes_total"] for m in team_members)
        cliente = pct(sum(m["cliente_minutes"] for m in team_members), minutes)
        repite = pct(sum(m["repite_minutes"] for m in team_members), minutes)
        stats.append(
            {
                "team_id": team.id,
                "name": team.name,
                "central_worker_id": team.central_worker_id,
                "central_name": central_names.get(team.central_worker_id),
                "total_minutes": minutes,
                "total_captadas": sum(m["captadas_total"] for m in team_members),
                "cliente_pct": cliente,
                "repite_pct": repite,
                "team_score": cliente + repite,
                "members": sorted(team_members, key=lambda m: -m["minutes_total"]),
            }
        )
    stats.sort(key=lambda s: (-s["team_score"], -s["total_minutes"], normalize_key(s["name"])))
    for position, s in enumerate(stats, start=1):
        s["position"] = position
        s["is_winner"] = position == 1 and s["total_minutes"] > 0
    return stats


async def _store_team_results(db: AsyncSession, month: date, stats: List[dict]) -> None:
    await db.execute(delete(TeamMonthlyResult).where(TeamMonthlyResult.month_date == month))
    for s in stats:
        db.add(
            TeamMonthlyResult(
                month_date=month,
                team_id=s["team_id"],
                total_minutes=s["total_minutes"],
                total_captadas=s["total_captadas"],
                cliente_pct=s["cliente_pct"],
                repite_pct=s["repite_pct"],
                team_score=s["team_score"],
                position=s["position"],
                is_winner=s["is_winner"],
            )
        )


async def active_bonus_rules(db: AsyncSession) -> Dict[tuple, Decimal]:
    rules = (await db.execute(select(BonusRule).where(BonusRule.is_active.is_(True)))).scalars()
    return {(r.ranking_type, r.position, r.role): money(r.amount_eur) for r in rules}


async def generate_monthly_bonus(db: AsyncSession, month: date) -> int:
    """Award top-3 tarotista bonuses per ranking type and the team-win bonus to the winning central."""
    await db.execute(delete(MonthlyBonusResult).where(MonthlyBonusResult.month_date == month))
    rules = await active_bonus_rules(db)
    rows = (
        await db.execute(
            select(MonthlyRanking, Worker)
            .join(Worker, Worker.id == MonthlyRanking.worker_id)
            .where(MonthlyRanking.month_date == month, Worker.role == ROLE_TAROTISTA)
        )
    ).all()

    awarded = 0
    for ranking_type, attr in RANKING_FIELDS.items():
        candidates = [(r, w) for r, w in rows if Decimal(str(getattr(r, attr) or 0)) > 0]
        candidates.sort(
            key=lambda rw: (
                -Decimal(str(getattr(rw[0], attr))),
                -rw[0].minutes_total,
                normalize_key(rw[1].display_name),
            )
        )
        for position, (ranking, worker) in enumerate(candidates[:BONUS_POSITIONS], start=1):
            amount = rules.get((ranking_type, position, ROLE_TAROTISTA))
            if amount is None:
                continue
            db.add(
                MonthlyBonusResult(
                    month_date=month,
                    worker_id=worker.id,
                    ranking_type=ranking_type,
                    position=position,
                    value=Decimal(str(getattr(ranking, attr))),
                    amount_eur=amount,
                )
            )
            awarded += 1

    stats = await compute_team_stats(db, month)
    await _store_team_results(db, month, stats)
    winner = next((s for s in stats if s["is_winner"]), None)
    if winner and winner["central_worker_id"]:
        amount = rules.get((TEAM_WIN, 1, ROLE_CENTRAL))
        if amount is not None:
            db.add(
                MonthlyBonusResult(
                    month_date=month,
                    worker_id=winner["central_worker_id"],
                    ranking_type=TEAM_WIN,
                    position=1,
                    value=winner["team_score"],
                    amount_eur=amount,
                )
            )
            awarded += 1

    await db.flush()
    await _refresh_earning_totals(db, month)
    return awarded


async def apply_bonus_cap(db: AsyncSession, month: date) -> int:
    """Trim each worker's awards, best position first, so their sum does not exceed the cap.

    ``BONUS_CAP_EUR=none`` disables the cap; ``0`` zeroes every award.
    """
    cap = money(settings.bonus_cap_eur) if settings.bonus_cap_eur is not None else None
    results = (
        await db.execute(select(MonthlyBonusResult).where(MonthlyBonusResult.month_date == month))
    ).scalars().all()

    grouped: Dict[UUID, List[MonthlyBonusResult]] = defaultdict(list)
    for result in results:
        # Undo a previous cap run so the operation is repeatable
        if result.original_amount_eur is not None:
            result.amount_eur = result.original_amount_eur
            result.original_amount_eur = None
        result.capped = False
        grouped[result.worker_id].append(result)

    capped_workers = 0
    if cap is not None:
        for items in grouped.values():
            if sum(money(i.amount_eur) for i in items) <= cap:
                continue
            remaining = cap
            for item in sorted(items, key=lambda i: (i.position, -money(i.amount_eur), i.ranking_type)):
                amount = money(item.amount_eur)
                granted = min(amount, remaining)
                if granted < amount:
                    item.original_amount_eur = amount
                    item.amount_eur = granted
                    item.capped = True
                remaining -= granted
            capped_workers += 1

    await db.flush()
    await _refresh_earning_totals(db, month)
    return capped_workers


async def recalc_invoice(db: AsyncSession, invoice: Invoice) -> Invoice:
    """Rebuild the computed lines of an invoice and its totals. Manual lines are kept."""
    if invoice.locked_at is not None:
        raise ServiceError("INVOICE_LOCKED", status.HTTP_409_CONFLICT)

    await db.execute(
        delete(InvoiceLine).where(InvoiceLine.invoice_id == invoice.id, InvoiceLine.is_manual.is_(False))
    )

    ranking = (
        await db.execute(
            select(MonthlyRanking).where(
                MonthlyRanking.month_date == invoice.month_date, MonthlyRanking.worker_id == invoice.worker_id
            )
        )
    ).scalar_one_or_none()
    if ranking is not None:
        for code in CALL_CODES:
            minutes = getattr(ranking, f"{code}_minutes") or 0
            amount = money(Decimal(minutes) * Decimal(str(settings.rate_for(code))))
            if minutes and amount:
                db.add(
                    InvoiceLine(
                        invoice_id=invoice.id,
                        kind=LINE_KIND_BASE,
                        label=f"Minutos {code} ({minutes} min)",
                        amount_eur=amount,
                    )
                )

    awards = (
        await db.execute(
            select(MonthlyBonusResult)
            .where(
                MonthlyBonusResult.month_date == invoice.month_date,
                MonthlyBonusResult.worker_id == invoice.worker_id,
            )
            .order_by(MonthlyBonusResult.ranking_type, MonthlyBonusResult.position)
        )
    ).scalars()
    for award in awards:
        if money(award.amount_eur) <= 0:
            continue
        label = f"Bono {RANKING_LABELS.get(award.ranking_type, award.ranking_type)} #{award.position}"
        if award.capped:
            label += " (tope aplicado)"
        db.add(InvoiceLine(invoice_id=invoice.id, kind=LINE_KIND_BONUS, label=label, amount_eur=money(award.amount_eur)))

    incidents = (
        await db.execute(
            select(ShiftIncident)
            .where(
                ShiftIncident.month_date == invoice.month_date,
                ShiftIncident.worker_id == invoice.worker_id,
                ShiftIncident.status == INCIDENT_STATUS_UNJUSTIFIED,
            )
            .order_by(ShiftIncident.incident_date)
        )
    ).scalars()
    for incident in incidents:
        penalty = money(incident.penalty_eur)
        if penalty <= 0:
            continue
        kind = INCIDENT_KIND_LABELS.get(incident.kind, incident.kind)
        db.add(
            InvoiceLine(
                invoice_id=invoice.id,
                kind=LINE_KIND_PENALTY,
                label=f"Penalización {kind} {incident.incident_date.strftime('%d/%m/%Y')}",
                amount_eur=-penalty,
            )
        )

    await db.flush()
    await recompute_invoice_totals(db, invoice)
    return invoice


async def recompute_invoice_totals(db: AsyncSession, invoice: Invoice) -> Invoice:
    lines = (await db.execute(select(InvoiceLine).where(InvoiceLine.invoice_id == invoice.id))).scalars().all()
    by_kind: Dict[str, Decimal] = defaultdict(Decimal)
    for line in lines:
        by_kind[line.kind] += money(line.amount_eur)
    invoice.base_salary_eur = money(by_kind[LINE_KIND_BASE])
    invoice.bonuses_eur = money(by_kind[LINE_KIND_BONUS])
    invoice.penalties_eur = money(-by_kind[LINE_KIND_PENALTY])
    invoice.total_eur = money(sum(by_kind.values(), Decimal("0")))
    invoice.updated_at = utcnow()
    await db.flush()
    return invoice


async def recalc_worker_invoice(db: AsyncSession, worker_id: UUID, month: date) -> Optional[Invoice]:
    """Recalculate the worker's invoice for the month if one exists and is still open."""
    result = await db.execute(
        select(Invoice).where(Invoice.worker_id == worker_id, Invoice.month_date == month)
    )
    invoice = result.scalar_one_or_none()
    if invoice is None or invoice.locked_at is not None:
        return None
    return await recalc_invoice(db, invoice)


async def sync_invoices(db: AsyncSession, month: date) -> int:
    """Ensure an invoice for every worker with earnings this month and recalc the open ones.

    Open invoices of workers left without earnings are recalculated too, so
    their computed lines drop to zero.
    """
    earnings = (await db.execute(select(MonthlyEarning).where(MonthlyEarning.month_date == month))).scalars().all()
    invoices = {
        i.worker_id: i
        for i in (await db.execute(select(Invoice).where(Invoice.month_date == month))).scalars()
    }
    touched = 0
    for earning in earnings:
        invoice = invoices.get(earning.worker_id)
        if invoice is None:
            invoice = Invoice(worker_id=earning.worker_id, month_date=month)
            db.add(invoice)
            await db.flush()
        if invoice.locked_at is not None:
            continue
        await recalc_invoice(db, invoice)
        touched += 1
    earned = {e.worker_id for e in earnings}
    for worker_id, invoice in invoices.items():
        if worker_id in earned or invoice.locked_at is not None:
            continue
        await recalc_invoice(db, invoice)
        touched += 1
    return touched


async def run_monthly_pipeline(db: AsyncSession, month: date) -> dict:
    await ensure_month_open(db, month)
    earnings = await recompute_monthly_earnings(db, month)
    bonuses = await generate_monthly_bonus(db, month)
    capped = await apply_bonus_cap(db, month)
    invoices = await sync_invoices(db, month)
    logger.info(
        "Monthly pipeline %s: earnings=%d bonuses=%d capped=%d invoices=%d",
        month, earnings, bonuses, capped, invoices,
    )
    return {"earnings": earnings, "bonuses": bonuses, "capped": capped, "invoices": invoices}


async def close_month(
    db: AsyncSession,
    month: date,
    *,
    closed_by: Optional[UUID],
    source: str,
) -> dict:
    """Compute the month one last time, lock its invoices and mark it closed."""
    if month >= current_month():
        raise ServiceError("MONTH_NOT_FINISHED", status.HTTP_400_BAD_REQUEST)
    closure = await db.get(PeriodClosure, month)
    if closure is not None and closure.is_closed:
        return {"month_date": month, "alreadyClosed": True}

    summary = await run_monthly_pipeline(db, month)
    now = utcnow()
    locked = await db.execute(
        update(Invoice)
        .where(Invoice.month_date == month, Invoice.locked_at.is_(None))
        .values(locked_at=now)
    )
    if closure is None:
        closure = PeriodClosure(month_date=month)
        db.add(closure)
    closure.is_closed = True
    closure.closed_at = now
    closure.closed_by = closed_by
    closure.source = source
    await db.flush()
    logger.info("Month %s closed by %s (%s)", month, closed_by or "system", source)
    return {"month_date": month, "alreadyClosed": False, "lockedInvoices": locked.rowcount, **summary}


def _overlap_seconds(start: datetime, end: Optional[datetime], lo: datetime, hi: datetime, now: datetime) -> float:
    start = as_utc(start)
    end = as_utc(end) or now
    begin = max(start, lo)
    finish = min(end, hi)
    return max(0.0, (finish - begin).total_seconds())


async def admin_hours_summary(db: AsyncSession, month: date) -> List[dict]:
    """Attendance minutes/hours per code and presence hours for every active worker."""
    lo, hi = month_bounds(month)
    now = utcnow()
    workers = (
        await db.execute(select(Worker).where(Worker.is_active.is_(True)).order_by(Worker.display_name))
    ).scalars().all()

    minutes: Dict[UUID, Dict[str, int]] = defaultdict(lambda: {code: 0 for code in CALL_CODES})
    stmt = (
        select(AttendanceRow.worker_id, AttendanceRow.codigo, func.coalesce(func.sum(AttendanceRow.minutes), 0))
        .where(AttendanceRow.month_date == month)
        .group_by(AttendanceRow.worker_id, AttendanceRow.codigo)
    )
    for worker_id, codigo, total in (await db.execute(stmt)).all():
        minutes[worker_id][codigo] = int(total)

    presence_seconds: Dict[UUID, float] = defaultdict(float)
    sessions = (
        await db.execute(
            select(PresenceSession).where(
                PresenceSession.started_at < hi,
                (PresenceSession.ended_at.is_(None)) | (PresenceSession.ended_at > lo),
            )
        )
    ).scalars()
    for session in sessions:
        presence_seconds[session.worker_id] += _overlap_seconds(session.started_at, session.ended_at, lo, hi, now)

    rows = []
    for worker in workers:
        by_code = minutes.get(worker.id, {code: 0 for code in CALL_CODES})
        total = sum(by_code.values())
        rows.append(
            {
                "worker_id": worker.id,
                "display_name": worker.display_name,
                "role": worker.role,
                "minutes_total": total,
                "hours_total": round(total / 60, 2),
                "minutes_by_code": dict(by_code),
                "hours_by_code": {code: round(m / 60, 2) for code, m in by_code.items()},
                "presence_hours": round(presence_seconds.get(worker.id, 0.0) / 3600, 2),
            }
        )
    rows.sort(key=lambda r: (-r["minutes_total"], normalize_key(r["display_name"])))
    return rows
