"""Monthly operations exposed over HTTP: recompute, closing, hours, bonus rules and dashboards."""

import io
import logging
from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID

from fastapi import status
from openpyxl import Workbook
from openpyxl.styles import Font
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tarot_panel.api.incidents.service import month_summary
from tarot_panel.api.presence.service import presence_counts
from tarot_panel.auth.schemas import CurrentWorker
from tarot_panel.core.exceptions import ServiceError
from tarot_panel.core.models import (
    AttendanceRow,
    BonusRule,
    CronLog,
    Invoice,
    MonthlyEarning,
    MonthlyRanking,
    ShiftIncident,
    TeamMember,
    Worker,
)
from tarot_panel.core.models.attendance import CALL_CODES
from tarot_panel.core.models.incident import INCIDENT_STATUS_PENDING
from tarot_panel.core.models.worker import ROLE_ADMIN, ROLE_CENTRAL, ROLE_TAROTISTA
from tarot_panel.core.months import month_label_es, parse_month

from . import procedures
from .schemas import BonusRuleResponse, BonusRuleUpsert

logger = logging.getLogger(__name__)

MONTHS_LIMIT = 36
TOP_LIMIT = 10
TEAMS_LIMIT = 10
TEAMS_WITH_MEMBERS = 2
CRON_LOGS_LIMIT = 20


async def _commit(db: AsyncSession, error: str) -> None:
    try:
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        logger.exception("Commit failed (%s)", error)
        raise ServiceError(error, status.HTTP_500_INTERNAL_SERVER_ERROR)


async def recompute(db: AsyncSession, month_value: Optional[str]) -> dict:
    month = parse_month(month_value)
    if month is None:
        raise ServiceError("NO_MONTH", status.HTTP_400_BAD_REQUEST)
    try:
        summary = await procedures.run_monthly_pipeline(db, month)
    except ServiceError:
        await db.rollback()
        raise
    await _commit(db, "RECOMPUTE_FAILED")
    return {"month_date": month, **summary}


async def close(db: AsyncSession, month: date, *, closed_by: Optional[UUID], source: str) -> dict:
    try:
        result = await procedures.close_month(db, month, closed_by=closed_by, source=source)
    except ServiceError:
        await db.rollback()
        raise
    await _commit(db, "CLOSE_FAILED")
    return result


# ----- Hours -----

def hours_workbook(rows: List[dict], month: date) -> bytes:
    """Render the hours summary as a single-sheet .xlsx."""
    wb = Workbook()
    ws = wb.active
    ws.title = month.strftime("%Y-%m")
    header = ["Trabajador", "Rol", "Minutos", "Horas"]
    header += [f"Horas {code}" for code in CALL_CODES]
    header.append("Horas presencia")
    ws.append([f"Horas {month_label_es(month)}"])
    ws["A1"].font = Font(bold=True, size=13)
    ws.append(header)
    for cell in ws[2]:
        cell.font = Font(bold=True)
    for row in rows:
        ws.append(
            [row["display_name"], row["role"], row["minutes_total"], row["hours_total"]]
            + [row["hours_by_code"][code] for code in CALL_CODES]
            + [row["presence_hours"]]
        )
    ws.column_dimensions["A"].width = 28
    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


# ----- Bonus rules -----

async def list_bonus_rules(db: AsyncSession, only_active: bool = False) -> List[BonusRuleResponse]:
    stmt = select(BonusRule).order_by(BonusRule.ranking_type, BonusRule.role, BonusRule.position)
    if only_active:
        stmt = stmt.where(BonusRule.is_active.is_(True))
    return [BonusRuleResponse.model_validate(r) for r in (await db.execute(stmt)).scalars()]


async def upsert_bonus_rule(db: AsyncSession, payload: BonusRuleUpsert) -> BonusRuleResponse:
    ranking_type = payload.ranking_type.strip().lower()
    if ranking_type not in procedures.RANKING_FIELDS and ranking_type != procedures.TEAM_WIN:
        raise ServiceError("BAD_RANKING_TYPE", status.HTTP_400_BAD_REQUEST)
    result = await db.execute(
        select(BonusRule).where(
            BonusRule.ranking_type == ranking_type,
            BonusRule.position == payload.position,
            BonusRule.role == payload.role,
        )
    )
    rule = result.scalar_one_or_none()
    if rule is None:
        rule = BonusRule(ranking_type=ranking_type, position=payload.position, role=payload.role)
        db.add(rule)
    rule.amount_eur = procedures.money(payload.amount_eur)
    rule.is_active = payload.is_active
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ServiceError("RULE_CONFLICT", status.HTTP_409_CONFLICT)
    await db.refresh(rule)
    return BonusRuleResponse.model_validate(rule)


# ----- Dashboards -----

async def _distinct_months(db: AsyncSession, column) -> List[date]:
    result = await db.execute(select(column).distinct().order_by(column.desc()).limit(MONTHS_LIMIT))
    return list(result.scalars())


async def _ranking_rows(db: AsyncSession, month: date) -> List[dict]:
    result = await db.execute(
        select(MonthlyRanking, Worker.display_name, Worker.role)
        .join(Worker, Worker.id == MonthlyRanking.worker_id)
        .where(MonthlyRanking.month_date == month)
    )
    return [
        {
            "worker_id": r.worker_id,
            "name": name,
            "role": role,
            "minutes": r.minutes_total,
            "captadas": r.captadas_total,
            "cliente_pct": float(r.cliente_pct or 0),
            "repite_pct": float(r.repite_pct or 0),
        }
        for r, name, role in result.all()
    ]


def _top(rows: List[dict], key: str, limit: Optional[int] = None) -> List[dict]:
    ordered = sorted(rows, key=lambda r: (-r[key], r["name"].casefold()))
    return ordered[:limit] if limit else ordered


async def _invoices_by_worker(db: AsyncSession, month: date) -> Dict[UUID, Invoice]:
    result = await db.execute(select(Invoice).where(Invoice.month_date == month))
    return {i.worker_id: i for i in result.scalars()}


def _empty_dashboard(worker: CurrentWorker, months: List[date]) -> dict:
    return {
        "month_date": None,
        "months": months,
        "user": {"isAdmin": worker.is_admin, "worker": worker},
        "rankings": {key: [] for key in ("minutes", "repite_pct", "cliente_pct", "captadas", "eur_total", "eur_bonus")},
        "myEarnings": None,
        "myIncidentsMonth": {"count": 0, "penalty_eur": Decimal("0.00"), "grave": False},
        "teamsRanking": [],
        "myTeamRank": None,
        "winnerTeam": None,
        "bonusRules": [],
    }


async def _my_team_id(db: AsyncSession, worker: CurrentWorker, stats: List[dict]) -> Optional[UUID]:
    for s in stats:
        if s["central_worker_id"] == worker.id:
            return s["team_id"]
    result = await db.execute(select(TeamMember.team_id).where(TeamMember.tarotista_worker_id == worker.id))
    return result.scalar_one_or_none()


async def dashboard_full(db: AsyncSession, worker: CurrentWorker, month_value: Optional[str]) -> dict:
    """Rankings, earnings, incidents and (for centrals) team standings for one month."""
    months = await _distinct_months(db, Invoice.month_date)
    if not months:
        months = await _distinct_months(db, MonthlyRanking.month_date)
    month = parse_month(month_value, default=months[0] if months else None)
    if month is None:
        return _empty_dashboard(worker, months)

    rows = await _ranking_rows(db, month)
    tarotistas = [r for r in rows if r["role"] == ROLE_TAROTISTA]
    invoices = await _invoices_by_worker(db, month)

    eur_total = sorted(
        (
            {"worker_id": r["worker_id"], "name": r["name"], "eur_total": float(invoices[r["worker_id"]].total_eur)}
            for r in tarotistas if r["worker_id"] in invoices
        ),
        key=lambda r: -r["eur_total"],
    )
    eur_bonus = sorted(
        (
            {"worker_id": r["worker_id"], "name": r["name"], "eur_bonus": float(invoices[r["worker_id"]].bonuses_eur)}
            for r in tarotistas if r["worker_id"] in invoices
        ),
        key=lambda r: -r["eur_bonus"],
    )

    earning = (
        await db.execute(
            select(MonthlyEarning).where(MonthlyEarning.month_date == month, MonthlyEarning.worker_id == worker.id)
        )
    ).scalar_one_or_none()
    mine = next((r for r in rows if r["worker_id"] == worker.id), None)
    my_earnings = {
        "minutes_total": mine["minutes"] if mine else 0,
        "captadas": mine["captadas"] if mine else 0,
        "amount_base_eur": procedures.money(earning.base_eur) if earning else Decimal("0.00"),
        "amount_bonus_eur": procedures.money(earning.bonus_eur) if earning else Decimal("0.00"),
        "amount_penalty_eur": procedures.money(earning.penalty_eur) if earning else Decimal("0.00"),
        "amount_total_eur": procedures.money(earning.total_eur) if earning else Decimal("0.00"),
        "bonus_capped": bool(earning and earning.bonus_capped),
    }

    data = {
        "month_date": month,
        "months": months,
        "user": {"isAdmin": worker.is_admin, "worker": worker},
        "rankings": {
            "minutes": _top(tarotistas, "minutes"),
            "repite_pct": _top(tarotistas, "repite_pct"),
            "cliente_pct": _top(tarotistas, "cliente_pct"),
            "captadas": _top(tarotistas, "captadas"),
            "eur_total": eur_total,
            "eur_bonus": eur_bonus,
        },
        "myEarnings": my_earnings,
        "myIncidentsMonth": await month_summary(db, worker.id, month),
        "teamsRanking": [],
        "myTeamRank": None,
        "winnerTeam": None,
        "bonusRules": await list_bonus_rules(db, only_active=True),
    }

    if worker.role in (ROLE_CENTRAL, ROLE_ADMIN):
        stats = await procedures.compute_team_stats(db, month)
        teams = []
        for s in stats[:TEAMS_LIMIT]:
            item = {
                "team_id": s["team_id"],
                "team_name": s["name"],
                "central_name": s["central_name"],
                "total_minutes": s["total_minutes"],
                "total_captadas": s["total_captadas"],
                "total_eur_month": procedures.money(
                    sum(
                        (invoices[m["worker_id"]].total_eur for m in s["members"] if m["worker_id"] in invoices),
                        Decimal("0"),
                    )
                ),
                "member_count": len(s["members"]),
                "team_cliente_pct": s["cliente_pct"],
                "team_repite_pct": s["repite_pct"],
                "team_score": s["team_score"],
                "members": [],
            }
            if s["position"] <= TEAMS_WITH_MEMBERS:
                item["members"] = [{"worker_id": m["worker_id"], "name": m["display_name"]} for m in s["members"]]
            teams.append(item)
        data["teamsRanking"] = teams

        my_team_id = await _my_team_id(db, worker, stats)
        data["myTeamRank"] = next((s["position"] for s in stats if s["team_id"] == my_team_id), None)
        winner = next((s for s in stats if s["is_winner"]), None)
        if winner is not None:
            data["winnerTeam"] = next(t for t in teams if t["team_id"] == winner["team_id"])
    return data


async def admin_overview(db: AsyncSession, worker: CurrentWorker, month_value: Optional[str]) -> dict:
    """Admin home: totals, top lists, presence, pending incidents, daily series, cron logs and finance."""
    months = await _distinct_months(db, MonthlyRanking.month_date)
    month = parse_month(month_value, default=months[0] if months else None)

    rows = await _ranking_rows(db, month) if month else []
    tarotistas = [r for r in rows if r["role"] == ROLE_TAROTISTA]

    pending = (
        await db.execute(select(func.count(ShiftIncident.id)).where(ShiftIncident.status == INCIDENT_STATUS_PENDING))
    ).scalar_one()

    daily_series = []
    revenue = Decimal("0")
    if month:
        daily = await db.execute(
            select(AttendanceRow.call_date, func.coalesce(func.sum(AttendanceRow.minutes), 0))
            .where(AttendanceRow.month_date == month)
            .group_by(AttendanceRow.call_date)
            .order_by(AttendanceRow.call_date)
        )
        daily_series = [{"date": d, "minutes": int(m)} for d, m in daily.all()]
        revenue = (
            await db.execute(
                select(func.coalesce(func.sum(AttendanceRow.importe_eur), 0)).where(AttendanceRow.month_date == month)
            )
        ).scalar_one()

    logs = (
        await db.execute(select(CronLog).order_by(CronLog.started_at.desc(), CronLog.id.desc()).limit(CRON_LOGS_LIMIT))
    ).scalars()
    cron_logs = [
        {
            "id": log.id,
            "job": log.job,
            "ok": log.ok,
            "details": log.details,
            "started_at": log.started_at,
            "finished_at": log.finished_at,
        }
        for log in logs
    ]

    return {
        "month_date": month,
        "months": months,
        "me": worker,
        "totals": {
            "minutes": sum(r["minutes"] for r in tarotistas),
            "captadas": sum(r["captadas"] for r in tarotistas),
            "tarotistas": len(tarotistas),
        },
        "top": {
            key: _top(tarotistas, key, TOP_LIMIT) for key in ("minutes", "captadas", "cliente_pct", "repite_pct")
        },
        "presence": await presence_counts(db),
        "incidents": {"pending": pending},
        "dailySeries": daily_series,
        "cronLogs": cron_logs,
        "finance": await _finance(db, month, revenue),
    }


async def _finance(db: AsyncSession, month: Optional[date], revenue) -> dict:
    by_role: Dict[str, Decimal] = defaultdict(Decimal)
    tarotista_totals = []
    if month:
        result = await db.execute(
            select(Invoice.worker_id, Invoice.total_eur, Worker.display_name, Worker.role)
            .join(Worker, Worker.id == Invoice.worker_id)
            .where(Invoice.month_date == month)
        )
        for worker_id, total, name, role in result.all():
            amount = procedures.money(total)
            by_role[role] += amount
            by_role["_all"] += amount
            if role == ROLE_TAROTISTA:
                tarotista_totals.append({"worker_id": worker_id, "name": name, "role": role, "total_eur": amount})
    tarotista_totals.sort(key=lambda r: -r["total_eur"])
    revenue = procedures.money(revenue)
    expenses = procedures.money(by_role["_all"])
    return {
        "revenue_eur": revenue,
        "expenses_total_eur": expenses,
        "expenses_tarotistas_eur": procedures.money(by_role[ROLE_TAROTISTA]),
        "expenses_centrales_eur": procedures.money(by_role[ROLE_CENTRAL]),
        "margin_eur": procedures.money(revenue - expenses),
        "top3_expense_tarotistas": tarotista_totals[:3],
    }

