import io
from datetime import date
from decimal import Decimal

import pytest
from httpx import AsyncClient
from openpyxl import load_workbook
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import auth_headers, create_worker
from tarot_panel.api.monthly import procedures
from tarot_panel.core.config import settings
from tarot_panel.core.months import current_month, next_month
from tarot_panel.core.models import (
    AttendanceRow,
    BonusRule,
    Invoice,
    MonthlyBonusResult,
    MonthlyEarning,
    PeriodClosure,
    Team,
    TeamMember,
    TeamMonthlyResult,
)

MAY = date(2024, 5, 1)


def calls(worker, codigo: str, minutes: int, captadas: int = 0, day: int = 2):
    rows = [
        AttendanceRow(
            worker_id=worker.id,
            call_date=date(2024, 5, day),
            month_date=MAY,
            minutes=minutes,
            codigo=codigo,
            captado=False,
        )
    ]
    rows += [
        AttendanceRow(
            worker_id=worker.id,
            call_date=date(2024, 5, day),
            month_date=MAY,
            minutes=0,
            codigo=codigo,
            captado=True,
        )
        for _ in range(captadas)
    ]
    return rows


def rule(ranking_type: str, position: int, amount: str, role: str = "tarotista") -> BonusRule:
    return BonusRule(ranking_type=ranking_type, position=position, role=role, amount_eur=Decimal(amount))


@pytest.fixture()
async def may_data(db_session: AsyncSession, central):
    luz = await create_worker(db_session, role="tarotista", display_name="Luz")
    sol = await create_worker(db_session, role="tarotista", display_name="Sol")
    mar = await create_worker(db_session, role="tarotista", display_name="Mar")
    db_session.add_all(calls(luz, "cliente", 100) + calls(sol, "repite", 60, captadas=2) + calls(mar, "cliente", 30))
    db_session.add_all(
        [
            rule("minutes", 1, "50"),
            rule("minutes", 2, "30"),
            rule("captadas", 1, "20"),
            rule("team_win", 1, "80", role="central"),
        ]
    )
    day_team = Team(name="Día", central_worker_id=central.id)
    night_team = Team(name="Noche")
    db_session.add_all([day_team, night_team])
    await db_session.flush()
    db_session.add_all(
        [
            TeamMember(team_id=day_team.id, tarotista_worker_id=luz.id),
            TeamMember(team_id=day_team.id, tarotista_worker_id=sol.id),
            TeamMember(team_id=night_team.id, tarotista_worker_id=mar.id),
        ]
    )
    await db_session.commit()
    return {"luz": luz, "sol": sol, "mar": mar, "day_team": day_team, "night_team": night_team}


@pytest.mark.asyncio
async def test_pipeline_awards_bonuses(db_session: AsyncSession, central, may_data) -> None:
    summary = await procedures.run_monthly_pipeline(db_session, MAY)
    await db_session.commit()
    assert summary["bonuses"] == 4

    awards = {
        (r.worker_id, r.ranking_type, r.position, r.amount_eur)
        for r in (await db_session.execute(select(MonthlyBonusResult))).scalars()
    }
    assert awards == {
        (may_data["luz"].id, "minutes", 1, Decimal("50.00")),
        (may_data["sol"].id, "minutes", 2, Decimal("30.00")),
        (may_data["sol"].id, "captadas", 1, Decimal("20.00")),
        (central.id, "team_win", 1, Decimal("80.00")),
    }

    earnings = {e.worker_id: e for e in (await db_session.execute(select(MonthlyEarning))).scalars()}
    assert earnings[may_data["luz"].id].base_eur == Decimal("8.00")
    assert earnings[may_data["luz"].id].total_eur == Decimal("58.00")
    assert earnings[may_data["sol"].id].total_eur == Decimal("56.00")
    assert earnings[central.id].bonus_eur == Decimal("80.00")

    central_invoice = (
        await db_session.execute(select(Invoice).where(Invoice.worker_id == central.id))
    ).scalar_one()
    assert central_invoice.bonuses_eur == Decimal("80.00")
    assert central_invoice.total_eur == Decimal("80.00")


@pytest.mark.asyncio
async def test_team_tie_is_broken_by_minutes(db_session: AsyncSession, may_data) -> None:
    await procedures.run_monthly_pipeline(db_session, MAY)
    results = {
        r.team_id: r for r in (await db_session.execute(select(TeamMonthlyResult))).scalars()
    }
    day, night = results[may_data["day_team"].id], results[may_data["night_team"].id]
    # Both teams score 100 (cliente% + repite%)
    assert day.team_score == night.team_score == Decimal("100.00")
    assert day.position == 1 and day.is_winner
    assert night.position == 2 and not night.is_winner


@pytest.mark.asyncio
async def test_bonus_cap_trims_lowest_priority_awards(
    db_session: AsyncSession, tarotista, monkeypatch
) -> None:
    monkeypatch.setattr(settings, "bonus_cap_eur", 40.0)
    db_session.add_all(calls(tarotista, "repite", 60, captadas=2))
    db_session.add_all([rule("minutes", 1, "30"), rule("repite_pct", 1, "25"), rule("captadas", 1, "20")])
    await db_session.commit()

    await procedures.run_monthly_pipeline(db_session, MAY)
    awards = {
        r.ranking_type: r for r in (await db_session.execute(select(MonthlyBonusResult))).scalars()
    }
    assert awards["minutes"].amount_eur == Decimal("30.00")
    assert not awards["minutes"].capped
    assert awards["repite_pct"].amount_eur == Decimal("10.00")
    assert awards["repite_pct"].original_amount_eur == Decimal("25.00")
    assert awards["captadas"].amount_eur == Decimal("0.00")
    assert awards["captadas"].capped

    earning = (await db_session.execute(select(MonthlyEarning))).scalar_one()
    assert earning.bonus_eur == Decimal("40.00")
    assert earning.bonus_capped is True

    # Running the cap again gives the same result
    await procedures.apply_bonus_cap(db_session, MAY)
    assert earning.bonus_eur == Decimal("40.00")
    assert awards["repite_pct"].amount_eur == Decimal("10.00")


@pytest.mark.asyncio
@pytest.mark.parametrize("cap,expected_bonus", [(None, "75.00"), (0.0, "0.00")])
async def test_bonus_cap_disabled_or_zero(
    db_session: AsyncSession, tarotista, monkeypatch, cap, expected_bonus
) -> None:
    monkeypatch.setattr(settings, "bonus_cap_eur", cap)
    db_session.add_all(calls(tarotista, "repite", 60, captadas=2))
    db_session.add_all([rule("minutes", 1, "30"), rule("repite_pct", 1, "25"), rule("captadas", 1, "20")])
    await db_session.commit()

    await procedures.run_monthly_pipeline(db_session, MAY)
    earning = (await db_session.execute(select(MonthlyEarning))).scalar_one()
    assert earning.bonus_eur == Decimal(expected_bonus)
    assert earning.bonus_capped is (cap is not None)


@pytest.mark.asyncio
async def test_inactive_rules_award_nothing(db_session: AsyncSession, tarotista) -> None:
    db_session.add_all(calls(tarotista, "cliente", 10))
    inactive = rule("minutes", 1, "50")
    inactive.is_active = False
    db_session.add(inactive)
    await db_session.commit()

    summary = await procedures.run_monthly_pipeline(db_session, MAY)
    assert summary["bonuses"] == 0


@pytest.mark.asyncio
async def test_recompute_requires_month(client: AsyncClient, admin) -> None:
    response = await client.post("/api/admin/recompute", headers=auth_headers(admin))
    assert response.status_code == 400
    assert response.json()["error"] == "NO_MONTH"

    response = await client.post(
        "/api/admin/recompute", headers=auth_headers(admin), json={"month_date": "2024-05-01"}
    )
    assert response.status_code == 200
    assert response.json()["month_date"] == "2024-05-01"


@pytest.mark.asyncio
async def test_close_month_locks_and_is_idempotent(
    client: AsyncClient, db_session: AsyncSession, admin, may_data
) -> None:
    response = await client.post(
        "/api/admin/close-month", headers=auth_headers(admin), json={"month_date": "2024-05-01"}
    )
    assert response.status_code == 200
    data = response.json()
    assert data["alreadyClosed"] is False
    assert data["lockedInvoices"] == 4

    closure = await db_session.get(PeriodClosure, MAY)
    assert closure.is_closed
    assert closure.source == "manual"
    assert closure.closed_by == admin.id
    locked = (await db_session.execute(select(Invoice.locked_at))).scalars().all()
    assert all(value is not None for value in locked)

    response = await client.post(
        "/api/admin/close-month", headers=auth_headers(admin), json={"month_date": "2024-05-01"}
    )
    assert response.json()["alreadyClosed"] is True

    response = await client.post("/api/admin/recompute", headers=auth_headers(admin), json={"month": "2024-05"})
    assert response.status_code == 409
    assert response.json()["error"] == "MONTH_CLOSED"


@pytest.mark.asyncio
async def test_close_month_rejects_mid_month(client: AsyncClient, admin) -> None:
    response = await client.post(
        "/api/admin/close-month", headers=auth_headers(admin), json={"month_date": "2024-05-15"}
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_close_month_rejects_unfinished_months(client: AsyncClient, db_session: AsyncSession, admin) -> None:
    headers = auth_headers(admin)
    for month in (current_month(), next_month(current_month())):
        response = await client.post(
            "/api/admin/close-month", headers=headers, json={"month_date": month.isoformat()}
        )
        assert response.status_code == 400
        assert response.json()["error"] == "MONTH_NOT_FINISHED"
        assert await db_session.get(PeriodClosure, month) is None


@pytest.mark.asyncio
async def test_hours_export(client: AsyncClient, admin, may_data) -> None:
    response = await client.get("/api/admin/hours?month=2024-05", headers=auth_headers(admin))
    assert response.status_code == 200
    rows = response.json()["rows"]
    assert rows[0]["display_name"] == "Luz"
    assert rows[0]["hours_total"] == pytest.approx(1.67)

    response = await client.get("/api/admin/hours?month=2024-05&format=xlsx", headers=auth_headers(admin))
    assert response.status_code == 200
    assert 'filename="horas_2024-05-01.xlsx"' in response.headers["content-disposition"]
    ws = load_workbook(io.BytesIO(response.content)).active
    assert ws["A1"].value == "Horas mayo de 2024"
    assert [c.value for c in ws[2]][:4] == ["Trabajador", "Rol", "Minutos", "Horas"]
    assert ws["A3"].value == "Luz"

    response = await client.get("/api/admin/hours?format=csv", headers=auth_headers(admin))
    assert response.status_code == 400
    assert response.json()["error"] == "BAD_FORMAT"


@pytest.mark.asyncio
async def test_bonus_rules_endpoints(client: AsyncClient, admin, tarotista) -> None:
    response = await client.post(
        "/api/admin/bonus/rules",
        headers=auth_headers(admin),
        json={"ranking_type": "minutes", "position": 1, "role": "tarotista", "amount_eur": "50", "is_active": False},
    )
    assert response.status_code == 200
    assert response.json()["rule"]["is_active"] is False

    response = await client.post(
        "/api/admin/bonus/rules",
        headers=auth_headers(admin),
        json={"ranking_type": "smiles", "position": 1, "role": "tarotista", "amount_eur": "5"},
    )
    assert response.status_code == 400
    assert response.json()["error"] == "BAD_RANKING_TYPE"

    response = await client.get("/api/bonus/rules", headers=auth_headers(tarotista))
    assert response.json()["rules"] == []
    response = await client.get("/api/bonus/rules", headers=auth_headers(admin))
    assert len(response.json()["rules"]) == 1


@pytest.mark.asyncio
async def test_dashboard_for_central_includes_teams(
    client: AsyncClient, db_session: AsyncSession, central, may_data
) -> None:
    await procedures.run_monthly_pipeline(db_session, MAY)
    await db_session.commit()

    response = await client.get("/api/dashboard/full", headers=auth_headers(central))
    assert response.status_code == 200
    data = response.json()
    assert data["month_date"] == "2024-05-01"
    assert [r["name"] for r in data["rankings"]["minutes"]] == ["Luz", "Sol", "Mar"]
    assert data["myTeamRank"] == 1
    assert data["winnerTeam"]["team_name"] == "Día"
    assert data["teamsRanking"][0]["member_count"] == 2
    assert {m["name"] for m in data["teamsRanking"][0]["members"]} == {"Luz", "Sol"}
    assert Decimal(str(data["myEarnings"]["amount_bonus_eur"])) == Decimal("80")

    response = await client.get("/api/dashboard/full", headers=auth_headers(may_data["luz"]))
    data = response.json()
    assert data["teamsRanking"] == []
    assert data["myEarnings"]["minutes_total"] == 100


@pytest.mark.asyncio
async def test_dashboard_without_data(client: AsyncClient, tarotista) -> None:
    response = await client.get("/api/dashboard/full", headers=auth_headers(tarotista))
    assert response.status_code == 200
    data = response.json()
    assert data["month_date"] is None
    assert data["months"] == []


@pytest.mark.asyncio
async def test_admin_overview(client: AsyncClient, db_session: AsyncSession, admin, may_data) -> None:
    await procedures.run_monthly_pipeline(db_session, MAY)
    await db_session.commit()

    response = await client.get("/api/admin/dashboard/overview", headers=auth_headers(admin))
    assert response.status_code == 200
    data = response.json()
    assert data["totals"]["minutes"] == 190
    assert data["totals"]["tarotistas"] == 3
    assert data["top"]["minutes"][0]["name"] == "Luz"
    assert data["dailySeries"] == [{"date": "2024-05-02", "minutes": 190}]
    assert data["incidents"]["pending"] == 0
    assert len(data["finance"]["top3_expense_tarotistas"]) == 3
