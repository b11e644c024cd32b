from datetime import date

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tarot_panel.core.config import settings
from tarot_panel.core.models import AttendanceRow, CronLog, MonthlyRanking, PeriodClosure
from tarot_panel.core.months import current_month, previous_month
from tarot_panel.core.timeutils import utcnow

SECRET = "cron-test-secret"


@pytest.fixture()
def cron_secret(monkeypatch):
    monkeypatch.setattr(settings, "cron_secret", SECRET)
    return SECRET


@pytest.mark.asyncio
async def test_secret_not_configured(client: AsyncClient, monkeypatch) -> None:
    monkeypatch.setattr(settings, "cron_secret", None)
    response = await client.get("/api/cron/rebuild-monthly?secret=anything")
    assert response.status_code == 500
    assert response.json() == {"ok": False, "error": "CRON_SECRET_NOT_SET"}


@pytest.mark.asyncio
async def test_wrong_or_missing_secret(client: AsyncClient, cron_secret) -> None:
    response = await client.get("/api/cron/rebuild-monthly?secret=nope")
    assert response.status_code == 401
    assert response.json()["error"] == "UNAUTHORIZED"

    response = await client.get("/api/cron/rebuild-monthly")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_rebuild_without_attendance(client: AsyncClient, db_session: AsyncSession, cron_secret) -> None:
    response = await client.get(f"/api/cron/rebuild-monthly?secret={cron_secret}")
    assert response.status_code == 200
    data = response.json()
    assert data["rebuilt"] == []
    assert data["note"] == "NO_MONTH_DATE_DATA"

    log = (await db_session.execute(select(CronLog))).scalar_one()
    assert log.job == "rebuild-monthly"
    assert log.ok is True
    assert log.details["note"] == "NO_MONTH_DATE_DATA"
    assert log.finished_at is not None


@pytest.mark.asyncio
async def test_rebuild_skips_closed_months(
    client: AsyncClient, db_session: AsyncSession, cron_secret, tarotista
) -> None:
    db_session.add_all(
        [
            AttendanceRow(
                worker_id=tarotista.id, call_date=date(2024, 5, 3), month_date=date(2024, 5, 1),
                minutes=20, codigo="cliente", captado=False,
            ),
            AttendanceRow(
                worker_id=tarotista.id, call_date=date(2024, 4, 3), month_date=date(2024, 4, 1),
                minutes=15, codigo="rueda", captado=False,
            ),
            PeriodClosure(month_date=date(2024, 4, 1), is_closed=True, closed_at=utcnow(), source="cron"),
        ]
    )
    await db_session.commit()

    response = await client.get(
        "/api/cron/rebuild-monthly", headers={"Authorization": f"Bearer {cron_secret}"}
    )
    assert response.status_code == 200
    data = response.json()
    assert data["rebuilt"] == [{"month_date": "2024-05-01", "workers": 1}]
    assert data["skippedClosed"] == ["2024-04-01"]

    months = (await db_session.execute(select(MonthlyRanking.month_date))).scalars().all()
    assert months == [date(2024, 5, 1)]


@pytest.mark.asyncio
async def test_failed_job_is_logged(client: AsyncClient, db_session: AsyncSession, cron_secret, monkeypatch) -> None:
    monkeypatch.setattr(settings, "attendance_csv_url", None)
    response = await client.get(f"/api/cron/sync-csv?secret={cron_secret}")
    assert response.status_code == 400
    assert response.json()["error"] == "NO_CSV_URL"

    log = (await db_session.execute(select(CronLog))).scalar_one()
    assert log.job == "sync-csv"
    assert log.ok is False
    assert log.details == {"error": "NO_CSV_URL"}


@pytest.mark.asyncio
async def test_close_previous_month(client: AsyncClient, db_session: AsyncSession, cron_secret) -> None:
    month = previous_month(current_month())

    response = await client.get(f"/api/cron/close-month?secret={cron_secret}")
    assert response.status_code == 200
    assert response.json()["alreadyClosed"] is False

    closure = await db_session.get(PeriodClosure, month)
    assert closure.source == "cron"
    assert closure.closed_by is None

    response = await client.get(f"/api/cron/close-month?secret={cron_secret}")
    assert response.json()["alreadyClosed"] is True


@pytest.mark.asyncio
async def test_detect_incidents_without_shifts(client: AsyncClient, cron_secret) -> None:
    response = await client.get(f"/api/cron/detect-incidents?secret={cron_secret}")
    assert response.status_code == 200
    assert response.json() == {"ok": True, "checked": 0, "created": 0, "updated": 0}
