from datetime import date
from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import auth_headers, create_worker
from tarot_panel.api.monthly import procedures
from tarot_panel.core.models import AttendanceRow, Invoice, InvoiceLine, MonthlyEarning, MonthlyRanking

SHEET = "\n".join(
    [
        "Llamadas mayo",
        "TAROTISTA;TELEFONISTA;CODIGO;CAPTADO;TIEMPO;FECHA;IMPORTE",
        "MJ01;Ana;cliente;si;0:30:00;02/05/2024;12,50 €",
        "maria jose;Ana;repite;;15:30;03/05/2024;8",
        "Maria José;Ana;;;10;04/05/2024;",
        "Desconocida;Ana;cliente;;5;04/05/2024;",
        "MJ01;Ana;cliente;;5;31/02/2024;",
        "MJ01;Ana;libre;;5;05/05/2024;",
        "MJ01;Ana;free;;20;01/04/2024;",
    ]
)


@pytest.mark.asyncio
async def test_full_sync_replaces_table(client: AsyncClient, db_session: AsyncSession, admin, tarotista) -> None:
    response = await client.post("/api/admin/sync-csv", headers=auth_headers(admin), json={"csv_text": SHEET})
    assert response.status_code == 200
    data = response.json()
    assert data["totalRows"] == 7
    assert data["inserted"] == 4
    assert data["skippedBadDate"] == 1
    assert data["skippedBad"] == 1
    assert data["skippedNoWorker"] == 1
    assert data["defaultedCodigoToCliente"] == 1
    assert data["unmatchedTop"] == [{"tarotista": "Desconocida", "count": 1}]
    assert data["debug"]["separator"] == ";"
    assert data["debug"]["headerRowIndex"] == 1

    months = (await db_session.execute(select(AttendanceRow.month_date).distinct())).scalars().all()
    assert set(months) == {date(2024, 5, 1), date(2024, 4, 1)}

    # Running it again leaves the same rows, not twice as many
    await client.post("/api/admin/sync-csv", headers=auth_headers(admin), json={"csv_text": SHEET})
    count = (await db_session.execute(select(func.count(AttendanceRow.id)))).scalar_one()
    assert count == 4

    # Full sync never runs the monthly pipeline
    assert (await db_session.execute(select(func.count(MonthlyRanking.id)))).scalar_one() == 0


@pytest.mark.asyncio
async def test_month_sync_recomputes(client: AsyncClient, db_session: AsyncSession, admin, tarotista) -> None:
    response = await client.post(
        "/api/admin/sync",
        headers=auth_headers(admin),
        json={"csv_text": SHEET, "month_date": "2024-05-01"},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["inserted"] == 3
    assert data["skippedOtherMonth"] == 1
    assert data["recompute"]["earnings"] == 1

    ranking = (await db_session.execute(select(MonthlyRanking))).scalar_one()
    assert ranking.minutes_total == 30 + 16 + 10
    assert ranking.cliente_minutes == 40
    assert ranking.repite_minutes == 16
    assert ranking.captadas_total == 1

    earning = (await db_session.execute(select(MonthlyEarning))).scalar_one()
    # 40 min cliente at 0.08 + 16 min repite at 0.10
    assert earning.base_eur == Decimal("4.80")
    invoice = (await db_session.execute(select(Invoice))).scalar_one()
    assert invoice.worker_id == tarotista.id
    assert invoice.total_eur == Decimal("4.80")


@pytest.mark.asyncio
async def test_month_sync_rejects_mid_month_date(client: AsyncClient, admin) -> None:
    response = await client.post(
        "/api/admin/sync",
        headers=auth_headers(admin),
        json={"csv_text": SHEET, "month_date": "2024-05-15"},
    )
    assert response.status_code == 400
    assert response.json()["error"] == "BAD_BODY"


@pytest.mark.asyncio
async def test_sheet_without_header(client: AsyncClient, admin) -> None:
    response = await client.post(
        "/api/admin/sync-csv", headers=auth_headers(admin), json={"csv_text": "a,b,c\n1,2,3\n"}
    )
    assert response.status_code == 400
    assert response.json()["error"] == "HEADER_NOT_FOUND"


@pytest.mark.asyncio
async def test_sync_without_source(client: AsyncClient, admin) -> None:
    response = await client.post("/api/admin/sync-csv", headers=auth_headers(admin))
    assert response.status_code == 400
    assert response.json()["error"] == "NO_CSV_URL"


@pytest.mark.asyncio
async def test_mapping_takes_priority(client: AsyncClient, db_session: AsyncSession, admin, tarotista) -> None:
    other = await create_worker(db_session, role="tarotista", display_name="Estrella")
    response = await client.post(
        "/api/admin/mappings",
        headers=auth_headers(admin),
        json={"csv_tarotista": "Desconocida", "worker_id": str(other.id)},
    )
    assert response.status_code == 200
    assert response.json()["item"]["worker_name"] == "Estrella"

    response = await client.post("/api/admin/sync-csv", headers=auth_headers(admin), json={"csv_text": SHEET})
    assert response.json()["skippedNoWorker"] == 0

    rows = (
        await db_session.execute(select(AttendanceRow).where(AttendanceRow.worker_id == other.id))
    ).scalars().all()
    assert len(rows) == 1

    response = await client.get("/api/admin/mappings", headers=auth_headers(admin))
    mapping_id = response.json()["items"][0]["id"]
    response = await client.delete(f"/api/admin/mappings/{mapping_id}", headers=auth_headers(admin))
    assert response.status_code == 200
    response = await client.delete(f"/api/admin/mappings/{mapping_id}", headers=auth_headers(admin))
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_upload_csv_file(client: AsyncClient, admin, tarotista) -> None:
    response = await client.post(
        "/api/admin/attendance/upload",
        headers=auth_headers(admin),
        files={"file": ("llamadas.csv", SHEET.encode("utf-8"), "text/csv")},
    )
    assert response.status_code == 200
    assert response.json()["filename"] == "llamadas.csv"
    assert response.json()["inserted"] == 4


@pytest.mark.asyncio
async def test_stats(client: AsyncClient, admin, tarotista) -> None:
    await client.post("/api/admin/sync-csv", headers=auth_headers(admin), json={"csv_text": SHEET})

    response = await client.get("/api/stats/me?month_date=2024-05", headers=auth_headers(tarotista))
    stats = response.json()["stats"]
    assert stats["calls"] == 3
    assert stats["minutes"] == 56
    assert stats["cliente_minutes"] == 40
    assert stats["cliente_pct"] == pytest.approx(71.43)

    response = await client.get("/api/stats/global", headers=auth_headers(admin))
    data = response.json()
    assert data["totalRows"] == 4
    assert data["tarotistasTop"][0]["minutes"] == 76
    assert data["centralesTop"] == []

    response = await client.get("/api/stats/global?month_date=bad", headers=auth_headers(admin))
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_month_resync_without_rows_clears_invoice(
    client: AsyncClient, db_session: AsyncSession, admin, tarotista
) -> None:
    sheet = "TAROTISTA;CODIGO;TIEMPO;FECHA\nMJ01;cliente;100;10/05/2024\n"
    response = await client.post(
        "/api/admin/sync", headers=auth_headers(admin), json={"csv_text": sheet, "month_date": "2024-05-01"}
    )
    assert response.status_code == 200
    invoice = (await db_session.execute(select(Invoice))).scalar_one()
    assert invoice.total_eur == Decimal("8.00")

    response = await client.post(
        "/api/admin/sync",
        headers=auth_headers(admin),
        json={"csv_text": "TAROTISTA;CODIGO;TIEMPO;FECHA\n", "month_date": "2024-05-01"},
    )
    assert response.status_code == 200
    assert response.json()["recompute"]["invoices"] == 1

    invoice = (await db_session.execute(select(Invoice))).scalar_one()
    assert invoice.total_eur == Decimal("0.00")
    assert invoice.base_salary_eur == Decimal("0.00")
    lines = (await db_session.execute(select(func.count(InvoiceLine.id)))).scalar_one()
    assert lines == 0
    assert (await db_session.execute(select(func.count(MonthlyEarning.id)))).scalar_one() == 0


@pytest.mark.asyncio
async def test_failed_sync_keeps_previous_rows(
    client: AsyncClient, db_session: AsyncSession, admin, tarotista, monkeypatch
) -> None:
    headers = auth_headers(admin)
    response = await client.post(
        "/api/admin/sync", headers=headers, json={"csv_text": SHEET, "month_date": "2024-05-01"}
    )
    assert response.status_code == 200

    async def broken_pipeline(db, month):
        raise SQLAlchemyError("connection lost")

    monkeypatch.setattr(procedures, "run_monthly_pipeline", broken_pipeline)
    response = await client.post(
        "/api/admin/sync",
        headers=headers,
        json={"csv_text": "TAROTISTA;CODIGO;TIEMPO;FECHA\n", "month_date": "2024-05-01"},
    )
    assert response.status_code == 500
    assert response.json() == {"ok": False, "error": "SYNC_FAILED"}

    count = (await db_session.execute(select(func.count(AttendanceRow.id)))).scalar_one()
    assert count == 3
