from datetime import date
from decimal import Decimal
from urllib.parse import urlsplit

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import auth_headers, create_worker
from tarot_panel.api.invoices.pdf import InvoicePdf, InvoicePdfData, format_eur, invoice_filename
from tarot_panel.core.models import Invoice, InvoiceLine, PeriodClosure
from tarot_panel.core.timeutils import utcnow

MAY = date(2024, 5, 1)
PDF_BYTES = b"%PDF-1.4\n% test\n%%EOF\n"


async def make_invoice(db: AsyncSession, worker, **kwargs) -> Invoice:
    invoice = Invoice(worker_id=worker.id, month_date=kwargs.pop("month_date", MAY), **kwargs)
    db.add(invoice)
    await db.flush()
    db.add_all(
        [
            InvoiceLine(invoice_id=invoice.id, kind="base", label="Minutos cliente (100 min)", amount_eur=Decimal("8.00")),
            InvoiceLine(invoice_id=invoice.id, kind="bonus", label="Bono minutos #1", amount_eur=Decimal("50.00")),
        ]
    )
    invoice.base_salary_eur = Decimal("8.00")
    invoice.bonuses_eur = Decimal("50.00")
    invoice.total_eur = Decimal("58.00")
    await db.commit()
    return invoice


@pytest.mark.parametrize(
    "value,expected",
    [(Decimal("1234.5"), "1234,50 €"), (12345, "12.345,00 €"), (Decimal("-5"), "-5,00 €"), (None, "0,00 €")],
)
def test_format_eur(value, expected) -> None:
    assert format_eur(value) == expected


def test_invoice_filename_is_ascii() -> None:
    assert invoice_filename("María José", MAY) == "factura_Maria_Jose_2024-05-01.pdf"


def test_pdf_paginates_long_statements() -> None:
    data = InvoicePdfData(
        worker_name="María José",
        month_date=MAY,
        status="pending",
        locked=False,
        total_eur=Decimal("120"),
        lines=[(f"Ajuste {i}", Decimal("1.00")) for i in range(120)],
    )
    pdf = InvoicePdf(data)
    content = pdf.render()
    assert content.startswith(b"%PDF")
    assert pdf.page_count > 1
    assert pdf.watermark_text == "BORRADOR"


def test_pdf_watermarks() -> None:
    base = dict(worker_name="X", month_date=MAY, total_eur=Decimal("0"))
    assert InvoicePdf(InvoicePdfData(status="rejected", locked=True, **base)).watermark_text == "RECHAZADA"
    assert InvoicePdf(InvoicePdfData(status="accepted", locked=True, **base)).watermark_text is None


@pytest.mark.asyncio
async def test_worker_lists_and_downloads_own_invoice(
    client: AsyncClient, db_session: AsyncSession, tarotista
) -> None:
    invoice = await make_invoice(db_session, tarotista)

    response = await client.get("/api/invoices/my", headers=auth_headers(tarotista))
    items = response.json()["items"]
    assert [i["id"] for i in items] == [str(invoice.id)]

    response = await client.get(f"/api/invoices/lines?invoiceId={invoice.id}", headers=auth_headers(tarotista))
    assert [line["kind"] for line in response.json()["lines"]] == ["base", "bonus"]

    response = await client.get(f"/api/invoices/pdf?invoice_id={invoice.id}", headers=auth_headers(tarotista))
    assert response.status_code == 200
    assert response.headers["content-type"] == "application/pdf"
    assert response.headers["cache-control"] == "no-store"
    assert response.headers["content-disposition"].startswith('inline; filename="factura_Maria_Jose_2024-05-01.pdf"')
    assert response.content.startswith(b"%PDF")

    response = await client.get("/api/invoices/pdf", headers=auth_headers(tarotista))
    assert response.status_code == 400
    assert response.json()["error"] == "MISSING_INVOICE_ID"


@pytest.mark.asyncio
async def test_other_workers_cannot_read_invoice(
    client: AsyncClient, db_session: AsyncSession, tarotista, admin
) -> None:
    invoice = await make_invoice(db_session, tarotista)
    other = await create_worker(db_session, role="tarotista", display_name="Estrella")

    response = await client.get(f"/api/invoices/lines?invoice_id={invoice.id}", headers=auth_headers(other))
    assert response.status_code == 403

    response = await client.get(f"/api/invoices/lines?invoice_id={invoice.id}", headers=auth_headers(admin))
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_respond_once(client: AsyncClient, db_session: AsyncSession, tarotista) -> None:
    invoice = await make_invoice(db_session, tarotista)
    headers = auth_headers(tarotista)

    response = await client.post(
        "/api/invoices/respond",
        headers=headers,
        json={"invoice_id": str(invoice.id), "action": "rejected", "note": "x" * 600},
    )
    assert response.status_code == 200
    item = response.json()["item"]
    assert item["status"] == "rejected"
    assert len(item["response_note"]) == 500
    assert item["responded_at"] is not None

    response = await client.post(
        "/api/invoices/respond", headers=headers, json={"invoice_id": str(invoice.id), "action": "accepted"}
    )
    assert response.status_code == 409
    assert response.json()["error"] == "ALREADY_RESPONDED"

    response = await client.post(
        "/api/invoices/respond", headers=headers, json={"invoice_id": str(invoice.id), "action": "maybe"}
    )
    assert response.status_code == 400
    assert response.json()["error"] == "BAD_INPUT"


@pytest.mark.asyncio
async def test_upload_and_signed_download(client: AsyncClient, admin, tarotista, storage_dir) -> None:
    response = await client.post(
        "/api/admin/upload-invoice",
        headers=auth_headers(admin),
        data={"worker_id": str(tarotista.id), "month_date": "2024-05-01"},
        files={"file": ("factura.pdf", PDF_BYTES, "application/pdf")},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["path"].startswith("2024-05-01/")
    assert (storage_dir / "invoices" / data["path"]).read_bytes() == PDF_BYTES

    response = await client.get("/api/invoices/my", headers=auth_headers(tarotista))
    file_url = response.json()["items"][0]["file_url"]
    assert file_url.startswith("/api/storage/invoices/")

    download = await client.get(file_url)
    assert download.status_code == 200
    assert download.content == PDF_BYTES

    tampered = urlsplit(file_url)._replace(query="token=abc").geturl()
    response = await client.get(tampered)
    assert response.status_code == 403
    assert response.json()["error"] == "BAD_SIGNATURE"


@pytest.mark.asyncio
async def test_upload_rejects_non_pdf(client: AsyncClient, admin, tarotista) -> None:
    response = await client.post(
        "/api/admin/upload-invoice",
        headers=auth_headers(admin),
        data={"worker_id": str(tarotista.id), "month_date": "2024-05-01"},
        files={"file": ("factura.txt", b"hola", "text/plain")},
    )
    assert response.status_code == 400
    assert response.json()["error"] == "NOT_PDF"

    response = await client.post(
        "/api/admin/upload-invoice",
        headers=auth_headers(admin),
        data={"worker_id": str(tarotista.id), "month_date": "2024-05-07"},
        files={"file": ("factura.pdf", PDF_BYTES, "application/pdf")},
    )
    assert response.status_code == 400
    assert response.json()["error"] == "BAD_MONTH_DATE"




@pytest.mark.asyncio
async def test_upload_refuses_locked_invoice(
    client: AsyncClient, db_session: AsyncSession, admin, tarotista, storage_dir
) -> None:
    invoice = await make_invoice(db_session, tarotista, status="accepted", locked_at=utcnow())

    response = await client.post(
        "/api/admin/upload-invoice",
        headers=auth_headers(admin),
        data={"worker_id": str(tarotista.id), "month_date": "2024-05-01"},
        files={"file": ("factura.pdf", PDF_BYTES, "application/pdf")},
    )
    assert response.status_code == 409
    assert response.json()["error"] == "INVOICE_LOCKED"

    await db_session.refresh(invoice)
    assert invoice.status == "accepted"
    assert invoice.file_path is None
    assert not storage_dir.exists() or not any(storage_dir.rglob("*.pdf"))


@pytest.mark.asyncio
async def test_upload_removes_file_when_save_fails(
    client: AsyncClient, db_session: AsyncSession, admin, tarotista, storage_dir, monkeypatch
) -> None:
    headers = auth_headers(admin)
    tarotista_id = str(tarotista.id)

    async def failing_commit():
        raise SQLAlchemyError("disk full")

    monkeypatch.setattr(db_session, "commit", failing_commit)
    response = await client.post(
        "/api/admin/upload-invoice",
        headers=headers,
        data={"worker_id": tarotista_id, "month_date": "2024-05-01"},
        files={"file": ("factura.pdf", PDF_BYTES, "application/pdf")},
    )
    assert response.status_code == 500
    assert response.json()["error"] == "INVOICE_SAVE_FAILED"
    assert not any(storage_dir.rglob("*.pdf"))
@pytest.mark.asyncio
async def test_manual_lines_update_totals(client: AsyncClient, db_session: AsyncSession, admin, tarotista) -> None:
    invoice = await make_invoice(db_session, tarotista)
    headers = auth_headers(admin)

    response = await client.post(
        "/api/admin/invoices/add-line",
        headers=headers,
        json={"invoice_id": str(invoice.id), "label": "Descuento material", "amount_eur": "-3.50"},
    )
    assert response.status_code == 201
    line_id = response.json()["line"]["id"]
    assert invoice.total_eur == Decimal("54.50")

    # Recalculation keeps manual lines
    response = await client.post("/api/admin/invoices/recalc", headers=headers, json={"invoice_id": str(invoice.id)})
    assert response.status_code == 200
    kinds = (await db_session.execute(select(InvoiceLine.kind).where(InvoiceLine.invoice_id == invoice.id))).scalars().all()
    assert kinds == ["adjustment"]

    response = await client.delete(f"/api/admin/invoices/lines/{line_id}", headers=headers)
    assert response.status_code == 200
    assert invoice.total_eur == Decimal("0.00")

    response = await client.post(
        "/api/admin/invoices/add-line",
        headers=headers,
        json={"invoice_id": str(invoice.id), "kind": "gift", "label": "x", "amount_eur": "1"},
    )
    assert response.status_code == 400
    assert response.json()["error"] == "BAD_KIND"


@pytest.mark.asyncio
async def test_lock_blocks_changes(client: AsyncClient, db_session: AsyncSession, admin, tarotista) -> None:
    invoice = await make_invoice(db_session, tarotista)
    headers = auth_headers(admin)

    response = await client.post("/api/admin/invoices/lock", headers=headers, json={"invoice_id": str(invoice.id)})
    assert response.json()["item"]["locked_at"] is not None

    response = await client.post(
        "/api/admin/invoices/add-line",
        headers=headers,
        json={"invoice_id": str(invoice.id), "label": "Ajuste", "amount_eur": "1"},
    )
    assert response.status_code == 409
    assert response.json()["error"] == "INVOICE_LOCKED"

    response = await client.post(
        "/api/admin/invoices/lock", headers=headers, json={"invoice_id": str(invoice.id), "locked": False}
    )
    assert response.json()["item"]["locked_at"] is None

    db_session.add(PeriodClosure(month_date=MAY, is_closed=True, closed_at=utcnow(), source="manual"))
    await db_session.commit()
    await client.post("/api/admin/invoices/lock", headers=headers, json={"invoice_id": str(invoice.id)})
    response = await client.post(
        "/api/admin/invoices/lock", headers=headers, json={"invoice_id": str(invoice.id), "locked": False}
    )
    assert response.status_code == 409
    assert response.json()["error"] == "MONTH_CLOSED"


@pytest.mark.asyncio
async def test_admin_list_and_notes(client: AsyncClient, db_session: AsyncSession, admin, tarotista) -> None:
    invoice = await make_invoice(db_session, tarotista)
    headers = auth_headers(admin)

    response = await client.post(
        "/api/admin/invoices/notes", headers=headers, json={"invoice_id": str(invoice.id), "admin_note": " Revisar "}
    )
    assert response.json()["item"]["admin_note"] == "Revisar"

    response = await client.get("/api/admin/invoices/list?month_date=2024-05", headers=headers)
    items = response.json()["items"]
    assert [(i["worker_name"], i["admin_note"]) for i in items] == [("María José", "Revisar")]

    response = await client.get("/api/admin/invoices/list?month_date=2024-06", headers=headers)
    assert response.json()["items"] == []


@pytest.mark.asyncio
async def test_panel_me_without_invoice(client: AsyncClient, tarotista) -> None:
    response = await client.get("/api/panel/me", headers=auth_headers(tarotista))
    assert response.status_code == 200
    data = response.json()
    assert data["invoice"] is None
    assert Decimal(str(data["penalty_month_eur"])) == Decimal("0")
    assert data["worker"]["display_name"] == "María José"
