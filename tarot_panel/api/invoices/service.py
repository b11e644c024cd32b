"""Worker invoices: listing, lines, PDF rendering, responses, uploads and admin adjustments."""

import logging
from datetime import date
from decimal import Decimal
from typing import List, Optional, Tuple
from uuid import UUID

from fastapi import status
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tarot_panel.api.monthly import procedures
from tarot_panel.auth.schemas import CurrentWorker
from tarot_panel.core.config import settings
from tarot_panel.core.exceptions import ServiceError, StorageError
from tarot_panel.core.models import Invoice, InvoiceLine, MonthlyBonusResult, ShiftIncident, Worker
from tarot_panel.core.models.incident import INCIDENT_STATUS_UNJUSTIFIED
from tarot_panel.core.models.invoice import (
    INVOICE_STATUS_ACCEPTED,
    INVOICE_STATUS_PENDING,
    INVOICE_STATUS_REJECTED,
    LINE_KIND_BONUS,
    LINE_KINDS,
)
from tarot_panel.core.months import current_month
from tarot_panel.core.storage import INVOICES_BUCKET, LocalStorage, invoice_object_path
from tarot_panel.core.timeutils import utcnow

from .pdf import InvoicePdfData, invoice_filename, render_invoice_pdf
from .schemas import (
    InvoiceLineCreate,
    InvoiceLineResponse,
    InvoiceLockRequest,
    InvoiceNotesUpdate,
    InvoiceRespondRequest,
    InvoiceResponse,
)

logger = logging.getLogger(__name__)

RESPONSE_NOTE_MAX = 500
MAX_UPLOAD_BYTES = 10 * 1024 * 1024
RESPONSE_ACTIONS = (INVOICE_STATUS_ACCEPTED, INVOICE_STATUS_REJECTED)


def _to_response(
    invoice: Invoice,
    worker_name: Optional[str] = None,
    storage: Optional[LocalStorage] = None,
) -> InvoiceResponse:
    item = InvoiceResponse.model_validate(invoice)
    item.worker_name = worker_name
    if storage is not None and invoice.file_path:
        item.file_url = storage.create_signed_url(INVOICES_BUCKET, invoice.file_path)
    return item


async def _commit(db: AsyncSession, error: str = "INVOICE_SAVE_FAILED") -> None:
    try:
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        raise ServiceError(error, status.HTTP_500_INTERNAL_SERVER_ERROR)


async def _get_invoice(db: AsyncSession, invoice_id: UUID) -> Invoice:
    invoice = await db.get(Invoice, invoice_id)
    if invoice is None:
        raise ServiceError("NOT_FOUND", status.HTTP_404_NOT_FOUND)
    return invoice


async def get_visible_invoice(db: AsyncSession, invoice_id: UUID, worker: CurrentWorker) -> Invoice:
    """Invoice readable by its owner or an admin."""
    invoice = await _get_invoice(db, invoice_id)
    if not worker.is_admin and invoice.worker_id != worker.id:
        raise ServiceError("FORBIDDEN", status.HTTP_403_FORBIDDEN)
    return invoice


async def list_my_invoices(db: AsyncSession, worker: CurrentWorker, storage: LocalStorage) -> List[InvoiceResponse]:
    result = await db.execute(
        select(Invoice).where(Invoice.worker_id == worker.id).order_by(Invoice.month_date.desc())
    )
    return [_to_response(i, worker.display_name, storage) for i in result.scalars()]


async def list_lines(db: AsyncSession, invoice: Invoice) -> List[InvoiceLineResponse]:
    result = await db.execute(
        select(InvoiceLine).where(InvoiceLine.invoice_id == invoice.id).order_by(InvoiceLine.id)
    )
    return [InvoiceLineResponse.model_validate(line) for line in result.scalars()]


async def build_pdf(db: AsyncSession, invoice: Invoice) -> Tuple[bytes, str]:
    worker = await db.get(Worker, invoice.worker_id)
    lines = await list_lines(db, invoice)
    name = worker.display_name if worker else "Trabajador"
    data = InvoicePdfData(
        worker_name=name,
        month_date=invoice.month_date,
        status=invoice.status,
        locked=invoice.locked_at is not None,
        total_eur=invoice.total_eur,
        base_eur=invoice.base_salary_eur,
        bonuses_eur=invoice.bonuses_eur,
        penalties_eur=invoice.penalties_eur,
        lines=[(line.label, line.amount_eur) for line in lines],
        worker_note=invoice.worker_note or invoice.response_note,
        admin_note=invoice.admin_note,
    )
    return render_invoice_pdf(data, logo_path=settings.invoice_logo_path), invoice_filename(name, invoice.month_date)


async def respond(db: AsyncSession, worker: CurrentWorker, payload: InvoiceRespondRequest) -> InvoiceResponse:
    """Owner accepts or rejects their invoice, once."""
    action = (payload.action or "").strip().lower()
    if action not in RESPONSE_ACTIONS:
        raise ServiceError("BAD_INPUT", status.HTTP_400_BAD_REQUEST)
    invoice = await _get_invoice(db, payload.invoice_id)
    if invoice.worker_id != worker.id:
        raise ServiceError("FORBIDDEN", status.HTTP_403_FORBIDDEN)
    if invoice.status != INVOICE_STATUS_PENDING:
        raise ServiceError("ALREADY_RESPONDED", status.HTTP_409_CONFLICT)

    note = (payload.note or "").strip()[:RESPONSE_NOTE_MAX] or None
    invoice.status = action
    invoice.response_note = note
    invoice.worker_note = note
    invoice.responded_at = utcnow()
    await _commit(db)
    logger.info("Invoice %s %s by %s", invoice.id, action, worker.display_name)
    return _to_response(invoice, worker.display_name)


async def admin_list(db: AsyncSession, month: Optional[date], storage: LocalStorage) -> List[InvoiceResponse]:
    stmt = select(Invoice, Worker.display_name).join(Worker, Worker.id == Invoice.worker_id)
    if month is not None:
        stmt = stmt.where(Invoice.month_date == month)
    stmt = stmt.order_by(Invoice.month_date.desc(), Worker.display_name)
    return [_to_response(i, name, storage) for i, name in (await db.execute(stmt)).all()]


async def upload_invoice(
    db: AsyncSession,
    storage: LocalStorage,
    *,
    worker_id: UUID,
    month: date,
    content: bytes,
) -> InvoiceResponse:
    """Store an uploaded PDF and attach it to the worker's invoice for the month (created if missing)."""
    if not content:
        raise ServiceError("EMPTY_FILE", status.HTTP_400_BAD_REQUEST)
    if len(content) > MAX_UPLOAD_BYTES:
        raise ServiceError("FILE_TOO_LARGE", status.HTTP_413_REQUEST_ENTITY_TOO_LARGE)
    if not content.startswith(b"%PDF"):
        raise ServiceError("NOT_PDF", status.HTTP_400_BAD_REQUEST)
    worker = await db.get(Worker, worker_id)
    if worker is None:
        raise ServiceError("WORKER_NOT_FOUND", status.HTTP_404_NOT_FOUND)

    result = await db.execute(
        select(Invoice).where(Invoice.worker_id == worker.id, Invoice.month_date == month)
    )
    invoice = result.scalar_one_or_none()
    if invoice is not None and invoice.locked_at is not None:
        raise ServiceError("INVOICE_LOCKED", status.HTTP_409_CONFLICT)
    if invoice is None:
        invoice = Invoice(worker_id=worker.id, month_date=month)
        db.add(invoice)
    invoice.status = INVOICE_STATUS_PENDING
    invoice.responded_at = None
    invoice.response_note = None
    path = invoice_object_path(month, worker.id)
    invoice.file_path = path
    try:
        storage.upload(INVOICES_BUCKET, path, content)
    except StorageError:
        await db.rollback()
        raise
    try:
        await _commit(db)
    except ServiceError:
        storage.remove(INVOICES_BUCKET, path)
        raise
    logger.info("Invoice PDF uploaded for %s (%s): %s", worker.display_name, month, path)
    return _to_response(invoice, worker.display_name, storage)


async def add_line(db: AsyncSession, payload: InvoiceLineCreate) -> InvoiceLineResponse:
    kind = (payload.kind or "").strip().lower()
    if kind not in LINE_KINDS:
        raise ServiceError("BAD_KIND", status.HTTP_400_BAD_REQUEST)
    invoice = await _get_invoice(db, payload.invoice_id)
    if invoice.locked_at is not None:
        raise ServiceError("INVOICE_LOCKED", status.HTTP_409_CONFLICT)

    line = InvoiceLine(
        invoice_id=invoice.id,
        kind=kind,
        label=payload.label.strip(),
        amount_eur=procedures.money(payload.amount_eur),
        is_manual=True,
    )
    db.add(line)
    await db.flush()
    await procedures.recompute_invoice_totals(db, invoice)
    await _commit(db)
    return InvoiceLineResponse.model_validate(line)


async def delete_line(db: AsyncSession, line_id: int) -> None:
    line = await db.get(InvoiceLine, line_id)
    if line is None or not line.is_manual:
        raise ServiceError("NOT_FOUND", status.HTTP_404_NOT_FOUND)
    invoice = await _get_invoice(db, line.invoice_id)
    if invoice.locked_at is not None:
        raise ServiceError("INVOICE_LOCKED", status.HTTP_409_CONFLICT)
    await db.delete(line)
    await db.flush()
    await procedures.recompute_invoice_totals(db, invoice)
    await _commit(db)


async def set_lock(db: AsyncSession, payload: InvoiceLockRequest) -> InvoiceResponse:
    invoice = await _get_invoice(db, payload.invoice_id)
    if not payload.locked and await procedures.is_month_closed(db, invoice.month_date):
        raise ServiceError("MONTH_CLOSED", status.HTTP_409_CONFLICT)
    invoice.locked_at = (invoice.locked_at or utcnow()) if payload.locked else None
    await _commit(db)
    return _to_response(invoice)


async def recalc(db: AsyncSession, invoice_id: UUID) -> InvoiceResponse:
    invoice = await _get_invoice(db, invoice_id)
    await procedures.recalc_invoice(db, invoice)
    await _commit(db)
    return _to_response(invoice)


async def update_notes(db: AsyncSession, payload: InvoiceNotesUpdate) -> InvoiceResponse:
    invoice = await _get_invoice(db, payload.invoice_id)
    invoice.admin_note = (payload.admin_note or "").strip() or None
    await _commit(db)
    return _to_response(invoice)


async def panel_me(db: AsyncSession, worker: CurrentWorker, storage: LocalStorage) -> dict:
    """Current-month invoice plus the month's penalties and bonuses for the caller."""
    month = current_month()
    result = await db.execute(
        select(Invoice).where(Invoice.worker_id == worker.id, Invoice.month_date == month)
    )
    invoice = result.scalar_one_or_none()

    penalty = (
        await db.execute(
            select(func.coalesce(func.sum(ShiftIncident.penalty_eur), 0)).where(
                ShiftIncident.worker_id == worker.id,
                ShiftIncident.month_date == month,
                ShiftIncident.status == INCIDENT_STATUS_UNJUSTIFIED,
            )
        )
    ).scalar_one()
    if invoice is not None:
        bonus = (
            await db.execute(
                select(func.coalesce(func.sum(InvoiceLine.amount_eur), 0)).where(
                    InvoiceLine.invoice_id == invoice.id, InvoiceLine.kind == LINE_KIND_BONUS
                )
            )
        ).scalar_one()
    else:
        bonus = (
            await db.execute(
                select(func.coalesce(func.sum(MonthlyBonusResult.amount_eur), 0)).where(
                    MonthlyBonusResult.worker_id == worker.id, MonthlyBonusResult.month_date == month
                )
            )
        ).scalar_one()
    return {
        "month_date": month,
        "worker": {"id": worker.id, "display_name": worker.display_name, "role": worker.role},
        "invoice": _to_response(invoice, worker.display_name, storage) if invoice else None,
        "penalty_month_eur": procedures.money(penalty),
        "bonuses_month_eur": procedures.money(bonus),
    }
