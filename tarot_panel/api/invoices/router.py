"""Invoice endpoints for workers (view, download, respond) and admins (upload, adjust, lock)."""

from typing import Optional
from urllib.parse import quote
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Response, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from tarot_panel.auth.dependencies import get_current_worker
from tarot_panel.auth.rbac import require_admin
from tarot_panel.auth.schemas import CurrentWorker
from tarot_panel.core.exceptions import ServiceError
from tarot_panel.core.months import parse_month, parse_month_date
from tarot_panel.core.storage import LocalStorage, get_storage
from tarot_panel.db.session import get_db

from . import service
from .schemas import InvoiceLineCreate, InvoiceLockRequest, InvoiceNotesUpdate, InvoiceRef, InvoiceRespondRequest

router = APIRouter(prefix="/api", tags=["invoices"])


def _invoice_id(invoice_id: Optional[UUID], invoice_id_camel: Optional[UUID]) -> UUID:
    value = invoice_id or invoice_id_camel
    if value is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="MISSING_INVOICE_ID")
    return value


@router.get("/invoices/my")
async def my_invoices(
    db: AsyncSession = Depends(get_db),
    worker: CurrentWorker = Depends(get_current_worker),
    storage: LocalStorage = Depends(get_storage),
) -> dict:
    return {"ok": True, "items": await service.list_my_invoices(db, worker, storage)}


@router.get("/invoices/lines")
async def invoice_lines(
    invoice_id: Optional[UUID] = Query(None),
    invoice_id_camel: Optional[UUID] = Query(None, alias="invoiceId"),
    db: AsyncSession = Depends(get_db),
    worker: CurrentWorker = Depends(get_current_worker),
) -> dict:
    try:
        invoice = await service.get_visible_invoice(db, _invoice_id(invoice_id, invoice_id_camel), worker)
        lines = await service.list_lines(db, invoice)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {"ok": True, "invoice_id": invoice.id, "lines": lines}


@router.get("/invoices/pdf")
async def invoice_pdf(
    invoice_id: Optional[UUID] = Query(None),
    invoice_id_camel: Optional[UUID] = Query(None, alias="invoiceId"),
    db: AsyncSession = Depends(get_db),
    worker: CurrentWorker = Depends(get_current_worker),
) -> Response:
    """Render the invoice statement as an inline PDF."""
    try:
        invoice = await service.get_visible_invoice(db, _invoice_id(invoice_id, invoice_id_camel), worker)
        content, filename = await service.build_pdf(db, invoice)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return Response(
        content=content,
        media_type="application/pdf",
        headers={
            "Content-Disposition": f"inline; filename=\"{filename}\"; filename*=UTF-8''{quote(filename)}",
            "Cache-Control": "no-store",
        },
    )


@router.post("/invoices/respond")
async def respond_invoice(
    payload: InvoiceRespondRequest,
    db: AsyncSession = Depends(get_db),
    worker: CurrentWorker = Depends(get_current_worker),
) -> dict:
    try:
        item = await service.respond(db, worker, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {"ok": True, "item": item}


@router.get("/panel/me")
async def panel_me(
    db: AsyncSession = Depends(get_db),
    worker: CurrentWorker = Depends(get_current_worker),
    storage: LocalStorage = Depends(get_storage),
) -> dict:
    return {"ok": True, **await service.panel_me(db, worker, storage)}


@router.get("/admin/invoices/list", dependencies=[Depends(require_admin)])
async def admin_list_invoices(
    month_date: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    storage: LocalStorage = Depends(get_storage),
) -> dict:
    try:
        month = parse_month(month_date)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {"ok": True, "month_date": month, "items": await service.admin_list(db, month, storage)}


@router.post("/admin/upload-invoice", dependencies=[Depends(require_admin)])
async def upload_invoice(
    worker_id: UUID = Form(...),
    month_date: str = Form(...),
    file: UploadFile = File(...),
    db: AsyncSession = Depends(get_db),
    storage: LocalStorage = Depends(get_storage),
) -> dict:
    """Attach a PDF to the worker's invoice for ``month_date`` (YYYY-MM-01)."""
    content = await file.read()
    try:
        month = parse_month_date(month_date)
        item = await service.upload_invoice(db, storage, worker_id=worker_id, month=month, content=content)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {"ok": True, "item": item, "path": item.file_path}


@router.get("/admin/invoices/lines", dependencies=[Depends(require_admin)])
async def admin_invoice_lines(
    invoice_id: Optional[UUID] = Query(None),
    invoice_id_camel: Optional[UUID] = Query(None, alias="invoiceId"),
    db: AsyncSession = Depends(get_db),
    worker: CurrentWorker = Depends(get_current_worker),
) -> dict:
    try:
        invoice = await service.get_visible_invoice(db, _invoice_id(invoice_id, invoice_id_camel), worker)
        lines = await service.list_lines(db, invoice)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {"ok": True, "invoice_id": invoice.id, "lines": lines}


@router.post("/admin/invoices/add-line", dependencies=[Depends(require_admin)], status_code=status.HTTP_201_CREATED)
async def add_invoice_line(payload: InvoiceLineCreate, db: AsyncSession = Depends(get_db)) -> dict:
    """Add a manual adjustment line; totals are recomputed."""
    try:
        line = await service.add_line(db, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {"ok": True, "line": line}


@router.delete("/admin/invoices/lines/{line_id}", dependencies=[Depends(require_admin)])
async def delete_invoice_line(line_id: int, db: AsyncSession = Depends(get_db)) -> dict:
    try:
        await service.delete_line(db, line_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {"ok": True}


@router.post("/admin/invoices/lock", dependencies=[Depends(require_admin)])
async def lock_invoice(payload: InvoiceLockRequest, db: AsyncSession = Depends(get_db)) -> dict:
    try:
        item = await service.set_lock(db, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {"ok": True, "item": item}


@router.post("/admin/invoices/recalc", dependencies=[Depends(require_admin)])
async def recalc_invoice(payload: InvoiceRef, db: AsyncSession = Depends(get_db)) -> dict:
    try:
        item = await service.recalc(db, payload.invoice_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {"ok": True, "item": item}


@router.post("/admin/invoices/notes", dependencies=[Depends(require_admin)])
async def update_invoice_notes(payload: InvoiceNotesUpdate, db: AsyncSession = Depends(get_db)) -> dict:
    try:
        item = await service.update_notes(db, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {"ok": True, "item": item}
