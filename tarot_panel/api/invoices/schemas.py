from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class InvoiceResponse(BaseModel):
    id: UUID
    worker_id: UUID
    worker_name: Optional[str] = None
    month_date: date
    status: str
    base_salary_eur: Decimal
    bonuses_eur: Decimal
    penalties_eur: Decimal
    total_eur: Decimal
    worker_note: Optional[str] = None
    admin_note: Optional[str] = None
    response_note: Optional[str] = None
    responded_at: Optional[datetime] = None
    file_path: Optional[str] = None
    file_url: Optional[str] = None
    locked_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class InvoiceLineResponse(BaseModel):
    id: int
    invoice_id: UUID
    kind: str
    label: str
    amount_eur: Decimal
    is_manual: bool
    created_at: datetime

    class Config:
        from_attributes = True


class InvoiceRespondRequest(BaseModel):
    invoice_id: UUID
    action: str
    # Longer notes are truncated, not rejected
    note: Optional[str] = None


class InvoiceLineCreate(BaseModel):
    invoice_id: UUID
    kind: str = "adjustment"
    label: str = Field(..., min_length=1, max_length=255)
    amount_eur: Decimal


class InvoiceLockRequest(BaseModel):
    invoice_id: UUID
    locked: bool = True


class InvoiceRef(BaseModel):
    invoice_id: UUID


class InvoiceNotesUpdate(BaseModel):
    invoice_id: UUID
    admin_note: Optional[str] = Field(None, max_length=2000)
