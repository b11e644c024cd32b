import uuid

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from tarot_panel.core.timeutils import utcnow
from tarot_panel.db.session import Base


INVOICE_STATUS_PENDING = "pending"
INVOICE_STATUS_ACCEPTED = "accepted"
INVOICE_STATUS_REJECTED = "rejected"

LINE_KIND_BASE = "base"
LINE_KIND_BONUS = "bonus"
LINE_KIND_PENALTY = "penalty"
LINE_KIND_ADJUSTMENT = "adjustment"
LINE_KINDS = (LINE_KIND_BASE, LINE_KIND_BONUS, LINE_KIND_PENALTY, LINE_KIND_ADJUSTMENT)


class Invoice(Base):
    """Monthly statement for one worker; optionally backed by an uploaded PDF."""

    __tablename__ = "worker_invoices"
    __table_args__ = (
        UniqueConstraint("worker_id", "month_date", name="uq_invoice_worker_month"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    worker_id = Column(UUID(as_uuid=True), ForeignKey("workers.id", ondelete="CASCADE"), nullable=False, index=True)
    month_date = Column(Date, nullable=False, index=True)
    status = Column(String(20), nullable=False, default=INVOICE_STATUS_PENDING)
    base_salary_eur = Column(Numeric(10, 2), nullable=False, default=0)
    bonuses_eur = Column(Numeric(10, 2), nullable=False, default=0)
    penalties_eur = Column(Numeric(10, 2), nullable=False, default=0)
    total_eur = Column(Numeric(10, 2), nullable=False, default=0)
    worker_note = Column(Text, nullable=True)
    admin_note = Column(Text, nullable=True)
    response_note = Column(Text, nullable=True)
    responded_at = Column(DateTime(timezone=True), nullable=True)
    # Object path inside the "invoices" bucket
    file_path = Column(String(512), nullable=True)
    locked_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    worker = relationship("Worker")
    lines = relationship(
        "InvoiceLine",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceLine.id",
    )


class InvoiceLine(Base):
    __tablename__ = "worker_invoice_lines"

    id = Column(Integer, primary_key=True, autoincrement=True)
    invoice_id = Column(UUID(as_uuid=True), ForeignKey("worker_invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    kind = Column(String(20), nullable=False)
    label = Column(String(255), nullable=False)
    amount_eur = Column(Numeric(10, 2), nullable=False)
    # Manual lines survive recalculation
    is_manual = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    invoice = relationship("Invoice", back_populates="lines")
