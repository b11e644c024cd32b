import uuid

from sqlalchemy import Column, Date, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from tarot_panel.core.timeutils import utcnow
from tarot_panel.db.session import Base


INCIDENT_STATUS_PENDING = "pending"
INCIDENT_STATUS_JUSTIFIED = "justified"
INCIDENT_STATUS_UNJUSTIFIED = "unjustified"
INCIDENT_STATUS_RESOLVED = "resolved"
INCIDENT_STATUS_CANCELLED = "cancelled"

INCIDENT_KIND_LATE = "late"
INCIDENT_KIND_ABSENCE = "absence"
INCIDENT_KIND_CALL = "call"
INCIDENT_KIND_OTHER = "other"
INCIDENT_KIND_MANUAL = "manual"
REPORTABLE_KINDS = (INCIDENT_KIND_LATE, INCIDENT_KIND_ABSENCE, INCIDENT_KIND_CALL, INCIDENT_KIND_OTHER)

INCIDENT_TYPE_SYSTEM = "system"
INCIDENT_TYPE_MANUAL = "manual"
ADMIN_INCIDENT_TYPES = ("leve", "moderada", "grave")


class ShiftIncident(Base):
    __tablename__ = "shift_incidents"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    worker_id = Column(UUID(as_uuid=True), ForeignKey("workers.id", ondelete="CASCADE"), nullable=False, index=True)
    incident_date = Column(Date, nullable=False)
    month_date = Column(Date, nullable=False, index=True)
    kind = Column(String(20), nullable=False)
    incident_type = Column(String(20), nullable=False, default=INCIDENT_TYPE_MANUAL)
    status = Column(String(20), nullable=False, default=INCIDENT_STATUS_PENDING, index=True)
    minutes_late = Column(Integer, nullable=True)
    penalty_eur = Column(Numeric(10, 2), nullable=False, default=0)
    notes = Column(Text, nullable=True)
    admin_note = Column(Text, nullable=True)
    # Null for incidents raised by the detection job
    created_by = Column(UUID(as_uuid=True), ForeignKey("workers.id", ondelete="SET NULL"), nullable=True)
    resolved_by = Column(UUID(as_uuid=True), ForeignKey("workers.id", ondelete="SET NULL"), nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    worker = relationship("Worker", foreign_keys=[worker_id])
