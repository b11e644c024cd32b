"""Attendance rows ingested from the call sheet, plus the manual name mapping table."""

from sqlalchemy import JSON, Boolean, Column, Date, DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from tarot_panel.core.timeutils import utcnow
from tarot_panel.db.session import Base


CODIGO_FREE = "free"
CODIGO_RUEDA = "rueda"
CODIGO_CLIENTE = "cliente"
CODIGO_REPITE = "repite"
CALL_CODES = (CODIGO_FREE, CODIGO_RUEDA, CODIGO_CLIENTE, CODIGO_REPITE)


class AttendanceRow(Base):
    __tablename__ = "attendance_rows"

    id = Column(Integer, primary_key=True, autoincrement=True)
    worker_id = Column(UUID(as_uuid=True), ForeignKey("workers.id", ondelete="CASCADE"), nullable=False, index=True)
    call_date = Column(Date, nullable=False)
    month_date = Column(Date, nullable=False, index=True)
    minutes = Column(Integer, nullable=False, default=0)
    codigo = Column(String(20), nullable=False)
    captado = Column(Boolean, nullable=False, default=False)
    telefonista = Column(String(255), nullable=True)
    importe_eur = Column(Numeric(10, 2), nullable=False, default=0)
    raw = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    worker = relationship("Worker")


class CallMapping(Base):
    """Manual override: sheet name -> worker. First tier of name resolution."""

    __tablename__ = "call_mappings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    csv_tarotista = Column(String(255), nullable=False, unique=True)
    worker_id = Column(UUID(as_uuid=True), ForeignKey("workers.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    worker = relationship("Worker")
