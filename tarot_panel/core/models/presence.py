"""Presence state machine storage: sessions, event log, and the materialized current row."""

import uuid

from sqlalchemy import Column, Date, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from tarot_panel.core.timeutils import utcnow
from tarot_panel.db.session import Base


STATE_ONLINE = "online"
STATE_PAUSE = "pause"
STATE_BATHROOM = "bathroom"
STATE_OFFLINE = "offline"

# Allowed transitions while a session is open
ALLOWED_TRANSITIONS = {
    STATE_ONLINE: {STATE_PAUSE, STATE_BATHROOM},
    STATE_PAUSE: {STATE_ONLINE},
    STATE_BATHROOM: {STATE_ONLINE},
}


class PresenceSession(Base):
    __tablename__ = "presence_sessions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    worker_id = Column(UUID(as_uuid=True), ForeignKey("workers.id", ondelete="CASCADE"), nullable=False, index=True)
    started_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    ended_at = Column(DateTime(timezone=True), nullable=True)


class PresenceEvent(Base):
    __tablename__ = "presence_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(UUID(as_uuid=True), ForeignKey("presence_sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    worker_id = Column(UUID(as_uuid=True), ForeignKey("workers.id", ondelete="CASCADE"), nullable=False, index=True)
    state = Column(String(20), nullable=False)
    at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class PresenceCurrent(Base):
    __tablename__ = "presence_current"

    worker_id = Column(UUID(as_uuid=True), ForeignKey("workers.id", ondelete="CASCADE"), primary_key=True)
    state = Column(String(20), nullable=False, default=STATE_OFFLINE)
    last_change_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    active_session_id = Column(UUID(as_uuid=True), ForeignKey("presence_sessions.id", ondelete="SET NULL"), nullable=True)

    worker = relationship("Worker")


class PlannedShift(Base):
    __tablename__ = "planned_shifts"
    __table_args__ = (
        UniqueConstraint("worker_id", "shift_date", name="uq_planned_shift_worker_date"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    worker_id = Column(UUID(as_uuid=True), ForeignKey("workers.id", ondelete="CASCADE"), nullable=False, index=True)
    shift_date = Column(Date, nullable=False, index=True)
    starts_at = Column(DateTime(timezone=True), nullable=False)
    ends_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    worker = relationship("Worker")
