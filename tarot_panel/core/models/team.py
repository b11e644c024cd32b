import uuid

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from tarot_panel.core.timeutils import utcnow
from tarot_panel.db.session import Base


class Team(Base):
    """A group of tarotistas supervised by one central."""

    __tablename__ = "teams"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(120), nullable=False, unique=True)
    central_worker_id = Column(UUID(as_uuid=True), ForeignKey("workers.id", ondelete="SET NULL"), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    central = relationship("Worker", foreign_keys=[central_worker_id])
    members = relationship("TeamMember", back_populates="team", cascade="all, delete-orphan")


class TeamMember(Base):
    __tablename__ = "team_members"
    __table_args__ = (
        UniqueConstraint("tarotista_worker_id", name="uq_team_member_tarotista"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    team_id = Column(UUID(as_uuid=True), ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True)
    tarotista_worker_id = Column(UUID(as_uuid=True), ForeignKey("workers.id", ondelete="CASCADE"), nullable=False)

    team = relationship("Team", back_populates="members")
    tarotista = relationship("Worker")


class TeamMonthlyResult(Base):
    __tablename__ = "team_monthly_results"
    __table_args__ = (
        UniqueConstraint("month_date", "team_id", name="uq_team_result_month_team"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    month_date = Column(Date, nullable=False, index=True)
    team_id = Column(UUID(as_uuid=True), ForeignKey("teams.id", ondelete="CASCADE"), nullable=False)
    total_minutes = Column(Integer, nullable=False, default=0)
    total_captadas = Column(Integer, nullable=False, default=0)
    cliente_pct = Column(Numeric(6, 2), nullable=False, default=0)
    repite_pct = Column(Numeric(6, 2), nullable=False, default=0)
    team_score = Column(Numeric(7, 2), nullable=False, default=0)
    position = Column(Integer, nullable=False, default=0)
    is_winner = Column(Boolean, nullable=False, default=False)

    team = relationship("Team")
