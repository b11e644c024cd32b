"""Per-worker monthly snapshots produced by the monthly procedures."""

from sqlalchemy import JSON, Boolean, Column, Date, DateTime, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from tarot_panel.core.timeutils import utcnow
from tarot_panel.db.session import Base


class MonthlyRanking(Base):
    __tablename__ = "monthly_rankings"
    __table_args__ = (
        UniqueConstraint("month_date", "worker_id", name="uq_monthly_ranking_month_worker"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    month_date = Column(Date, nullable=False, index=True)
    worker_id = Column(UUID(as_uuid=True), ForeignKey("workers.id", ondelete="CASCADE"), nullable=False)
    calls_total = Column(Integer, nullable=False, default=0)
    minutes_total = Column(Integer, nullable=False, default=0)
    captadas_total = Column(Integer, nullable=False, default=0)
    free_minutes = Column(Integer, nullable=False, default=0)
    rueda_minutes = Column(Integer, nullable=False, default=0)
    cliente_minutes = Column(Integer, nullable=False, default=0)
    repite_minutes = Column(Integer, nullable=False, default=0)
    cliente_pct = Column(Numeric(6, 2), nullable=False, default=0)
    repite_pct = Column(Numeric(6, 2), nullable=False, default=0)
    computed_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    worker = relationship("Worker")


class MonthlyEarning(Base):
    __tablename__ = "monthly_earnings"
    __table_args__ = (
        UniqueConstraint("month_date", "worker_id", name="uq_monthly_earning_month_worker"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    month_date = Column(Date, nullable=False, index=True)
    worker_id = Column(UUID(as_uuid=True), ForeignKey("workers.id", ondelete="CASCADE"), nullable=False)
    minutes_total = Column(Integer, nullable=False, default=0)
    base_eur = Column(Numeric(10, 2), nullable=False, default=0)
    bonus_eur = Column(Numeric(10, 2), nullable=False, default=0)
    penalty_eur = Column(Numeric(10, 2), nullable=False, default=0)
    total_eur = Column(Numeric(10, 2), nullable=False, default=0)
    bonus_capped = Column(Boolean, nullable=False, default=False)
    computed_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    worker = relationship("Worker")


class BonusRule(Base):
    __tablename__ = "bonus_rules"
    __table_args__ = (
        UniqueConstraint("ranking_type", "position", "role", name="uq_bonus_rule_type_position_role"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    ranking_type = Column(String(30), nullable=False)
    position = Column(Integer, nullable=False)
    role = Column(String(20), nullable=False)
    amount_eur = Column(Numeric(10, 2), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class MonthlyBonusResult(Base):
    __tablename__ = "monthly_bonus_results"

    id = Column(Integer, primary_key=True, autoincrement=True)
    month_date = Column(Date, nullable=False, index=True)
    worker_id = Column(UUID(as_uuid=True), ForeignKey("workers.id", ondelete="CASCADE"), nullable=False, index=True)
    ranking_type = Column(String(30), nullable=False)
    position = Column(Integer, nullable=False)
    value = Column(Numeric(12, 2), nullable=False, default=0)
    amount_eur = Column(Numeric(10, 2), nullable=False)
    # Set when the bonus cap reduced this award
    original_amount_eur = Column(Numeric(10, 2), nullable=True)
    capped = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    worker = relationship("Worker")


class PeriodClosure(Base):
    __tablename__ = "period_closures"

    month_date = Column(Date, primary_key=True)
    is_closed = Column(Boolean, nullable=False, default=False)
    closed_at = Column(DateTime(timezone=True), nullable=True)
    closed_by = Column(UUID(as_uuid=True), ForeignKey("workers.id", ondelete="SET NULL"), nullable=True)
    # manual | cron
    source = Column(String(20), nullable=True)
    note = Column(Text, nullable=True)


class CronLog(Base):
    __tablename__ = "cron_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    job = Column(String(50), nullable=False, index=True)
    ok = Column(Boolean, nullable=False, default=True)
    details = Column(JSON, nullable=True)
    started_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    finished_at = Column(DateTime(timezone=True), nullable=True)
