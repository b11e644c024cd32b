import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from tarot_panel.core.timeutils import utcnow
from tarot_panel.db.session import Base


ROLE_ADMIN = "admin"
ROLE_CENTRAL = "central"
ROLE_TAROTISTA = "tarotista"
WORKER_ROLES = (ROLE_ADMIN, ROLE_CENTRAL, ROLE_TAROTISTA)


class Worker(Base):
    """Links a login user to a role, a display name and the CSV external reference."""

    __tablename__ = "workers"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, unique=True)
    role = Column(String(20), nullable=False, index=True)
    display_name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    # Name as it appears in the attendance sheet's TAROTISTA column
    external_ref = Column(String(255), nullable=True, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    user = relationship("User", back_populates="worker")
