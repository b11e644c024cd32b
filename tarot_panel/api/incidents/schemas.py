from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class IncidentCreateByName(BaseModel):
    target_name: str = Field(..., min_length=1)
    kind: Optional[str] = None
    incident_date: Optional[str] = None
    minutes_late: Optional[int] = Field(None, ge=0)
    notes: Optional[str] = None


class CentralIncidentCreate(BaseModel):
    worker_id: UUID
    kind: str = Field(..., min_length=1)
    incident_date: Optional[date] = None
    minutes_late: Optional[int] = Field(None, ge=0)
    notes: Optional[str] = None


class AdminIncidentCreate(BaseModel):
    worker_id: Optional[UUID] = None
    incident_date: Optional[date] = None
    incident_type: Optional[str] = None
    notes: Optional[str] = None


class IncidentAction(BaseModel):
    incident_id: UUID
    action: str
    note: Optional[str] = Field(None, max_length=500)


class IncidentResolve(BaseModel):
    worker_id: UUID
    incident_date: date
    status: str
    kind: Optional[str] = None
    minutes_late: Optional[int] = Field(None, ge=0)
    note: Optional[str] = Field(None, max_length=500)


class IncidentResponse(BaseModel):
    id: UUID
    worker_id: UUID
    worker_name: Optional[str] = None
    worker_role: Optional[str] = None
    incident_date: date
    month_date: date
    kind: str
    incident_type: str
    status: str
    minutes_late: Optional[int] = None
    penalty_eur: Decimal
    notes: Optional[str] = None
    admin_note: Optional[str] = None
    created_by: Optional[UUID] = None
    resolved_by: Optional[UUID] = None
    resolved_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True
