from datetime import date, datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator


class PresenceStateRequest(BaseModel):
    # Validated in the service so unknown values map to BAD_STATE
    state: Optional[str] = None


class ShiftUpsert(BaseModel):
    worker_id: UUID
    shift_date: date
    starts_at: datetime
    ends_at: datetime

    @model_validator(mode="after")
    def check_range(self) -> "ShiftUpsert":
        if self.ends_at <= self.starts_at:
            raise ValueError("ends_at must be after starts_at")
        return self


class ShiftBulkUpsert(BaseModel):
    shifts: List[ShiftUpsert] = Field(..., min_length=1)


class ShiftResponse(BaseModel):
    id: UUID
    worker_id: UUID
    worker_name: Optional[str] = None
    shift_date: date
    starts_at: datetime
    ends_at: datetime

    class Config:
        from_attributes = True
