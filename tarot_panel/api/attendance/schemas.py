from datetime import date, datetime
from typing import Optional
from uuid import UUID

from pydantic import AliasChoices, BaseModel, Field, field_validator


class SyncRequest(BaseModel):
    """Body for both sync endpoints. ``csv_text`` wins over ``csv_url``, which wins over the configured URL."""

    csv_text: Optional[str] = None
    csv_url: Optional[str] = Field(None, validation_alias=AliasChoices("csv_url", "csvUrl"))
    header_row_index: Optional[int] = Field(
        None, ge=0, validation_alias=AliasChoices("header_row_index", "headerRowIndex")
    )


class MonthSyncRequest(SyncRequest):
    month_date: Optional[date] = None
    recompute: bool = True

    @field_validator("month_date")
    @classmethod
    def first_of_month(cls, v: Optional[date]) -> Optional[date]:
        if v is not None and v.day != 1:
            raise ValueError("month_date must be YYYY-MM-01")
        return v


class CallMappingUpsert(BaseModel):
    csv_tarotista: str = Field(..., min_length=1, max_length=255)
    worker_id: UUID


class CallMappingResponse(BaseModel):
    id: int
    csv_tarotista: str
    worker_id: UUID
    worker_name: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True
