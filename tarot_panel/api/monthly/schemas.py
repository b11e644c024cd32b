from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator

from tarot_panel.core.models.worker import WORKER_ROLES


class RecomputeRequest(BaseModel):
    month: Optional[str] = Field(None, validation_alias=AliasChoices("month", "month_date"))


class CloseMonthRequest(BaseModel):
    month_date: Optional[date] = None

    @field_validator("month_date")
    @classmethod
    def first_of_month(cls, value: Optional[date]) -> Optional[date]:
        if value is not None and value.day != 1:
            raise ValueError("month_date must be the first day of a month")
        return value


class BonusRuleUpsert(BaseModel):
    ranking_type: str = Field(..., min_length=1, max_length=30)
    position: int = Field(..., ge=1, le=10)
    role: str
    amount_eur: Decimal = Field(..., ge=0)
    is_active: bool = True

    @field_validator("role")
    @classmethod
    def known_role(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in WORKER_ROLES:
            raise ValueError("unknown role")
        return value


class BonusRuleResponse(BaseModel):
    id: int
    ranking_type: str
    position: int
    role: str
    amount_eur: Decimal
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True
