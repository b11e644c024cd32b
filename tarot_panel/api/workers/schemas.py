from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import AliasChoices, BaseModel, Field


class CreateWorkerRequest(BaseModel):
    # All optional so that missing values surface as MISSING_FIELDS
    email: Optional[str] = None
    password: Optional[str] = None
    role: Optional[str] = None
    display_name: Optional[str] = None
    external_ref: Optional[str] = None


class WorkerUpdateRequest(BaseModel):
    worker_id: UUID = Field(..., validation_alias=AliasChoices("worker_id", "workerId"))
    display_name: Optional[str] = Field(None, max_length=255)
    role: Optional[str] = None
    external_ref: Optional[str] = Field(None, max_length=255)
    is_active: Optional[bool] = None


class CredentialsUpdateRequest(BaseModel):
    worker_id: Optional[UUID] = Field(None, validation_alias=AliasChoices("worker_id", "workerId"))
    user_id: Optional[UUID] = Field(None, validation_alias=AliasChoices("user_id", "userId"))
    email: Optional[str] = None
    password: Optional[str] = None


class WorkerResponse(BaseModel):
    id: UUID
    user_id: UUID
    role: str
    display_name: str
    email: Optional[str] = None
    external_ref: Optional[str] = None
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True
