from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class TeamCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    central_worker_id: Optional[UUID] = None


class TeamMemberAdd(BaseModel):
    worker_id: UUID


class TeamMemberInfo(BaseModel):
    worker_id: UUID
    display_name: str


class TeamResponse(BaseModel):
    id: UUID
    name: str
    central_worker_id: Optional[UUID] = None
    central_name: Optional[str] = None
    is_active: bool
    members: List[TeamMemberInfo] = []
