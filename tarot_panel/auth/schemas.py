from typing import Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class RefreshRequest(BaseModel):
    refresh_token: str


class WorkerInfo(BaseModel):
    id: UUID
    role: str
    display_name: str
    email: Optional[str] = None
    external_ref: Optional[str] = None
    is_active: bool

    class Config:
        from_attributes = True


class UserInfo(BaseModel):
    id: UUID
    email: EmailStr


class LoginResponse(BaseModel):
    ok: bool = True
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    user: UserInfo
    worker: Optional[WorkerInfo] = None


class CurrentUser(BaseModel):
    """Authenticated login identity resolved from the access token."""

    id: UUID
    email: str


class CurrentWorker(BaseModel):
    """Authenticated, active worker profile of the caller."""

    id: UUID
    user_id: UUID
    email: Optional[str] = None
    role: str
    display_name: str
    is_active: bool

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"
