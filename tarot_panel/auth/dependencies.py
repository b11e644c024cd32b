from typing import Optional
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tarot_panel.auth.models import User
from tarot_panel.auth.schemas import CurrentUser, CurrentWorker
from tarot_panel.auth.security import decode_token
from tarot_panel.core.models import Worker
from tarot_panel.db.session import get_db


# auto_error=False so a missing header yields NO_TOKEN instead of the default message
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/token", auto_error=False)


def _unauthorized(code: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=code,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    token: Optional[str] = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> CurrentUser:
    """Resolve the authenticated user from the bearer access token."""
    if not token:
        raise _unauthorized("NO_TOKEN")

    try:
        payload = decode_token(token)
    except JWTError:
        raise _unauthorized("BAD_TOKEN")

    if payload.get("type") != "access" or not payload.get("sub"):
        raise _unauthorized("BAD_TOKEN")
    try:
        user_id = UUID(payload["sub"])
    except ValueError:
        raise _unauthorized("BAD_TOKEN")

    user = await db.get(User, user_id)
    if user is None:
        raise _unauthorized("NOT_AUTH")
    return CurrentUser(id=user.id, email=user.email)


async def get_current_worker(
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> CurrentWorker:
    """Resolve the caller's worker profile; it must exist and be active."""
    result = await db.execute(select(Worker).where(Worker.user_id == current_user.id))
    worker = result.scalar_one_or_none()
    if worker is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="NO_WORKER")
    if not worker.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="INACTIVE")
    return CurrentWorker(
        id=worker.id,
        user_id=worker.user_id,
        email=worker.email or current_user.email,
        role=worker.role,
        display_name=worker.display_name,
        is_active=worker.is_active,
    )
