import logging
from typing import Optional

from fastapi import status
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tarot_panel.auth.models import RefreshToken, User
from tarot_panel.auth.schemas import LoginRequest, LoginResponse, UserInfo, WorkerInfo
from tarot_panel.auth.security import create_access_token, create_refresh_token, verify_password
from tarot_panel.core.exceptions import ServiceError
from tarot_panel.core.models import Worker
from tarot_panel.core.timeutils import as_utc, utcnow

logger = logging.getLogger(__name__)


async def _get_worker_for_user(db: AsyncSession, user_id) -> Optional[Worker]:
    result = await db.execute(select(Worker).where(Worker.user_id == user_id))
    return result.scalar_one_or_none()


async def _issue_tokens(db: AsyncSession, user: User, worker: Optional[Worker]) -> LoginResponse:
    access_payload = {
        "sub": str(user.id),
        "email": user.email,
        "role": worker.role if worker else None,
        "iat": int(utcnow().timestamp()),
    }
    access_token = create_access_token(subject=access_payload)
    refresh_token_value, refresh_expires_at = create_refresh_token()
    db.add(RefreshToken(user_id=user.id, token=refresh_token_value, expires_at=refresh_expires_at))

    try:
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        raise ServiceError("LOGIN_FAILED", status.HTTP_500_INTERNAL_SERVER_ERROR)

    return LoginResponse(
        access_token=access_token,
        refresh_token=refresh_token_value,
        user=UserInfo(id=user.id, email=user.email),
        worker=WorkerInfo.model_validate(worker) if worker else None,
    )


async def login_user(db: AsyncSession, payload: LoginRequest) -> LoginResponse:
    """Authenticate by email/password and return an access + refresh token pair."""
    email = payload.email.strip().lower()
    result = await db.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()
    if not user or not verify_password(payload.password, user.password_hash):
        logger.warning("Failed login for %s", email)
        raise ServiceError("INVALID_CREDENTIALS", status.HTTP_401_UNAUTHORIZED)

    worker = await _get_worker_for_user(db, user.id)
    if worker is not None and not worker.is_active:
        raise ServiceError("INACTIVE", status.HTTP_403_FORBIDDEN)

    return await _issue_tokens(db, user, worker)


async def refresh_session(db: AsyncSession, refresh_token: str) -> LoginResponse:
    """Rotate a refresh token: the presented token is consumed and a new pair is issued."""
    result = await db.execute(select(RefreshToken).where(RefreshToken.token == refresh_token))
    stored = result.scalar_one_or_none()
    if not stored or as_utc(stored.expires_at) <= utcnow():
        raise ServiceError("BAD_REFRESH_TOKEN", status.HTTP_401_UNAUTHORIZED)

    user = await db.get(User, stored.user_id)
    if user is None:
        raise ServiceError("BAD_REFRESH_TOKEN", status.HTTP_401_UNAUTHORIZED)
    worker = await _get_worker_for_user(db, user.id)
    if worker is not None and not worker.is_active:
        raise ServiceError("INACTIVE", status.HTTP_403_FORBIDDEN)

    await db.delete(stored)
    return await _issue_tokens(db, user, worker)
