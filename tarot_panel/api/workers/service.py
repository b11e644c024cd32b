"""Worker administration: account creation, profile edits and credential changes."""

import logging
from typing import List, Optional

from email_validator import EmailNotValidError, validate_email
from fastapi import status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tarot_panel.auth.models import User
from tarot_panel.auth.security import hash_password
from tarot_panel.core.exceptions import ServiceError
from tarot_panel.core.models import Worker
from tarot_panel.core.models.worker import WORKER_ROLES

from .schemas import CreateWorkerRequest, CredentialsUpdateRequest, WorkerResponse, WorkerUpdateRequest

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6


def _normalize_email(value: str) -> str:
    try:
        return validate_email(value.strip(), check_deliverability=False).normalized.lower()
    except EmailNotValidError:
        raise ServiceError("BAD_EMAIL", status.HTTP_400_BAD_REQUEST)


def _normalize_role(value: Optional[str]) -> str:
    role = (value or "").strip().lower()
    if role not in WORKER_ROLES:
        raise ServiceError("BAD_ROLE", status.HTTP_400_BAD_REQUEST)
    return role


def _check_password(password: str) -> None:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ServiceError("WEAK_PASSWORD", status.HTTP_400_BAD_REQUEST)


async def _email_taken(db: AsyncSession, email: str, exclude_user_id=None) -> bool:
    stmt = select(User.id).where(User.email == email)
    if exclude_user_id is not None:
        stmt = stmt.where(User.id != exclude_user_id)
    return (await db.execute(stmt)).first() is not None


async def create_worker(db: AsyncSession, payload: CreateWorkerRequest) -> dict:
    """Create the login user and its worker profile in one transaction."""
    email = (payload.email or "").strip()
    password = payload.password or ""
    display_name = (payload.display_name or "").strip()
    if not email or not password or not payload.role or not display_name:
        raise ServiceError("MISSING_FIELDS", status.HTTP_400_BAD_REQUEST)

    email = _normalize_email(email)
    role = _normalize_role(payload.role)
    _check_password(password)
    if await _email_taken(db, email):
        raise ServiceError("EMAIL_TAKEN", status.HTTP_409_CONFLICT)

    user = User(email=email, password_hash=hash_password(password))
    db.add(user)
    try:
        await db.flush()
        worker = Worker(
            user_id=user.id,
            role=role,
            display_name=display_name,
            email=email,
            external_ref=(payload.external_ref or "").strip() or None,
            is_active=True,
        )
        db.add(worker)
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ServiceError("EMAIL_TAKEN", status.HTTP_409_CONFLICT)
    except SQLAlchemyError:
        await db.rollback()
        raise ServiceError("CREATE_USER_FAILED", status.HTTP_500_INTERNAL_SERVER_ERROR)

    logger.info("Created %s worker %s (%s)", role, display_name, email)
    return {"user_id": user.id, "worker_id": worker.id}


async def list_workers(db: AsyncSession, role: Optional[str], active: Optional[bool]) -> List[WorkerResponse]:
    stmt = select(Worker).order_by(Worker.display_name)
    if role:
        stmt = stmt.where(Worker.role == role.strip().lower())
    if active is not None:
        stmt = stmt.where(Worker.is_active.is_(active))
    return [WorkerResponse.model_validate(w) for w in (await db.execute(stmt)).scalars()]


async def update_worker(db: AsyncSession, payload: WorkerUpdateRequest) -> WorkerResponse:
    worker = await db.get(Worker, payload.worker_id)
    if worker is None:
        raise ServiceError("WORKER_NOT_FOUND", status.HTTP_404_NOT_FOUND)

    if payload.display_name is not None:
        name = payload.display_name.strip()
        if not name:
            raise ServiceError("MISSING_FIELDS", status.HTTP_400_BAD_REQUEST)
        worker.display_name = name
    if payload.role is not None:
        worker.role = _normalize_role(payload.role)
    if payload.external_ref is not None:
        worker.external_ref = payload.external_ref.strip() or None
    if payload.is_active is not None:
        worker.is_active = payload.is_active

    try:
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        raise ServiceError("UPDATE_FAILED", status.HTTP_500_INTERNAL_SERVER_ERROR)
    return WorkerResponse.model_validate(worker)


async def update_credentials(db: AsyncSession, payload: CredentialsUpdateRequest) -> dict:
    """Change a user's email and/or password. The worker's email copy follows the login email."""
    email = (payload.email or "").strip()
    password = payload.password or ""
    if not email and not password:
        raise ServiceError("NOTHING_TO_UPDATE", status.HTTP_400_BAD_REQUEST)

    worker: Optional[Worker] = None
    if payload.worker_id is not None:
        worker = await db.get(Worker, payload.worker_id)
        if worker is None:
            raise ServiceError("WORKER_NOT_FOUND", status.HTTP_404_NOT_FOUND)
        user = await db.get(User, worker.user_id)
    elif payload.user_id is not None:
        user = await db.get(User, payload.user_id)
        if user is not None:
            result = await db.execute(select(Worker).where(Worker.user_id == user.id))
            worker = result.scalar_one_or_none()
    else:
        raise ServiceError("MISSING_FIELDS", status.HTTP_400_BAD_REQUEST)
    if user is None:
        raise ServiceError("USER_NOT_FOUND", status.HTTP_404_NOT_FOUND)

    if email:
        email = _normalize_email(email)
        if await _email_taken(db, email, exclude_user_id=user.id):
            raise ServiceError("EMAIL_TAKEN", status.HTTP_409_CONFLICT)
        user.email = email
        if worker is not None:
            worker.email = email
    if password:
        _check_password(password)
        user.password_hash = hash_password(password)

    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ServiceError("EMAIL_TAKEN", status.HTTP_409_CONFLICT)
    logger.info("Updated credentials for user %s (email=%s, password=%s)", user.id, bool(email), bool(password))
    return {"user_id": user.id, "worker_id": worker.id if worker else None, "email": user.email}
