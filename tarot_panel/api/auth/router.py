from fastapi import APIRouter, Depends, HTTPException
from fastapi import status as http_status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tarot_panel.auth.dependencies import get_current_user
from tarot_panel.auth.schemas import CurrentUser, LoginRequest, LoginResponse, RefreshRequest, WorkerInfo
from tarot_panel.auth.services import login_user, refresh_session
from tarot_panel.core.exceptions import ServiceError
from tarot_panel.core.models import Worker
from tarot_panel.core.models.worker import ROLE_ADMIN
from tarot_panel.db.session import get_db

router = APIRouter(prefix="/api", tags=["auth"])


@router.post(
    "/auth/login",
    response_model=LoginResponse,
    status_code=http_status.HTTP_200_OK,
)
async def login(
    payload: LoginRequest,
    db: AsyncSession = Depends(get_db),
) -> LoginResponse:
    try:
        return await login_user(db, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/auth/token")
async def login_oauth(
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: AsyncSession = Depends(get_db),
):
    """OAuth2 password flow for the interactive docs."""
    try:
        payload = LoginRequest(email=form_data.username.strip(), password=form_data.password)
    except ValueError:
        raise HTTPException(status_code=http_status.HTTP_401_UNAUTHORIZED, detail="INVALID_CREDENTIALS")
    try:
        result = await login_user(db, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {
        "access_token": result.access_token,
        "token_type": "bearer",
    }


@router.post("/auth/refresh", response_model=LoginResponse)
async def refresh(
    payload: RefreshRequest,
    db: AsyncSession = Depends(get_db),
) -> LoginResponse:
    try:
        return await refresh_session(db, payload.refresh_token)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/me")
async def me(
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    """Identity of the caller; ``worker`` is null for logins without a worker profile."""
    result = await db.execute(select(Worker).where(Worker.user_id == current_user.id))
    worker = result.scalar_one_or_none()
    info = WorkerInfo.model_validate(worker) if worker else None
    is_admin = bool(worker and worker.is_active and worker.role == ROLE_ADMIN)
    return {
        "ok": True,
        "isAdmin": is_admin,
        "worker": info,
        "user": {"id": current_user.id, "email": current_user.email, "isAdmin": is_admin, "worker": info},
    }
