import os
from typing import AsyncGenerator, Dict, Optional

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from tarot_panel.auth.models import User
from tarot_panel.auth.security import create_access_token, hash_password
from tarot_panel.core.config import settings
from tarot_panel.core.models import Worker
from tarot_panel.db.session import Base, get_db
from tarot_panel.main import app


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
DEFAULT_PASSWORD = "Secret123"


@pytest.fixture()
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Fresh in-memory database per test; the app uses the same session."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async_session = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session() as session:

        async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
            yield session

        app.dependency_overrides[get_db] = override_get_db
        yield session

    app.dependency_overrides.pop(get_db, None)
    await engine.dispose()


@pytest.fixture(autouse=True)
def storage_dir(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "storage_dir", str(tmp_path / "storage"))
    return tmp_path / "storage"


@pytest.fixture()
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the FastAPI app."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


async def create_worker(
    db: AsyncSession,
    *,
    role: str,
    display_name: str,
    email: Optional[str] = None,
    external_ref: Optional[str] = None,
    is_active: bool = True,
    password: str = DEFAULT_PASSWORD,
) -> Worker:
    email = email or f"{display_name.lower().replace(' ', '.')}@example.com"
    user = User(email=email, password_hash=hash_password(password))
    db.add(user)
    await db.flush()
    worker = Worker(
        user_id=user.id,
        role=role,
        display_name=display_name,
        email=email,
        external_ref=external_ref,
        is_active=is_active,
    )
    db.add(worker)
    await db.commit()
    return worker


def auth_headers(worker: Worker) -> Dict[str, str]:
    token = create_access_token(subject={"sub": str(worker.user_id)})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
async def admin(db_session: AsyncSession) -> Worker:
    return await create_worker(db_session, role="admin", display_name="Admin")


@pytest.fixture()
async def central(db_session: AsyncSession) -> Worker:
    return await create_worker(db_session, role="central", display_name="Central Uno")


@pytest.fixture()
async def tarotista(db_session: AsyncSession) -> Worker:
    return await create_worker(db_session, role="tarotista", display_name="María José", email="mariajose@example.com", external_ref="MJ01")
