import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import DEFAULT_PASSWORD, auth_headers, create_worker
from tarot_panel.auth.models import RefreshToken


@pytest.mark.asyncio
async def test_login_returns_tokens_and_worker(client: AsyncClient, tarotista) -> None:
    response = await client.post(
        "/api/auth/login",
        json={"email": "MariaJose@example.com", "password": DEFAULT_PASSWORD},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["ok"] is True
    assert data["token_type"] == "bearer"
    assert data["access_token"]
    assert data["refresh_token"]
    assert data["worker"]["role"] == "tarotista"
    assert data["user"]["email"] == "mariajose@example.com"


@pytest.mark.asyncio
async def test_login_wrong_password(client: AsyncClient, tarotista) -> None:
    response = await client.post(
        "/api/auth/login",
        json={"email": "mariajose@example.com", "password": "nope"},
    )
    assert response.status_code == 401
    assert response.json() == {"ok": False, "error": "INVALID_CREDENTIALS"}


@pytest.mark.asyncio
async def test_login_inactive_worker(client: AsyncClient, db_session: AsyncSession) -> None:
    await create_worker(db_session, role="tarotista", display_name="Baja", is_active=False)
    response = await client.post(
        "/api/auth/login",
        json={"email": "baja@example.com", "password": DEFAULT_PASSWORD},
    )
    assert response.status_code == 403
    assert response.json()["error"] == "INACTIVE"


@pytest.mark.asyncio
async def test_refresh_rotates_token(client: AsyncClient, db_session: AsyncSession, tarotista) -> None:
    login = await client.post(
        "/api/auth/login",
        json={"email": "mariajose@example.com", "password": DEFAULT_PASSWORD},
    )
    old_refresh = login.json()["refresh_token"]

    response = await client.post("/api/auth/refresh", json={"refresh_token": old_refresh})
    assert response.status_code == 200
    new_refresh = response.json()["refresh_token"]
    assert new_refresh != old_refresh

    tokens = (await db_session.execute(select(RefreshToken.token))).scalars().all()
    assert old_refresh not in tokens
    assert new_refresh in tokens

    again = await client.post("/api/auth/refresh", json={"refresh_token": old_refresh})
    assert again.status_code == 401
    assert again.json()["error"] == "BAD_REFRESH_TOKEN"


@pytest.mark.asyncio
async def test_token_endpoint_for_oauth_form(client: AsyncClient, admin) -> None:
    response = await client.post(
        "/api/auth/token",
        data={"username": "admin@example.com", "password": DEFAULT_PASSWORD},
    )
    assert response.status_code == 200
    assert response.json()["token_type"] == "bearer"


@pytest.mark.asyncio
async def test_me_reports_admin_flag(client: AsyncClient, admin, tarotista) -> None:
    response = await client.get("/api/me", headers=auth_headers(admin))
    assert response.status_code == 200
    data = response.json()
    assert data["isAdmin"] is True
    assert data["user"]["isAdmin"] is True
    assert data["worker"]["display_name"] == "Admin"

    response = await client.get("/api/me", headers=auth_headers(tarotista))
    assert response.json()["isAdmin"] is False


@pytest.mark.asyncio
async def test_missing_and_bad_tokens(client: AsyncClient, db_session: AsyncSession) -> None:
    response = await client.get("/api/me")
    assert response.status_code == 401
    assert response.json() == {"ok": False, "error": "NO_TOKEN"}

    response = await client.get("/api/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401
    assert response.json()["error"] == "BAD_TOKEN"


@pytest.mark.asyncio
async def test_admin_routes_reject_other_roles(client: AsyncClient, tarotista, central) -> None:
    for worker in (tarotista, central):
        response = await client.get("/api/admin/workers", headers=auth_headers(worker))
        assert response.status_code == 403
        assert response.json()["error"] == "FORBIDDEN"


@pytest.mark.asyncio
async def test_staff_routes_allow_central(client: AsyncClient, central, tarotista) -> None:
    response = await client.get("/api/admin/presence/live", headers=auth_headers(central))
    assert response.status_code == 200

    response = await client.get("/api/admin/presence/live", headers=auth_headers(tarotista))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_validation_errors_use_bad_body(client: AsyncClient, db_session: AsyncSession) -> None:
    response = await client.post("/api/auth/login", json={"email": "not-an-email"})
    assert response.status_code == 400
    data = response.json()
    assert data["ok"] is False
    assert data["error"] == "BAD_BODY"
    assert data["details"]
