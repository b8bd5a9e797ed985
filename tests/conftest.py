from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Dict

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from supply_ledger.api import create_app
from supply_ledger.config import Settings
from supply_ledger.management import init_database
from supply_ledger.models import User
from supply_ledger.security import AuthService
from supply_ledger.values import Role

ADMIN_PASSWORD = "admin-secret"
CLERK_PASSWORD = "clerk-secret"


@pytest.fixture()
def settings(tmp_path) -> Settings:
    db_path = tmp_path / "test.db"
    return Settings(
        database_url=f"sqlite+aiosqlite:///{db_path}",
        environment="test",
        app_name="Test Supply Ledger",
    )


@pytest.fixture()
async def app(settings: Settings) -> AsyncIterator[FastAPI]:
    app = create_app(settings)
    await init_database(app.state.engine)

    yield app

    await app.state.engine.dispose()


@pytest.fixture()
def session_factory(app: FastAPI) -> async_sessionmaker[AsyncSession]:
    return app.state.session_factory


@pytest.fixture()
def auth_service(app: FastAPI) -> AuthService:
    return app.state.auth_service


@pytest.fixture()
async def users(
    session_factory: async_sessionmaker[AsyncSession], auth_service: AuthService
) -> Dict[str, User]:
    async with session_factory() as session:
        admin = await auth_service.register(session, "admin", ADMIN_PASSWORD, Role.ADMIN)
        clerk = await auth_service.register(session, "clerk", CLERK_PASSWORD, Role.USER)
        await session.commit()
    return {"admin": admin, "clerk": clerk}


@pytest.fixture()
async def client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


async def _bearer(client: AsyncClient, username: str, password: str) -> Dict[str, str]:
    response = await client.post(
        "/api/auth/login", json={"username": username, "password": password}
    )
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['accessToken']}"}


@pytest.fixture()
async def admin_headers(client: AsyncClient, users: Dict[str, User]) -> Dict[str, str]:
    return await _bearer(client, "admin", ADMIN_PASSWORD)


@pytest.fixture()
async def clerk_headers(client: AsyncClient, users: Dict[str, User]) -> Dict[str, str]:
    return await _bearer(client, "clerk", CLERK_PASSWORD)
