"""
Shared fixtures: a throwaway SQLite store per test, the auth service on
top of it, and an HTTP client bound to a fully started app.
"""

import os

os.environ.setdefault("JWT_SECRET", "bookswap-test-secret")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from auth.jwt import TokenIssuer
from auth.service import AuthService
from config.settings import Settings
from database.session import create_executor, init_schema

TEST_SECRET = "bookswap-test-secret"
STRONG_PASSWORD = "Str0ng!Pass"


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'bookswap.db'}",
        db_auto_create_schema=True,
        db_query_timeout=5.0,
        jwt_secret=TEST_SECRET,
        bcrypt_rounds=4,
    )


@pytest_asyncio.fixture
async def executor(settings):
    executor = create_executor(settings)
    await init_schema(executor.engine)
    yield executor
    await executor.dispose()


@pytest.fixture
def tokens(settings):
    return TokenIssuer(settings.jwt_secret, expiry_seconds=settings.jwt_expiry_seconds)


@pytest.fixture
def auth_service(executor, tokens):
    return AuthService(executor, tokens, bcrypt_rounds=4)


@pytest_asyncio.fixture
async def app(settings):
    from main import create_app

    application = create_app(settings)
    async with application.router.lifespan_context(application):
        yield application


@pytest_asyncio.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
        yield http
