"""
Test fixtures for the Bank Cards API test suite.

This module provides shared fixtures used across all test files:

  - db_engine / db_session: Fresh in-memory SQLite database for each test
  - client: Async HTTP test client (anonymous until a test adds headers)
  - make_user / make_card: Factories that insert rows directly
  - auth_headers: Builds a Bearer header for a user
  - user / other_user / admin: Ready-made identities

Key design decisions:
  - In-memory SQLite (sqlite+aiosqlite://) with a StaticPool, so the test
    session and the sessions the app opens per request all see one database.
    Each test gets a completely fresh database.
  - We override FastAPI's get_db dependency to inject our test sessions,
    so the application code works exactly as it does in production.
  - Users are inserted directly: there is no signup endpoint, and admins are
    provisioned by an operator in production too.
"""

import os

# Settings are read at import time; these must exist before bankcards loads.
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("CARD_ENCRYPTION_KEY", "0123456789abcdef0123456789abcdef")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("LOG_JSON", "false")

from datetime import date
from decimal import Decimal

import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from bankcards.crypto import card_cipher
from bankcards.database import Base, get_db
from bankcards.main import app
from bankcards.models.card import Card, CardStatus
from bankcards.models.user import Role, User
from bankcards.security import hash_password, token_service


# In-memory SQLite for fast, isolated tests
TEST_DATABASE_URL = "sqlite+aiosqlite://"

DEFAULT_PASSWORD = "SecurePass123!"


@pytest_asyncio.fixture
async def db_engine():
    """Create a fresh async engine with all tables for each test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine):
    """Provide an async session bound to the test engine."""
    async_session = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with async_session() as session:
        yield session


@pytest_asyncio.fixture
async def client(db_engine):
    """
    Async HTTP test client with the test database injected.

    This overrides the get_db dependency so all requests hit the
    in-memory test database instead of the real one.
    """
    async_session = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async def override_get_db():
        async with async_session() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def make_user(db_session):
    """Insert a user straight into the database and return it."""

    async def _make_user(
        username: str,
        password: str = DEFAULT_PASSWORD,
        role: Role = Role.USER,
        enabled: bool = True,
    ) -> User:
        user = User(
            username=username,
            hashed_password=hash_password(password),
            role=role,
            enabled=enabled,
        )
        db_session.add(user)
        await db_session.commit()
        return user

    return _make_user


@pytest_asyncio.fixture
async def make_card(db_session):
    """
    Insert a card straight into the database and return it.

    Defaults to an ACTIVE card so transfer tests don't need an admin round
    trip; pass status=CardStatus.BLOCKED for the lifecycle default.
    """

    async def _make_card(
        owner: User,
        number: str = "4111111111111111",
        balance: str = "0.00",
        status: CardStatus = CardStatus.ACTIVE,
        expiration_date: date = date(2030, 12, 31),
    ) -> Card:
        card = Card(
            encrypted_number=card_cipher.encrypt(number),
            owner_id=owner.id,
            expiration_date=expiration_date,
            status=status,
            balance=Decimal(balance),
        )
        db_session.add(card)
        await db_session.commit()
        return card

    return _make_card


@pytest_asyncio.fixture
async def auth_headers():
    """Build an Authorization header carrying a fresh token for a user."""

    def _auth_headers(user: User) -> dict[str, str]:
        token = token_service.issue(subject=user.username, role=user.role.value)
        return {"Authorization": f"Bearer {token}"}

    return _auth_headers


@pytest_asyncio.fixture
async def user(make_user):
    return await make_user("alice")


@pytest_asyncio.fixture
async def other_user(make_user):
    return await make_user("bob")


@pytest_asyncio.fixture
async def admin(make_user):
    return await make_user("root", role=Role.ADMIN)
