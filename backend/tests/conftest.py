"""Pytest configuration and fixtures for EquipLoan tests.

Every test gets two throwaway SQLite files: one for the application
tables and one that the audit dispatcher writes to, so background audit
writes never contend with the request's own connection.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./equiploan-import.db")
os.environ.setdefault("DEBUG", "false")

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from equiploan.auth.jwt import create_access_token
from equiploan.auth.password import hash_password
from equiploan.cli import seed_permissions
from equiploan.config import settings
from equiploan.database import Base, get_db
from equiploan.main import app
from equiploan.models.audit_log import AuditLog
from equiploan.models.product import Product, ProductInstance
from equiploan.models.user import Permission, User, UserPermission, UserRole
from equiploan.utils.audit_dispatch import audit_dispatcher

# Hashing at production cost makes the suite crawl
settings.bcrypt_rounds = 4

DEFAULT_PASSWORD = "Password123!"


# ── Test Database Setup ──────────────────────────────────────────

async def _create_engine(path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{path}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return engine


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker, None]:
    engine = await _create_engine(tmp_path / "equiploan.db")
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as db:
        await seed_permissions(db)
        await db.commit()

    yield factory

    await engine.dispose()


@pytest_asyncio.fixture
async def audit_factory(tmp_path) -> AsyncGenerator[async_sessionmaker, None]:
    """Point the audit dispatcher at its own database for the test."""
    engine = await _create_engine(tmp_path / "audit.db")
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    original = audit_dispatcher.session_factory
    audit_dispatcher.session_factory = factory

    yield factory

    await audit_dispatcher.drain()
    audit_dispatcher.session_factory = original
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Session for arranging data; commit before calling the API."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def client(session_factory, audit_factory) -> AsyncGenerator[AsyncClient, None]:
    """Test client with the database dependency bound to the test database."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def audit_entries(audit_factory):
    """Callable returning every audit row written so far, oldest first."""

    async def _entries() -> list[AuditLog]:
        await audit_dispatcher.drain()
        async with audit_factory() as db:
            result = await db.execute(select(AuditLog).order_by(AuditLog.created_at))
            return list(result.scalars().all())

    return _entries


# ── Test Data Fixtures ───────────────────────────────────────────

def auth_headers_for(user: User) -> dict:
    token = create_access_token(user.id, user.role.value)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def make_user(db_session: AsyncSession):
    """Factory: persisted user holding the given permission names."""
    counter = {"n": 0}

    async def _make(
        *permissions: str,
        email: str | None = None,
        role: UserRole = UserRole.WORKER,
        password: str = DEFAULT_PASSWORD,
        is_active: bool = True,
        first_name: str = "Test",
        last_name: str = "User",
    ) -> User:
        counter["n"] += 1
        user = User(
            email=email or f"user{counter['n']}@example.com",
            hashed_password=hash_password(password),
            first_name=first_name,
            last_name=last_name,
            role=role,
            is_active=is_active,
        )
        db_session.add(user)
        await db_session.flush()
        if permissions:
            result = await db_session.execute(
                select(Permission).where(Permission.name.in_(permissions))
            )
            for permission in result.scalars().all():
                db_session.add(UserPermission(user_id=user.id, permission_id=permission.id))
        await db_session.commit()
        return user

    return _make


@pytest_asyncio.fixture
async def admin(make_user) -> User:
    return await make_user("system:admin", email="admin@example.com", role=UserRole.ADMIN)


@pytest.fixture
def admin_headers(admin: User) -> dict:
    return auth_headers_for(admin)


@pytest.fixture
def make_product(db_session: AsyncSession):
    async def _make(name: str = "Wheelchair", category: str = "Mobility", **fields) -> Product:
        product = Product(name=name, category=category, **fields)
        db_session.add(product)
        await db_session.commit()
        return product

    return _make


@pytest.fixture
def make_instance(db_session: AsyncSession, make_product):
    """Factory: persisted instance; creates a product when none is given."""
    counter = {"n": 0}

    async def _make(product: Product | None = None, **fields) -> ProductInstance:
        counter["n"] += 1
        product = product or await make_product()
        fields.setdefault("barcode", f"BC-{counter['n']:05d}")
        instance = ProductInstance(product_id=product.id, **fields)
        db_session.add(instance)
        await db_session.commit()
        return instance

    return _make


# ── Test Markers ─────────────────────────────────────────────────

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "auth: Authentication tests")
