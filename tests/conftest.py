"""Pytest configuration and fixtures."""

import os

# Cheap hashes for tests; must be set before settings are first read
os.environ.setdefault("BCRYPT_ROUNDS", "4")

from collections.abc import AsyncGenerator
from decimal import Decimal

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from donation_ledger.core.database import Database
from donation_ledger.core.limiter import limiter
from donation_ledger.core.security import get_password_hash
from donation_ledger.main import app
from donation_ledger.models import Donation, PaymentMethod, User, UserRole
from donation_ledger.services.access import AccessScopeFilter, Actor, Identity
from donation_ledger.services.audit import AuditTrailStore
from donation_ledger.services.notifications import NotificationDispatcher
from donation_ledger.services.transactions import TransactionCoordinator

limiter.enabled = False


@pytest_asyncio.fixture(scope="function")
async def database(tmp_path) -> AsyncGenerator[Database, None]:
    """File-backed SQLite store so concurrent sessions see each other's commits."""
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    await db.create_all()
    yield db
    await db.close()


@pytest.fixture
def notifier() -> NotificationDispatcher:
    """Dispatcher without a webhook; every notification is skipped."""
    return NotificationDispatcher(None)


@pytest.fixture
def audit_store(database) -> AuditTrailStore:
    return AuditTrailStore(database)


@pytest.fixture
def coordinator(database, audit_store, notifier) -> TransactionCoordinator:
    return TransactionCoordinator(database, audit_store, notifier=notifier, timeout=10)


@pytest.fixture
def access() -> AccessScopeFilter:
    return AccessScopeFilter()


@pytest_asyncio.fixture(scope="function")
async def client(database, notifier) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client bound to the app with the test store injected."""
    app.state.database = database
    app.state.notifier = notifier

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


async def create_user(
    database: Database,
    email: str,
    password: str,
    role: UserRole,
    name: str,
    is_active: bool = True,
) -> User:
    user = User(
        email=email,
        name=name,
        phone="5550001111",
        role=role,
        is_active=is_active,
        hashed_password=get_password_hash(password),
    )
    async with database.transaction() as session:
        session.add(user)
        await session.flush()
    return user


async def create_donation(database: Database, operator_id: int, **fields) -> Donation:
    """Insert a donation row directly, bypassing the audit trail."""
    values = {
        "donor_name": "Test Donor",
        "donor_phone": "5551234567",
        "amount": Decimal("100.00"),
        "purpose": "General",
        "payment_method": PaymentMethod.CASH,
        "operator_id": operator_id,
    }
    values.update(fields)
    donation = Donation(**values)
    async with database.transaction() as session:
        session.add(donation)
        await session.flush()
    return donation


@pytest_asyncio.fixture(scope="function")
async def admin_user(database) -> User:
    """Create admin user for testing."""
    return await create_user(database, "admin@example.com", "admin123", UserRole.ADMIN, "Admin User")


@pytest_asyncio.fixture(scope="function")
async def operator_user(database) -> User:
    """Create operator user for testing."""
    return await create_user(
        database, "operator@example.com", "operator123", UserRole.OPERATOR, "Operator One"
    )


@pytest_asyncio.fixture(scope="function")
async def other_operator(database) -> User:
    """A second operator, used for cross-operator access checks."""
    return await create_user(
        database, "other@example.com", "other123", UserRole.OPERATOR, "Operator Two"
    )


@pytest.fixture
def admin_actor(admin_user) -> Actor:
    return Actor(identity=Identity.from_user(admin_user), ip_address="127.0.0.1")


@pytest.fixture
def operator_actor(operator_user) -> Actor:
    return Actor(identity=Identity.from_user(operator_user), ip_address="127.0.0.1")


@pytest.fixture
def other_actor(other_operator) -> Actor:
    return Actor(identity=Identity.from_user(other_operator), ip_address="127.0.0.1")


@pytest_asyncio.fixture(scope="function")
async def admin_token(client, admin_user) -> str:
    """Get admin authentication token."""
    response = await client.post(
        "/api/v1/auth/login",
        json={"email": "admin@example.com", "password": "admin123"},
    )
    return response.json()["access_token"]


@pytest_asyncio.fixture(scope="function")
async def operator_token(client, operator_user) -> str:
    """Get operator authentication token."""
    response = await client.post(
        "/api/v1/auth/login",
        json={"email": "operator@example.com", "password": "operator123"},
    )
    return response.json()["access_token"]


@pytest_asyncio.fixture(scope="function")
async def other_token(client, other_operator) -> str:
    response = await client.post(
        "/api/v1/auth/login",
        json={"email": "other@example.com", "password": "other123"},
    )
    return response.json()["access_token"]


def auth_headers(token: str) -> dict:
    """Create authorization headers."""
    return {"Authorization": f"Bearer {token}"}
