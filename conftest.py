"""
Pytest configuration and shared fixtures.

Every test that touches storage gets its own SQLite file, so tests never
share contacts and ids always start at 1.
"""

import os
from datetime import datetime, timedelta
from typing import Optional

# Set test environment variables before importing the app
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./identity_test.db")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event, select

from database import DatabaseManager
from main import app, get_identity_service
from models import Contact, LinkPrecedence
from services.identity_service import IdentityService

BASE_TIME = datetime(2024, 1, 1, 12, 0, 0)


@pytest_asyncio.fixture
async def db(tmp_path):
    """Fresh database with the schema created"""
    manager = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path / 'contacts.db'}")
    await manager.create_tables()
    yield manager
    await manager.dispose()


@pytest.fixture
def service(db) -> IdentityService:
    return IdentityService(db)


@pytest_asyncio.fixture
async def client(service):
    """HTTP client bound to the app, backed by the per-test database"""
    app.dependency_overrides[get_identity_service] = lambda: service
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
        yield http
    app.dependency_overrides.clear()


@pytest.fixture
def seed(db):
    """
    Insert a contact directly, bypassing reconciliation.
    `minutes` positions created_at relative to BASE_TIME.
    """
    async def _seed(
        email: Optional[str] = None,
        phone: Optional[str] = None,
        linked_to: Optional[Contact] = None,
        minutes: int = 0,
        deleted: bool = False
    ) -> Contact:
        created_at = BASE_TIME + timedelta(minutes=minutes)
        contact = Contact(
            email=email,
            phone_number=phone,
            linked_id=linked_to.id if linked_to is not None else None,
            link_precedence=(
                LinkPrecedence.SECONDARY.value if linked_to is not None else LinkPrecedence.PRIMARY.value
            ),
            created_at=created_at,
            updated_at=created_at,
            deleted_at=created_at if deleted else None
        )
        async with db.transaction() as session:
            session.add(contact)
            await session.flush()
        return contact

    return _seed


@pytest.fixture
def all_contacts(db):
    """Read every stored contact (excluded ones included), ordered by id"""
    async def _all():
        async with db.transaction() as session:
            result = await session.execute(select(Contact).order_by(Contact.id))
            return list(result.scalars().all())

    return _all


@pytest.fixture
def update_counter(db):
    """Counts UPDATE statements sent to the database"""
    counter = {"updates": 0}

    def _count(conn, cursor, statement, parameters, context, executemany):
        if statement.lstrip().upper().startswith("UPDATE"):
            counter["updates"] += 1

    event.listen(db.engine.sync_engine, "before_cursor_execute", _count)
    yield counter
    event.remove(db.engine.sync_engine, "before_cursor_execute", _count)
