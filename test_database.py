"""Tests for the transaction scope and storage error classification."""

import asyncio

import pytest
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

import create_tables as bootstrap
from database import DatabaseManager
from errors import StorageUnavailableError, is_transient_storage_error
from models import Contact


class FakeDriverError(Exception):
    def __init__(self, message, sqlstate=None):
        super().__init__(message)
        self.sqlstate = sqlstate


class TestTransientErrorClassification:

    @pytest.mark.parametrize(
        "exc",
        [
            OperationalError("SELECT 1", {}, FakeDriverError("could not connect to server")),
            DBAPIError("UPDATE contacts", {}, FakeDriverError("could not serialize access", sqlstate="40001")),
            DBAPIError("UPDATE contacts", {}, FakeDriverError("deadlock detected", sqlstate="40P01")),
            DBAPIError("SELECT 1", {}, FakeDriverError("gone"), connection_invalidated=True),
            ConnectionRefusedError("refused"),
            asyncio.TimeoutError(),
        ],
    )
    def test_transient(self, exc):
        assert is_transient_storage_error(exc)

    @pytest.mark.parametrize(
        "exc",
        [
            IntegrityError("INSERT INTO contacts", {}, FakeDriverError("check constraint failed", sqlstate="23514")),
            ValueError("bad value"),
            RuntimeError("bug"),
        ],
    )
    def test_not_transient(self, exc):
        assert not is_transient_storage_error(exc)


@pytest.mark.asyncio
class TestTransaction:

    async def test_commits_on_success(self, db, all_contacts):
        async with db.transaction() as session:
            session.add(Contact(email="a@x.com", link_precedence="primary"))

        contacts = await all_contacts()
        assert [c.email for c in contacts] == ["a@x.com"]
        assert contacts[0].created_at is not None

    async def test_rolls_back_on_error(self, db, all_contacts):
        with pytest.raises(ValueError):
            async with db.transaction() as session:
                session.add(Contact(email="a@x.com", link_precedence="primary"))
                await session.flush()
                raise ValueError("abort")

        assert await all_contacts() == []

    async def test_driver_outage_becomes_storage_unavailable(self, db):
        outage = OperationalError("SELECT 1", {}, FakeDriverError("server closed the connection"))

        with pytest.raises(StorageUnavailableError) as exc_info:
            async with db.transaction():
                raise outage

        assert exc_info.value.__cause__ is outage
        assert exc_info.value.details == {"reason": "OperationalError"}

    async def test_constraint_violation_is_not_masked(self, db):
        with pytest.raises(IntegrityError):
            async with db.transaction() as session:
                session.add(Contact(link_precedence="primary"))

    async def test_connection_check(self, db):
        assert await db.test_connection() is True


@pytest.mark.asyncio
async def test_bootstrap_script_creates_schema(tmp_path, monkeypatch):
    manager = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path / 'bootstrap.db'}")
    monkeypatch.setattr(bootstrap, "db_manager", manager)

    assert await bootstrap.create_tables() is True

    async with manager.transaction() as session:
        session.add(Contact(email="a@x.com", link_precedence="primary"))
    await manager.dispose()
