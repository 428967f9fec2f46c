"""Pytest configuration and fixtures."""

import asyncio
from contextlib import asynccontextmanager, contextmanager
from contextvars import ContextVar
from datetime import datetime, timedelta
from typing import Iterable

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.core.identifier_locks import IdentifierLockRegistry
from app.domain.models.identity import ContactSnapshot, LinkPrecedence
from app.domain.services.contact_store import ContactStoreProtocol
from app.domain.services.identity_service import IdentityReconciliationService
from app.persistence.database import Base, get_db
from app.persistence.models import *  # noqa: F401, F403

BASE_TIME = datetime(2024, 1, 1, 12, 0, 0)

# Undo steps of the transaction open in the current task
_undo_log: ContextVar[list | None] = ContextVar("undo_log", default=None)


class InMemoryContactStore(ContactStoreProtocol):
    """Dict-backed contact store with the same semantics as ContactRepository.

    Each insert advances a fake clock by one second. A non-zero delay is
    awaited after every candidate lookup to widen race windows. A failed
    transaction undoes only its own writes, so a rollback never discards
    rows written by a concurrent transaction.
    """

    def __init__(self, delay: float = 0.0) -> None:
        self.rows: dict[int, dict] = {}
        self.delay = delay
        self.insert_count = 0
        self.fail_on_merge = False
        self._next_id = 1
        self._clock = BASE_TIME

    def seed(
        self,
        email: str | None = None,
        phone_number: str | None = None,
        link_precedence: LinkPrecedence = LinkPrecedence.PRIMARY,
        linked_id: int | None = None,
        created_at: datetime | None = None,
        deleted_at: datetime | None = None,
    ) -> ContactSnapshot:
        """Insert a row directly, bypassing the engine."""
        contact_id = self._next_id
        self._next_id += 1
        if created_at is None:
            self._clock += timedelta(seconds=1)
            created_at = self._clock
        self.rows[contact_id] = {
            "id": contact_id,
            "email": email,
            "phone_number": phone_number,
            "link_precedence": LinkPrecedence(link_precedence),
            "linked_id": linked_id,
            "created_at": created_at,
            "deleted_at": deleted_at,
        }
        self._record_undo(lambda: self.rows.pop(contact_id, None))
        return self._snapshot(self.rows[contact_id])

    def _record_undo(self, step) -> None:
        log = _undo_log.get()
        if log is not None:
            log.append(step)

    def _snapshot(self, row: dict) -> ContactSnapshot:
        return ContactSnapshot(**row)

    def _live(self, predicate) -> list[ContactSnapshot]:
        rows = [r for r in self.rows.values() if r["deleted_at"] is None and predicate(r)]
        rows.sort(key=lambda r: (r["created_at"], r["id"]))
        return [self._snapshot(r) for r in rows]

    @asynccontextmanager
    async def transaction(self):
        log: list = []
        token = _undo_log.set(log)
        try:
            yield
        except Exception:
            for step in reversed(log):
                step()
            raise
        finally:
            _undo_log.reset(token)

    async def lock_identifiers(self, keys: Iterable[str]) -> None:
        return None

    async def find_matching(self, email, phone_number):
        if not email and not phone_number:
            return []
        found = self._live(
            lambda r: (email is not None and r["email"] == email)
            or (phone_number is not None and r["phone_number"] == phone_number)
        )
        if self.delay:
            await asyncio.sleep(self.delay)
        return found

    async def find_cluster_members(self, primary_ids):
        ids = set(primary_ids)
        return self._live(lambda r: r["id"] in ids or r["linked_id"] in ids)

    async def insert_contact(self, email, phone_number, link_precedence, linked_id=None):
        self.insert_count += 1
        return self.seed(
            email=email,
            phone_number=phone_number,
            link_precedence=link_precedence,
            linked_id=linked_id,
        )

    async def update_contact(self, contact_id, **fields):
        if "link_precedence" in fields:
            fields["link_precedence"] = LinkPrecedence(fields["link_precedence"])
        row = self.rows[contact_id]
        previous = {name: row[name] for name in fields}
        self._record_undo(lambda: row.update(previous))
        row.update(fields)

    async def relink_contacts(self, from_primary_id, to_primary_id):
        moved = [row for row in self.rows.values() if row["linked_id"] == from_primary_id]
        for row in moved:
            row["linked_id"] = to_primary_id

        def undo():
            for row in moved:
                row["linked_id"] = from_primary_id

        self._record_undo(undo)

    async def merge_clusters(self, surviving_id, losing_ids):
        for losing_id in losing_ids:
            if self.fail_on_merge:
                raise RuntimeError("store unavailable")
            await self.update_contact(
                losing_id, link_precedence=LinkPrecedence.SECONDARY, linked_id=surviving_id
            )
            await self.relink_contacts(losing_id, surviving_id)

    def live_rows(self) -> list[ContactSnapshot]:
        return self._live(lambda r: True)


@pytest.fixture
def contact_store():
    """Create an empty in-memory contact store."""
    return InMemoryContactStore()


@pytest.fixture
def slow_contact_store():
    """Create an in-memory store that yields to the event loop after lookups."""
    return InMemoryContactStore(delay=0.02)


@pytest.fixture
def identity_service(contact_store):
    """Create a reconciliation service over the in-memory store."""
    return IdentityReconciliationService(contact_store, locks=IdentifierLockRegistry())


@pytest.fixture
async def db_session():
    """Create a test database session."""
    # Use in-memory SQLite for testing
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async_session = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False
    )

    async with async_session() as session:
        yield session

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


class InMemoryDatabase:
    """Private in-memory SQLite database behind the test client.

    The engine connects lazily, inside the client's event loop, so every
    connection lives on that loop.
    """

    def __init__(self) -> None:
        self.engine = create_async_engine(
            "sqlite+aiosqlite:///:memory:",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        self.session_factory = async_sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )
        self._tables_created = False

    async def ensure_tables(self) -> None:
        if not self._tables_created:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            self._tables_created = True

    def get_db_override(self):
        async def override_get_db():
            await self.ensure_tables()
            async with self.session_factory() as session:
                yield session

        return override_get_db


@contextmanager
def make_client(database: InMemoryDatabase, raise_server_exceptions: bool = True):
    """Run the app against the given database."""
    from fastapi.testclient import TestClient
    from app.main import app

    app.dependency_overrides[get_db] = database.get_db_override()
    try:
        with TestClient(app, raise_server_exceptions=raise_server_exceptions) as test_client:
            yield test_client
            test_client.portal.call(database.engine.dispose)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def api_database():
    """Create the database behind the test client."""
    return InMemoryDatabase()


@pytest.fixture
def client(api_database):
    """Create a test FastAPI client backed by a private in-memory database."""
    with make_client(api_database) as test_client:
        yield test_client


@pytest.fixture
def lenient_client(api_database):
    """Create a test client that returns 500 responses instead of raising."""
    with make_client(api_database, raise_server_exceptions=False) as test_client:
        yield test_client
