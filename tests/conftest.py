"""
Pytest fixtures for the link service: an in-memory MongoDB, a controllable
clock, and an ASGI client wired against both.
"""

from __future__ import annotations

import os

os.environ.setdefault("MCLINK_SESSION_SIGNING_SECRET", "test-secret-key-for-testing-only")
os.environ.setdefault("MCLINK_LOG_LEVEL", "DEBUG")

from datetime import datetime, timedelta, timezone
from typing import List, Optional

import httpx
import pytest
import pytest_asyncio
from mongomock_motor import AsyncMongoMockClient

from mclink.core.errors import CodeStoreError
from mclink.core.session import issue_session_token
from mclink.dal import AccountDAL, MongoCodeStore, SecurityLogDAL, VolatileCodeMirror
from mclink.events.sink import InMemoryEventSink
from mclink.main import create_app, init_state
from mclink.models.link_code import LinkCode
from mclink.services.link_codes import LinkCodeManager
from mclink.services.linker import LinkApplier

START = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class DownCodeStore:
    """A durable tier that is always unavailable."""

    async def insert(self, record: LinkCode) -> None:
        raise CodeStoreError("mongo down")

    async def delete_for_owner(self, owner_account_id: str, *, except_code: Optional[str] = None) -> int:
        raise CodeStoreError("mongo down")

    async def find_live(self, code: str, now: datetime) -> Optional[LinkCode]:
        raise CodeStoreError("mongo down")

    async def find_live_for_owner(self, owner_account_id: str, now: datetime) -> Optional[LinkCode]:
        raise CodeStoreError("mongo down")

    async def delete(self, code: str) -> bool:
        raise CodeStoreError("mongo down")

    async def delete_expired(self, now: datetime) -> int:
        raise CodeStoreError("mongo down")

    async def list_codes(self) -> List[LinkCode]:
        raise CodeStoreError("mongo down")


class FlakyCodeStore:
    """Wraps a real store; every call raises while ``down`` is set."""

    def __init__(self, inner: MongoCodeStore):
        self.inner = inner
        self.down = False

    def __getattr__(self, name):
        target = getattr(self.inner, name)

        async def call(*args, **kwargs):
            if self.down:
                raise CodeStoreError("mongo down")
            return await target(*args, **kwargs)

        return call


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def db():
    return AsyncMongoMockClient()["mclink_test"]


@pytest_asyncio.fixture
async def accounts(db) -> AccountDAL:
    dal = AccountDAL(db)
    await dal.ensure_indexes()
    return dal


@pytest_asyncio.fixture
async def code_store(db) -> MongoCodeStore:
    store = MongoCodeStore(db)
    await store.ensure_indexes()
    return store


@pytest.fixture
def mirror() -> VolatileCodeMirror:
    return VolatileCodeMirror()


@pytest.fixture
def manager(code_store, mirror, clock) -> LinkCodeManager:
    return LinkCodeManager(store=code_store, mirror=mirror, clock=clock)


@pytest.fixture
def sink() -> InMemoryEventSink:
    return InMemoryEventSink()


@pytest.fixture
def audit(db) -> SecurityLogDAL:
    return SecurityLogDAL(db)


@pytest.fixture
def linker(manager, accounts, sink, audit) -> LinkApplier:
    return LinkApplier(codes=manager, accounts=accounts, events=sink, audit=audit)


@pytest_asyncio.fixture
async def app(db, sink, clock):
    application = create_app()
    await init_state(application, db, event_sink=sink, clock=clock)
    return application


@pytest_asyncio.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


def bearer(account_id: str) -> dict:
    return {"Authorization": f"Bearer {issue_session_token(account_id)}"}
