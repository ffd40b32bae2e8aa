"""Shared pytest fixtures: SQLite in-memory DB and in-process Socket.IO fakes."""

import asyncio
import inspect
import logging
import os
from urllib.parse import urlsplit
from uuid import uuid4

import pytest
from socketio import exceptions as sio_exceptions
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from mneumonicore.config import Settings
from mneumonicore.core.models import BaseModel, Page, Workspace

# Silence extremely verbose DEBUG logs from aiosqlite to keep test output readable
logging.getLogger("aiosqlite").setLevel(logging.WARNING)


@pytest.fixture
def test_settings():
    """Settings for tests: SQLite, short timers, no document validation."""
    # Tell app lifespan to skip real DB init
    os.environ["MNEUMONICORE_SKIP_LIFESPAN_DB"] = "1"
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        secret_key="test-secret-key",
        debug=True,
        redis_url=os.getenv("TEST_REDIS_URL", "redis://localhost:6379/15"),
        collab_typing_clear_seconds=0.05,
        collab_cursor_visibility_seconds=0.05,
        collab_validate_documents=False,
    )


@pytest.fixture
async def test_engine(test_settings):
    """Fresh in-memory database with all tables."""
    engine = create_async_engine(
        test_settings.database_url,
        echo=False,
        poolclass=StaticPool,  # keep the same memory DB across connections
        connect_args={"check_same_thread": False},
    )

    # SQLite needs this for ON DELETE CASCADE
    @event.listens_for(engine.sync_engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):  # noqa: ANN001
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute("PRAGMA foreign_keys=ON")
        finally:
            cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(BaseModel.metadata.create_all)

    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
async def test_session(test_engine):
    async_session_maker = async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False
    )
    async with async_session_maker() as session:
        try:
            yield session
        finally:
            await session.rollback()


@pytest.fixture
async def sample_page(test_session):
    """A workspace with one page in it."""
    workspace = Workspace(name="Design team")
    test_session.add(workspace)
    await test_session.flush()

    page = Page(title="Roadmap", content="{}", workspace_id=workspace.id)
    test_session.add(page)
    await test_session.commit()
    return page


async def _call(handler, *args):
    result = handler(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


class FakeSocketServer:
    """Stands in for ``socketio.AsyncServer``: records handlers, sessions and emits.

    With a hub attached, emits are delivered to the matching LoopbackClient.
    """

    def __init__(self):
        self.handlers = {}
        self.sessions = {}
        self.emitted = []
        self.failing_sids = set()
        self.hub = None

    def on(self, event, handler=None, namespace=None):
        self.handlers[event] = handler

    async def emit(self, event, data=None, to=None, **kwargs):
        if to in self.failing_sids:
            raise ConnectionError(f"socket {to} is gone")
        self.emitted.append((event, data, to))
        if self.hub is not None:
            await self.hub.deliver(to, event, data)

    async def save_session(self, sid, session):
        self.sessions[sid] = dict(session)

    async def get_session(self, sid):
        return self.sessions.get(sid, {})

    def sent(self, event=None, to=None):
        """Payloads emitted, filtered by event and/or recipient."""
        return [
            data for name, data, sid in self.emitted
            if (event is None or name == event) and (to is None or sid == to)
        ]

    async def trigger(self, event, *args):
        return await _call(self.handlers[event], *args)


class LoopbackClient:
    """``socketio.AsyncClient`` look-alike wired straight into a FakeSocketServer."""

    def __init__(self, hub):
        self.hub = hub
        self.handlers = {}
        self.sid = None
        self.connected = False
        self.emitted = []
        self.connect_kwargs = None

    def on(self, event, handler=None, namespace=None):
        self.handlers[event] = handler

    async def connect(self, url, auth=None, **kwargs):
        self.connect_kwargs = dict(kwargs, url=url, auth=auth)
        sid = uuid4().hex
        environ = {"QUERY_STRING": urlsplit(url).query}
        accepted = await self.hub.server.trigger("connect", sid, environ, auth)
        if accepted is False:
            raise sio_exceptions.ConnectionError("One or more namespaces failed to connect")
        self.sid = sid
        self.connected = True
        self.hub.clients[sid] = self
        await self.receive("connect")

    async def emit(self, event, data=None):
        if not self.connected:
            raise sio_exceptions.BadNamespaceError("/ is not a connected namespace.")
        self.emitted.append((event, data))
        return await self.hub.server.trigger(event, self.sid, data)

    async def disconnect(self):
        if not self.connected:
            return
        await self._drop("client disconnect")

    async def drop(self):
        """Transport loss seen from both ends."""
        await self._drop("transport close")

    async def _drop(self, reason):
        self.connected = False
        self.hub.clients.pop(self.sid, None)
        await self.hub.server.trigger("disconnect", self.sid, reason)
        await self.receive("disconnect", reason)

    async def receive(self, event, *args):
        handler = self.handlers.get(event)
        if handler is not None:
            await _call(handler, *args)


class LoopbackHub:
    """Routes server emits to the right in-process client."""

    def __init__(self):
        self.server = FakeSocketServer()
        self.server.hub = self
        self.clients = {}

    def client(self):
        return LoopbackClient(self)

    async def deliver(self, sid, event, data):
        client = self.clients.get(sid)
        if client is not None:
            await client.receive(event, data)


@pytest.fixture
def fake_sio():
    return FakeSocketServer()


@pytest.fixture
def loopback_hub():
    return LoopbackHub()


@pytest.fixture
def settle():
    """Let scheduled callbacks run a few loop iterations."""
    async def _settle(rounds: int = 5):
        for _ in range(rounds):
            await asyncio.sleep(0)
    return _settle
