"""End-to-end relay flows: RelaySessions talking to a CollaborationServer in-process."""

import asyncio
import random

import pytest

from mneumonicore.collaboration.bridge import CONTENT_UPDATE_EVENT, ERROR_EVENT
from mneumonicore.collaboration.presence import USER_COLORS
from mneumonicore.collaboration.server import CollaborationServer
from mneumonicore.collaboration.session import ConnectionStatus, RelaySession
from mneumonicore.collaboration.views import CursorLayer, ParticipantsPanel


@pytest.fixture
def server(loopback_hub, test_settings):
    async def no_document(document_id):
        return None

    return CollaborationServer(
        sio=loopback_hub.server, settings=test_settings, find_document=no_document
    )


@pytest.fixture
async def open_session(loopback_hub, test_settings, server):
    sessions = []

    async def _open(user_id, document_id="doc1", workspace_id="ws1", **kwargs):
        session = RelaySession(
            settings=test_settings,
            client_factory=loopback_hub.client,
            rng=random.Random(user_id),
            **kwargs,
        )
        await session.connect(document_id, workspace_id, user_id, user_id.title())
        await session.drain()
        sessions.append(session)
        return session

    yield _open

    for session in sessions:
        await session.disconnect()


async def drain(*sessions):
    for session in sessions:
        await session.drain()


def user_ids(session):
    return sorted(user.user_id for user in session.get_active_users())


async def test_join_and_leave_scenario(open_session, server):
    a = await open_session("alice")
    assert a.status == ConnectionStatus.CONNECTED
    assert a.get_active_users() == []

    b = await open_session("bob")
    await drain(a, b)
    assert user_ids(a) == ["bob"]
    assert user_ids(b) == ["alice"]

    await b.disconnect()
    await drain(a)

    assert user_ids(a) == []
    assert server.coordinator.stats() == {"rooms": 1, "memberships": 1, "connections": 1}


async def test_self_never_appears_in_own_presence(open_session):
    a = await open_session("alice")
    b = await open_session("bob")
    # a second tab for alice
    a2 = await open_session("alice")
    await drain(a, b, a2)

    assert user_ids(a) == ["bob"]
    assert user_ids(a2) == ["bob"]
    assert user_ids(b) == ["alice"]


async def test_cursor_round_trip_with_typing_auto_clear(open_session, test_settings):
    a = await open_session("alice")
    b = await open_session("bob")
    await drain(a, b)

    await a.update_cursor({"x": 10, "y": 20}, is_typing=True)
    await drain(b)

    [alice] = b.get_active_users()
    assert (alice.cursor.x, alice.cursor.y) == (10, 20)
    assert alice.is_typing is True

    await asyncio.sleep(test_settings.collab_typing_clear_seconds * 3)
    await drain(b)

    [alice] = b.get_active_users()
    assert alice.is_typing is False
    assert (alice.cursor.x, alice.cursor.y) == (10, 20)


async def test_content_update_reaches_everyone_but_sender(open_session):
    a = await open_session("alice")
    b = await open_session("bob")
    c = await open_session("carol")
    received = {name: [] for name in ("a", "b", "c")}
    for name, session in (("a", a), ("b", b), ("c", c)):
        session.bridge.subscribe(CONTENT_UPDATE_EVENT, received[name].append)

    await a.send_update("content", {"op": "insert", "text": "hi"})
    await drain(a, b, c)

    assert received["a"] == []
    for name in ("b", "c"):
        [update] = received[name]
        assert update.type == "content"
        assert update.data == {"op": "insert", "text": "hi"}
        assert update.user_id == "alice"


async def test_rooms_do_not_leak_across_documents(open_session):
    a = await open_session("alice", document_id="doc1")
    b = await open_session("bob", document_id="doc2")
    received = []
    b.bridge.subscribe(CONTENT_UPDATE_EVENT, received.append)

    await a.send_update("content", {"op": "noop"})
    await a.update_cursor({"x": 1, "y": 1}, is_typing=True)
    await drain(a, b)

    assert received == []
    assert b.get_active_users() == []


async def test_stale_join_surfaces_collab_error(loopback_hub, test_settings):
    class Page:
        workspace_id = "ws-owner"

    async def find(document_id):
        return Page()

    settings = test_settings.model_copy(update={"collab_validate_documents": True})
    server = CollaborationServer(sio=loopback_hub.server, settings=settings, find_document=find)
    session = RelaySession(settings=settings, client_factory=loopback_hub.client)
    errors = []
    session.bridge.subscribe(ERROR_EVENT, errors.append)

    await session.connect("doc1", "ws1", "alice", "Alice")
    await session.drain()

    assert [error.error for error in errors] == ["StaleJoinError"]
    assert errors[0].workspace_id == "ws1"
    assert server.coordinator.stats()["rooms"] == 0
    await session.disconnect()


async def test_transport_drop_is_seen_by_both_sides(open_session, loopback_hub):
    a = await open_session("alice")
    b = await open_session("bob")
    await drain(a, b)

    await b._client.drop()
    await drain(a)

    assert b.status == ConnectionStatus.DISCONNECTED
    assert b.get_active_users() == []
    assert user_ids(a) == []

    await b.reconnect()
    await drain(a, b)
    assert b.status == ConnectionStatus.CONNECTED
    assert user_ids(a) == ["bob"]
    assert user_ids(b) == ["alice"]


async def test_views_follow_presence(open_session, test_settings):
    a = await open_session("alice")
    panel = ParticipantsPanel()
    layer = CursorLayer(grace_seconds=test_settings.collab_cursor_visibility_seconds)
    assert panel.render(a) is None

    b = await open_session("bob")
    await drain(a)
    view = panel.render(a)
    assert view.title == "Collaborating (2)"
    assert [row.badge for row in view.participants] == ["Editing", "Active"]

    await b.update_cursor({"x": 3, "y": 4}, is_typing=True)
    await drain(a)
    assert [row.badge for row in panel.render(a).participants] == ["Editing", "Typing..."]
    [cursor] = layer.sync(a.get_active_users())
    assert cursor.user_id == "bob"

    # two clients may end up with the same color; only palette membership is guaranteed
    assert a.get_user_color() in USER_COLORS
    assert b.get_user_color() in USER_COLORS

    layer.close()
