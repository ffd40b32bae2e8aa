"""Unit tests for the Socket.IO handlers of CollaborationServer."""

import uuid
from types import SimpleNamespace

import pytest

from mneumonicore.collaboration.events import (
    COLLAB_ERROR,
    COLLAB_UPDATE,
    CURRENT_USERS,
    CURSOR_MOVE,
    JOIN_ROOM,
    LEAVE_ROOM,
    USER_JOINED,
    USER_LEFT,
)
from mneumonicore.collaboration.server import CollaborationServer


def environ(**query):
    return {"QUERY_STRING": "&".join(f"{k}={v}" for k, v in query.items())}


async def no_document(document_id):
    return None


async def reject_all_tokens(token):
    return None


@pytest.fixture
def server(fake_sio, test_settings):
    return CollaborationServer(
        sio=fake_sio,
        settings=test_settings,
        find_document=no_document,
        verify_token=reject_all_tokens,
    )


async def connect(fake_sio, sid, user_id, auth=None):
    return await fake_sio.trigger(
        "connect", sid, environ(userId=user_id, workspaceId="ws1", documentId="doc1"), auth
    )


async def join(fake_sio, sid, user_id, username=None, document_id="doc1", workspace_id="ws1"):
    return await fake_sio.trigger(JOIN_ROOM, sid, {
        "documentId": document_id,
        "workspaceId": workspace_id,
        "userId": user_id,
        "username": username or user_id.title(),
    })


def test_registers_all_handlers(server, fake_sio):
    assert set(fake_sio.handlers) == {
        "connect", "disconnect", JOIN_ROOM, LEAVE_ROOM, CURSOR_MOVE, COLLAB_UPDATE,
    }


async def test_connect_stores_handshake_identity(server, fake_sio):
    assert await connect(fake_sio, "sid-a", "alice") is True
    assert fake_sio.sessions["sid-a"] == {
        "user_id": "alice",
        "workspace_id": "ws1",
        "document_id": "doc1",
        "username": None,
        "authenticated": False,
    }


async def test_connect_accepts_page_id_alias(server, fake_sio):
    await fake_sio.trigger("connect", "sid-a", environ(userId="alice", pageId="p1"), None)
    assert fake_sio.sessions["sid-a"]["document_id"] == "p1"


async def test_connect_without_user_is_rejected(server, fake_sio):
    assert await fake_sio.trigger("connect", "sid-a", environ(workspaceId="ws1"), None) is False
    assert "sid-a" not in fake_sio.sessions


async def test_connect_with_invalid_token_is_rejected(server, fake_sio):
    assert await connect(fake_sio, "sid-a", "alice", auth={"token": "bad"}) is False


async def test_connect_with_valid_token_pins_identity(fake_sio, test_settings):
    async def verify(token):
        return {"sub": "user-42", "username": "Dana"}

    CollaborationServer(
        sio=fake_sio, settings=test_settings, find_document=no_document, verify_token=verify
    )
    assert await connect(fake_sio, "sid-a", "spoofed", auth={"token": "good"}) is True

    session = fake_sio.sessions["sid-a"]
    assert session["user_id"] == "user-42"
    assert session["username"] == "Dana"
    assert session["authenticated"] is True


async def test_connect_requires_token_when_configured(fake_sio, test_settings):
    settings = test_settings.model_copy(update={"collab_require_auth": True})
    CollaborationServer(sio=fake_sio, settings=settings, find_document=no_document)

    assert await connect(fake_sio, "sid-a", "alice") is False


async def test_join_replies_with_roster_and_announces(server, fake_sio):
    await connect(fake_sio, "sid-a", "alice")
    await connect(fake_sio, "sid-b", "bob")

    assert await join(fake_sio, "sid-a", "alice") == {"status": "joined", "users": 0}
    assert await join(fake_sio, "sid-b", "bob") == {"status": "joined", "users": 1}

    assert fake_sio.sent(CURRENT_USERS, to="sid-a") == [[]]
    assert fake_sio.sent(CURRENT_USERS, to="sid-b") == [[{"userId": "alice", "username": "Alice"}]]
    assert fake_sio.sent(USER_JOINED, to="sid-a") == [
        {"userId": "bob", "socketId": "sid-b", "username": "Bob"}
    ]


async def test_join_uses_token_identity_over_payload(fake_sio, test_settings):
    async def verify(token):
        return {"sub": "user-42", "username": "Dana"}

    server = CollaborationServer(
        sio=fake_sio, settings=test_settings, find_document=no_document, verify_token=verify
    )
    await connect(fake_sio, "sid-a", "user-42", auth={"token": "good"})
    await join(fake_sio, "sid-a", "mallory", username="Mallory")

    membership = server.coordinator.membership("sid-a", "doc1")
    assert membership.user_id == "user-42"
    assert membership.username == "Dana"


async def test_invalid_join_payload_gets_collab_error(server, fake_sio):
    await connect(fake_sio, "sid-a", "alice")

    assert await fake_sio.trigger(JOIN_ROOM, "sid-a", {"documentId": "doc1"}) is None

    [error] = fake_sio.sent(COLLAB_ERROR, to="sid-a")
    assert error["error"] == "ValidationError"
    assert server.coordinator.stats()["memberships"] == 0


async def test_join_for_page_in_other_workspace_is_stale(fake_sio, test_settings):
    page_id = str(uuid.uuid4())
    owner_ws = str(uuid.uuid4())

    async def find(document_id):
        return SimpleNamespace(id=document_id, workspace_id=owner_ws)

    settings = test_settings.model_copy(update={"collab_validate_documents": True})
    server = CollaborationServer(sio=fake_sio, settings=settings, find_document=find)
    await connect(fake_sio, "sid-a", "alice")

    assert await join(fake_sio, "sid-a", "alice", document_id=page_id, workspace_id="ws1") is None

    [error] = fake_sio.sent(COLLAB_ERROR, to="sid-a")
    assert error == {
        "error": "StaleJoinError",
        "message": f"Document {page_id} does not belong to workspace ws1",
        "documentId": page_id,
        "workspaceId": "ws1",
    }
    assert server.coordinator.stats()["rooms"] == 0


async def test_join_for_page_in_same_workspace_goes_ahead(fake_sio, test_settings):
    async def find(document_id):
        return SimpleNamespace(id=document_id, workspace_id="ws1")

    settings = test_settings.model_copy(update={"collab_validate_documents": True})
    CollaborationServer(sio=fake_sio, settings=settings, find_document=find)
    await connect(fake_sio, "sid-a", "alice")

    assert await join(fake_sio, "sid-a", "alice") == {"status": "joined", "users": 0}


async def test_lookup_failure_does_not_block_join(fake_sio, test_settings):
    async def broken(document_id):
        raise RuntimeError("db down")

    settings = test_settings.model_copy(update={"collab_validate_documents": True})
    CollaborationServer(sio=fake_sio, settings=settings, find_document=broken)
    await connect(fake_sio, "sid-a", "alice")

    assert await join(fake_sio, "sid-a", "alice") == {"status": "joined", "users": 0}


async def test_cursor_move_and_update_relay_without_echo(server, fake_sio):
    for sid, user in (("sid-a", "alice"), ("sid-b", "bob")):
        await connect(fake_sio, sid, user)
        await join(fake_sio, sid, user)

    await fake_sio.trigger(CURSOR_MOVE, "sid-a", {
        "documentId": "doc1", "cursor": {"x": 10, "y": 20}, "isTyping": True,
    })
    await fake_sio.trigger(COLLAB_UPDATE, "sid-a", {
        "type": "content", "pageId": "doc1", "data": {"op": "insert", "text": "hi"},
    })

    [cursor] = fake_sio.sent(CURSOR_MOVE, to="sid-b")
    assert cursor["userId"] == "alice"
    assert cursor["isTyping"] is True
    [update] = fake_sio.sent(COLLAB_UPDATE, to="sid-b")
    assert update["data"] == {"op": "insert", "text": "hi"}
    assert fake_sio.sent(CURSOR_MOVE, to="sid-a") == []
    assert fake_sio.sent(COLLAB_UPDATE, to="sid-a") == []


async def test_update_with_unknown_type_is_rejected(server, fake_sio):
    await connect(fake_sio, "sid-a", "alice")
    await join(fake_sio, "sid-a", "alice")

    await fake_sio.trigger(COLLAB_UPDATE, "sid-a", {"type": "delete-all", "documentId": "doc1"})

    [error] = fake_sio.sent(COLLAB_ERROR, to="sid-a")
    assert error["error"] == "ValidationError"


async def test_leave_and_disconnect_announce_departure(server, fake_sio):
    for sid, user in (("sid-a", "alice"), ("sid-b", "bob"), ("sid-c", "carol")):
        await connect(fake_sio, sid, user)
        await join(fake_sio, sid, user)

    await fake_sio.trigger(LEAVE_ROOM, "sid-b", {"documentId": "doc1"})
    await fake_sio.trigger("disconnect", "sid-c", "transport close")

    left = [notice["userId"] for notice in fake_sio.sent(USER_LEFT, to="sid-a")]
    assert left == ["bob", "carol"]
    assert server.coordinator.stats() == {"rooms": 1, "memberships": 1, "connections": 1}


async def test_reject_survives_dead_socket(server, fake_sio):
    fake_sio.failing_sids.add("sid-a")
    await server._reject("sid-a", "ValidationError", "bad payload")
