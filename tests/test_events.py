import pytest

from connection import CLOSE, Connection
from errors import StorageError

from conftest import ADMIN_SECRET, acks, events, frame

pytestmark = pytest.mark.anyio


async def create_and_join(make_router, *connections):
    creator = make_router()
    await creator.dispatch(frame("create-room", ack=1))
    room_id = acks(creator.connection.pending())[1]["roomId"]
    routers = []
    for conn in connections:
        router = make_router(conn)
        await router.dispatch(frame("join-room", {"roomId": room_id}, ack=2))
        routers.append(router)
    return room_id, routers


async def test_create_room_acks_without_joining(make_router, registry) -> None:
    router = make_router()
    await router.dispatch(frame("create-room", ack=7))
    reply = acks(router.connection.pending())[7]
    assert reply["success"] is True
    assert len(reply["roomId"]) == 6
    assert registry.room_of(router.connection.id) is None


async def test_join_unknown_room_fails(make_router) -> None:
    router = make_router()
    await router.dispatch(frame("join-room", {"roomId": "NOPE00"}, ack=1))
    assert acks(router.connection.pending())[1] == {"success": False, "message": "Room not found or database error."}


async def test_join_with_bad_payload(make_router) -> None:
    router = make_router()
    await router.dispatch(frame("join-room", {}, ack=1))
    assert acks(router.connection.pending())[1] == {"success": False, "message": "Invalid request."}


async def test_join_reply_shape(make_router) -> None:
    a = Connection("a")
    room_id, _ = await create_and_join(make_router, a)
    reply = acks(a.pending())[2]
    assert reply == {"success": True, "username": "Guest_Swift_Wolf", "messages": [],
                     "activeUsers": ["Guest_Swift_Wolf"]}


async def test_send_message_broadcasts_to_room_including_sender(make_router) -> None:
    a, b = Connection("a"), Connection("b")
    room_id, (ra, rb) = await create_and_join(make_router, a, b)
    events(a)
    events(b)

    await ra.dispatch(frame("send-message", {"roomId": room_id, "message": "  hello  "}))
    sent_a = events(a, "new-message")
    sent_b = events(b, "new-message")
    assert sent_a == sent_b
    assert sent_b[0]["username"] == "Guest_Swift_Wolf"
    assert sent_b[0]["message"] == "hello"
    assert "id" in sent_b[0] and "timestamp" in sent_b[0]


@pytest.mark.parametrize("text", ["", "    ", "x" * 501, None, 42])
async def test_invalid_messages_never_reach_storage(make_router, backend, text) -> None:
    a = Connection("a")
    room_id, (ra,) = await create_and_join(make_router, a)
    events(a)

    await ra.dispatch(frame("send-message", {"roomId": room_id, "message": text}))
    assert events(a) == [{"event": "message-error", "data": {"message": "Invalid message content or length."}}]
    assert backend.get_recent_messages(room_id, 10) == []


async def test_message_at_length_cap_is_accepted(make_router, backend) -> None:
    a = Connection("a")
    room_id, (ra,) = await create_and_join(make_router, a)
    await ra.dispatch(frame("send-message", {"roomId": room_id, "message": "x" * 500}))
    assert len(backend.get_recent_messages(room_id, 10)) == 1


async def test_rate_limit_rejects_and_recovers(make_router, clock, backend) -> None:
    a = Connection("a")
    room_id, (ra,) = await create_and_join(make_router, a)
    events(a)

    for i in range(4):
        await ra.dispatch(frame("send-message", {"roomId": room_id, "message": f"m{i}"}))
    frames = events(a)
    assert [f["event"] for f in frames] == ["new-message"] * 3 + ["rate-limit-exceeded"]
    assert len(backend.get_recent_messages(room_id, 10)) == 3

    clock.advance(61)
    await ra.dispatch(frame("send-message", {"roomId": room_id, "message": "again"}))
    assert events(a, "new-message")[0]["message"] == "again"


async def test_send_to_room_not_joined_is_silently_ignored(make_router, backend) -> None:
    a, outsider = Connection("a"), Connection("outsider")
    room_id, _ = await create_and_join(make_router, a)
    events(a)

    router = make_router(outsider)
    await router.dispatch(frame("send-message", {"roomId": room_id, "message": "sneaky"}))
    assert events(outsider) == []
    assert events(a) == []
    assert backend.get_recent_messages(room_id, 10) == []


async def test_storage_failure_reports_to_sender_only(make_router, bridge, monkeypatch) -> None:
    a, b = Connection("a"), Connection("b")
    room_id, (ra, rb) = await create_and_join(make_router, a, b)
    events(a)
    events(b)

    async def broken(*args):
        raise StorageError()

    monkeypatch.setattr(bridge, "add_message", broken)
    await ra.dispatch(frame("send-message", {"roomId": room_id, "message": "hello"}))
    assert events(a) == [{"event": "message-error", "data": {"message": "Failed to send message (database error)."}}]
    assert events(b) == []


async def test_typing_goes_to_others_only(make_router) -> None:
    a, b = Connection("a"), Connection("b")
    room_id, (ra, rb) = await create_and_join(make_router, a, b)
    events(a)
    events(b)

    await rb.dispatch(frame("typing", {"roomId": room_id, "isTyping": True}))
    assert events(b) == []
    assert events(a, "typing-indicator") == [{"username": "Guest_Brave_Fox", "isTyping": True}]


async def test_malformed_frames_are_ignored(make_router) -> None:
    router = make_router()
    await router.dispatch("not json")
    await router.dispatch('["a list"]')
    assert router.connection.pending() == []


async def test_unknown_event_with_ack_gets_failure(make_router) -> None:
    router = make_router()
    await router.dispatch(frame("launch-rockets", ack=3))
    assert acks(router.connection.pending())[3] == {"success": False, "message": "Unknown event."}


async def test_admin_login_pushes_snapshot_after_ack(make_router) -> None:
    a = Connection("a")
    room_id, _ = await create_and_join(make_router, a)

    admin = make_router()
    await admin.dispatch(frame("admin-login", {"secret": ADMIN_SECRET}, ack=5))
    frames = admin.connection.pending()
    assert frames[0] == {"ack": 5, "data": {"success": True}}
    assert frames[1] == {"event": "admin-authenticated", "data": {}}
    assert frames[2]["event"] == "active-rooms-list"
    rooms = frames[2]["data"]["rooms"]
    assert [(r["id"], r["userCount"]) for r in rooms] == [(room_id, 1)]


async def test_admin_login_with_wrong_secret(make_router) -> None:
    router = make_router()
    await router.dispatch(frame("admin-login", {"secret": "guess"}, ack=1))
    assert router.connection.pending() == [{"ack": 1, "data": {"success": False, "message": "Invalid admin secret."}}]


async def test_admin_operations_require_login(make_router) -> None:
    router = make_router()
    await router.dispatch(frame("list-rooms", ack=1))
    await router.dispatch(frame("delete-room", {"roomId": "AB12CD"}, ack=2))
    replies = acks(router.connection.pending())
    assert replies[1] == {"success": False, "message": "Unauthorized."}
    assert replies[2] == {"success": False, "message": "Unauthorized."}


async def test_create_room_notifies_admins(make_router) -> None:
    admin = make_router()
    await admin.dispatch(frame("admin-login", {"secret": ADMIN_SECRET}, ack=1))
    admin.connection.pending()

    user = make_router()
    await user.dispatch(frame("create-room", ack=1))
    room_id = acks(user.connection.pending())[1]["roomId"]
    assert events(admin.connection, "room-created-admin-notify") == [{"roomId": room_id}]


async def test_delete_room_disconnects_members_and_unlists_room(make_router) -> None:
    a, b = Connection("a"), Connection("b")
    room_id, _ = await create_and_join(make_router, a, b)
    events(a)
    events(b)

    admin1, admin2 = make_router(), make_router()
    for admin in (admin1, admin2):
        await admin.dispatch(frame("admin-login", {"secret": ADMIN_SECRET}, ack=1))
        admin.connection.pending()

    await admin1.dispatch(frame("delete-room", {"roomId": room_id}, ack=9))
    assert acks(admin1.connection.pending())[9] == {"success": True, "message": f"Room {room_id} deleted."}
    for conn in (a, b):
        frames = conn.pending()
        assert frames[0]["event"] == "room-deleted-user-notify"
        assert frames[-1] is CLOSE
    assert events(admin2.connection, "room-deleted-admin-notify") == [
        {"roomId": room_id, "message": f"Room {room_id} was deleted by another administrator."}
    ]

    await admin1.dispatch(frame("list-rooms", ack=10))
    assert acks(admin1.connection.pending())[10] == {"success": True, "rooms": []}


async def test_delete_unknown_room(make_router) -> None:
    admin = make_router()
    await admin.dispatch(frame("admin-login", {"secret": ADMIN_SECRET}, ack=1))
    admin.connection.pending()
    await admin.dispatch(frame("delete-room", {"roomId": "NOPE00"}, ack=2))
    assert acks(admin.connection.pending())[2] == {"success": False, "message": "Room not found in database."}


async def test_disconnect_clears_rate_limit_admin_and_membership(make_router, registry, limiter, admin) -> None:
    a, b = Connection("a"), Connection("b")
    room_id, (ra, rb) = await create_and_join(make_router, a, b)
    await rb.dispatch(frame("admin-login", {"secret": ADMIN_SECRET}, ack=3))
    await rb.dispatch(frame("send-message", {"roomId": room_id, "message": "bye"}))
    events(a)

    await rb.disconnect()
    assert "b" not in limiter
    assert not admin.is_admin(b)
    assert registry.room_of("b") is None
    assert events(a, "user-left") == [{"username": "Guest_Brave_Fox", "activeUsers": ["Guest_Swift_Wolf"]}]
