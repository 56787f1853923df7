import asyncio
import json

from conftest import make_connection, settle


def frame(frame_type, **payload):
    return json.dumps({"type": frame_type, "payload": payload})


def join(room_id, name):
    return frame("join", roomId=room_id, displayName=name)


def test_greet_sends_connection_id(relay):
    async def scenario():
        a, sink_a = make_connection("a")
        relay.greet(a)
        await settle(a)
        assert sink_a.frames == [{"type": "connected", "payload": {"connectionId": "a"}}]

    asyncio.run(scenario())


def test_code_change_reaches_others_without_echo(relay, registry):
    async def scenario():
        a, sink_a = make_connection("a")
        b, sink_b = make_connection("b")
        await relay.handle(a, join("R1", "alice"))
        await relay.handle(b, join("R1", "bob"))

        await relay.handle(a, frame("code-change", roomId="R1", code="print(1)"))
        await settle(a, b)

        assert sink_a.of_type("code-change") == []
        assert sink_b.of_type("code-change") == [
            {"type": "code-change", "payload": {"roomId": "R1", "code": "print(1)"}}
        ]

    asyncio.run(scenario())


def test_sync_code_is_point_to_point(relay):
    async def scenario():
        a, sink_a = make_connection("a")
        b, sink_b = make_connection("b")
        c, sink_c = make_connection("c")
        await relay.handle(a, join("R1", "alice"))
        await relay.handle(b, join("R1", "bob"))
        await relay.handle(c, join("R1", "carol"))

        await relay.handle(a, frame("sync-code", code="x=1", targetConnectionId="c"))
        await settle(a, b, c)

        assert sink_a.of_type("code-change") == []
        assert sink_b.of_type("code-change") == []
        assert sink_c.of_type("code-change")[0]["payload"] == {"roomId": "R1", "code": "x=1"}

    asyncio.run(scenario())


def test_sync_code_to_other_room_is_dropped(relay):
    async def scenario():
        a, _ = make_connection("a")
        b, sink_b = make_connection("b")
        await relay.handle(a, join("R1", "alice"))
        await relay.handle(b, join("R2", "bob"))

        await relay.handle(a, frame("sync-code", code="secret", targetConnectionId="b"))
        await settle(a, b)

        assert sink_b.of_type("code-change") == []

    asyncio.run(scenario())


def test_malformed_frames_get_error_reply(relay, registry):
    async def scenario():
        a, sink_a = make_connection("a")
        await relay.handle(a, "not json at all")
        await relay.handle(a, frame("teleport", roomId="R1"))
        await relay.handle(a, join("R1", "   "))
        await relay.handle(a, frame("join", displayName="alice"))
        await settle(a)

        errors = sink_a.of_type("error")
        assert len(errors) == 4
        assert all(e["payload"]["message"].startswith("Invalid message") for e in errors)
        assert not a.joined
        assert registry.room_ids() == []

    asyncio.run(scenario())


def test_edits_before_join_are_rejected(relay, registry):
    async def scenario():
        a, sink_a = make_connection("a")
        await relay.handle(a, frame("code-change", roomId="R1", code="x"))
        await relay.handle(a, frame("sync-code", code="x", targetConnectionId="b"))
        await settle(a)

        assert len(sink_a.of_type("error")) == 2
        assert registry.room_ids() == []

    asyncio.run(scenario())


def test_code_change_for_foreign_room_is_rejected(relay):
    async def scenario():
        a, sink_a = make_connection("a")
        b, sink_b = make_connection("b")
        await relay.handle(a, join("R1", "alice"))
        await relay.handle(b, join("R2", "bob"))

        await relay.handle(a, frame("code-change", roomId="R2", code="hijack"))
        await settle(a, b)

        assert sink_b.of_type("code-change") == []
        assert sink_a.last["type"] == "error"
        assert "R2" in sink_a.last["payload"]["message"]

    asyncio.run(scenario())


def test_second_join_is_rejected(relay, registry):
    async def scenario():
        a, sink_a = make_connection("a")
        await relay.handle(a, join("R1", "alice"))
        await relay.handle(a, join("R2", "alice"))
        await settle(a)

        assert sink_a.last["type"] == "error"
        assert a.room_id == "R1"
        assert registry.room_ids() == ["R1"]

    asyncio.run(scenario())


def test_disconnect_leaves_and_notifies(relay, registry):
    async def scenario():
        a, _ = make_connection("a")
        b, sink_b = make_connection("b")
        await relay.handle(a, join("R1", "alice"))
        await relay.handle(b, join("R1", "bob"))

        await relay.disconnect(a)
        await settle(b)

        assert a.closed
        assert sink_b.last == {
            "type": "disconnected",
            "payload": {
                "connectionId": "a",
                "displayName": "alice",
                "roster": [{"connectionId": "b", "displayName": "bob"}],
            },
        }
        assert list(registry.get_room("R1").members) == ["b"]

        # A second close notification for the same transport changes nothing
        await relay.disconnect(a)
        await settle(b)
        assert len(sink_b.of_type("disconnected")) == 1

    asyncio.run(scenario())


def test_disconnect_before_join_is_harmless(relay, registry):
    async def scenario():
        a, _ = make_connection("a")
        await relay.disconnect(a)
        assert a.closed
        assert registry.room_ids() == []

    asyncio.run(scenario())


def test_self_addressed_sync_is_ignored(relay):
    async def scenario():
        a, sink_a = make_connection("a")
        await relay.handle(a, join("R1", "alice"))
        await relay.handle(a, frame("sync-code", code="", targetConnectionId="a"))
        await settle(a)

        assert sink_a.of_type("code-change") == []
        assert sink_a.of_type("error") == []

    asyncio.run(scenario())


def test_room_ids_are_compared_exactly(relay, registry):
    async def scenario():
        a, _ = make_connection("a")
        b, sink_b = make_connection("b")
        await relay.handle(a, join("R1", "alice"))
        await relay.handle(b, join(" R1 ", "bob"))

        await relay.handle(a, frame("code-change", roomId="R1", code="x"))
        await settle(a, b)

        assert sorted(registry.room_ids()) == [" R1 ", "R1"]
        assert b.room_id == " R1 "
        assert sink_b.of_type("code-change") == []

    asyncio.run(scenario())


def test_whitespace_room_id_is_rejected(relay, registry):
    async def scenario():
        a, sink_a = make_connection("a")
        await relay.handle(a, join("   ", "alice"))
        await settle(a)

        assert sink_a.last["type"] == "error"
        assert not a.joined
        assert registry.room_ids() == []

    asyncio.run(scenario())
