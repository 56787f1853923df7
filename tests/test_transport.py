import asyncio
import json

from aiohttp import WSMsgType, web
from aiohttp import test_utils

from client.session import SessionController, SessionState
from client.transport import run_session


async def _one_round_relay(request):
    """Greets, confirms the join, waits for the sync reply, then hangs up cleanly."""
    received = request.app["received"]
    ws = web.WebSocketResponse()
    await ws.prepare(request)
    await ws.send_json({"type": "connected", "payload": {"connectionId": "a"}})

    msg = await ws.receive()
    join = json.loads(msg.data)
    received.append(join)
    name = join["payload"]["displayName"]
    await ws.send_json({
        "type": "joined",
        "payload": {"roster": [{"connectionId": "a", "displayName": name}], "displayName": name, "connectionId": "a"},
    })

    msg = await ws.receive()
    if msg.type == WSMsgType.TEXT:
        received.append(json.loads(msg.data))
    await ws.close()
    return ws


def relay_app():
    app = web.Application()
    app["received"] = []
    app.router.add_get("/ws", _one_round_relay)
    return app


async def with_server(scenario):
    server = test_utils.TestServer(relay_app())
    await server.start_server()
    try:
        await scenario(server)
    finally:
        await server.close()


def ws_url(server, path):
    return str(server.make_url(path)).replace("http://", "ws://")


def test_refused_handshake_redirects():
    async def scenario(server):
        redirects = []
        ctl = SessionController("R1", "alice", on_redirect=lambda: redirects.append(True))

        await run_session(ws_url(server, "/nope"), ctl)

        assert redirects == [True]
        assert ctl.notifications == ["Socket connection failed, Try again later"]
        assert ctl.state == SessionState.DISCONNECTED

    asyncio.run(with_server(scenario))


def test_unreachable_relay_redirects():
    async def scenario():
        redirects = []
        ctl = SessionController("R1", "alice", on_redirect=lambda: redirects.append(True))

        await run_session("ws://127.0.0.1:9/ws", ctl)

        assert redirects == [True]
        assert ctl.state == SessionState.DISCONNECTED

    asyncio.run(scenario())


def test_clean_close_ends_disconnected():
    async def scenario(server):
        redirects = []
        ctl = SessionController("R1", "alice", on_redirect=lambda: redirects.append(True))

        await run_session(ws_url(server, "/ws"), ctl)

        received = server.app["received"]
        assert received[0] == {"type": "join", "payload": {"roomId": "R1", "displayName": "alice"}}
        assert received[1]["type"] == "sync-code"
        assert ctl.connection_id == "a"
        assert ctl.state == SessionState.DISCONNECTED
        assert ctl.roster == []
        assert ctl.send is None
        assert redirects == []

    asyncio.run(with_server(scenario))
