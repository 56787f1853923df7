import asyncio
import json

import pytest

from registry import Connection, RoomRegistry
from relay import RelayProtocol


class Sink:
    """Stands in for a socket: remembers every frame written to it."""

    def __init__(self):
        self.frames = []

    async def __call__(self, text):
        self.frames.append(json.loads(text))

    def of_type(self, frame_type):
        return [frame for frame in self.frames if frame["type"] == frame_type]

    @property
    def last(self):
        return self.frames[-1]


def make_connection(connection_id, max_queue=64):
    sink = Sink()
    connection = Connection(connection_id, sink, max_queue=max_queue)
    connection.start()
    return connection, sink


async def settle(*connections, rounds=5):
    """Let writer tasks deliver, including frames triggered by earlier deliveries."""
    for _ in range(rounds):
        await asyncio.gather(*(c.flush() for c in connections))
        await asyncio.sleep(0)


class RecordingPresence:
    def __init__(self, fail=False):
        self.calls = []
        self.fail = fail

    def add_user_to_room(self, room_id, connection_id, display_name):
        self.calls.append(("add", room_id, connection_id, display_name))
        if self.fail:
            raise ConnectionError("redis down")

    def remove_user_from_room(self, room_id, connection_id):
        self.calls.append(("remove", room_id, connection_id))

    def delete_room(self, room_id):
        self.calls.append(("delete", room_id))


@pytest.fixture
def registry():
    return RoomRegistry()


@pytest.fixture
def relay(registry):
    return RelayProtocol(registry)
