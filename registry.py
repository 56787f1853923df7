import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional
from constants import OUTBOUND_QUEUE_SIZE
from schemas.events import RosterEntry, WireModel, joined_event, disconnected_event
from logging_config import get_logger

logger = get_logger(__name__)

SendText = Callable[[str], Awaitable[None]]


class ConnectionBoundError(RuntimeError):
    """Raised when a connection that already joined a room tries to join again."""


class Connection:
    """One participant's channel to the relay.

    Outbound events go through a bounded queue drained by a writer task, so
    fanning out to a slow peer never blocks the room. When the queue is full the
    oldest pending event is dropped.
    """

    def __init__(self, connection_id: str, send_text: SendText, max_queue: int = OUTBOUND_QUEUE_SIZE):
        self.connection_id = connection_id
        self.display_name: Optional[str] = None
        self.room_id: Optional[str] = None
        self.dropped = 0
        self.closed = False
        self._send_text = send_text
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue)
        self._writer: Optional[asyncio.Task] = None

    def __repr__(self):
        return f"Connection({self.connection_id!r}, room={self.room_id!r}, name={self.display_name!r})"

    @property
    def joined(self) -> bool:
        return self.room_id is not None

    def bind(self, room_id: str, display_name: str):
        if self.joined:
            raise ConnectionBoundError(f"Connection {self.connection_id} already joined room {self.room_id}")
        self.room_id = room_id
        self.display_name = display_name

    def start(self):
        if self._writer is None or self._writer.done():
            self._writer = asyncio.create_task(self._drain_queue())

    def enqueue(self, event: WireModel):
        """Queue an event for delivery without waiting on the peer."""
        if self.closed:
            return
        if self._queue.full():
            self._queue.get_nowait()
            self._queue.task_done()
            self.dropped += 1
            logger.warning(f"Outbound queue full for connection {self.connection_id}, dropped oldest event ({self.dropped} dropped so far)")
        self._queue.put_nowait(event)

    async def flush(self):
        """Wait until everything queued so far has been handed to the transport.

        The relay never waits on delivery; this is a barrier for callers that need
        to observe what a peer has been sent, such as tests.
        """
        await self._queue.join()

    async def _drain_queue(self):
        while True:
            event = await self._queue.get()
            try:
                await self._send_text(event.to_wire())
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Error sending to connection {self.connection_id}: {e}")
                self.closed = True
                return
            finally:
                self._queue.task_done()
                if self.closed:
                    self._discard_pending()

    def _discard_pending(self):
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()

    async def close(self):
        """Stop the writer. Events still queued are never sent."""
        self.closed = True
        if self._writer is not None and not self._writer.done():
            self._writer.cancel()
            try:
                await self._writer
            except asyncio.CancelledError:
                pass
        self._discard_pending()
        logger.debug(f"Closed connection {self.connection_id}")


@dataclass
class Room:
    room_id: str
    members: Dict[str, Connection] = field(default_factory=dict)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def roster(self) -> List[RosterEntry]:
        return [
            RosterEntry(connection_id=conn_id, display_name=conn.display_name)
            for conn_id, conn in self.members.items()
        ]


class RoomRegistry:
    """Authoritative map of room id -> member connections.

    Every mutation of a room and every fan-out to it runs under that room's
    lock; rooms never wait on each other. A room disappears as soon as its last
    member leaves.
    """

    def __init__(self, presence=None):
        self._rooms: Dict[str, Room] = {}
        self._presence = presence

    def get_room(self, room_id: str) -> Optional[Room]:
        return self._rooms.get(room_id)

    def room_ids(self) -> List[str]:
        return list(self._rooms)

    def roster(self, room_id: str) -> List[RosterEntry]:
        room = self._rooms.get(room_id)
        return room.roster() if room else []

    async def join(self, room_id: str, connection: Connection, display_name: str) -> List[RosterEntry]:
        """Add a connection to a room and announce it to every member, the joiner included."""
        connection.bind(room_id, display_name)
        while True:
            room = self._rooms.get(room_id)
            if room is None:
                room = Room(room_id)
                self._rooms[room_id] = room
                logger.info(f"Created room {room_id}")
            async with room.lock:
                if self._rooms.get(room_id) is not room:
                    # Emptied and deleted while we waited for the lock
                    continue
                room.members[connection.connection_id] = connection
                roster = room.roster()
                logger.info(f"User {connection.connection_id} ({display_name}) joined room {room_id} ({len(roster)} members)")
                await self._mirror(self._presence_add, room_id, connection.connection_id, display_name)

                event = joined_event(roster, display_name, connection.connection_id)
                for member in room.members.values():
                    member.enqueue(event)
                return roster

    async def leave(self, connection: Connection):
        """Remove a connection from its room and tell the rest. No-op if it is not a member."""
        room_id = connection.room_id
        if room_id is None:
            return
        room = self._rooms.get(room_id)
        if room is None:
            logger.debug(f"Leave for connection {connection.connection_id}: room {room_id} no longer exists")
            return
        async with room.lock:
            if self._rooms.get(room_id) is not room or connection.connection_id not in room.members:
                return
            del room.members[connection.connection_id]
            emptied = not room.members
            logger.info(f"User {connection.connection_id} left room {room_id}")
            await self._mirror(self._presence_remove, room_id, connection.connection_id, emptied)

            if emptied:
                del self._rooms[room_id]
                logger.info(f"No more connections in room {room_id}, deleting it")
                return

            event = disconnected_event(connection.connection_id, connection.display_name, room.roster())
            for member in room.members.values():
                member.enqueue(event)

    async def broadcast(self, room_id: str, sender: Connection, event: WireModel) -> int:
        """Deliver an event to every member of a room except the sender. Returns the recipient count."""
        room = self._rooms.get(room_id)
        if room is None:
            logger.debug(f"Broadcast to unknown room {room_id} ignored")
            return 0
        async with room.lock:
            recipients = [conn for conn_id, conn in room.members.items() if conn_id != sender.connection_id]
            for member in recipients:
                member.enqueue(event)
        logger.debug(f"Broadcasted {event.type} to {len(recipients)} connections in room {room_id}")
        return len(recipients)

    async def send_to(self, room_id: str, target_connection_id: str, event: WireModel) -> bool:
        """Deliver an event to one member of a room. Returns False if the target is not in the room."""
        room = self._rooms.get(room_id)
        if room is None:
            return False
        async with room.lock:
            target = room.members.get(target_connection_id)
            if target is None:
                logger.debug(f"Target {target_connection_id} is not a member of room {room_id}")
                return False
            target.enqueue(event)
        return True

    async def refresh_presence(self) -> int:
        """Keep the mirror's expiring keys alive for every room that still has members."""
        if self._presence is None:
            return 0
        refreshed = 0
        for room in list(self._rooms.values()):
            async with room.lock:
                if self._rooms.get(room.room_id) is not room:
                    continue
                await self._mirror(self._presence.refresh_room, room.room_id, list(room.members))
                refreshed += 1
        return refreshed

    def _presence_add(self, room_id: str, connection_id: str, display_name: str):
        self._presence.add_user_to_room(room_id, connection_id, display_name)

    def _presence_remove(self, room_id: str, connection_id: str, emptied: bool):
        self._presence.remove_user_from_room(room_id, connection_id)
        if emptied:
            self._presence.delete_room(room_id)

    async def _mirror(self, func, *args):
        if self._presence is None:
            return
        try:
            await asyncio.to_thread(func, *args)
        except Exception as e:
            logger.error(f"Presence mirror update failed for {args}: {e}", exc_info=True)
