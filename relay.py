from pydantic import ValidationError
from registry import Connection, ConnectionBoundError, RoomRegistry
from schemas.events import (
    CODE_CHANGE,
    JOIN,
    SYNC_CODE,
    CodeChangeMessage,
    ConnectedEvent,
    ConnectedPayload,
    JoinMessage,
    SyncCodeMessage,
    code_change_event,
    error_event,
    parse_client_message,
)
from logging_config import get_logger

logger = get_logger(__name__)


class RelayProtocol:
    """Turns inbound frames from one connection into registry operations.

    Every frame from a connection goes through `handle`, which validates it and
    dispatches on its type. The relay keeps no copy of any buffer.
    """

    def __init__(self, registry: RoomRegistry):
        self.registry = registry
        self._handlers = {
            JOIN: self._on_join,
            SYNC_CODE: self._on_sync_code,
            CODE_CHANGE: self._on_code_change,
        }

    def greet(self, connection: Connection):
        connection.enqueue(ConnectedEvent(payload=ConnectedPayload(connection_id=connection.connection_id)))

    async def handle(self, connection: Connection, data) -> None:
        try:
            message = parse_client_message(data)
        except ValidationError as e:
            logger.warning(f"Rejected frame from connection {connection.connection_id}: {e.error_count()} validation error(s)")
            connection.enqueue(error_event("Invalid message", _first_error(e)))
            return
        logger.debug(f"Received {message.type} from connection {connection.connection_id}")
        await self._handlers[message.type](connection, message)

    async def disconnect(self, connection: Connection) -> None:
        """Transport is gone: leave the room on the participant's behalf and stop the writer."""
        await self.registry.leave(connection)
        await connection.close()

    async def _on_join(self, connection: Connection, message: JoinMessage):
        payload = message.payload
        try:
            await self.registry.join(payload.room_id, connection, payload.display_name)
        except ConnectionBoundError as e:
            logger.warning(str(e))
            connection.enqueue(error_event("Already joined", connection.room_id))

    async def _on_sync_code(self, connection: Connection, message: SyncCodeMessage):
        if not connection.joined:
            connection.enqueue(error_event("Join a room before syncing code"))
            return
        target = message.payload.target_connection_id
        if target == connection.connection_id:
            # A newcomer answering its own join would overwrite what existing members send it
            logger.debug(f"Ignoring self-addressed sync from {connection.connection_id}")
            return
        # The newcomer only listens for code changes, so the sync arrives as one
        delivered = await self.registry.send_to(
            connection.room_id, target, code_change_event(connection.room_id, message.payload.code)
        )
        if not delivered:
            logger.debug(f"Sync from {connection.connection_id} to {target} dropped: target not in room {connection.room_id}")

    async def _on_code_change(self, connection: Connection, message: CodeChangeMessage):
        if not connection.joined:
            connection.enqueue(error_event("Join a room before sending code"))
            return
        room_id = message.payload.room_id
        if room_id != connection.room_id:
            logger.warning(f"Connection {connection.connection_id} sent code for room {room_id} but is in {connection.room_id}")
            connection.enqueue(error_event("Not a member of room", room_id))
            return
        await self.registry.broadcast(room_id, connection, code_change_event(room_id, message.payload.code))


def _first_error(exc: ValidationError) -> str:
    err = exc.errors()[0]
    location = ".".join(str(part) for part in err.get("loc", ()))
    return f"{location} {err.get('msg', '')}".strip()
