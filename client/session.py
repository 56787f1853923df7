"""Participant-side state machine for one room.

The controller knows nothing about sockets: it is given an async `send`
callable for outbound frames and fed inbound frames through `handle`. That
keeps the join/sync/edit rules testable without a live relay.
"""

from enum import Enum
from pydantic import ValidationError
from typing import Awaitable, Callable, List, Optional
from schemas.events import (
    CODE_CHANGE,
    CONNECTED,
    DISCONNECTED,
    ERROR,
    JOINED,
    CodeChangeMessage,
    CodeChangePayload,
    JoinMessage,
    JoinPayload,
    RosterEntry,
    SyncCodeMessage,
    SyncCodePayload,
    parse_server_event,
)
from logging_config import get_logger

logger = get_logger(__name__)

SendText = Callable[[str], Awaitable[None]]
CloseTransport = Callable[[], Awaitable[None]]


class SessionState(str, Enum):
    DISCONNECTED = "disconnected"
    JOINING = "joining"
    JOINED = "joined"
    LEAVING = "leaving"


def last_writer_wins(local: str, remote: str) -> str:
    return remote


class SessionController:
    def __init__(
        self,
        room_id: str,
        display_name: str,
        send: Optional[SendText] = None,
        close: Optional[CloseTransport] = None,
        compiler=None,
        on_code: Optional[Callable[[str], None]] = None,
        on_notify: Optional[Callable[[str], None]] = None,
        on_redirect: Optional[Callable[[], None]] = None,
        apply_remote: Callable[[str, str], str] = last_writer_wins,
    ):
        self.room_id = room_id or ""
        self.display_name = (display_name or "").strip()
        self.send = send
        self.close = close
        self.compiler = compiler
        self.on_code = on_code
        self.on_notify = on_notify
        self.on_redirect = on_redirect
        self.apply_remote = apply_remote

        self.state = SessionState.DISCONNECTED
        self.connection_id: Optional[str] = None
        self.buffer = ""
        self.roster: List[RosterEntry] = []
        self.notifications: List[str] = []
        self.output = ""
        self.loading = False

    async def join(self) -> bool:
        """Send the join frame. A missing room id or display name never leaves the client."""
        self.state = SessionState.JOINING
        try:
            payload = JoinPayload(room_id=self.room_id, display_name=self.display_name)
        except ValidationError:
            logger.warning(f"Refusing to join: room_id={self.room_id!r}, display_name={self.display_name!r}")
            self._fail("Room ID and username are required")
            return False
        await self._send(JoinMessage(payload=payload))
        return True

    async def handle(self, data) -> None:
        """Apply one frame received from the relay."""
        try:
            event = parse_server_event(data)
        except ValidationError as e:
            logger.warning(f"Ignoring unreadable frame from relay: {e.error_count()} validation error(s)")
            return

        if event.type == CONNECTED:
            self.connection_id = event.payload.connection_id
        elif event.type == JOINED:
            await self._on_joined(event.payload)
        elif event.type == CODE_CHANGE:
            self._on_code_change(event.payload.code)
        elif event.type == DISCONNECTED:
            self._on_disconnected(event.payload)
        elif event.type == ERROR:
            self._on_error(event.payload.message)

    async def edit(self, code: str) -> None:
        """Local keystroke: the local copy changes first, then the room is told."""
        self.buffer = code
        if self.state in (SessionState.JOINING, SessionState.JOINED):
            await self._send(CodeChangeMessage(payload=CodeChangePayload(room_id=self.room_id, code=code)))

    async def leave(self) -> None:
        """Close the transport; the relay notices and removes us from the room."""
        if self.state == SessionState.DISCONNECTED:
            return
        self.state = SessionState.LEAVING
        try:
            if self.close is not None:
                await self.close()
        finally:
            self.state = SessionState.DISCONNECTED
            self.roster = []

    def transport_lost(self) -> None:
        if self.state != SessionState.DISCONNECTED:
            logger.info(f"Connection to room {self.room_id} lost")
        self.state = SessionState.DISCONNECTED
        self.roster = []

    async def run(self, language: str = "python", stdin: str = "") -> str:
        """Execute the current buffer through the compile service and keep the output."""
        if self.compiler is None or self.buffer == "":
            return self.output
        self.loading = True
        try:
            result = await self.compiler.compile(self.buffer, language, stdin)
            self.output = result.output
        finally:
            self.loading = False
        return self.output

    def clear_output(self) -> None:
        self.output = ""

    def is_self(self, connection_id: str, display_name: str) -> bool:
        if self.connection_id is not None:
            return connection_id == self.connection_id
        return display_name == self.display_name

    async def _on_joined(self, payload) -> None:
        self.roster = list(payload.roster)
        if self.is_self(payload.connection_id, payload.display_name):
            if self.state == SessionState.JOINING:
                self.state = SessionState.JOINED
                logger.info(f"Joined room {self.room_id} as {self.display_name}")
        else:
            self._notify(f"{payload.display_name} joined the room.")

        # Every member answers, so a newcomer may get several of these
        await self._send(SyncCodeMessage(payload=SyncCodePayload(
            code=self.buffer, target_connection_id=payload.connection_id,
        )))

    def _on_code_change(self, code: str) -> None:
        if code == self.buffer:
            return
        self.buffer = self.apply_remote(self.buffer, code)
        if self.on_code is not None:
            self.on_code(self.buffer)

    def _on_disconnected(self, payload) -> None:
        self._notify(f"{payload.display_name} left the room")
        self.roster = [entry for entry in self.roster if entry.connection_id != payload.connection_id]

    def _on_error(self, message: str) -> None:
        if self.state == SessionState.JOINING:
            self._fail(message)
        else:
            self._notify(message)

    def connection_failed(self, message: str = "Socket connection failed, Try again later") -> None:
        self._fail(message)

    def _fail(self, message: str) -> None:
        self._notify(message)
        self.state = SessionState.DISCONNECTED
        if self.on_redirect is not None:
            self.on_redirect()

    def _notify(self, message: str) -> None:
        self.notifications.append(message)
        if self.on_notify is not None:
            self.on_notify(message)

    async def _send(self, message) -> None:
        if self.send is None:
            logger.debug(f"No transport attached, dropping {message.type}")
            return
        await self.send(message.to_wire())
