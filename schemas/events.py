from pydantic import BaseModel, ConfigDict, Field, StringConstraints, TypeAdapter
from pydantic.alias_generators import to_camel
from typing import Annotated, Literal, Optional, Union

# Frame types carried in the "type" field of every message
JOIN = "join"
JOINED = "joined"
SYNC_CODE = "sync-code"
CODE_CHANGE = "code-change"
DISCONNECTED = "disconnected"
CONNECTED = "connected"
ERROR = "error"

NonBlank = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
# Ids are opaque: compared as-is, only required to contain something other than whitespace
OpaqueId = Annotated[str, StringConstraints(min_length=1, pattern=r"\S")]


class WireModel(BaseModel):
    """Base for everything sent over the socket: camelCase on the wire, snake_case in Python."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> str:
        return self.model_dump_json(by_alias=True)


class RosterEntry(WireModel):
    connection_id: str
    display_name: str


# Payloads

class JoinPayload(WireModel):
    room_id: OpaqueId
    display_name: NonBlank

class JoinedPayload(WireModel):
    roster: list[RosterEntry]
    display_name: str
    connection_id: str

class SyncCodePayload(WireModel):
    code: str = ""
    target_connection_id: OpaqueId

class CodeChangePayload(WireModel):
    room_id: OpaqueId
    code: str = ""

class DisconnectedPayload(WireModel):
    connection_id: str
    display_name: str
    roster: list[RosterEntry] = Field(default_factory=list)

class ConnectedPayload(WireModel):
    connection_id: str

class ErrorPayload(WireModel):
    message: str


# Client -> relay

class JoinMessage(WireModel):
    type: Literal["join"] = JOIN
    payload: JoinPayload

class SyncCodeMessage(WireModel):
    type: Literal["sync-code"] = SYNC_CODE
    payload: SyncCodePayload

class CodeChangeMessage(WireModel):
    type: Literal["code-change"] = CODE_CHANGE
    payload: CodeChangePayload


# Relay -> client

class JoinedEvent(WireModel):
    type: Literal["joined"] = JOINED
    payload: JoinedPayload

class CodeChangeEvent(WireModel):
    type: Literal["code-change"] = CODE_CHANGE
    payload: CodeChangePayload

class DisconnectedEvent(WireModel):
    type: Literal["disconnected"] = DISCONNECTED
    payload: DisconnectedPayload

class ConnectedEvent(WireModel):
    type: Literal["connected"] = CONNECTED
    payload: ConnectedPayload

class ErrorEvent(WireModel):
    type: Literal["error"] = ERROR
    payload: ErrorPayload


ClientMessage = Annotated[
    Union[JoinMessage, SyncCodeMessage, CodeChangeMessage],
    Field(discriminator="type"),
]
ServerEvent = Annotated[
    Union[JoinedEvent, CodeChangeEvent, DisconnectedEvent, ConnectedEvent, ErrorEvent],
    Field(discriminator="type"),
]

_client_message_adapter = TypeAdapter(ClientMessage)
_server_event_adapter = TypeAdapter(ServerEvent)


def parse_client_message(raw: Union[str, bytes]) -> ClientMessage:
    """Validate a frame received by the relay. Raises pydantic.ValidationError."""
    return _client_message_adapter.validate_json(raw)


def parse_server_event(raw: Union[str, bytes]) -> ServerEvent:
    """Validate a frame received by a participant. Raises pydantic.ValidationError."""
    return _server_event_adapter.validate_json(raw)


def joined_event(roster: list[RosterEntry], display_name: str, connection_id: str) -> JoinedEvent:
    return JoinedEvent(payload=JoinedPayload(roster=roster, display_name=display_name, connection_id=connection_id))


def disconnected_event(connection_id: str, display_name: str, roster: list[RosterEntry]) -> DisconnectedEvent:
    return DisconnectedEvent(payload=DisconnectedPayload(connection_id=connection_id, display_name=display_name, roster=roster))


def code_change_event(room_id: str, code: str) -> CodeChangeEvent:
    return CodeChangeEvent(payload=CodeChangePayload(room_id=room_id, code=code))


def error_event(message: str, detail: Optional[str] = None) -> ErrorEvent:
    text = f"{message}: {detail}" if detail else message
    return ErrorEvent(payload=ErrorPayload(message=text))
