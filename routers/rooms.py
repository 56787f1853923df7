from fastapi import APIRouter, HTTPException, Request
from schemas.rooms import CreateRoomResponse, OnlineUser, RoomDetailsResponse, HealthResponse
import uuid
from logging_config import get_logger

logger = get_logger(__name__)

rooms_router = APIRouter(prefix="/rooms", tags=["rooms"])
health_router = APIRouter(tags=["health"])


def ws_url_for(request: Request) -> str:
    # Replace http/https with ws/wss
    base_url = str(request.base_url).rstrip('/')
    ws_base = base_url.replace("http://", "ws://").replace("https://", "wss://")
    return f"{ws_base}/ws"


@rooms_router.post("/", response_model=CreateRoomResponse)
async def create_room(request: Request):
    """Mint a fresh room id.

    Rooms are created implicitly by the first join, so nothing is registered
    here; the id is just handed back for the caller to share.
    """
    room_id = str(uuid.uuid4())
    client_host = request.client.host if request.client else 'unknown'
    logger.info(f"Room id {room_id} minted for {client_host}")
    return CreateRoomResponse(room_id=room_id, ws_url=ws_url_for(request))


@rooms_router.get("/{room_id}", response_model=RoomDetailsResponse)
async def get_room_details(room_id: str, request: Request):
    """Get the live roster of a room."""
    registry = request.app.state.registry
    room = registry.get_room(room_id)
    if room is None:
        logger.info(f"Room details failed: Room {room_id} not found")
        raise HTTPException(status_code=404, detail="Room not found")

    online_users = [
        OnlineUser(connection_id=entry.connection_id, display_name=entry.display_name)
        for entry in registry.roster(room_id)
    ]
    logger.debug(f"Room details retrieved for {room_id}: {len(online_users)} users online")
    return RoomDetailsResponse(
        room_id=room_id,
        online_users_count=len(online_users),
        online_users=online_users,
    )


@health_router.get("/health", response_model=HealthResponse)
async def health(request: Request):
    return HealthResponse(status="ok", rooms=len(request.app.state.registry.room_ids()))
