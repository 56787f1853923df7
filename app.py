import asyncio
from contextlib import asynccontextmanager
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from routers.rooms import rooms_router, health_router
from backend import create_redis_backend
from constants import PRESENCE_REFRESH_SECONDS
from registry import Connection, RoomRegistry
from relay import RelayProtocol
import uuid
from logging_config import get_logger, setup_logging
import os

# Setup logging
log_level = os.getenv("LOG_LEVEL", "INFO")
log_file = os.getenv("LOG_FILE", None)
setup_logging(log_level=log_level, log_file=log_file)
logger = get_logger(__name__)


async def presence_refresh_loop(registry: RoomRegistry, interval: float):
    """Keeps mirrored presence alive while rooms stay open. No frames are sent to participants."""
    try:
        while True:
            await asyncio.sleep(interval)
            refreshed = await registry.refresh_presence()
            logger.debug(f"Presence refreshed for {refreshed} rooms")
    except asyncio.CancelledError:
        return


@asynccontextmanager
async def lifespan(app: FastAPI):
    # One registry per process, handed to every connection through app.state
    presence = create_redis_backend()
    registry = RoomRegistry(presence=presence)
    app.state.registry = registry
    app.state.relay = RelayProtocol(registry)
    logger.info("Room registry initialized")
    refresh_task = None
    if presence is not None:
        refresh_task = asyncio.create_task(presence_refresh_loop(registry, PRESENCE_REFRESH_SECONDS))
    yield
    if refresh_task is not None:
        refresh_task.cancel()
    logger.info(f"Shutting down with {len(registry.room_ids())} active rooms")


app = FastAPI(title="CodeCast Relay", lifespan=lifespan)

# Configure CORS to allow all origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Allow all origins
    allow_credentials=True,
    allow_methods=["*"],  # Allow all HTTP methods
    allow_headers=["*"],  # Allow all headers
)

app.include_router(rooms_router)
app.include_router(health_router)

logger.info("FastAPI application initialized")


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """Relay endpoint. The participant picks its room with a join frame after connecting."""
    relay: RelayProtocol = websocket.app.state.relay

    await websocket.accept()
    connection = Connection(str(uuid.uuid4()), websocket.send_text)
    connection.start()
    relay.greet(connection)
    logger.info(f"WebSocket connection accepted: {connection.connection_id}")

    message_count = 0
    try:
        while True:
            data = await websocket.receive_text()
            message_count += 1
            await relay.handle(connection, data)
    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected normally for connection {connection.connection_id} after {message_count} messages")
    except Exception as e:
        logger.error(f"Error receiving message from connection {connection.connection_id}: {e}", exc_info=True)
    finally:
        # Dropped transport and explicit exit take the same path
        await relay.disconnect(connection)
        if connection.room_id:
            logger.info(f"User {connection.connection_id} ({connection.display_name}) left room {connection.room_id}")
