import websockets
from client.session import SessionController
from logging_config import get_logger

logger = get_logger(__name__)


async def run_session(ws_url: str, controller: SessionController, on_ready=None) -> None:
    """Connect to the relay, join, and feed every inbound frame to the controller until the socket closes.

    `on_ready` is awaited once the join frame is out and must return promptly;
    start any long-running input loop as a task from it.
    """
    try:
        async with websockets.connect(ws_url) as ws:
            controller.send = ws.send
            controller.close = ws.close
            logger.info(f"Connected to relay at {ws_url}")
            if not await controller.join():
                await ws.close()
                return
            if on_ready is not None:
                await on_ready()
            async for frame in ws:
                await controller.handle(frame)
    except websockets.exceptions.ConnectionClosedOK:
        logger.info(f"Relay connection at {ws_url} closed")
    except websockets.exceptions.ConnectionClosedError as e:
        logger.warning(f"Relay connection closed unexpectedly: {e}")
    except (websockets.exceptions.InvalidHandshake, websockets.exceptions.InvalidURI, OSError) as e:
        logger.error(f"Socket connection failed: {e}")
        controller.connection_failed()
    finally:
        controller.send = None
        controller.transport_lost()
