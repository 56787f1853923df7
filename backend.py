import redis
from datetime import datetime
from constants import REDIS_ENABLED, REDIS_HOST, REDIS_PORT, REDIS_PASSWORD, PRESENCE_TTL
from redis_keys import REDIS_USERS_KEY, REDIS_CONN_KEY
from logging_config import get_logger

logger = get_logger(__name__)


class RedisBackend:
    """Mirror of the live rosters in Redis so other processes can see who is online.

    The in-process RoomRegistry stays authoritative; this class is only written
    to on join/leave and never consulted when routing frames.
    """

    def __init__(self, redis_client=None, ttl: int = PRESENCE_TTL):
        self.ttl = ttl
        if redis_client is not None:
            self.redis_client = redis_client
            return
        logger.info(f"Initializing RedisBackend with connection to {REDIS_HOST}:{REDIS_PORT}")
        try:
            self.redis_client = redis.Redis(host=REDIS_HOST, port=REDIS_PORT, password=REDIS_PASSWORD, decode_responses=True)
            self.redis_client.ping()
            logger.info(f"Redis client connected successfully to {REDIS_HOST}:{REDIS_PORT}")
        except Exception as e:
            logger.error(f"Failed to connect to Redis at {REDIS_HOST}:{REDIS_PORT}: {e}", exc_info=True)
            raise

    def add_user_to_room(self, room_id: str, connection_id: str, display_name: str):
        """Record a connection as a member of a room."""
        logger.debug(f"Mirroring join of {connection_id} to room {room_id}")
        users_key = REDIS_USERS_KEY.format(slug=room_id)
        self.redis_client.sadd(users_key, connection_id)
        if self.ttl:
            self.redis_client.expire(users_key, self.ttl)

        conn_key = REDIS_CONN_KEY.format(connection_id=connection_id)
        self.redis_client.hset(conn_key, mapping={
            "room_id": room_id,
            "display_name": display_name,
            "connected_at": datetime.now().isoformat(),
        })
        if self.ttl:
            self.redis_client.expire(conn_key, self.ttl)
        return True

    def remove_user_from_room(self, room_id: str, connection_id: str):
        """Forget a connection. Removing an unknown connection is harmless."""
        logger.debug(f"Mirroring leave of {connection_id} from room {room_id}")
        users_key = REDIS_USERS_KEY.format(slug=room_id)
        removed = self.redis_client.srem(users_key, connection_id)
        conn_key = REDIS_CONN_KEY.format(connection_id=connection_id)
        deleted = self.redis_client.delete(conn_key)
        logger.debug(f"User {connection_id} removed from room {room_id}: user_set={removed}, metadata={deleted}")
        return True

    def delete_room(self, room_id: str):
        logger.info(f"Deleting mirrored room {room_id}")
        self.redis_client.delete(REDIS_USERS_KEY.format(slug=room_id))
        return True

    def refresh_room(self, room_id: str, connection_ids):
        """Push back the expiry of a live room and its connections."""
        if not self.ttl:
            return False
        self.redis_client.expire(REDIS_USERS_KEY.format(slug=room_id), self.ttl)
        for conn_id in connection_ids:
            self.redis_client.expire(REDIS_CONN_KEY.format(connection_id=conn_id), self.ttl)
        logger.debug(f"Refreshed presence of room {room_id} ({len(connection_ids)} connections)")
        return True


def create_redis_backend():
    """Build the presence mirror when REDIS_ENABLED is set, otherwise return None."""
    if not REDIS_ENABLED:
        logger.info("Redis presence mirror disabled")
        return None
    return RedisBackend()
