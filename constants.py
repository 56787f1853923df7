import os

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 8000))

REDIS_ENABLED = os.getenv("REDIS_ENABLED", "false").lower() in ("1", "true", "yes")
REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD", None)

# Seconds a mirrored roster entry survives without being refreshed
PRESENCE_TTL = int(os.getenv("PRESENCE_TTL", 3600))
PRESENCE_REFRESH_SECONDS = float(os.getenv("PRESENCE_REFRESH_SECONDS", PRESENCE_TTL / 3))

# Events buffered per connection before the oldest one is dropped
OUTBOUND_QUEUE_SIZE = int(os.getenv("OUTBOUND_QUEUE_SIZE", 256))

COMPILER_URL = os.getenv("COMPILER_URL", "http://localhost:8000/compile")
COMPILE_TIMEOUT = float(os.getenv("COMPILE_TIMEOUT", 30))
