import os
from typing import Optional

from pydantic import BaseModel

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 8000))

# No default host: the relay refuses to start without a configured store.
REDIS_HOST = os.getenv("REDIS_HOST")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD", None)

ROOM_EXPIRY_HOURS = float(os.getenv("ROOM_EXPIRY_HOURS", 2))
MESSAGE_HISTORY_LIMIT = int(os.getenv("MESSAGE_HISTORY_LIMIT", 50))
RATE_LIMIT_WINDOW_MS = int(os.getenv("RATE_LIMIT_WINDOW", 60 * 1000))
RATE_LIMIT_MAX_MESSAGES = int(os.getenv("RATE_LIMIT_MAX", 10))
ADMIN_SECRET = os.getenv("ADMIN_SECRET", "BOLT_ADMIN_SECRET")
SWEEP_INTERVAL_SECONDS = float(os.getenv("SWEEP_INTERVAL", 5 * 60))
STORE_TIMEOUT_SECONDS = float(os.getenv("STORE_TIMEOUT", 5))
ROOM_CODE_ATTEMPTS = int(os.getenv("ROOM_CODE_ATTEMPTS", 10))
OUTBOX_LIMIT = int(os.getenv("OUTBOX_LIMIT", 256))

ROOM_CODE_LENGTH = 6
ROOM_CODE_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
MAX_MESSAGE_LENGTH = 500


class ChatSettings(BaseModel):
    """Tunables shared by the coordinator components.

    Defaults come from the environment; tests override individual fields.
    """
    redis_host: Optional[str] = REDIS_HOST
    redis_port: int = REDIS_PORT
    redis_password: Optional[str] = REDIS_PASSWORD
    room_expiry_seconds: float = ROOM_EXPIRY_HOURS * 60 * 60
    message_history_limit: int = MESSAGE_HISTORY_LIMIT
    rate_limit_window_seconds: float = RATE_LIMIT_WINDOW_MS / 1000
    rate_limit_max_messages: int = RATE_LIMIT_MAX_MESSAGES
    admin_secret: str = ADMIN_SECRET
    sweep_interval_seconds: float = SWEEP_INTERVAL_SECONDS
    store_timeout_seconds: float = STORE_TIMEOUT_SECONDS
    room_code_attempts: int = ROOM_CODE_ATTEMPTS
    outbox_limit: int = OUTBOX_LIMIT
    max_message_length: int = MAX_MESSAGE_LENGTH
