import json
from datetime import datetime, timezone
from typing import List, Optional

import redis

from constants import REDIS_HOST, REDIS_PORT, REDIS_PASSWORD, STORE_TIMEOUT_SECONDS
from errors import RoomNotFound, StoreNotConfigured
from redis_keys import REDIS_META_KEY, REDIS_MESSAGES_KEY, REDIS_ACTIVITY_KEY, REDIS_MESSAGE_SEQ_KEY
from logging_config import get_logger

logger = get_logger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def connect_redis(host: Optional[str] = REDIS_HOST, port: int = REDIS_PORT, password: Optional[str] = REDIS_PASSWORD,
                  timeout: float = STORE_TIMEOUT_SECONDS) -> redis.Redis:
    """Create and ping the Redis client. Fails fast when no store is configured."""
    if not host:
        logger.critical("REDIS_HOST is not set. Please set REDIS_HOST (and REDIS_PASSWORD if required).")
        raise StoreNotConfigured()
    try:
        client = redis.Redis(host=host, port=port, password=password, decode_responses=True,
                             socket_timeout=timeout, socket_connect_timeout=timeout)
        # Test connection
        client.ping()
        logger.info(f"Redis client connected successfully to {host}:{port}")
    except Exception as e:
        logger.error(f"Failed to connect to Redis at {host}:{port}: {e}", exc_info=True)
        raise
    return client


class RedisBackend:
    """Durable room and message records.

    Every method is a blocking Redis round trip; callers run them through the
    persistence bridge rather than directly on the event loop.
    """

    def __init__(self, redis_client: redis.Redis):
        self.redis_client = redis_client

    def room_exists(self, room_id: str) -> bool:
        return bool(self.redis_client.exists(REDIS_META_KEY.format(slug=room_id)))

    def create_room(self, room_id: str, created_at: datetime = None) -> Optional[dict]:
        """Insert the room row if the code is free. Returns None if another writer owns the code.

        The claim, the metadata and the activity entry are written in one
        transaction, so a failure never leaves a half-created room behind.
        """
        created_at = created_at or utc_now()
        key = REDIS_META_KEY.format(slug=room_id)
        stamp = created_at.isoformat()
        room = {"id": room_id, "created_at": stamp, "last_activity": stamp}

        def _claim(pipe):
            if pipe.exists(key):
                return False
            pipe.multi()
            pipe.hset(key, mapping=room)
            pipe.zadd(REDIS_ACTIVITY_KEY, {room_id: created_at.timestamp()})
            return True

        if not self.redis_client.transaction(_claim, key, value_from_callable=True):
            logger.debug(f"Room code {room_id} already taken")
            return None
        logger.debug(f"Room {room_id} created with key: {key}")
        return room

    def get_room(self, room_id: str) -> Optional[dict]:
        room_data = self.redis_client.hgetall(REDIS_META_KEY.format(slug=room_id))
        if not room_data:
            logger.debug(f"Room {room_id} not found in Redis")
            return None
        return room_data

    def _write_if_room_exists(self, room_id: str, write) -> None:
        """Run `write(pipe)` in a MULTI block guarded by a WATCH on the room hash.

        Raises RoomNotFound if the room has been deleted, so a late write never
        recreates a purged room.
        """
        key = REDIS_META_KEY.format(slug=room_id)

        def _transaction(pipe):
            if not pipe.exists(key):
                return False
            pipe.multi()
            write(pipe)
            return True

        if not self.redis_client.transaction(_transaction, key, value_from_callable=True):
            raise RoomNotFound()

    def touch_room(self, room_id: str, at: datetime = None) -> str:
        at = at or utc_now()
        stamp = at.isoformat()

        def _write(pipe):
            pipe.hset(REDIS_META_KEY.format(slug=room_id), "last_activity", stamp)
            pipe.zadd(REDIS_ACTIVITY_KEY, {room_id: at.timestamp()})

        self._write_if_room_exists(room_id, _write)
        return stamp

    def add_message(self, room_id: str, username: str, content: str, at: datetime = None) -> dict:
        """Append a message and bump the room's last activity in one transaction."""
        at = at or utc_now()
        stamp = at.isoformat()
        message = {
            "id": int(self.redis_client.incr(REDIS_MESSAGE_SEQ_KEY)),
            "username": username,
            "message": content,
            "timestamp": stamp,
        }

        def _write(pipe):
            pipe.rpush(REDIS_MESSAGES_KEY.format(slug=room_id), json.dumps(message))
            pipe.hset(REDIS_META_KEY.format(slug=room_id), "last_activity", stamp)
            pipe.zadd(REDIS_ACTIVITY_KEY, {room_id: at.timestamp()})

        self._write_if_room_exists(room_id, _write)
        return message

    def get_recent_messages(self, room_id: str, limit: int) -> List[dict]:
        """Most recent `limit` messages, oldest first."""
        if limit <= 0:
            return []
        raw = self.redis_client.lrange(REDIS_MESSAGES_KEY.format(slug=room_id), -limit, -1)
        messages = []
        for item in raw:
            try:
                messages.append(json.loads(item))
            except (json.JSONDecodeError, TypeError):
                logger.warning(f"Skipping unreadable message in room {room_id}: {item!r}")
        return messages

    def list_rooms(self) -> List[dict]:
        room_ids = self.redis_client.zrange(REDIS_ACTIVITY_KEY, 0, -1)
        if not room_ids:
            return []
        pipe = self.redis_client.pipeline()
        for room_id in room_ids:
            pipe.hgetall(REDIS_META_KEY.format(slug=room_id))
        rooms = []
        for room_id, room_data in zip(room_ids, pipe.execute()):
            if room_data:
                rooms.append(room_data)
            else:
                logger.debug(f"Activity index lists {room_id} but no metadata exists")
        return rooms

    def list_inactive_rooms(self, before: datetime) -> List[str]:
        return list(self.redis_client.zrangebyscore(REDIS_ACTIVITY_KEY, "-inf", f"({before.timestamp()}"))

    def delete_messages(self, room_id: str) -> int:
        deleted = self.redis_client.delete(REDIS_MESSAGES_KEY.format(slug=room_id))
        logger.debug(f"Deleted message list for room {room_id}: {deleted}")
        return deleted

    def delete_room(self, room_id: str) -> int:
        pipe = self.redis_client.pipeline()
        pipe.delete(REDIS_META_KEY.format(slug=room_id))
        pipe.zrem(REDIS_ACTIVITY_KEY, room_id)
        deleted, _ = pipe.execute()
        logger.debug(f"Deleted room record {room_id}: {deleted}")
        return deleted
