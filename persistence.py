import asyncio
from datetime import datetime
from functools import partial
from typing import List, Optional

import redis

from backend import RedisBackend
from errors import PartialDeleteError, RoomNotFound, StorageError
from logging_config import get_logger

logger = get_logger(__name__)


class PersistenceBridge:
    """Async facade over the durable store.

    Each call runs the blocking Redis operation in the default executor with a
    hard timeout. Store failures and timeouts surface as StorageError; nothing
    is retried here.
    """

    def __init__(self, backend: RedisBackend, timeout: float = 5.0):
        self.backend = backend
        self.timeout = timeout

    async def _call(self, operation: str, fn, *args):
        loop = asyncio.get_event_loop()
        try:
            return await asyncio.wait_for(loop.run_in_executor(None, partial(fn, *args)), self.timeout)
        except RoomNotFound:
            raise
        except asyncio.TimeoutError:
            logger.error(f"Store call {operation} timed out after {self.timeout}s")
            raise StorageError(f"Database timed out during {operation}.")
        except redis.RedisError as e:
            logger.error(f"Store call {operation} failed: {e}", exc_info=True)
            raise StorageError(f"Database error during {operation}.") from e

    async def room_exists(self, room_id: str) -> bool:
        return await self._call("room lookup", self.backend.room_exists, room_id)

    async def create_room(self, room_id: str) -> Optional[dict]:
        return await self._call("room creation", self.backend.create_room, room_id)

    async def get_room(self, room_id: str) -> Optional[dict]:
        return await self._call("room lookup", self.backend.get_room, room_id)

    async def touch_room(self, room_id: str) -> str:
        return await self._call("activity update", self.backend.touch_room, room_id)

    async def add_message(self, room_id: str, username: str, content: str) -> dict:
        return await self._call("message insert", self.backend.add_message, room_id, username, content)

    async def recent_messages(self, room_id: str, limit: int) -> List[dict]:
        return await self._call("message history", self.backend.get_recent_messages, room_id, limit)

    async def list_rooms(self) -> List[dict]:
        return await self._call("room listing", self.backend.list_rooms)

    async def inactive_rooms(self, idle_before: datetime) -> List[str]:
        return await self._call("inactive room query", self.backend.list_inactive_rooms, idle_before)

    async def purge_room(self, room_id: str) -> None:
        """Delete a room's messages, then the room record.

        A failure after the messages are gone leaves the store inconsistent and
        is reported as PartialDeleteError so the caller can retry or alert.
        """
        await self._call("message deletion", self.backend.delete_messages, room_id)
        try:
            await self._call("room deletion", self.backend.delete_room, room_id)
        except StorageError as e:
            logger.error(f"Room {room_id} messages deleted but room record remains")
            raise PartialDeleteError() from e
