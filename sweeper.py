import asyncio
from datetime import datetime, timedelta
from typing import List, Optional

from admin import AdminControlPlane
from backend import utc_now
from errors import StorageError
from persistence import PersistenceBridge
from registry import RoomRegistry
from logging_config import get_logger

logger = get_logger(__name__)


class ExpirySweeper:
    """Periodically deletes rooms that are durably idle and have nobody connected."""

    def __init__(self, registry: RoomRegistry, bridge: PersistenceBridge, admin: AdminControlPlane,
                 expiry_seconds: float, interval_seconds: float):
        self.registry = registry
        self.bridge = bridge
        self.admin = admin
        self.expiry_seconds = expiry_seconds
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None

    async def sweep_once(self, now: datetime = None) -> List[str]:
        idle_before = (now or utc_now()) - timedelta(seconds=self.expiry_seconds)
        try:
            candidates = await self.bridge.inactive_rooms(idle_before)
        except StorageError as e:
            logger.error(f"Error fetching inactive rooms for cleanup: {e.message}")
            return []

        swept = []
        for room_id in candidates:
            try:
                # Stale durable timestamps never outrank live participants.
                if not await self.registry.sweep_room(room_id, idle_before):
                    continue
            except StorageError as e:
                logger.error(f"Error cleaning up room {room_id}: {e.message}")
                continue
            logger.info(f"Cleaned up inactive room: {room_id}")
            self.admin.notify_admins(
                "room-deleted-admin-notify",
                {"roomId": room_id, "message": f"Room {room_id} was automatically cleaned up due to inactivity."},
            )
            swept.append(room_id)
        return swept

    async def run(self) -> None:
        logger.info(f"Expiry sweeper started (interval {self.interval_seconds}s, expiry {self.expiry_seconds}s)")
        try:
            while True:
                await asyncio.sleep(self.interval_seconds)
                try:
                    await self.sweep_once()
                except Exception as e:
                    logger.error(f"Unexpected error during room sweep: {e}", exc_info=True)
        except asyncio.CancelledError:
            logger.info("Expiry sweeper cancelled")
            raise

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
