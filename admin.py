import hmac
from typing import Dict, List, Optional

from connection import Connection
from errors import RoomNotFound, StorageError, Unauthorized
from identifiers import normalize_room_code
from persistence import PersistenceBridge
from registry import RoomRegistry
from logging_config import get_logger

logger = get_logger(__name__)


class AdminControlPlane:
    """Shared-secret admin sessions and the privileged room operations."""

    def __init__(self, registry: RoomRegistry, bridge: PersistenceBridge, secret: str):
        self.registry = registry
        self.bridge = bridge
        self._secret = secret
        self._admins: Dict[str, Connection] = {}

    def is_admin(self, connection: Connection) -> bool:
        return connection.id in self._admins

    def _require_admin(self, connection: Connection) -> None:
        if not self.is_admin(connection):
            logger.warning(f"Unauthorized admin request from {connection.id}")
            raise Unauthorized()

    def authenticate(self, connection: Connection, secret) -> bool:
        if not isinstance(secret, str) or not hmac.compare_digest(secret.encode(), self._secret.encode()):
            logger.warning(f"Admin login failed for {connection.id}")
            return False
        self._admins[connection.id] = connection
        logger.info(f"Admin connected: {connection.id}")
        return True

    async def push_snapshot(self, connection: Connection) -> None:
        """Send the freshly authenticated admin the current room list."""
        connection.send("admin-authenticated", {})
        try:
            rooms = await self._room_summaries()
        except StorageError as e:
            logger.error(f"Failed to load rooms for admin {connection.id}: {e.message}")
            connection.send("active-rooms-list", {"rooms": [], "message": "Failed to load rooms."})
            return
        connection.send("active-rooms-list", {"rooms": rooms})

    def revoke(self, connection: Connection) -> None:
        if self._admins.pop(connection.id, None) is not None:
            logger.info(f"Admin disconnected: {connection.id}")

    async def _room_summaries(self) -> List[dict]:
        rooms = await self.bridge.list_rooms()
        return [
            {
                "id": room["id"],
                "userCount": self.registry.participant_count(room["id"]),
                "createdAt": room.get("created_at"),
                "lastActivity": room.get("last_activity"),
            }
            for room in rooms
        ]

    async def list_rooms(self, connection: Connection) -> List[dict]:
        self._require_admin(connection)
        return await self._room_summaries()

    async def delete_room(self, connection: Connection, room_id) -> str:
        self._require_admin(connection)
        room_id = normalize_room_code(room_id)
        if not room_id:
            raise RoomNotFound("Room not found in database.")

        try:
            await self.registry.delete_room(
                room_id,
                notice=f"This room ({room_id}) has been deleted by an administrator. You will be disconnected.",
            )
        except RoomNotFound:
            logger.warning(f"Admin delete failed: room {room_id!r} not found")
            raise
        logger.info(f"Room deleted by admin: {room_id}")

        self.notify_admins(
            "room-deleted-admin-notify",
            {"roomId": room_id, "message": f"Room {room_id} was deleted by another administrator."},
            exclude=connection.id,
        )
        return room_id

    def notify_admins(self, event: str, data: dict, exclude: Optional[str] = None) -> None:
        for connection_id, admin in list(self._admins.items()):
            if connection_id != exclude:
                admin.send(event, data)
