import asyncio
import time
from collections import deque
from contextlib import asynccontextmanager
from datetime import datetime
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, List, Optional

from connection import Connection
from errors import CollisionExhausted, RoomNotFound
from identifiers import generate_room_code, generate_username, normalize_room_code
from persistence import PersistenceBridge
from logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class Participant:
    username: str
    connection: Connection
    last_activity: float


@dataclass
class Room:
    id: str
    message_limit: int
    last_activity: float = field(default_factory=time.time)
    # Insertion-ordered: join order is the broadcast order.
    participants: Dict[str, Participant] = field(default_factory=dict)
    messages: Deque[dict] = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    closed: bool = False

    def __post_init__(self):
        if self.messages is None:
            self.messages = deque(maxlen=self.message_limit)

    def usernames(self) -> List[str]:
        return [p.username for p in self.participants.values()]

    def touch(self, at: float = None) -> None:
        self.last_activity = at if at is not None else time.time()


@dataclass
class JoinResult:
    room_id: str
    username: str
    messages: List[dict]
    active_users: List[str]


class RoomRegistry:
    """Live membership of every active room.

    The durable store is authoritative for which rooms exist and what was said;
    this registry only caches who is connected right now. A room's participants
    double as its broadcast subscribers, and every change to them happens while
    holding that room's lock.
    """

    def __init__(self, bridge: PersistenceBridge, message_limit: int = 50, max_code_attempts: int = 10,
                 code_factory: Callable[[], str] = generate_room_code,
                 name_factory: Callable[[], str] = generate_username):
        self.bridge = bridge
        self.message_limit = message_limit
        self.max_code_attempts = max_code_attempts
        self.code_factory = code_factory
        self.name_factory = name_factory
        self._rooms: Dict[str, Room] = {}
        # connection id -> room id
        self._membership: Dict[str, str] = {}

    def _new_room(self, room_id: str) -> Room:
        return Room(id=room_id, message_limit=self.message_limit)

    def get_room(self, room_id: str) -> Optional[Room]:
        return self._rooms.get(room_id)

    def room_of(self, connection_id: str) -> Optional[str]:
        return self._membership.get(connection_id)

    def participant(self, room_id: str, connection_id: str) -> Optional[Participant]:
        room = self._rooms.get(room_id)
        if room is None or room.closed:
            return None
        return room.participants.get(connection_id)

    def participant_count(self, room_id: str) -> int:
        room = self._rooms.get(room_id)
        return len(room.participants) if room else 0

    def active_room_ids(self) -> List[str]:
        return list(self._rooms)

    async def create_room(self) -> str:
        """Allocate a code unused in the durable store, persist it, and cache an empty room."""
        for attempt in range(1, self.max_code_attempts + 1):
            room_id = self.code_factory()
            if await self.bridge.room_exists(room_id):
                logger.debug(f"Room code collision on {room_id} (attempt {attempt})")
                continue
            if await self.bridge.create_room(room_id) is None:
                logger.debug(f"Room code {room_id} claimed concurrently (attempt {attempt})")
                continue
            self._rooms.setdefault(room_id, self._new_room(room_id))
            logger.info(f"Room created: {room_id}")
            return room_id
        logger.error(f"Gave up allocating a room code after {self.max_code_attempts} attempts")
        raise CollisionExhausted()

    async def join_room(self, room_id: str, connection: Connection) -> JoinResult:
        room_id = normalize_room_code(room_id)
        if not room_id or await self.bridge.get_room(room_id) is None:
            logger.warning(f"Join rejected: room {room_id!r} not found")
            raise RoomNotFound()

        # A connection is in at most one room.
        if self._membership.get(connection.id) is not None:
            await self.leave_room(connection)

        async with self._room_section(room_id) as room:
            # Raises RoomNotFound if a delete or sweep purged the room since the check above.
            await self.record_activity(room_id)
            history = await self.bridge.recent_messages(room_id, self.message_limit)
            if not room.messages and history:
                room.messages.extend(history)
            now = time.time()
            username = self.name_factory()
            room.participants[connection.id] = Participant(username=username, connection=connection, last_activity=now)
            self._membership[connection.id] = room_id
            room.touch(now)
            active_users = room.usernames()
            self._broadcast(room, "user-joined", {"username": username, "activeUsers": active_users},
                            exclude=connection.id)

        logger.info(f"{username} ({connection.id}) joined room: {room_id}")
        return JoinResult(room_id=room_id, username=username, messages=history, active_users=active_users)

    async def leave_room(self, connection: Connection) -> Optional[str]:
        """Remove the connection from its room, if any. Returns the room id it left."""
        room_id = self._membership.pop(connection.id, None)
        if room_id is None:
            return None
        room = self._rooms.get(room_id)
        if room is None:
            return None
        async with room.lock:
            participant = room.participants.pop(connection.id, None)
            if participant is None:
                return None
            room.touch()
            active_users = room.usernames()
            self._broadcast(room, "user-left", {"username": participant.username, "activeUsers": active_users})
        logger.info(f"{participant.username} ({connection.id}) left room: {room_id}")
        if not active_users:
            logger.info(f"Room {room_id} is now empty in-memory.")
        return room_id

    async def record_activity(self, room_id: str) -> None:
        room = self._rooms.get(room_id)
        if room is not None:
            room.touch()
        await self.bridge.touch_room(room_id)

    async def publish_message(self, room_id: str, connection_id: str, message: dict) -> bool:
        """Cache a persisted message and deliver it to everyone in the room, sender included."""
        room = self._rooms.get(room_id)
        if room is None:
            return False
        async with room.lock:
            participant = room.participants.get(connection_id)
            if room.closed or participant is None:
                return False
            room.messages.append(message)
            now = time.time()
            room.touch(now)
            participant.last_activity = now
            self._broadcast(room, "new-message", message)
        return True

    async def broadcast_typing(self, room_id: str, connection_id: str, is_typing: bool) -> bool:
        room = self._rooms.get(room_id)
        if room is None:
            return False
        async with room.lock:
            participant = room.participants.get(connection_id)
            if room.closed or participant is None:
                return False
            self._broadcast(room, "typing-indicator", {"username": participant.username, "isTyping": is_typing},
                            exclude=connection_id)
        return True

    async def delete_room(self, room_id: str, notice: Optional[str] = None) -> int:
        """Evict every participant and purge the room from the store.

        The room stays locked until the purge finishes, so a concurrent join
        either lands before the delete (and is evicted) or finds the room gone.
        Returns how many participants were evicted.
        """
        async with self._room_section(room_id) as room:
            if not await self.bridge.room_exists(room_id):
                raise RoomNotFound("Room not found in database.")
            room.closed = True
            participants = list(room.participants.values())
            if notice is not None:
                self._broadcast(room, "room-deleted-user-notify", {"message": notice})
            for participant in participants:
                self._membership.pop(participant.connection.id, None)
                participant.connection.close()
            room.participants.clear()
            await self.bridge.purge_room(room_id)
        logger.info(f"Room {room_id} deleted ({len(participants)} participants evicted)")
        return len(participants)

    async def sweep_room(self, room_id: str, idle_before: datetime) -> bool:
        """Purge the room if nobody is connected and it is still durably idle.

        The last activity is re-read under the room lock, so a join that
        refreshed it after the room was picked for expiry keeps it alive.
        """
        async with self._room_section(room_id) as room:
            if room.participants:
                logger.debug(f"Skipping inactive room {room_id}: participants still connected")
                return False
            record = await self.bridge.get_room(room_id)
            if record is None:
                return False
            last_activity = datetime.fromisoformat(record["last_activity"])
            if last_activity >= idle_before:
                logger.debug(f"Skipping room {room_id}: active since it was queued for expiry")
                return False
            room.closed = True
            await self.bridge.purge_room(room_id)
        return True

    @asynccontextmanager
    async def _room_section(self, room_id: str):
        """Hold a room's lock, creating a placeholder entry if it is not cached.

        A room closed by a delete or sweep is dropped from the map before its
        lock is released; waiters then retry against a fresh entry. On exit the
        entry is dropped if it was closed, or if this section created it and
        nobody joined.
        """
        while True:
            created = room_id not in self._rooms
            room = self._rooms.setdefault(room_id, self._new_room(room_id))
            async with room.lock:
                if room.closed:
                    continue
                try:
                    yield room
                finally:
                    if room.closed or (created and not room.participants):
                        room.closed = True
                        if self._rooms.get(room_id) is room:
                            del self._rooms[room_id]
                return

    def _broadcast(self, room: Room, event: str, data: dict, exclude: Optional[str] = None) -> None:
        for connection_id, participant in room.participants.items():
            if connection_id == exclude:
                continue
            participant.connection.send(event, data)
        logger.debug(f"Broadcast {event} to room {room.id} ({len(room.participants)} participants)")
