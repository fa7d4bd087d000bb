import json
from typing import Optional

from pydantic import ValidationError as PayloadError

from admin import AdminControlPlane
from connection import Connection
from errors import ChatError, RateLimited, RoomNotFound, StorageError, ValidationError
from identifiers import normalize_room_code
from persistence import PersistenceBridge
from rate_limiter import RateLimiter
from registry import RoomRegistry
from schemas.events import (
    EventFrame, JoinRoomRequest, SendMessageRequest, TypingRequest, AdminLoginRequest, DeleteRoomRequest,
    CreateRoomResponse, JoinRoomResponse, HistoryMessage, ListRoomsResponse, RoomSummary, DeleteRoomResponse,
    FailureResponse,
)
from logging_config import get_logger

logger = get_logger(__name__)


class EventRouter:
    """Handles the inbound events of a single connection.

    Requests carrying an ack id get exactly one reply; chat traffic
    (send-message, typing) answers only through pushed events.
    """

    def __init__(self, connection: Connection, registry: RoomRegistry, admin: AdminControlPlane,
                 limiter: RateLimiter, bridge: PersistenceBridge, max_message_length: int = 500):
        self.connection = connection
        self.registry = registry
        self.admin = admin
        self.limiter = limiter
        self.bridge = bridge
        self.max_message_length = max_message_length
        self._handlers = {
            "create-room": self.create_room,
            "join-room": self.join_room,
            "send-message": self.send_message,
            "typing": self.typing,
            "admin-login": self.admin_login,
            "list-rooms": self.list_rooms,
            "delete-room": self.delete_room,
        }

    async def dispatch(self, raw: str) -> None:
        try:
            frame = EventFrame.model_validate(json.loads(raw))
        except (json.JSONDecodeError, PayloadError) as e:
            logger.warning(f"Ignoring malformed frame from {self.connection.id}: {e}")
            return

        logger.debug(f"Event {frame.event} from connection {self.connection.id}")
        handler = self._handlers.get(frame.event)
        if handler is None:
            logger.warning(f"Unknown event {frame.event!r} from {self.connection.id}")
            self.connection.reply(frame.ack, FailureResponse(message="Unknown event.").model_dump())
            return

        try:
            response = await handler(frame)
        except PayloadError as e:
            logger.warning(f"Invalid {frame.event} payload from {self.connection.id}: {e}")
            response = FailureResponse(message="Invalid request.")
        except ChatError as e:
            logger.warning(f"{frame.event} failed for {self.connection.id}: {e.message}")
            response = FailureResponse(message=e.message)
        except Exception as e:
            logger.error(f"Error handling {frame.event} for {self.connection.id}: {e}", exc_info=True)
            response = FailureResponse(message="Internal server error.")

        if response is not None:
            self.connection.reply(frame.ack, response.model_dump())

    async def create_room(self, frame: EventFrame) -> CreateRoomResponse:
        room_id = await self.registry.create_room()
        self.admin.notify_admins("room-created-admin-notify", {"roomId": room_id})
        return CreateRoomResponse(roomId=room_id)

    async def join_room(self, frame: EventFrame) -> JoinRoomResponse:
        request = JoinRoomRequest.model_validate(frame.data or {})
        result = await self.registry.join_room(request.roomId, self.connection)
        return JoinRoomResponse(
            username=result.username,
            messages=[HistoryMessage.model_validate(m) for m in result.messages],
            activeUsers=result.active_users,
        )

    def _validate_text(self, text) -> str:
        if not isinstance(text, str):
            raise ValidationError()
        trimmed = text.strip()
        if not trimmed or len(text) > self.max_message_length:
            raise ValidationError()
        return trimmed

    async def send_message(self, frame: EventFrame) -> None:
        try:
            request = SendMessageRequest.model_validate(frame.data or {})
        except PayloadError:
            logger.debug(f"Dropping send-message without a room from {self.connection.id}")
            return None

        room_id = normalize_room_code(request.roomId)
        participant = self.registry.participant(room_id, self.connection.id)
        if participant is None:
            # Not a member of that room: nothing to do.
            return None

        try:
            if not self.limiter.allow(self.connection.id):
                raise RateLimited()
            text = self._validate_text(request.message)
            message = await self.bridge.add_message(room_id, participant.username, text)
        except RateLimited as e:
            logger.warning(f"Rate limit exceeded for {self.connection.id} in room {room_id}")
            self.connection.send("rate-limit-exceeded", {"message": e.message})
            return None
        except ValidationError as e:
            self.connection.send("message-error", {"message": e.message})
            return None
        except RoomNotFound:
            self.connection.send("message-error", {"message": "Failed to send message (room no longer exists)."})
            return None
        except StorageError:
            self.connection.send("message-error", {"message": "Failed to send message (database error)."})
            return None

        await self.registry.publish_message(room_id, self.connection.id, message)
        logger.debug(f"Message in {room_id} from {participant.username} persisted and broadcast")
        return None

    async def typing(self, frame: EventFrame) -> None:
        try:
            request = TypingRequest.model_validate(frame.data or {})
        except PayloadError:
            return None
        await self.registry.broadcast_typing(normalize_room_code(request.roomId), self.connection.id,
                                             request.isTyping)
        return None

    async def admin_login(self, frame: EventFrame) -> Optional[FailureResponse]:
        request = AdminLoginRequest.model_validate(frame.data or {})
        if not self.admin.authenticate(self.connection, request.secret):
            return FailureResponse(message="Invalid admin secret.")
        # The ack goes out before the snapshot events.
        self.connection.reply(frame.ack, {"success": True})
        await self.admin.push_snapshot(self.connection)
        return None

    async def list_rooms(self, frame: EventFrame) -> ListRoomsResponse:
        rooms = await self.admin.list_rooms(self.connection)
        return ListRoomsResponse(rooms=[RoomSummary.model_validate(room) for room in rooms])

    async def delete_room(self, frame: EventFrame) -> DeleteRoomResponse:
        request = DeleteRoomRequest.model_validate(frame.data or {})
        room_id = await self.admin.delete_room(self.connection, request.roomId)
        return DeleteRoomResponse(message=f"Room {room_id} deleted.")

    async def disconnect(self) -> None:
        """Release everything this connection held."""
        self.limiter.reset(self.connection.id)
        self.admin.revoke(self.connection)
        await self.registry.leave_room(self.connection)
