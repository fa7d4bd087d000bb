from pydantic import BaseModel
from typing import Any, Optional


class EventFrame(BaseModel):
    event: str
    data: Optional[Any] = None
    ack: Optional[int] = None


class JoinRoomRequest(BaseModel):
    roomId: str

class SendMessageRequest(BaseModel):
    roomId: str
    # Checked by the router so bad content becomes a message-error, not a schema error
    message: Optional[Any] = None

class TypingRequest(BaseModel):
    roomId: str
    isTyping: bool

class AdminLoginRequest(BaseModel):
    secret: Optional[str] = None

class DeleteRoomRequest(BaseModel):
    roomId: str


class HistoryMessage(BaseModel):
    username: str
    message: str
    timestamp: str

class CreateRoomResponse(BaseModel):
    success: bool = True
    roomId: str

class JoinRoomResponse(BaseModel):
    success: bool = True
    username: str
    messages: list[HistoryMessage]
    activeUsers: list[str]

class RoomSummary(BaseModel):
    id: str
    userCount: int
    createdAt: Optional[str] = None
    lastActivity: Optional[str] = None

class ListRoomsResponse(BaseModel):
    success: bool = True
    rooms: list[RoomSummary]

class FailureResponse(BaseModel):
    success: bool = False
    message: str

class DeleteRoomResponse(BaseModel):
    success: bool = True
    message: str
