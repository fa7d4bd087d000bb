class ChatError(Exception):
    """Base class for failures reported back to a connection."""

    default_message = "Request failed."

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class RoomNotFound(ChatError):
    default_message = "Room not found or database error."


class Unauthorized(ChatError):
    default_message = "Unauthorized."


class ValidationError(ChatError):
    default_message = "Invalid message content or length."


class RateLimited(ChatError):
    default_message = "You are sending messages too fast. Please wait."


class StorageError(ChatError):
    default_message = "Database error."


class PartialDeleteError(StorageError):
    """Messages were purged but the room record could not be removed."""

    default_message = "Room messages were deleted but the room record remains."


class CollisionExhausted(ChatError):
    default_message = "Could not allocate a unique room code."


class StoreNotConfigured(ChatError):
    default_message = "REDIS_HOST is not set; a durable store is required."
