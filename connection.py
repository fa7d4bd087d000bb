import asyncio
import uuid
from typing import Any, Optional

from constants import OUTBOX_LIMIT
from logging_config import get_logger

logger = get_logger(__name__)

# Marker placed on the outbox to ask the writer to close the socket.
CLOSE = object()


class Connection:
    """One live client socket as seen by the coordinator.

    Outbound frames are queued and written by a separate task, so sending from
    the registry never waits on the network. A client that falls more than
    `max_pending` frames behind is disconnected.
    """

    def __init__(self, connection_id: Optional[str] = None, max_pending: int = OUTBOX_LIMIT):
        self.id = connection_id or str(uuid.uuid4())
        self.max_pending = max_pending
        # Unbounded so the close marker always fits; the limit is enforced in _put.
        self.outbox: asyncio.Queue = asyncio.Queue()
        self.closed = False

    def _put(self, frame: dict) -> None:
        if self.closed:
            logger.debug(f"Dropping frame for closed connection {self.id}")
            return
        if self.outbox.qsize() >= self.max_pending:
            logger.warning(f"Connection {self.id} is {self.max_pending} frames behind, disconnecting")
            self.close()
            return
        self.outbox.put_nowait(frame)

    def send(self, event: str, data: Any = None) -> None:
        self._put({"event": event, "data": data})

    def reply(self, ack: Optional[int], data: Any) -> None:
        if ack is None:
            return
        self._put({"ack": ack, "data": data})

    def close(self) -> None:
        """Queue a close after anything already pending."""
        if self.closed:
            return
        self.closed = True
        self.outbox.put_nowait(CLOSE)

    def pending(self) -> list:
        """Drain queued frames without waiting."""
        frames = []
        while not self.outbox.empty():
            frames.append(self.outbox.get_nowait())
        return frames

    def __repr__(self) -> str:
        return f"Connection({self.id!r})"
