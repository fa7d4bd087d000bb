from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

import anyio
import redis
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from admin import AdminControlPlane
from backend import RedisBackend, connect_redis
from connection import CLOSE, Connection
from constants import ChatSettings
from persistence import PersistenceBridge
from rate_limiter import RateLimiter
from registry import RoomRegistry
from routers.events import EventRouter
from sweeper import ExpirySweeper
from logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class Coordinator:
    """Process-wide room state, built once at startup and shared by every connection."""
    settings: ChatSettings
    bridge: PersistenceBridge
    registry: RoomRegistry
    limiter: RateLimiter
    admin: AdminControlPlane
    sweeper: ExpirySweeper

    def router_for(self, connection: Connection) -> EventRouter:
        return EventRouter(connection, self.registry, self.admin, self.limiter, self.bridge,
                           max_message_length=self.settings.max_message_length)


def build_coordinator(settings: ChatSettings, redis_client: redis.Redis) -> Coordinator:
    bridge = PersistenceBridge(RedisBackend(redis_client), timeout=settings.store_timeout_seconds)
    registry = RoomRegistry(bridge, message_limit=settings.message_history_limit,
                            max_code_attempts=settings.room_code_attempts)
    limiter = RateLimiter(settings.rate_limit_window_seconds, settings.rate_limit_max_messages)
    admin = AdminControlPlane(registry, bridge, settings.admin_secret)
    sweeper = ExpirySweeper(registry, bridge, admin, expiry_seconds=settings.room_expiry_seconds,
                            interval_seconds=settings.sweep_interval_seconds)
    return Coordinator(settings=settings, bridge=bridge, registry=registry, limiter=limiter,
                       admin=admin, sweeper=sweeper)


async def pump_outbox(websocket: WebSocket, connection: Connection) -> None:
    """Write queued frames to the socket until the connection is closed."""
    while True:
        frame = await connection.outbox.get()
        if frame is CLOSE:
            logger.debug(f"Closing WebSocket for connection {connection.id}")
            await websocket.close()
            return
        await websocket.send_json(frame)


def create_app(settings: Optional[ChatSettings] = None, redis_client: Optional[redis.Redis] = None) -> FastAPI:
    settings = settings or ChatSettings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        client = redis_client
        if client is None:
            client = connect_redis(settings.redis_host, settings.redis_port, settings.redis_password,
                                   timeout=settings.store_timeout_seconds)
        coordinator = build_coordinator(settings, client)
        app.state.coordinator = coordinator
        coordinator.sweeper.start()
        logger.info("Room coordinator initialized")
        yield
        await coordinator.sweeper.stop()
        logger.info("Room coordinator shut down")

    app = FastAPI(lifespan=lifespan)

    # Configure CORS to allow all origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        coordinator: Coordinator = websocket.app.state.coordinator
        await websocket.accept()
        connection = Connection(max_pending=coordinator.settings.outbox_limit)
        router = coordinator.router_for(connection)
        logger.info(f"User connected: {connection.id}")

        try:
            async with anyio.create_task_group() as task_group:

                async def read_events() -> None:
                    try:
                        while True:
                            await router.dispatch(await websocket.receive_text())
                    except WebSocketDisconnect:
                        logger.debug(f"WebSocket disconnected normally for connection {connection.id}")
                    task_group.cancel_scope.cancel()

                task_group.start_soon(read_events)
                # Returns once the server closes the connection (e.g. room deleted).
                await pump_outbox(websocket, connection)
                task_group.cancel_scope.cancel()
        except Exception as e:
            logger.error(f"WebSocket error for connection {connection.id}: {e}", exc_info=True)
        finally:
            with anyio.CancelScope(shield=True):
                await router.disconnect()
            connection.closed = True
            logger.info(f"User disconnected: {connection.id}")

    return app


app = create_app()
