"""WebSocket сервер sync_lite: транспорт для dispatch engine і broadcaster-а.

Кожне підключення:
- реєструється у broadcaster-і (отримує REQUERY);
- кожен вхідний фрейм обробляється окремою задачею, тож повільний handler не
  блокує інші запити цього ж з'єднання (відповіді можуть іти не по порядку);
- після закриття з'єднання незавершені задачі доробляють свою роботу, а їхні
  відповіді мовчки відкидаються.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from prometheus_client import Counter, Gauge
from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.exceptions import ConnectionClosed

from server.broadcaster import InvalidationBroadcaster
from server.connection import ClientConnection
from server.dispatch import DispatchEngine

logger = logging.getLogger("sync_lite.ws")

SYNC_LITE_WS_CONNECTIONS = Gauge(
    "sync_lite_ws_connections",
    "Кількість активних WebSocket-підключень",
)
SYNC_LITE_WS_MESSAGES_TOTAL = Counter(
    "sync_lite_ws_messages_total",
    "Кількість вхідних WS-фреймів",
    labelnames=("direction",),
)
SYNC_LITE_WS_ERRORS_TOTAL = Counter(
    "sync_lite_ws_errors_total",
    "Кількість помилок у WebSocket сервісі",
    labelnames=("stage",),
)


@dataclass(slots=True)
class RealtimeWsServer:
    """WS-сервер поверх `DispatchEngine` (один endpoint, будь-який path)."""

    engine: DispatchEngine
    host: str = "127.0.0.1"
    port: int = 3001
    ping_interval: float | None = 20.0
    ping_timeout: float | None = 20.0

    _server: Server | None = field(default=None, init=False, repr=False)
    _inflight: set[asyncio.Task[Any]] = field(default_factory=set, init=False, repr=False)

    @property
    def broadcaster(self) -> InvalidationBroadcaster:
        return self.engine.broadcaster

    @property
    def bound_port(self) -> int | None:
        """Фактичний порт (корисно при `port=0` у тестах)."""

        if self._server is None:
            return None
        for sock in self._server.sockets:
            return int(sock.getsockname()[1])
        return None

    async def start(self) -> None:
        """Стартує сервер (для тестів/інтеграції) без блокування."""

        if self._server is not None:
            return
        self._server = await serve(
            self._handle_client,
            self.host,
            self.port,
            ping_interval=self.ping_interval,
            ping_timeout=self.ping_timeout,
        )
        sockets = ", ".join(str(sock.getsockname()) for sock in self._server.sockets)
        logger.info(
            "[SyncLite WS] Server listening on %s (%d handlers)",
            sockets or "(no sockets)",
            len(self.engine.registry),
        )

    async def stop(self) -> None:
        if self._server is None:
            return
        self._server.close()
        await self._server.wait_closed()
        self._server = None
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)
        logger.info("[SyncLite WS] Server stopped")

    async def run(self) -> None:
        """Стартує WS-сервер і працює, доки таск не буде скасовано."""

        await self.start()
        try:
            await asyncio.Future()
        except asyncio.CancelledError:
            logger.debug("[SyncLite WS] Server task cancelled")
            raise
        finally:
            await self.stop()

    async def _handle_client(self, websocket: ServerConnection) -> None:
        connection = ClientConnection(transport=websocket)
        self.broadcaster.add_connection(connection)
        SYNC_LITE_WS_CONNECTIONS.inc()
        logger.info(
            "[SyncLite WS] Client connected %s (%s)",
            connection.connection_id,
            websocket.remote_address,
        )
        try:
            async for raw in websocket:
                SYNC_LITE_WS_MESSAGES_TOTAL.labels(direction="in").inc()
                task = asyncio.create_task(self._process(connection, raw))
                self._inflight.add(task)
                task.add_done_callback(self._inflight.discard)
        except ConnectionClosed:
            logger.debug("[SyncLite WS] Connection %s closed abruptly", connection.connection_id)
        finally:
            connection.mark_closed()
            self.broadcaster.remove_connection(connection)
            SYNC_LITE_WS_CONNECTIONS.dec()
            logger.info("[SyncLite WS] Client disconnected %s", connection.connection_id)

    async def _process(self, connection: ClientConnection, raw: str | bytes) -> None:
        try:
            await self.engine.handle_frame(connection, raw)
        except asyncio.CancelledError:
            raise
        except Exception:  # pragma: no cover - dispatch сам відповідає на помилки
            SYNC_LITE_WS_ERRORS_TOTAL.labels(stage="dispatch").inc()
            logger.exception(
                "[SyncLite WS] Internal error while processing frame from %s",
                connection.connection_id,
            )


__all__ = ("RealtimeWsServer",)
