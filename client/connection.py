"""Клієнтський Connection Manager: одне постійне WS-з'єднання з reconnect.

Стани: disconnected -> connecting -> connected; з будь-якого стану —
у disconnected при закритті/помилці транспорту.

Особливості:
- `connect()` ідемпотентний;
- reconnect з експоненційним backoff (1s -> 2s -> 4s … до стелі 30s),
  максимум `max_attempts` спроб, після чого — `gave_up=True`;
- помилка транспорту лише логуються, перехід стану робить шлях закриття
  (без подвійного планування reconnect);
- `send_message()` працює лише у стані connected, інакше повідомлення
  логуються й відкидаються (fail-fast, без черги до підключення).
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Protocol

from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import ConnectionClosed

from core.contracts.wire import encode_wire_message, parse_wire_message
from core.errors import ProtocolError

logger = logging.getLogger("sync_lite.client.connection")


class ConnectionStatus(StrEnum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class Transport(Protocol):
    async def send(self, message: str) -> None: ...

    async def recv(self) -> str | bytes: ...

    async def close(self) -> None: ...


TransportFactory = Callable[[str], Awaitable[Transport]]
MessageListener = Callable[[Any], None]
StatusListener = Callable[[ConnectionStatus], None]


async def websocket_transport(url: str) -> Transport:
    """Дефолтна фабрика: websockets-клієнт без власного reconnect."""

    return await ws_connect(url, open_timeout=10, ping_interval=20, ping_timeout=20)


@dataclass(frozen=True, slots=True)
class ReconnectPolicy:
    """Параметри backoff: `min(base * 2**attempt, max_delay)`, до `max_attempts`."""

    base_delay: float = 1.0
    max_delay: float = 30.0
    max_attempts: int = 10

    def delay_for(self, attempt: int) -> float:
        return min(self.base_delay * (2 ** max(attempt, 0)), self.max_delay)


class ConnectionManager:
    """Власник WS-з'єднання: статус, reconnect, fan-out вхідних повідомлень."""

    def __init__(
        self,
        url: str,
        *,
        policy: ReconnectPolicy | None = None,
        transport_factory: TransportFactory | None = None,
    ) -> None:
        self.url = url
        self.policy = policy or ReconnectPolicy()
        self._transport_factory = transport_factory or websocket_transport
        self._status = ConnectionStatus.DISCONNECTED
        self._status_listeners: list[StatusListener] = []
        self._message_listeners: list[MessageListener] = []
        self._transport: Transport | None = None
        self._outbox: asyncio.Queue[str] | None = None
        self._conn_task: asyncio.Task[None] | None = None
        self._writer_task: asyncio.Task[None] | None = None
        self._reconnect_handle: asyncio.TimerHandle | None = None
        self._reconnect_attempts = 0
        self._closing = False
        self.gave_up = False

    # ── Статус ────────────────────────────────────────────────────────────

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    def _set_status(self, status: ConnectionStatus) -> None:
        if status == self._status:
            return
        self._status = status
        for listener in list(self._status_listeners):
            try:
                listener(status)
            except Exception:
                logger.exception("[SyncLite client] Status listener failed")

    def subscribe_to_status(self, callback: StatusListener) -> Callable[[], None]:
        """Підписка на статус; callback одразу отримує поточний стан."""

        self._status_listeners.append(callback)
        callback(self._status)

        def unsubscribe() -> None:
            if callback in self._status_listeners:
                self._status_listeners.remove(callback)

        return unsubscribe

    def subscribe_to_messages(self, callback: MessageListener) -> Callable[[], None]:
        """Fan-out кожного вхідного Wire Message у порядку надходження."""

        self._message_listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._message_listeners:
                self._message_listeners.remove(callback)

        return unsubscribe

    async def wait_for_status(
        self, status: ConnectionStatus, timeout: float | None = None
    ) -> None:
        """Чекає, доки статус стане `status` (або одразу, якщо вже)."""

        loop = asyncio.get_running_loop()
        reached: asyncio.Future[None] = loop.create_future()

        def on_status(current: ConnectionStatus) -> None:
            if current == status and not reached.done():
                reached.set_result(None)

        unsubscribe = self.subscribe_to_status(on_status)
        try:
            await asyncio.wait_for(reached, timeout)
        finally:
            unsubscribe()

    # ── Життєвий цикл ─────────────────────────────────────────────────────

    def connect(self) -> None:
        """Відкриває з'єднання; no-op, якщо вже connecting/connected."""

        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None
        if self._status in (ConnectionStatus.CONNECTING, ConnectionStatus.CONNECTED):
            return

        self._closing = False
        self.gave_up = False
        self._set_status(ConnectionStatus.CONNECTING)
        logger.info("[SyncLite client] Connecting to %s...", self.url)
        self._conn_task = asyncio.get_running_loop().create_task(self._run_connection())

    async def close(self) -> None:
        """Закриває з'єднання і зупиняє reconnect."""

        self._closing = True
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None
        transport = self._transport
        if transport is not None:
            try:
                await transport.close()
            except Exception:
                logger.debug("[SyncLite client] Transport close failed", exc_info=True)
        task = self._conn_task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._set_status(ConnectionStatus.DISCONNECTED)

    async def _run_connection(self) -> None:
        try:
            transport = await self._transport_factory(self.url)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("[SyncLite client] Connection error: %s", exc)
            self._handle_closed()
            return

        self._transport = transport
        self._outbox = asyncio.Queue()
        self._writer_task = asyncio.create_task(self._write_loop(transport, self._outbox))
        self._reconnect_attempts = 0
        logger.info("[SyncLite client] Connected!")
        self._set_status(ConnectionStatus.CONNECTED)

        try:
            while True:
                raw = await transport.recv()
                self._dispatch_frame(raw)
        except asyncio.CancelledError:
            raise
        except ConnectionClosed:
            logger.info("[SyncLite client] Disconnected.")
        except Exception as exc:
            # Подія помилки: лише лог, стан змінює шлях закриття нижче.
            logger.error("[SyncLite client] WebSocket error: %s", exc)
        finally:
            self._handle_closed()

    async def _write_loop(self, transport: Transport, outbox: asyncio.Queue[str]) -> None:
        while True:
            payload = await outbox.get()
            try:
                await transport.send(payload)
            except ConnectionClosed:
                logger.debug("[SyncLite client] Send on closed transport dropped")
                return
            except Exception as exc:
                logger.error("[SyncLite client] Send failed: %s", exc)
                return

    def _handle_closed(self) -> None:
        if self._writer_task is not None:
            self._writer_task.cancel()
            self._writer_task = None
        self._outbox = None
        self._transport = None
        self._set_status(ConnectionStatus.DISCONNECTED)
        if not self._closing:
            self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self._reconnect_attempts >= self.policy.max_attempts:
            self.gave_up = True
            logger.error(
                "[SyncLite client] Max reconnect attempts reached (%d). Giving up.",
                self.policy.max_attempts,
            )
            return

        delay = self.policy.delay_for(self._reconnect_attempts)
        logger.info("[SyncLite client] Reconnecting in %.1fs...", delay)
        loop = asyncio.get_running_loop()
        self._reconnect_handle = loop.call_later(delay, self._fire_reconnect)

    def _fire_reconnect(self) -> None:
        self._reconnect_handle = None
        self._reconnect_attempts += 1
        self.connect()

    # ── Повідомлення ──────────────────────────────────────────────────────

    def _dispatch_frame(self, raw: str | bytes) -> None:
        try:
            message = parse_wire_message(raw)
        except ProtocolError as exc:
            logger.warning("[SyncLite client] Malformed frame skipped: %s", exc)
            return
        for listener in list(self._message_listeners):
            try:
                listener(message)
            except Exception:
                logger.exception("[SyncLite client] Message listener failed")

    def send_message(self, message: Any) -> bool:
        """Відправляє Wire Message; False, якщо з'єднання не connected."""

        if self._status != ConnectionStatus.CONNECTED or self._outbox is None:
            logger.error(
                "[SyncLite client] Cannot send message, not connected: %s",
                getattr(message, "type", message),
            )
            return False
        self._outbox.put_nowait(encode_wire_message(message))
        return True


__all__ = (
    "ConnectionStatus",
    "ConnectionManager",
    "ReconnectPolicy",
    "Transport",
    "TransportFactory",
    "websocket_transport",
)
