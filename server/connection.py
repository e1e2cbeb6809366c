"""Серверна обгортка над одним клієнтським WS-з'єднанням."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Protocol

from websockets.exceptions import ConnectionClosed

from core.contracts.wire import encode_wire_message

logger = logging.getLogger("sync_lite.connection")


class FrameSender(Protocol):
    async def send(self, message: str) -> None: ...


def _new_connection_id() -> str:
    return uuid.uuid4().hex[:12]


@dataclass(slots=True, eq=False)
class ClientConnection:
    """Одне з'єднання: транспорт + стабільний id для логів і метрик.

    Відправка у вже закрите з'єднання не є помилкою: повідомлення мовчки
    відкидається (debug-лог), бо клієнт сам перезапитає дані після reconnect.
    """

    transport: FrameSender
    connection_id: str = field(default_factory=_new_connection_id)
    closed: bool = False

    async def send_text(self, payload: str) -> bool:
        if self.closed:
            logger.debug(
                "[SyncLite conn %s] Drop frame: connection closed", self.connection_id
            )
            return False
        try:
            await self.transport.send(payload)
        except ConnectionClosed:
            self.closed = True
            logger.debug(
                "[SyncLite conn %s] Drop frame: peer went away", self.connection_id
            )
            return False
        return True

    async def send_message(self, message: Any) -> bool:
        return await self.send_text(encode_wire_message(message))

    def mark_closed(self) -> None:
        self.closed = True


__all__ = ("FrameSender", "ClientConnection")
