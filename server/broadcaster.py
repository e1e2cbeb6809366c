"""Broadcaster інвалідацій: `REQUERY` усім відкритим з'єднанням.

Pull-модель: сервер не рахує нові дані, лише повідомляє, що результат query
міг застаріти; клієнти самі перезапитують. Гарантія — advisory,
at-most-once: без черги, ретраїв і durability. Клієнт, що був відключений у
момент broadcast, відновлює консистентність через refetch після reconnect.

Обмеження: лише локальні з'єднання цього процесу (без горизонтального
масштабування).
"""

from __future__ import annotations

import asyncio
import logging

from prometheus_client import Counter

from core.contracts.wire import RequeryMessage, encode_wire_message
from server.connection import ClientConnection
from server.handlers import HandlerDefinition, HandlerKind
from server.registry import HandlerRegistry

logger = logging.getLogger("sync_lite.broadcaster")

SYNC_LITE_REQUERY_TOTAL = Counter(
    "sync_lite_requery_total",
    "Кількість розісланих REQUERY-сигналів (по одному на з'єднання)",
)
SYNC_LITE_INVALIDATION_ERRORS_TOTAL = Counter(
    "sync_lite_invalidation_errors_total",
    "Помилки інвалідації за стадією",
    labelnames=("stage",),
)


class InvalidationBroadcaster:
    """Тримає множину відкритих з'єднань і розсилає їм `REQUERY`."""

    def __init__(self, registry: HandlerRegistry) -> None:
        self._registry = registry
        self._connections: dict[str, ClientConnection] = {}

    # ── З'єднання ─────────────────────────────────────────────────────────

    def add_connection(self, connection: ClientConnection) -> None:
        self._connections[connection.connection_id] = connection

    def remove_connection(self, connection: ClientConnection) -> None:
        self._connections.pop(connection.connection_id, None)

    @property
    def connections(self) -> list[ClientConnection]:
        return list(self._connections.values())

    def __len__(self) -> int:
        return len(self._connections)

    # ── Інвалідація ───────────────────────────────────────────────────────

    async def invalidate(self, query_ref: object) -> int:
        """Розсилає `REQUERY` для query за посиланням на її визначення.

        Ніколи не кидає назовні: невідоме посилання (або не-query) — це
        помилка програміста на сервері, її логуємо, а broadcast стає no-op.
        Повертає кількість з'єднань, яким сигнал було відправлено.
        """

        key = self._registry.resolve_key_by_reference(query_ref)
        if key is None:
            SYNC_LITE_INVALIDATION_ERRORS_TOTAL.labels(stage="resolve").inc()
            logger.error(
                "[SyncLite invalidate] Cannot resolve query reference %r; "
                "is it registered?",
                query_ref,
            )
            return 0

        if isinstance(query_ref, HandlerDefinition) and query_ref.kind != HandlerKind.QUERY:
            SYNC_LITE_INVALIDATION_ERRORS_TOTAL.labels(stage="kind").inc()
            logger.error(
                "[SyncLite invalidate] %s is a %s, only queries can be invalidated",
                key,
                query_ref.kind,
            )
            return 0

        return await self.broadcast_requery(key)

    async def broadcast_requery(self, query_key: str) -> int:
        payload = encode_wire_message(RequeryMessage(query_key=query_key))
        targets = [conn for conn in self._connections.values() if not conn.closed]
        if not targets:
            logger.debug("[SyncLite invalidate] %s: no open connections", query_key)
            return 0

        results = await asyncio.gather(
            *(conn.send_text(payload) for conn in targets),
            return_exceptions=True,
        )
        delivered = 0
        for conn, outcome in zip(targets, results):
            if isinstance(outcome, BaseException):
                SYNC_LITE_INVALIDATION_ERRORS_TOTAL.labels(stage="send").inc()
                logger.warning(
                    "[SyncLite invalidate] Failed to send REQUERY %s to %s: %s",
                    query_key,
                    conn.connection_id,
                    outcome,
                )
                continue
            if outcome:
                delivered += 1
        SYNC_LITE_REQUERY_TOTAL.inc(delivered)
        logger.debug(
            "[SyncLite invalidate] REQUERY %s -> %d/%d connections",
            query_key,
            delivered,
            len(targets),
        )
        return delivered


class Scheduler:
    """Capability інвалідації, яку handler отримує через `ctx.scheduler`.

    Інвалідації одного виклику збираються і розсилаються після того, як
    клієнту-ініціатору відправлено відповідь (див. `flush()` у dispatch).
    `invalidate()` можна і викликати, і `await`-ити.
    """

    def __init__(self, broadcaster: InvalidationBroadcaster) -> None:
        self._broadcaster = broadcaster
        self._queued: list[object] = []

    def invalidate(self, query_ref: object) -> asyncio.Future[None]:
        if not any(ref is query_ref for ref in self._queued):
            self._queued.append(query_ref)
        done: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        done.set_result(None)
        return done

    @property
    def queued(self) -> list[object]:
        return list(self._queued)

    async def flush(self) -> int:
        """Розсилає всі накопичені інвалідації; повертає кількість сигналів."""

        queued, self._queued = self._queued, []
        total = 0
        for ref in queued:
            total += await self._broadcaster.invalidate(ref)
        return total


__all__ = (
    "InvalidationBroadcaster",
    "Scheduler",
)
