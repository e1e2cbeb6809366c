"""RealtimeClient: pending-запити, підписки на query та мутації.

Кореляція відповідей — лише через `id` (uuid). Відповідь без пари у
pending-мапі (наприклад, після `unsubscribe()`) ігнорується. При втраті
з'єднання всі pending-запити відхиляються `TransportError`, а підписки
перезапитують дані, щойно статус знову стане `connected`.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from client.connection import ConnectionManager, ConnectionStatus
from client.query_cache import LocalStore, QueryCache, get_query_cache_key
from core.contracts.wire import (
    DataResponseMessage,
    ErrorResponseMessage,
    MutationRequestMessage,
    QueryRequestMessage,
    RequeryMessage,
)
from core.errors import NotConnectedError, RemoteCallError, TransportError

logger = logging.getLogger("sync_lite.client.realtime")

# optimistic_update(store, args) -> None | undo()
OptimisticUpdate = Callable[[LocalStore, Any], Callable[[], None] | None]


@dataclass(slots=True)
class PendingRequest:
    id: str
    kind: str
    key: str
    params: Any
    future: asyncio.Future[Any]


class QuerySubscription:
    """Змонтований query: дані з кешу, стан завантаження, остання помилка."""

    def __init__(
        self,
        client: RealtimeClient,
        key: str,
        params: Any,
        on_change: Callable[[QuerySubscription], None] | None = None,
    ) -> None:
        self._client = client
        self.key = key
        self.params = params
        self.cache_key = get_query_cache_key(key, params)
        self.is_loading = False
        self.error: RemoteCallError | None = None
        self.active = True
        self._on_change = on_change
        self._pending: PendingRequest | None = None
        self._cache_unsubscribe = client.cache.subscribe(self.cache_key, self._on_cache_value)

    @property
    def data(self) -> Any:
        return self._client.cache.get(self.cache_key)

    def refetch(self) -> None:
        """Повторно надсилає QUERY; без з'єднання — чекає на `connected`."""

        if not self.active:
            return
        self._drop_pending()
        try:
            pending = self._client._send_request("query", self.key, self.params)
        except NotConnectedError:
            logger.debug("[SyncLite client] Refetch of %s deferred until connected", self.key)
            return
        self._pending = pending
        self.is_loading = True
        pending.future.add_done_callback(lambda fut: self._on_settled(pending, fut))
        self._notify()

    def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        self._drop_pending()
        self._cache_unsubscribe()
        self._client._forget_subscription(self)

    def _drop_pending(self) -> None:
        if self._pending is not None:
            self._client._drop_request(self._pending.id)
            self._pending = None

    def _on_settled(self, pending: PendingRequest, fut: asyncio.Future[Any]) -> None:
        if fut.cancelled() or self._pending is not pending:
            return
        self._pending = None
        self.is_loading = False
        exc = fut.exception()
        if isinstance(exc, RemoteCallError):
            self.error = exc
            logger.warning("[SyncLite client] Query %s failed: %s", self.key, exc)
        elif exc is not None:
            logger.info("[SyncLite client] Query %s interrupted: %s", self.key, exc)
        else:
            self.error = None
        self._notify()

    def _on_cache_value(self, _value: Any) -> None:
        self._notify()

    def _notify(self) -> None:
        if self._on_change is None:
            return
        try:
            self._on_change(self)
        except Exception:
            logger.exception("[SyncLite client] on_change callback failed for %s", self.key)


class RealtimeClient:
    """Клієнтський шар над `ConnectionManager` і `QueryCache`."""

    def __init__(self, connection: ConnectionManager, cache: QueryCache | None = None) -> None:
        self.connection = connection
        self.cache = cache if cache is not None else QueryCache()
        self.store = LocalStore(self.cache)
        self._pending: dict[str, PendingRequest] = {}
        self._subscriptions: list[QuerySubscription] = []
        self._unsubscribers = [
            connection.subscribe_to_messages(self._on_message),
            connection.subscribe_to_status(self._on_status),
        ]

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    # ── Публічний API ─────────────────────────────────────────────────────

    def watch_query(
        self,
        key: str,
        params: Any = None,
        *,
        on_change: Callable[[QuerySubscription], None] | None = None,
    ) -> QuerySubscription:
        """Монтує підписку: одразу запитує дані (якщо є з'єднання)."""

        subscription = QuerySubscription(self, key, params, on_change)
        self._subscriptions.append(subscription)
        subscription.refetch()
        return subscription

    async def query(self, key: str, params: Any = None) -> Any:
        """Разовий query: результат також потрапляє у кеш."""

        pending = self._send_request("query", key, params)
        return await pending.future

    def mutate(
        self,
        key: str,
        args: Any = None,
        optimistic_update: OptimisticUpdate | None = None,
    ) -> asyncio.Future[Any]:
        """Надсилає MUTATION; повертає Future з результатом handler-а.

        Порядок: перевірка з'єднання -> оптимістичне оновлення -> відправка.
        Якщо `optimistic_update` повертає callable, він викликається при
        відхиленні мутації.
        """

        if self.connection.status != ConnectionStatus.CONNECTED:
            raise NotConnectedError(f"Cannot run mutation {key}: not connected")

        undo: Callable[[], None] | None = None
        if optimistic_update is not None:
            result = optimistic_update(self.store, args)
            if callable(result):
                undo = result

        try:
            pending = self._send_request("mutation", key, args)
        except NotConnectedError:
            if undo is not None:
                undo()
            raise

        if undo is not None:
            pending.future.add_done_callback(lambda fut: self._rollback_if_rejected(key, fut, undo))
        return pending.future

    def close(self) -> None:
        """Відписується від з'єднання і відхиляє незавершені запити."""

        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        for subscription in list(self._subscriptions):
            subscription.unsubscribe()
        self._fail_pending(TransportError("Client closed"))

    # ── Внутрішнє ─────────────────────────────────────────────────────────

    def _send_request(self, kind: str, key: str, params: Any) -> PendingRequest:
        if self.connection.status != ConnectionStatus.CONNECTED:
            raise NotConnectedError(f"Cannot send {kind} {key}: not connected")

        request_id = uuid.uuid4().hex
        if kind == "query":
            message: Any = QueryRequestMessage(id=request_id, query_key=key, params=params)
        else:
            message = MutationRequestMessage(id=request_id, mutation_key=key, args=params)

        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        pending = PendingRequest(id=request_id, kind=kind, key=key, params=params, future=future)
        self._pending[request_id] = pending
        if not self.connection.send_message(message):
            self._pending.pop(request_id, None)
            raise NotConnectedError(f"Cannot send {kind} {key}: not connected")
        return pending

    def _drop_request(self, request_id: str) -> None:
        pending = self._pending.pop(request_id, None)
        if pending is not None and not pending.future.done():
            pending.future.cancel()

    def _forget_subscription(self, subscription: QuerySubscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def _rollback_if_rejected(
        self, key: str, fut: asyncio.Future[Any], undo: Callable[[], None]
    ) -> None:
        if fut.cancelled() or fut.exception() is None:
            return
        logger.info("[SyncLite client] Mutation %s rejected, rolling back optimistic update", key)
        try:
            undo()
        except Exception:
            logger.exception("[SyncLite client] Rollback for %s failed", key)

    def _fail_pending(self, exc: Exception) -> None:
        pending_list = list(self._pending.values())
        self._pending.clear()
        for pending in pending_list:
            if not pending.future.done():
                pending.future.set_exception(exc)
                # Підписки споживають виняток самі; разові виклики отримують його через await.
                if pending.kind == "query":
                    pending.future.exception()

    def _on_status(self, status: ConnectionStatus) -> None:
        if status == ConnectionStatus.CONNECTED:
            for subscription in list(self._subscriptions):
                subscription.refetch()
        elif status == ConnectionStatus.DISCONNECTED and self._pending:
            logger.info(
                "[SyncLite client] Connection lost, %d pending request(s) rejected",
                len(self._pending),
            )
            self._fail_pending(TransportError("Connection lost before response"))

    def _on_message(self, message: Any) -> None:
        if isinstance(message, RequeryMessage):
            logger.debug("[SyncLite client] Requery %s", message.query_key)
            for subscription in list(self._subscriptions):
                if subscription.key == message.query_key:
                    subscription.refetch()
            return

        if not isinstance(message, (DataResponseMessage, ErrorResponseMessage)):
            logger.debug("[SyncLite client] Ignoring %s message", message.type)
            return

        if message.id is None:
            if isinstance(message, ErrorResponseMessage):
                logger.error("[SyncLite client] Server error: %s", message.message)
            return

        pending = self._pending.pop(message.id, None)
        if pending is None:
            logger.debug("[SyncLite client] Response for unknown id %s dropped", message.id)
            return
        if pending.future.done():
            return

        if isinstance(message, ErrorResponseMessage):
            pending.future.set_exception(
                RemoteCallError(message.message, message.error, request_id=message.id)
            )
            return

        if pending.kind == "query":
            self.cache.set(get_query_cache_key(pending.key, pending.params), message.data)
        pending.future.set_result(message.data)


__all__ = ("PendingRequest", "QuerySubscription", "RealtimeClient")
