"""Dispatch engine: state machine запит -> відповідь для одного WS-фрейму.

Стадії: Received -> Parsed -> Resolved -> Validated -> Executed -> Responded,
`Errored` досяжний з будь-якої стадії після Received.

Правила:
- кожен розібраний запит дає рівно одне вихідне повідомлення на те саме
  з'єднання (DATA_UPDATE або ERROR), без тихих втрат;
- фрейм, який не парситься, отримує ERROR без `id`;
- кожен фрейм обробляється незалежно (окремою задачею у WS-сервері), тож
  відповіді можуть іти не в порядку надсилання;
- інвалідації, зібрані handler-ом, розсилаються після відповіді ініціатору.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from time import perf_counter
from typing import Any

from prometheus_client import Counter, Histogram
from pydantic import ValidationError

from core.contracts.wire import (
    ClientRequestMessage,
    DataResponseMessage,
    ErrorResponseMessage,
    QueryRequestMessage,
    encode_wire_message,
    parse_client_request,
)
from core.errors import (
    ArgsValidationError,
    ExecutionError,
    KindMismatchError,
    ProtocolError,
    UnknownKeyError,
)
from server.broadcaster import InvalidationBroadcaster, Scheduler
from server.connection import ClientConnection
from server.handlers import HandlerContext, HandlerDefinition, HandlerKind
from server.registry import HandlerRegistry
from server.validation import issues_from_pydantic, validate

logger = logging.getLogger("sync_lite.dispatch")

SYNC_LITE_DISPATCH_TOTAL = Counter(
    "sync_lite_dispatch_total",
    "Кількість оброблених викликів за типом і результатом",
    labelnames=("kind", "outcome"),
)
SYNC_LITE_DISPATCH_LATENCY_MS = Histogram(
    "sync_lite_dispatch_latency_ms",
    "Час виконання handler-а (ms)",
    labelnames=("kind",),
    buckets=(1, 5, 10, 25, 50, 100, 250, 500, 1000, 2000),
)


@dataclass(slots=True)
class DispatchEngine:
    """Маршрутизує вхідні фрейми до handler-ів реєстру.

    `db` — непрозорий handle сховища; ядро лише передає його у контекст.
    """

    registry: HandlerRegistry
    broadcaster: InvalidationBroadcaster
    db: Any

    async def handle_frame(
        self,
        connection: ClientConnection,
        raw: str | bytes,
    ) -> ErrorResponseMessage | DataResponseMessage:
        """Received -> Parsed; далі `dispatch()`. Повертає надіслану відповідь."""

        try:
            message = parse_client_request(raw)
        except ProtocolError as exc:
            SYNC_LITE_DISPATCH_TOTAL.labels(kind="unknown", outcome="protocol_error").inc()
            logger.warning(
                "[SyncLite dispatch %s] Protocol error: %s",
                connection.connection_id,
                exc,
            )
            error = ErrorResponseMessage(message=str(exc))
            await connection.send_message(error)
            return error
        return await self.dispatch(connection, message)

    async def dispatch(
        self,
        connection: ClientConnection,
        message: ClientRequestMessage,
    ) -> ErrorResponseMessage | DataResponseMessage:
        if isinstance(message, QueryRequestMessage):
            kind, key, raw_args = HandlerKind.QUERY, message.query_key, message.params
        else:
            kind, key, raw_args = HandlerKind.MUTATION, message.mutation_key, message.args

        scheduler = Scheduler(self.broadcaster)
        try:
            response = await self._run(connection, message.id, kind, key, raw_args, scheduler)
            await connection.send_text(encode_wire_message(response))
            return response
        finally:
            # Інвалідація best-effort: навіть якщо handler впав після запису.
            if scheduler.queued:
                await scheduler.flush()

    async def _run(
        self,
        connection: ClientConnection,
        request_id: str | None,
        kind: HandlerKind,
        key: str,
        raw_args: Any,
        scheduler: Scheduler,
    ) -> ErrorResponseMessage | DataResponseMessage:
        # Parsed -> Resolved
        try:
            definition = self._resolve(kind, key)
        except (UnknownKeyError, KindMismatchError) as exc:
            SYNC_LITE_DISPATCH_TOTAL.labels(kind=kind.value, outcome="unresolved").inc()
            logger.warning("[SyncLite dispatch] %s (id=%s)", exc, request_id)
            return ErrorResponseMessage(id=request_id, message=str(exc))

        # Resolved -> Validated
        try:
            args = validate(definition, raw_args)
        except ArgsValidationError as exc:
            SYNC_LITE_DISPATCH_TOTAL.labels(kind=kind.value, outcome="invalid").inc()
            logger.info(
                "[SyncLite dispatch] Invalid args for %s %s: %s",
                kind,
                key,
                exc.issues,
            )
            return ErrorResponseMessage(
                id=request_id,
                message=f"Invalid arguments for {kind} {key}: {exc.render()}",
                error=exc.to_payload(),
            )

        # Validated -> Executed
        ctx = HandlerContext(
            db=self.db,
            scheduler=scheduler,
            connection_id=connection.connection_id,
        )
        start = perf_counter()
        try:
            result = await definition.execute(ctx, args)
            response = DataResponseMessage(
                id=request_id,
                query_key=key if kind == HandlerKind.QUERY else None,
                data=result,
            )
            # Перевіряємо серіалізовність тут, щоб помилка стала ERROR, а не тишею.
            encode_wire_message(response)
        except ValidationError as exc:
            # pydantic-помилка всередині handler-а: та сама діагностика по полях.
            return self._rejected(
                kind,
                key,
                request_id,
                ArgsValidationError("Invalid arguments", issues_from_pydantic(exc)),
            )
        except ArgsValidationError as exc:
            return self._rejected(kind, key, request_id, exc)
        except Exception as exc:
            SYNC_LITE_DISPATCH_TOTAL.labels(kind=kind.value, outcome="error").inc()
            logger.error(
                "[SyncLite dispatch] Error executing %s handler for %s",
                kind,
                key,
                exc_info=True,
            )
            return ErrorResponseMessage(
                id=request_id,
                message=str(ExecutionError(kind.value, key, str(exc) or type(exc).__name__)),
            )
        finally:
            SYNC_LITE_DISPATCH_LATENCY_MS.labels(kind=kind.value).observe(
                (perf_counter() - start) * 1000.0
            )

        SYNC_LITE_DISPATCH_TOTAL.labels(kind=kind.value, outcome="ok").inc()
        return response

    def _rejected(
        self,
        kind: HandlerKind,
        key: str,
        request_id: str | None,
        exc: ArgsValidationError,
    ) -> ErrorResponseMessage:
        SYNC_LITE_DISPATCH_TOTAL.labels(kind=kind.value, outcome="error").inc()
        logger.warning("[SyncLite dispatch] %s %s rejected: %s", kind, key, exc.render())
        return ErrorResponseMessage(
            id=request_id,
            message=str(ExecutionError(kind.value, key, exc.render())),
            error=exc.to_payload(),
        )

    def _resolve(self, kind: HandlerKind, key: str) -> HandlerDefinition:
        definition = self.registry.resolve_by_key(key)
        if definition is None:
            raise UnknownKeyError(kind.value, key)
        if definition.kind != kind:
            raise KindMismatchError(
                key,
                requested=kind.value,
                registered=definition.kind.value,
            )
        return definition


__all__ = ("DispatchEngine",)
