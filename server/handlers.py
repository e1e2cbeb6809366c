"""Визначення серверних handler-ів (query / mutation).

Handler — це іменована одиниця серверної логіки. У модулях-джерелах (див.
`server/api/`) вони оголошуються декораторами:

    @query
    async def get_counter(ctx: HandlerContext) -> dict | None: ...

    @mutation(args=IncrementArgs)
    async def increment_counter(ctx: HandlerContext, args: IncrementArgs) -> dict: ...

Тип handler-а задається явним тегом `kind` (HandlerKind), а не іменем функції.
Об'єкт HandlerDefinition незмінний і порівнюється за ідентичністю: саме він є
"посиланням", яке мутації передають у `ctx.scheduler.invalidate(...)`.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any, overload

from pydantic import BaseModel

if TYPE_CHECKING:  # pragma: no cover - лише для типів
    from server.broadcaster import Scheduler
    from server.datastore import DataStore

__all__ = [
    "HandlerKind",
    "HandlerContext",
    "HandlerDefinition",
    "query",
    "mutation",
]


class HandlerKind(StrEnum):
    QUERY = "query"
    MUTATION = "mutation"


@dataclass(frozen=True, slots=True)
class HandlerContext:
    """Те, що отримує кожен handler першим аргументом.

    - db: сховище даних (непрозорий для ядра handle);
    - scheduler: capability для інвалідації query;
    - connection_id: id з'єднання, з якого прийшов виклик (для логів).
    """

    db: DataStore
    scheduler: Scheduler
    connection_id: str | None = None


HandlerFn = Callable[..., Awaitable[Any]]


@dataclass(frozen=True, slots=True, eq=False)
class HandlerDefinition:
    """Незмінний опис handler-а.

    `eq=False`: рівність і hash — за ідентичністю об'єкта, тому два однакові за
    вмістом визначення ніколи не зіллються у зворотній мапі реєстру.
    """

    kind: HandlerKind
    handler: HandlerFn
    args_schema: type[BaseModel] | None = None

    @property
    def name(self) -> str:
        return getattr(self.handler, "__name__", "<handler>")

    async def execute(self, ctx: HandlerContext, args: Any) -> Any:
        """Виконує handler з уже провалідованими аргументами."""

        if self.args_schema is None:
            return await self.handler(ctx)
        return await self.handler(ctx, args)


def _build(
    kind: HandlerKind,
    fn: HandlerFn | None,
    args: type[BaseModel] | None,
) -> Any:
    if args is not None and not (isinstance(args, type) and issubclass(args, BaseModel)):
        raise TypeError("args має бути підкласом pydantic.BaseModel")

    def wrap(func: HandlerFn) -> HandlerDefinition:
        if not callable(func):
            raise TypeError(f"{kind} handler має бути async-функцією")
        return HandlerDefinition(kind=kind, handler=func, args_schema=args)

    if fn is not None:
        return wrap(fn)
    return wrap


@overload
def query(fn: HandlerFn) -> HandlerDefinition: ...
@overload
def query(
    fn: None = None, *, args: type[BaseModel] | None = None
) -> Callable[[HandlerFn], HandlerDefinition]: ...
def query(fn: HandlerFn | None = None, *, args: type[BaseModel] | None = None) -> Any:
    """Оголошує query-handler (читання, без побічних ефектів)."""

    return _build(HandlerKind.QUERY, fn, args)


@overload
def mutation(fn: HandlerFn) -> HandlerDefinition: ...
@overload
def mutation(
    fn: None = None, *, args: type[BaseModel] | None = None
) -> Callable[[HandlerFn], HandlerDefinition]: ...
def mutation(fn: HandlerFn | None = None, *, args: type[BaseModel] | None = None) -> Any:
    """Оголошує mutation-handler (зміна даних, зазвичай з інвалідацією)."""

    return _build(HandlerKind.MUTATION, fn, args)
