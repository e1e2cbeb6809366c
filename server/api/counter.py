"""Глобальний лічильник: найменший приклад query + mutation з інвалідацією."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field
from sqlalchemy import insert, select, update

from core.serialization import utc_now_ms
from server.api.tables import get_admin_table_data
from server.handlers import HandlerContext, mutation, query
from server.schema import counters_table

GLOBAL_COUNTER_ID = "the_one_and_only_counter"


class IncrementArgs(BaseModel):
    amount: int = Field(default=1, ge=1)


def _load_counter(ctx: HandlerContext) -> dict[str, Any] | None:
    return ctx.db.fetch_one(
        select(counters_table).where(counters_table.c["_id"] == GLOBAL_COUNTER_ID)
    )


@query
async def get_counter(ctx: HandlerContext) -> dict[str, Any] | None:
    return _load_counter(ctx)


@mutation
async def create_counter(ctx: HandlerContext) -> dict[str, Any]:
    """Створює лічильник зі значенням 0 (повторний виклик повертає існуючий)."""

    existing = _load_counter(ctx)
    if existing is not None:
        return existing

    now = utc_now_ms()
    ctx.db.execute(
        insert(counters_table).values(
            _id=GLOBAL_COUNTER_ID,
            name="Global Counter",
            value=0,
            _createdAt=now,
            _updatedAt=now,
        )
    )
    await ctx.scheduler.invalidate(get_counter)
    await ctx.scheduler.invalidate(get_admin_table_data)
    created = _load_counter(ctx)
    if created is None:
        raise LookupError("Failed to create the global counter.")
    return created


@mutation(args=IncrementArgs)
async def increment_counter(ctx: HandlerContext, args: IncrementArgs) -> dict[str, int]:
    changed = ctx.db.execute(
        update(counters_table)
        .where(counters_table.c["_id"] == GLOBAL_COUNTER_ID)
        .values(
            value=counters_table.c["value"] + args.amount,
            _updatedAt=utc_now_ms(),
        )
    )
    if not changed:
        raise LookupError("Failed to retrieve the global counter.")
    current = _load_counter(ctx)
    if current is None:
        raise LookupError("Failed to retrieve the global counter.")
    new_value = int(current["value"])

    await ctx.scheduler.invalidate(get_counter)
    await ctx.scheduler.invalidate(get_admin_table_data)
    return {"value": new_value}
