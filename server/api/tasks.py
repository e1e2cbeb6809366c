"""Kanban-задачі: створення, переміщення між колонками, редагування."""

from __future__ import annotations

import uuid
from typing import Any

from pydantic import AliasChoices, BaseModel, Field
from sqlalchemy import delete, insert, select, update

from core.serialization import utc_now_ms
from server.api.columns import get_all_columns_with_tasks
from server.api.tables import get_admin_table_data
from server.handlers import HandlerContext, mutation
from server.schema import columns_table, tasks_table

_COLUMN_ID_ALIASES = AliasChoices("column_id", "columnId")


class CreateTaskArgs(BaseModel):
    title: str = Field(min_length=1)
    description: str = ""
    column_id: str = Field(min_length=1, validation_alias=_COLUMN_ID_ALIASES)


class TaskIdArgs(BaseModel):
    id: str = Field(min_length=1)


class MoveTaskArgs(TaskIdArgs):
    column_id: str = Field(min_length=1, validation_alias=_COLUMN_ID_ALIASES)


class UpdateTaskArgs(TaskIdArgs):
    title: str = Field(min_length=1)
    description: str


def _require_column(ctx: HandlerContext, column_id: str) -> None:
    found = ctx.db.fetch_one(
        select(columns_table.c["_id"]).where(columns_table.c["_id"] == column_id)
    )
    if found is None:
        raise LookupError(f"Column {column_id} not found")


def _invalidate_board(ctx: HandlerContext) -> None:
    ctx.scheduler.invalidate(get_all_columns_with_tasks)
    ctx.scheduler.invalidate(get_admin_table_data)


@mutation(args=CreateTaskArgs)
async def create_task(ctx: HandlerContext, args: CreateTaskArgs) -> dict[str, Any]:
    _require_column(ctx, args.column_id)
    now = utc_now_ms()
    row = {
        "_id": str(uuid.uuid4()),
        "_createdAt": now,
        "_updatedAt": now,
        "columnId": args.column_id,
        "title": args.title,
        "description": args.description,
    }
    ctx.db.execute(insert(tasks_table).values(**row))
    _invalidate_board(ctx)
    return row


@mutation(args=TaskIdArgs)
async def delete_task(ctx: HandlerContext, args: TaskIdArgs) -> dict[str, int]:
    deleted = ctx.db.execute(delete(tasks_table).where(tasks_table.c["_id"] == args.id))
    _invalidate_board(ctx)
    return {"deleted": deleted}


@mutation(args=MoveTaskArgs)
async def move_task(ctx: HandlerContext, args: MoveTaskArgs) -> dict[str, int]:
    _require_column(ctx, args.column_id)
    changed = ctx.db.execute(
        update(tasks_table)
        .where(tasks_table.c["_id"] == args.id)
        .values(columnId=args.column_id, _updatedAt=utc_now_ms())
    )
    _invalidate_board(ctx)
    return {"updated": changed}


@mutation(args=UpdateTaskArgs)
async def update_task(ctx: HandlerContext, args: UpdateTaskArgs) -> dict[str, int]:
    changed = ctx.db.execute(
        update(tasks_table)
        .where(tasks_table.c["_id"] == args.id)
        .values(title=args.title, description=args.description, _updatedAt=utc_now_ms())
    )
    _invalidate_board(ctx)
    return {"updated": changed}
