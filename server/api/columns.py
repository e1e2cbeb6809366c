"""Kanban-колонки та агрегований запит "колонки з задачами"."""

from __future__ import annotations

import uuid
from typing import Any

from pydantic import BaseModel, Field
from sqlalchemy import delete, insert, select

from core.serialization import utc_now_ms
from server.api.tables import get_admin_table_data
from server.handlers import HandlerContext, mutation, query
from server.schema import columns_table, tasks_table


class CreateColumnArgs(BaseModel):
    name: str = Field(min_length=1)


class DeleteColumnArgs(BaseModel):
    id: str = Field(min_length=1)


@query
async def get_all_columns_with_tasks(ctx: HandlerContext) -> list[dict[str, Any]]:
    """Колонки у порядку створення; кожна з вкладеним списком `tasks`."""

    columns = ctx.db.fetch_all(
        select(columns_table).order_by(columns_table.c["_createdAt"], columns_table.c["_id"])
    )
    tasks = ctx.db.fetch_all(
        select(tasks_table).order_by(tasks_table.c["_createdAt"], tasks_table.c["_id"])
    )
    by_column: dict[str, list[dict[str, Any]]] = {col["_id"]: [] for col in columns}
    for task in tasks:
        bucket = by_column.get(task["columnId"])
        if bucket is not None:
            bucket.append(task)
    return [{**col, "tasks": by_column[col["_id"]]} for col in columns]


@mutation(args=CreateColumnArgs)
async def create_column(ctx: HandlerContext, args: CreateColumnArgs) -> dict[str, Any]:
    now = utc_now_ms()
    row = {
        "_id": str(uuid.uuid4()),
        "_createdAt": now,
        "_updatedAt": now,
        "name": args.name,
    }
    ctx.db.execute(insert(columns_table).values(**row))
    ctx.scheduler.invalidate(get_all_columns_with_tasks)
    ctx.scheduler.invalidate(get_admin_table_data)
    return row


@mutation(args=DeleteColumnArgs)
async def delete_column(ctx: HandlerContext, args: DeleteColumnArgs) -> dict[str, Any]:
    with ctx.db.connect() as conn:
        conn.execute(delete(tasks_table).where(tasks_table.c["columnId"] == args.id))
        deleted = conn.execute(
            delete(columns_table).where(columns_table.c["_id"] == args.id)
        ).rowcount
    ctx.scheduler.invalidate(get_all_columns_with_tasks)
    ctx.scheduler.invalidate(get_admin_table_data)
    return {"deleted": int(deleted or 0)}
