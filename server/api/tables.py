"""Адмін-запити: сирі дані таблиць за назвою."""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, BaseModel, Field
from sqlalchemy import select

from server.handlers import HandlerContext, query


class AdminTableArgs(BaseModel):
    table_name: str = Field(
        min_length=1,
        validation_alias=AliasChoices("table_name", "tableNameString"),
    )


@query(args=AdminTableArgs)
async def get_admin_table_data(
    ctx: HandlerContext, args: AdminTableArgs
) -> list[dict[str, Any]]:
    table = ctx.db.table(args.table_name)
    if table is None:
        raise ValueError(f'Table "{args.table_name}" not found in schema.')
    return ctx.db.fetch_all(select(table).order_by(table.c["_createdAt"]))


@query
async def list_tables(ctx: HandlerContext) -> list[str]:
    return ctx.db.table_names()
