"""Тести dispatch engine: відповіді, помилки, порядок відповіді та REQUERY."""

from __future__ import annotations

import json
import sys
from typing import Any

import pytest
from pydantic import BaseModel

from core.errors import ArgsValidationError
from server.broadcaster import InvalidationBroadcaster
from server.connection import ClientConnection
from server.dispatch import DispatchEngine
from server.handlers import HandlerContext, mutation, query
from server.registry import HandlerRegistry


class _FakeDb:
    def __init__(self) -> None:
        self.items: list[str] = []


class _FakeTransport:
    def __init__(self) -> None:
        self.frames: list[dict[str, Any]] = []

    async def send(self, message: str) -> None:
        self.frames.append(json.loads(message))


async def _get_items(ctx: HandlerContext) -> list[str]:
    return list(ctx.db.items)


GET_ITEMS = query(_get_items)


class _AddArgs(BaseModel):
    name: str


async def _add_item(ctx: HandlerContext, args: _AddArgs) -> dict[str, int]:
    ctx.db.items.append(args.name)
    ctx.scheduler.invalidate(GET_ITEMS)
    ctx.scheduler.invalidate(GET_ITEMS)
    return {"count": len(ctx.db.items)}


ADD_ITEM = mutation(args=_AddArgs)(_add_item)


async def _explode(ctx: HandlerContext) -> None:
    await ctx.scheduler.invalidate(GET_ITEMS)
    raise RuntimeError("boom")


EXPLODE = mutation(_explode)


class _Row(BaseModel):
    name: str


async def _store_row(ctx: HandlerContext) -> dict[str, Any]:
    return _Row.model_validate({}).model_dump()


STORE_ROW = mutation(_store_row)


async def _reject_amount(ctx: HandlerContext) -> None:
    raise ArgsValidationError("Invalid arguments", {"amount": "must be positive"})


REJECT_AMOUNT = mutation(_reject_amount)


def _build() -> tuple[DispatchEngine, _FakeDb]:
    registry = HandlerRegistry()
    registry.register(sys.modules[__name__], "items:")
    registry.freeze()
    db = _FakeDb()
    engine = DispatchEngine(
        registry=registry,
        broadcaster=InvalidationBroadcaster(registry),
        db=db,
    )
    return engine, db


def _connect(engine: DispatchEngine) -> tuple[ClientConnection, _FakeTransport]:
    transport = _FakeTransport()
    connection = ClientConnection(transport=transport)
    engine.broadcaster.add_connection(connection)
    return connection, transport


@pytest.mark.asyncio
async def test_query_returns_data_update_with_id_and_key() -> None:
    engine, db = _build()
    db.items.extend(["a", "b"])
    conn, transport = _connect(engine)

    await engine.handle_frame(conn, '{"type":"QUERY","id":"q1","queryKey":"items:GET_ITEMS"}')

    assert transport.frames == [
        {"type": "DATA_UPDATE", "id": "q1", "queryKey": "items:GET_ITEMS", "data": ["a", "b"]}
    ]


@pytest.mark.asyncio
async def test_unknown_key_answers_error_with_id() -> None:
    engine, _ = _build()
    conn, transport = _connect(engine)

    await engine.handle_frame(conn, '{"type":"QUERY","id":"7","queryKey":"nope:nothing"}')

    assert transport.frames == [
        {"type": "ERROR", "id": "7", "message": "Unknown query handler for key: nope:nothing"}
    ]


@pytest.mark.asyncio
async def test_kind_mismatch_answers_error() -> None:
    engine, _ = _build()
    conn, transport = _connect(engine)

    await engine.handle_frame(conn, '{"type":"MUTATION","id":"m","mutationKey":"items:GET_ITEMS"}')

    frame = transport.frames[0]
    assert frame["type"] == "ERROR" and frame["id"] == "m"
    assert "registered as a query" in frame["message"]


@pytest.mark.asyncio
async def test_invalid_args_error_carries_issues() -> None:
    engine, db = _build()
    conn, transport = _connect(engine)

    await engine.handle_frame(
        conn, '{"type":"MUTATION","id":"m1","mutationKey":"items:ADD_ITEM","args":{}}'
    )

    frame = transport.frames[0]
    assert frame["type"] == "ERROR"
    assert frame["id"] == "m1"
    assert frame["message"].startswith("Invalid arguments for mutation items:ADD_ITEM")
    assert "name" in frame["error"]["issues"]
    assert db.items == []


@pytest.mark.asyncio
async def test_malformed_frame_answers_error_without_id() -> None:
    engine, _ = _build()
    conn, transport = _connect(engine)

    await engine.handle_frame(conn, "definitely not json")

    assert len(transport.frames) == 1
    assert transport.frames[0]["type"] == "ERROR"
    assert "id" not in transport.frames[0]
    assert transport.frames[0]["message"].startswith("Invalid JSON message format")


@pytest.mark.asyncio
async def test_mutation_response_precedes_requery_fan_out() -> None:
    engine, _ = _build()
    caller, caller_transport = _connect(engine)
    _, other_transport = _connect(engine)

    await engine.handle_frame(
        caller,
        '{"type":"MUTATION","id":"m2","mutationKey":"items:ADD_ITEM","args":{"name":"x"}}',
    )

    assert caller_transport.frames == [
        {"type": "DATA_UPDATE", "id": "m2", "data": {"count": 1}},
        {"type": "REQUERY", "queryKey": "items:GET_ITEMS"},
    ]
    # Повторна інвалідація того самого query в одному виклику дає один сигнал.
    assert other_transport.frames == [{"type": "REQUERY", "queryKey": "items:GET_ITEMS"}]


@pytest.mark.asyncio
async def test_handler_exception_becomes_error_and_invalidations_still_flush() -> None:
    engine, _ = _build()
    caller, transport = _connect(engine)

    await engine.handle_frame(caller, '{"type":"MUTATION","id":"e1","mutationKey":"items:EXPLODE"}')

    assert transport.frames[0] == {
        "type": "ERROR",
        "id": "e1",
        "message": "Error in mutation items:EXPLODE: boom",
    }
    assert transport.frames[1] == {"type": "REQUERY", "queryKey": "items:GET_ITEMS"}


@pytest.mark.asyncio
async def test_response_to_closed_connection_is_dropped() -> None:
    engine, db = _build()
    conn, transport = _connect(engine)
    conn.mark_closed()

    await engine.handle_frame(
        conn, '{"type":"MUTATION","id":"late","mutationKey":"items:ADD_ITEM","args":{"name":"y"}}'
    )

    assert transport.frames == []
    assert db.items == ["y"]


@pytest.mark.asyncio
async def test_deeply_nested_frame_answers_error_without_id() -> None:
    engine, _ = _build()
    conn, transport = _connect(engine)
    depth = 200_000
    frame = '{"type":"QUERY","id":"deep","queryKey":"items:GET_ITEMS","params":' + "[" * depth + "]" * depth + "}"

    await engine.handle_frame(conn, frame)

    assert len(transport.frames) == 1
    assert transport.frames[0]["type"] == "ERROR"
    assert "id" not in transport.frames[0]
    assert transport.frames[0]["message"].startswith("Invalid JSON message format")


@pytest.mark.asyncio
async def test_pydantic_error_inside_handler_keeps_field_issues() -> None:
    engine, _ = _build()
    conn, transport = _connect(engine)

    await engine.handle_frame(conn, '{"type":"MUTATION","id":"r1","mutationKey":"items:STORE_ROW"}')

    frame = transport.frames[0]
    assert frame["type"] == "ERROR" and frame["id"] == "r1"
    assert frame["message"].startswith("Error in mutation items:STORE_ROW: Invalid arguments")
    assert frame["error"]["issues"] == {"name": "Field required"}


@pytest.mark.asyncio
async def test_args_validation_error_inside_handler_keeps_issues() -> None:
    engine, _ = _build()
    conn, transport = _connect(engine)

    await engine.handle_frame(conn, '{"type":"MUTATION","id":"r2","mutationKey":"items:REJECT_AMOUNT"}')

    assert transport.frames == [
        {
            "type": "ERROR",
            "id": "r2",
            "message": "Error in mutation items:REJECT_AMOUNT: Invalid arguments: amount: must be positive",
            "error": {"issues": {"amount": "must be positive"}},
        }
    ]
