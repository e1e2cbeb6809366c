"""Тести broadcaster-а інвалідацій і per-call Scheduler."""

from __future__ import annotations

import logging
from types import ModuleType
from typing import Any

import pytest

from server.broadcaster import InvalidationBroadcaster, Scheduler
from server.connection import ClientConnection
from server.handlers import HandlerDefinition, mutation, query
from server.registry import HandlerRegistry


class _FakeTransport:
    def __init__(self, *, fail: bool = False) -> None:
        self.sent: list[str] = []
        self.fail = fail

    async def send(self, message: str) -> None:
        if self.fail:
            raise RuntimeError("socket exploded")
        self.sent.append(message)


def _registry() -> tuple[HandlerRegistry, HandlerDefinition, HandlerDefinition]:
    async def get_board(ctx: Any) -> list[Any]:
        return []

    async def move_card(ctx: Any) -> None:
        return None

    module = ModuleType("fake.board")
    get_board.__module__ = move_card.__module__ = module.__name__
    board_query = query(get_board)
    move = mutation(move_card)
    module.get_board = board_query  # type: ignore[attr-defined]
    module.move_card = move  # type: ignore[attr-defined]

    registry = HandlerRegistry()
    registry.register(module, "board:")
    registry.freeze()
    return registry, board_query, move


@pytest.mark.asyncio
async def test_invalidate_fans_out_to_every_open_connection() -> None:
    registry, board_query, _ = _registry()
    broadcaster = InvalidationBroadcaster(registry)
    transports = [_FakeTransport(), _FakeTransport(), _FakeTransport()]
    connections = [ClientConnection(transport=t) for t in transports]
    for conn in connections:
        broadcaster.add_connection(conn)
    connections[2].mark_closed()

    delivered = await broadcaster.invalidate(board_query)

    assert delivered == 2
    assert transports[0].sent == ['{"queryKey":"board:get_board","type":"REQUERY"}']
    assert transports[1].sent == transports[0].sent
    assert transports[2].sent == []


@pytest.mark.asyncio
async def test_failed_send_does_not_stop_other_deliveries(caplog: pytest.LogCaptureFixture) -> None:
    registry, board_query, _ = _registry()
    broadcaster = InvalidationBroadcaster(registry)
    good = _FakeTransport()
    broadcaster.add_connection(ClientConnection(transport=_FakeTransport(fail=True)))
    broadcaster.add_connection(ClientConnection(transport=good))

    with caplog.at_level(logging.WARNING, logger="sync_lite.broadcaster"):
        delivered = await broadcaster.invalidate(board_query)

    assert delivered == 1
    assert len(good.sent) == 1
    assert any("Failed to send REQUERY" in rec.getMessage() for rec in caplog.records)


@pytest.mark.asyncio
async def test_unresolved_or_non_query_reference_is_logged_noop(
    caplog: pytest.LogCaptureFixture,
) -> None:
    registry, _, move = _registry()
    broadcaster = InvalidationBroadcaster(registry)
    transport = _FakeTransport()
    broadcaster.add_connection(ClientConnection(transport=transport))

    async def stray(ctx: Any) -> None:
        return None

    with caplog.at_level(logging.ERROR, logger="sync_lite.broadcaster"):
        assert await broadcaster.invalidate(query(stray)) == 0
        assert await broadcaster.invalidate(move) == 0
        assert await broadcaster.invalidate("board:get_board") == 0

    assert transport.sent == []
    assert len([r for r in caplog.records if r.levelno == logging.ERROR]) == 3


@pytest.mark.asyncio
async def test_scheduler_collects_unique_refs_until_flush() -> None:
    registry, board_query, _ = _registry()
    broadcaster = InvalidationBroadcaster(registry)
    transport = _FakeTransport()
    broadcaster.add_connection(ClientConnection(transport=transport))
    scheduler = Scheduler(broadcaster)

    scheduler.invalidate(board_query)
    await scheduler.invalidate(board_query)

    assert scheduler.queued == [board_query]
    assert transport.sent == []

    assert await scheduler.flush() == 1
    assert scheduler.queued == []
    assert len(transport.sent) == 1


def test_connection_tracking() -> None:
    registry, _, _ = _registry()
    broadcaster = InvalidationBroadcaster(registry)
    conn = ClientConnection(transport=_FakeTransport())

    broadcaster.add_connection(conn)
    assert len(broadcaster) == 1
    broadcaster.remove_connection(conn)
    broadcaster.remove_connection(conn)
    assert broadcaster.connections == []
