"""Тести прикладних handler-ів (counter, kanban, admin) на in-memory SQLite."""

from __future__ import annotations

import json
from collections.abc import Iterator
from typing import Any

import pytest

import server.api
from server.broadcaster import InvalidationBroadcaster
from server.connection import ClientConnection
from server.datastore import DataStore
from server.dispatch import DispatchEngine
from server.registry import load_registry


class _FakeTransport:
    def __init__(self) -> None:
        self.frames: list[dict[str, Any]] = []

    async def send(self, message: str) -> None:
        self.frames.append(json.loads(message))


class _Harness:
    def __init__(self) -> None:
        self.store = DataStore("sqlite://")
        self.store.init_schema()
        registry = load_registry(server.api)
        self.engine = DispatchEngine(
            registry=registry,
            broadcaster=InvalidationBroadcaster(registry),
            db=self.store,
        )
        self.transport = _FakeTransport()
        self.conn = ClientConnection(transport=self.transport)
        self.engine.broadcaster.add_connection(self.conn)
        self._seq = 0

    async def call(self, kind: str, key: str, payload: Any = None) -> dict[str, Any]:
        self._seq += 1
        request_id = f"r{self._seq}"
        frame: dict[str, Any] = {"type": kind.upper(), "id": request_id}
        if kind == "query":
            frame.update(queryKey=key, params=payload)
        else:
            frame.update(mutationKey=key, args=payload)
        self.transport.frames.clear()
        await self.engine.handle_frame(self.conn, json.dumps(frame))
        response = self.transport.frames[0]
        assert response["id"] == request_id
        return response

    def requeried(self) -> set[str]:
        return {f["queryKey"] for f in self.transport.frames if f["type"] == "REQUERY"}


@pytest.fixture()
def harness() -> Iterator[_Harness]:
    h = _Harness()
    yield h
    h.store.close()


@pytest.mark.asyncio
async def test_counter_round_trip(harness: _Harness) -> None:
    missing = await harness.call("query", "counter:get_counter")
    assert missing == {"type": "DATA_UPDATE", "id": "r1", "queryKey": "counter:get_counter", "data": None}

    created = await harness.call("mutation", "counter:create_counter")
    assert created["data"]["value"] == 0
    assert harness.requeried() == {"counter:get_counter", "tables:get_admin_table_data"}

    again = await harness.call("mutation", "counter:create_counter")
    assert again["data"]["_id"] == created["data"]["_id"]

    bumped = await harness.call("mutation", "counter:increment_counter")
    assert bumped["data"] == {"value": 1}
    bumped = await harness.call("mutation", "counter:increment_counter", {"amount": 5})
    assert bumped["data"] == {"value": 6}
    assert harness.requeried() == {"counter:get_counter", "tables:get_admin_table_data"}

    current = await harness.call("query", "counter:get_counter")
    assert current["data"]["value"] == 6


@pytest.mark.asyncio
async def test_increment_without_counter_reports_error(harness: _Harness) -> None:
    response = await harness.call("mutation", "counter:increment_counter", {})

    assert response["type"] == "ERROR"
    assert response["message"] == (
        "Error in mutation counter:increment_counter: Failed to retrieve the global counter."
    )


@pytest.mark.asyncio
async def test_counter_row_missing_after_write_reports_error(harness: _Harness, monkeypatch) -> None:
    monkeypatch.setattr(harness.store, "fetch_one", lambda statement: None)

    created = await harness.call("mutation", "counter:create_counter")
    assert created["message"] == (
        "Error in mutation counter:create_counter: Failed to create the global counter."
    )

    bumped = await harness.call("mutation", "counter:increment_counter")
    assert bumped["type"] == "ERROR"
    assert bumped["message"].endswith("Failed to retrieve the global counter.")


@pytest.mark.asyncio
async def test_increment_rejects_non_positive_amount(harness: _Harness) -> None:
    response = await harness.call("mutation", "counter:increment_counter", {"amount": 0})

    assert response["type"] == "ERROR"
    assert "amount" in response["error"]["issues"]


@pytest.mark.asyncio
async def test_create_column_requires_name(harness: _Harness) -> None:
    response = await harness.call("mutation", "columns:create_column", {})

    assert response["type"] == "ERROR"
    assert "name" in response["error"]["issues"]


@pytest.mark.asyncio
async def test_kanban_board_flow(harness: _Harness) -> None:
    todo = (await harness.call("mutation", "columns:create_column", {"name": "Todo"}))["data"]
    done = (await harness.call("mutation", "columns:create_column", {"name": "Done"}))["data"]
    assert harness.requeried() == {
        "columns:get_all_columns_with_tasks",
        "tables:get_admin_table_data",
    }

    task = (
        await harness.call(
            "mutation",
            "tasks:create_task",
            {"title": "Write tests", "columnId": todo["_id"]},
        )
    )["data"]
    assert task["description"] == ""

    moved = await harness.call("mutation", "tasks:move_task", {"id": task["_id"], "columnId": done["_id"]})
    assert moved["data"] == {"updated": 1}

    updated = await harness.call(
        "mutation",
        "tasks:update_task",
        {"id": task["_id"], "title": "Write more tests", "description": "e2e too"},
    )
    assert updated["data"] == {"updated": 1}

    board = (await harness.call("query", "columns:get_all_columns_with_tasks"))["data"]
    by_name = {col["name"]: col for col in board}
    assert set(by_name) == {"Todo", "Done"}
    assert by_name["Todo"]["tasks"] == []
    assert [t["title"] for t in by_name["Done"]["tasks"]] == ["Write more tests"]

    deleted = await harness.call("mutation", "columns:delete_column", {"id": done["_id"]})
    assert deleted["data"] == {"deleted": 1}
    tasks = (await harness.call("query", "tables:get_admin_table_data", {"tableNameString": "tasks"}))["data"]
    assert tasks == []


@pytest.mark.asyncio
async def test_create_task_in_missing_column_fails(harness: _Harness) -> None:
    response = await harness.call(
        "mutation", "tasks:create_task", {"title": "Orphan", "columnId": "no-such-column"}
    )

    assert response["type"] == "ERROR"
    assert "Column no-such-column not found" in response["message"]


@pytest.mark.asyncio
async def test_admin_table_queries(harness: _Harness) -> None:
    tables = await harness.call("query", "tables:list_tables")
    assert tables["data"] == ["columns", "counters", "tasks"]

    await harness.call("mutation", "counter:create_counter")
    rows = await harness.call("query", "tables:get_admin_table_data", {"table_name": "counters"})
    assert len(rows["data"]) == 1

    unknown = await harness.call("query", "tables:get_admin_table_data", {"tableNameString": "nope"})
    assert unknown["type"] == "ERROR"
    assert 'Table "nope" not found in schema.' in unknown["message"]
