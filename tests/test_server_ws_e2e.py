"""E2E: справжній WS-сервер, два клієнти, counter і REQUERY fan-out."""

from __future__ import annotations

import asyncio
import json
import socket
from typing import Any

import pytest
import websockets

from app.runtime import Runtime, build_client, build_runtime
from app.settings import Settings
from client.connection import ConnectionStatus


def _get_free_port() -> int:
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    _, port = sock.getsockname()
    sock.close()
    return port


async def _recv_json(ws: Any) -> dict[str, Any]:
    return json.loads(await asyncio.wait_for(ws.recv(), timeout=2))


async def _start_runtime() -> tuple[Runtime, int]:
    port = _get_free_port()
    settings = Settings(host="127.0.0.1", port=port, db_url="sqlite://")
    runtime = build_runtime(settings)
    await runtime.server.start()
    return runtime, port


@pytest.mark.asyncio
async def test_mutation_on_one_client_requeries_the_other() -> None:
    runtime, port = await _start_runtime()
    uri = f"ws://127.0.0.1:{port}/"
    try:
        async with websockets.connect(uri) as a, websockets.connect(uri) as b:
            await a.send(json.dumps({"type": "MUTATION", "id": "c1", "mutationKey": "counter:create_counter"}))
            created = await _recv_json(a)
            assert created["type"] == "DATA_UPDATE" and created["id"] == "c1"

            requeries_b = {(await _recv_json(b))["queryKey"] for _ in range(2)}
            assert requeries_b == {"counter:get_counter", "tables:get_admin_table_data"}
            requeries_a = {(await _recv_json(a))["queryKey"] for _ in range(2)}
            assert requeries_a == requeries_b

            await b.send(json.dumps({"type": "MUTATION", "id": "i1", "mutationKey": "counter:increment_counter"}))
            assert (await _recv_json(b)) == {"type": "DATA_UPDATE", "id": "i1", "data": {"value": 1}}

            await a.send(json.dumps({"type": "QUERY", "id": "q1", "queryKey": "counter:get_counter"}))
            frame = await _recv_json(a)
            while frame["type"] == "REQUERY":
                frame = await _recv_json(a)
            assert frame["id"] == "q1"
            assert frame["data"]["value"] == 1
    finally:
        await runtime.server.stop()
        runtime.close()


@pytest.mark.asyncio
async def test_malformed_frame_gets_error_and_connection_survives() -> None:
    runtime, port = await _start_runtime()
    try:
        async with websockets.connect(f"ws://127.0.0.1:{port}/") as ws:
            await ws.send("{broken")
            error = await _recv_json(ws)
            assert error["type"] == "ERROR"
            assert "id" not in error

            await ws.send(json.dumps({"type": "QUERY", "id": "ok", "queryKey": "tables:list_tables"}))
            reply = await _recv_json(ws)
            assert reply["id"] == "ok"
            assert reply["data"] == ["columns", "counters", "tasks"]
    finally:
        await runtime.server.stop()
        runtime.close()


@pytest.mark.asyncio
async def test_realtime_client_watch_and_mutate_against_live_server() -> None:
    runtime, port = await _start_runtime()
    client = build_client(Settings(host="0.0.0.0", port=port))
    manager = client.connection
    assert manager.url == f"ws://127.0.0.1:{port}"
    try:
        manager.connect()
        await manager.wait_for_status(ConnectionStatus.CONNECTED, timeout=2)

        await asyncio.wait_for(client.mutate("counter:create_counter"), timeout=2)
        changes: list[Any] = []
        sub = client.watch_query("counter:get_counter", on_change=lambda s: changes.append(s.data))

        for _ in range(50):
            if sub.data is not None:
                break
            await asyncio.sleep(0.02)
        assert sub.data["value"] == 0

        result = await asyncio.wait_for(client.mutate("counter:increment_counter", {"amount": 2}), timeout=2)
        assert result == {"value": 2}

        for _ in range(50):
            if sub.data["value"] == 2:
                break
            await asyncio.sleep(0.02)
        assert sub.data["value"] == 2
        assert sub.error is None
        sub.unsubscribe()
    finally:
        client.close()
        await manager.close()
        await runtime.server.stop()
        runtime.close()
