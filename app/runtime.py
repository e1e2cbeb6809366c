"""Збирання рантайму sync_lite: сховище, реєстр, broadcaster, WS-сервер і клієнт."""

from __future__ import annotations

import asyncio
import importlib
import logging
from dataclasses import dataclass

from app.settings import Settings
from client.connection import ConnectionManager
from client.realtime import RealtimeClient
from server.broadcaster import InvalidationBroadcaster
from server.datastore import DataStore
from server.dispatch import DispatchEngine
from server.registry import HandlerRegistry, load_registry
from server.ws_server import RealtimeWsServer

logger = logging.getLogger("app.runtime")

_WILDCARD_HOSTS = {"", "0.0.0.0", "::"}


@dataclass(slots=True)
class Runtime:
    store: DataStore
    registry: HandlerRegistry
    broadcaster: InvalidationBroadcaster
    engine: DispatchEngine
    server: RealtimeWsServer

    def close(self) -> None:
        self.store.close()


def build_runtime(settings: Settings) -> Runtime:
    """Startup: схема БД -> discovery handler-ів -> freeze реєстру -> сервер.

    Помилки реєстрації (дублікати ключів) фатальні й прокидаються нагору.
    """

    store = DataStore(settings.db_url, echo=settings.db_echo)
    created = store.init_schema()
    logger.info(
        "[Runtime] Schema ready (%s)",
        ", ".join(created) if created else "no new tables",
    )

    package = importlib.import_module(settings.handlers_package)
    registry = load_registry(package)
    logger.info(
        "[Runtime] %d handlers registered from %s",
        len(registry),
        settings.handlers_package,
    )

    broadcaster = InvalidationBroadcaster(registry)
    engine = DispatchEngine(registry=registry, broadcaster=broadcaster, db=store)
    server = RealtimeWsServer(
        engine,
        host=settings.host,
        port=settings.port,
        ping_interval=settings.ws_ping_interval,
        ping_timeout=settings.ws_ping_timeout,
    )
    return Runtime(
        store=store,
        registry=registry,
        broadcaster=broadcaster,
        engine=engine,
        server=server,
    )


async def run_forever(runtime: Runtime) -> None:
    """Працює до скасування; сховище закривається на виході."""

    try:
        await runtime.server.run()
    except asyncio.CancelledError:
        logger.info("[Runtime] Shutdown requested")
        raise
    finally:
        runtime.close()


def build_client(settings: Settings, url: str | None = None) -> RealtimeClient:
    """Клієнт до цього ж сервера; backoff береться з `settings.reconnect`."""

    if url is None:
        host = "127.0.0.1" if settings.host in _WILDCARD_HOSTS else settings.host
        url = f"ws://{host}:{settings.port}"
    manager = ConnectionManager(url, policy=settings.reconnect.to_policy())
    logger.debug("[Runtime] Client for %s (%s)", url, manager.policy)
    return RealtimeClient(manager)


__all__ = ("Runtime", "build_client", "build_runtime", "run_forever")
