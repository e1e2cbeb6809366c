"""Точка входу sync_lite: `python -m app.main [--host ...] [--port ...]`."""

from __future__ import annotations

import argparse
import asyncio
import errno
import logging
import sys
from collections.abc import Sequence

from prometheus_client import start_http_server
from rich.console import Console
from rich.logging import RichHandler

from app.runtime import build_runtime, run_forever
from app.settings import Settings, load_settings

logger = logging.getLogger("app.main")


# Обрив TCP під час handshake або HTTP-запит у WS-порт: не помилка сервера.
_HANDSHAKE_NOISE = ("opening handshake failed", "no close frame received or sent")
_WS_LOGGERS = (
    "websockets",
    "websockets.server",
    "websockets.asyncio.server",
    "websockets.asyncio.connection",
)
# 10048 = WSAEADDRINUSE
_ADDR_IN_USE_ERRNOS = {errno.EADDRINUSE, 10048}


class _HandshakeNoiseFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        text = str(record.msg).lower()
        return not any(marker in text for marker in _HANDSHAKE_NOISE)


def _silence_expected_websocket_handshake_noise() -> None:
    noise_filter = _HandshakeNoiseFilter()
    for name in _WS_LOGGERS:
        logging.getLogger(name).addFilter(noise_filter)


def _is_address_in_use_error(exc: BaseException) -> bool:
    if getattr(exc, "errno", None) in _ADDR_IN_USE_ERRNOS:
        return True
    return "address already in use" in str(exc).lower()


def _configure_logging(level: str) -> None:
    root = logging.getLogger()
    root.setLevel(level)
    if not any(isinstance(h, RichHandler) for h in root.handlers):
        root.addHandler(RichHandler(console=Console(stderr=True), show_path=False))
    _silence_expected_websocket_handshake_noise()


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sync_lite",
        description="Realtime query/mutation WebSocket сервер",
    )
    parser.add_argument("--host", help="Адреса для bind (дефолт з env/config)")
    parser.add_argument("--port", type=int, help="WS порт (0 — будь-який вільний)")
    parser.add_argument("--db-url", dest="db_url", help="SQLAlchemy URL сховища")
    parser.add_argument(
        "--handlers-package",
        dest="handlers_package",
        help="Пакет з модулями handler-ів (дефолт server.api)",
    )
    parser.add_argument(
        "--log-level",
        dest="log_level",
        choices=("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"),
        type=str.upper,
    )
    return parser


def _maybe_start_metrics(settings: Settings) -> None:
    if settings.prometheus_port is None:
        return
    try:
        start_http_server(settings.prometheus_port)
        logger.info("[Metrics] Prometheus exporter on :%d", settings.prometheus_port)
    except OSError as exc:
        # Метрики не критичні: сервер працює і без них.
        logger.warning(
            "[Metrics] Не вдалося запустити exporter на :%d: %s",
            settings.prometheus_port,
            exc,
        )


def main(argv: Sequence[str] | None = None) -> int:
    args = build_arg_parser().parse_args(argv)
    settings = load_settings(
        host=args.host,
        port=args.port,
        db_url=args.db_url,
        handlers_package=args.handlers_package,
        log_level=args.log_level,
    )
    _configure_logging(settings.log_level)
    _maybe_start_metrics(settings)

    runtime = build_runtime(settings)
    try:
        asyncio.run(run_forever(runtime))
    except KeyboardInterrupt:
        logger.info("[SyncLite] Зупинено користувачем")
    except OSError as exc:
        if _is_address_in_use_error(exc):
            logger.error(
                "[SyncLite] Не вдалося забіндитись на %s:%d (порт зайнятий). "
                "(Підказка: змініть SYNC_LITE_PORT / --port або зупиніть процес, що слухає цей порт.)",
                settings.host,
                settings.port,
            )
            return 2
        raise
    return 0


if __name__ == "__main__":
    sys.exit(main())
