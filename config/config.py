"""Центральне джерело дефолтів sync_lite.

Значення тут — лише дефолти; перевизначення йдуть через env (`app/settings.py`)
або CLI (`app/main.py`).
"""

from __future__ import annotations

from pathlib import Path

__all__ = [
    "PROJECT_ROOT",
    "ENV_FILE_VAR",
    "DEFAULT_HOST",
    "DEFAULT_PORT",
    "DEFAULT_DB_URL",
    "DEFAULT_HANDLERS_PACKAGE",
    "DEFAULT_LOG_LEVEL",
    "WS_PING_INTERVAL_SEC",
    "WS_PING_TIMEOUT_SEC",
    "RECONNECT_BASE_DELAY_SEC",
    "RECONNECT_MAX_DELAY_SEC",
    "RECONNECT_MAX_ATTEMPTS",
    "PROM_HTTP_PORT",
    "_TRUE_ENV_VALUES",
    "_FALSE_ENV_VALUES",
]

PROJECT_ROOT = Path(__file__).resolve().parent.parent

# Єдиний перемикач профілю env-файлу (див. app/env.py)
ENV_FILE_VAR = "SYNC_LITE_ENV_FILE"

# ── WebSocket сервер ──────────────────────────────────────────────────────
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 3001
WS_PING_INTERVAL_SEC = 20.0
WS_PING_TIMEOUT_SEC = 20.0

# ── Дані та handler-и ─────────────────────────────────────────────────────
DEFAULT_DB_URL = f"sqlite:///{PROJECT_ROOT / 'sync_lite.db'}"
DEFAULT_HANDLERS_PACKAGE = "server.api"

DEFAULT_LOG_LEVEL = "INFO"

# ── Клієнтський reconnect: min(base * 2**attempt, max), до N спроб ────────
RECONNECT_BASE_DELAY_SEC = 1.0
RECONNECT_MAX_DELAY_SEC = 30.0
RECONNECT_MAX_ATTEMPTS = 10

# Prometheus HTTP exporter; None вимикає
PROM_HTTP_PORT: int | None = None

_TRUE_ENV_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_ENV_VALUES = frozenset({"0", "false", "no", "off", ""})
