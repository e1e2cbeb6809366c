"""Вибір env-файлу для запуску.

Один перемикач профілю: `SYNC_LITE_ENV_FILE`. Пріоритет:
    1) process-ENV;
    2) dispatcher-файл `.env` (рядок `SYNC_LITE_ENV_FILE=.env.local`);
    3) фолбек — сам `.env`.

Усі інші налаштування (host, port, db_url …) живуть у вибраному файлі.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import dotenv_values

from config.config import ENV_FILE_VAR


@dataclass(frozen=True, slots=True)
class EnvFileSelection:
    """Результат вибору env-файлу.

    source: `process_env` | `dispatcher_env` | `fallback`.
    """

    path: Path
    source: str
    exists: bool
    ref: str | None = None


def _dispatcher_ref(project_root: Path) -> str | None:
    env_path = project_root / ".env"
    if not env_path.is_file():
        return None
    try:
        values = dotenv_values(env_path, encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return None
    ref = (values.get(ENV_FILE_VAR) or "").strip()
    return ref or None


def _resolve(project_root: Path, ref: str, source: str) -> EnvFileSelection:
    candidate = Path(ref).expanduser()
    if not candidate.is_absolute():
        candidate = project_root / candidate
    return EnvFileSelection(path=candidate, source=source, exists=candidate.exists(), ref=ref)


def select_env_file_with_trace(project_root: Path) -> EnvFileSelection:
    """Повертає вибраний env-файл разом із джерелом рішення."""

    override = (os.getenv(ENV_FILE_VAR) or "").strip()
    if override:
        return _resolve(project_root, override, "process_env")

    dispatched = _dispatcher_ref(project_root)
    if dispatched:
        return _resolve(project_root, dispatched, "dispatcher_env")

    fallback = project_root / ".env"
    return EnvFileSelection(path=fallback, source="fallback", exists=fallback.exists())


def select_env_file(project_root: Path) -> Path:
    return select_env_file_with_trace(project_root).path
