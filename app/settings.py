"""Конфігураційні моделі застосунку (WS сервер, сховище, reconnect, Prometheus).

Шлях: ``app/settings.py``

Джерела в порядку пріоритету: аргументи `load_settings(**overrides)` (CLI) →
process-ENV → вибраний env-файл (`app/env.py`) → дефолти з `config.config`.
Змінні мають префікс `SYNC_LITE_`; вкладені поля reconnect — через `__`
(`SYNC_LITE_RECONNECT__MAX_ATTEMPTS=5`).
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from app.env import select_env_file_with_trace
from client.connection import ReconnectPolicy
from config.config import (
    DEFAULT_DB_URL,
    DEFAULT_HANDLERS_PACKAGE,
    DEFAULT_HOST,
    DEFAULT_LOG_LEVEL,
    DEFAULT_PORT,
    PROJECT_ROOT,
    PROM_HTTP_PORT,
    RECONNECT_BASE_DELAY_SEC,
    RECONNECT_MAX_ATTEMPTS,
    RECONNECT_MAX_DELAY_SEC,
    WS_PING_INTERVAL_SEC,
    WS_PING_TIMEOUT_SEC,
    _FALSE_ENV_VALUES,
    _TRUE_ENV_VALUES,
)

logger = logging.getLogger("app.settings")
if not logger.handlers:
    logger.addHandler(logging.NullHandler())

_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}


class ReconnectCfg(BaseModel):
    """Backoff клієнта: `min(base_delay * 2**attempt, max_delay)`."""

    base_delay: float = Field(default=RECONNECT_BASE_DELAY_SEC, gt=0)
    max_delay: float = Field(default=RECONNECT_MAX_DELAY_SEC, gt=0)
    max_attempts: int = Field(default=RECONNECT_MAX_ATTEMPTS, ge=0)

    @model_validator(mode="after")
    def _check_ceiling(self) -> ReconnectCfg:
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay має бути не менше base_delay")
        return self

    def to_policy(self) -> ReconnectPolicy:
        return ReconnectPolicy(
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            max_attempts=self.max_attempts,
        )


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="SYNC_LITE_",
        env_nested_delimiter="__",
        env_file_encoding="utf-8",
        extra="ignore",  # ігноруємо невідомі змінні замість ValidationError
    )

    host: str = DEFAULT_HOST
    port: int = Field(default=DEFAULT_PORT, ge=0, le=65535)
    db_url: str = DEFAULT_DB_URL
    db_echo: bool = False
    handlers_package: str = DEFAULT_HANDLERS_PACKAGE
    log_level: str = DEFAULT_LOG_LEVEL
    ws_ping_interval: float | None = WS_PING_INTERVAL_SEC
    ws_ping_timeout: float | None = WS_PING_TIMEOUT_SEC
    prometheus_port: int | None = Field(
        default=PROM_HTTP_PORT,
        validation_alias=AliasChoices("SYNC_LITE_PROMETHEUS_PORT", "PROMETHEUS_PORT", "prometheus_port"),
    )
    reconnect: ReconnectCfg = Field(default_factory=ReconnectCfg)

    @field_validator("host", "db_url", "handlers_package", mode="before")
    @classmethod
    def _strip_text(cls, v, info):  # type: ignore[no-untyped-def]
        if v is None:
            return v
        text = str(v).strip()
        if not text:
            raise ValueError(f"{info.field_name} не може бути порожнім")
        return text

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, v):  # type: ignore[no-untyped-def]
        text = str(v or "").strip().upper() or DEFAULT_LOG_LEVEL
        if text not in _LOG_LEVELS:
            raise ValueError(f"Невідомий рівень логування {text!r}")
        return text

    @field_validator("db_echo", mode="before")
    @classmethod
    def _coerce_bool(cls, v):  # type: ignore[no-untyped-def]
        if isinstance(v, str):
            s = v.strip().lower()
            if s in _TRUE_ENV_VALUES:
                return True
            if s in _FALSE_ENV_VALUES:
                return False
        return v

    @field_validator("prometheus_port", "ws_ping_interval", "ws_ping_timeout", mode="before")
    @classmethod
    def _empty_is_none(cls, v):  # type: ignore[no-untyped-def]
        if isinstance(v, str) and v.strip().lower() in {"", "none", "off"}:
            return None
        return v


def load_settings(project_root: Path | None = None, **overrides: Any) -> Settings:
    """Будує `Settings` з вибраного env-файлу; `overrides` (не-None) мають пріоритет."""

    root = project_root or PROJECT_ROOT
    selection = select_env_file_with_trace(root)
    logger.debug(
        "[Settings] Env file %s (%s, exists=%s)",
        selection.path,
        selection.source,
        selection.exists,
    )

    explicit = {key: value for key, value in overrides.items() if value is not None}
    env_file = selection.path if selection.exists else None
    return Settings(_env_file=env_file, **explicit)


__all__ = ("ReconnectCfg", "Settings", "load_settings")
