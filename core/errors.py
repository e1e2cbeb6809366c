"""Таксономія помилок sync_lite (спільна для сервера та клієнта).

Серверні помилки (ProtocolError…ExecutionError) ніколи не валять процес:
dispatch перетворює їх на `ERROR`-повідомлення для того з'єднання, з якого
прийшов запит. Клієнтські (TransportError, NotConnectedError, RemoteCallError)
живуть лише локально. Стартові (DuplicateHandlerKeyError, RegistryFrozenError,
UnregisteredHandlerError) фатальні: сервер не піднімається з неконсистентним реєстром.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any


class SyncLiteError(Exception):
    """Базова помилка пакета."""


# ── Протокол / dispatch ───────────────────────────────────────────────────


class ProtocolError(SyncLiteError):
    """Фрейм не парситься у Wire Message (id запиту невідомий)."""


class UnknownKeyError(SyncLiteError):
    """Запит посилається на ключ, якого немає в реєстрі."""

    def __init__(self, kind: str, key: str) -> None:
        super().__init__(f"Unknown {kind} handler for key: {key}")
        self.kind = kind
        self.key = key


class KindMismatchError(SyncLiteError):
    """Ключ знайдено, але handler іншого типу (query vs mutation)."""

    def __init__(self, key: str, *, requested: str, registered: str) -> None:
        super().__init__(
            f"Handler {key} is registered as a {registered}, "
            f"but was called as a {requested}"
        )
        self.key = key
        self.requested = requested
        self.registered = registered


class ArgsValidationError(SyncLiteError):
    """Аргументи не пройшли валідацію.

    `issues` — мапа `шлях -> повідомлення`, щоб клієнт міг показати помилку
    біля конкретного поля, а не загальний текст.
    """

    def __init__(self, message: str, issues: Mapping[str, str] | None = None) -> None:
        super().__init__(message)
        self.issues: dict[str, str] = dict(issues or {})

    def render(self) -> str:
        if not self.issues:
            return str(self)
        details = "; ".join(f"{path}: {msg}" for path, msg in self.issues.items())
        return f"{self}: {details}"

    def to_payload(self) -> dict[str, Any]:
        return {"issues": dict(self.issues)}


class ExecutionError(SyncLiteError):
    """Handler кинув виняток під час виконання."""

    def __init__(self, kind: str, key: str, detail: str) -> None:
        super().__init__(f"Error in {kind} {key}: {detail}")
        self.kind = kind
        self.key = key
        self.detail = detail


# ── Реєстр (старт) ────────────────────────────────────────────────────────


class DuplicateHandlerKeyError(SyncLiteError):
    """Два handler-и претендують на один повний ключ."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Duplicate handler key: {key}")
        self.key = key


class RegistryFrozenError(SyncLiteError):
    """Спроба реєстрації після того, як реєстр заморожено."""


class UnregisteredHandlerError(SyncLiteError):
    """Публічний експорт-handler лишився без ключа після завантаження."""

    def __init__(self, export: str) -> None:
        super().__init__(f"Handler export has no key: {export}")
        self.export = export


# ── Клієнт ────────────────────────────────────────────────────────────────


class TransportError(SyncLiteError):
    """Проблема на рівні з'єднання."""


class NotConnectedError(TransportError):
    """Запит не відправлено: з'єднання не у стані `connected`."""


class RemoteCallError(SyncLiteError):
    """Сервер відповів `ERROR` на конкретний запит.

    `error` — структурований payload (для помилок валідації: `{"issues": {...}}`).
    """

    def __init__(self, message: str, error: Any = None, *, request_id: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.error = error
        self.request_id = request_id

    @property
    def issues(self) -> dict[str, str]:
        if isinstance(self.error, Mapping):
            raw = self.error.get("issues")
            if isinstance(raw, Mapping):
                return {str(k): str(v) for k, v in raw.items()}
        return {}


__all__ = (
    "SyncLiteError",
    "ProtocolError",
    "UnknownKeyError",
    "KindMismatchError",
    "ArgsValidationError",
    "ExecutionError",
    "DuplicateHandlerKeyError",
    "RegistryFrozenError",
    "UnregisteredHandlerError",
    "TransportError",
    "NotConnectedError",
    "RemoteCallError",
)
