"""Реєстр handler-ів: двонаправлений індекс `key <-> HandlerDefinition`.

Життєвий цикл:
1) на старті `load_registry(package)` сканує пакет із джерелами handler-ів;
2) для кожного модуля `register(module, prefix)` додає всі експорти-handler-и
   під ключем `"<prefix><export_name>"`;
3) `freeze()` — далі реєстр лише для читання (dispatch/broadcaster).

Інваріанти:
- ключ глобально унікальний; колізія = фатальна помилка старту;
- прямий і зворотній індекс завжди узгоджені (один handler = один ключ).
"""

from __future__ import annotations

import importlib
import logging
import pkgutil
import sys
from collections.abc import Collection, Iterator
from types import ModuleType

from core.errors import (
    DuplicateHandlerKeyError,
    RegistryFrozenError,
    UnregisteredHandlerError,
)
from server.handlers import HandlerDefinition

logger = logging.getLogger("sync_lite.registry")

KEY_SEPARATOR = ":"


class HandlerRegistry:
    """Двонаправлений індекс handler-ів (ключ -> handler, handler -> ключ)."""

    def __init__(self) -> None:
        self._by_key: dict[str, HandlerDefinition] = {}
        # HandlerDefinition хешується за ідентичністю (eq=False).
        self._key_by_ref: dict[HandlerDefinition, str] = {}
        self._frozen = False

    # ── Реєстрація ────────────────────────────────────────────────────────

    def register(
        self,
        module: ModuleType,
        module_key_prefix: str,
        *,
        owners: Collection[str] | None = None,
    ) -> list[str]:
        """Реєструє всі handler-и модуля; повертає список доданих ключів.

        Експорт, оголошений в іншому модулі, пропускається лише тоді, коли
        модуль-власник сам публічно експортує ту саму definition (і, якщо
        задано `owners`, входить у цей набір). Handler, зібраний фабрикою в
        helper-модулі, реєструється там, де його експортовано.

        Колізія ключа кидає DuplicateHandlerKeyError ще до будь-якої вставки
        з цього модуля, тож реєстр не лишається напівзаповненим.
        """

        if self._frozen:
            raise RegistryFrozenError(
                f"Registry is frozen; cannot register {module.__name__}"
            )

        # handler -> ім'я експорту; аліаси одного handler-а дають один ключ
        # (пріоритет має ім'я, під яким функцію оголошено).
        chosen: dict[HandlerDefinition, str] = {}
        for export_name, value in _public_handlers(module):
            if value in self._key_by_ref:
                logger.debug(
                    "[Registry] Skip %s.%s: already registered as %s",
                    module.__name__,
                    export_name,
                    self._key_by_ref[value],
                )
                continue
            owner = getattr(value.handler, "__module__", None) or module.__name__
            if owner != module.__name__ and _claimed_by(owner, value, owners):
                logger.debug(
                    "[Registry] Skip %s.%s: owned by %s",
                    module.__name__,
                    export_name,
                    owner,
                )
                continue
            current = chosen.get(value)
            if current is None or (
                export_name == value.name and current != value.name
            ):
                if current is not None:
                    logger.debug(
                        "[Registry] Skip alias %s.%s", module.__name__, current
                    )
                chosen[value] = export_name

        pending: list[tuple[str, HandlerDefinition]] = []
        for value, export_name in chosen.items():
            key = f"{module_key_prefix}{export_name}"
            if key in self._by_key or any(key == k for k, _ in pending):
                raise DuplicateHandlerKeyError(key)
            pending.append((key, value))

        for key, definition in pending:
            self._by_key[key] = definition
            self._key_by_ref[definition] = key
            logger.info(
                "[Registry] Registered %s handler: %s", definition.kind, key
            )
        return [key for key, _ in pending]

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    # ── Пошук ─────────────────────────────────────────────────────────────

    def resolve_by_key(self, key: str) -> HandlerDefinition | None:
        return self._by_key.get(key)

    def resolve_key_by_reference(self, handler: object) -> str | None:
        if not isinstance(handler, HandlerDefinition):
            return None
        return self._key_by_ref.get(handler)

    def keys(self) -> list[str]:
        return sorted(self._by_key)

    def __len__(self) -> int:
        return len(self._by_key)

    def __contains__(self, key: object) -> bool:
        return key in self._by_key


def _public_handlers(module: ModuleType) -> list[tuple[str, HandlerDefinition]]:
    return [
        (name, value)
        for name, value in sorted(vars(module).items())
        if not name.startswith("_") and isinstance(value, HandlerDefinition)
    ]


def _claimed_by(
    owner_name: str,
    definition: HandlerDefinition,
    owners: Collection[str] | None,
) -> bool:
    """Чи реєструє `definition` її власний модуль (публічний експорт)."""

    if owners is not None and owner_name not in owners:
        return False
    owner = sys.modules.get(owner_name)
    if owner is None:
        return False
    return any(value is definition for _, value in _public_handlers(owner))


# ── Завантаження джерел handler-ів ────────────────────────────────────────


def module_key_prefix(module_name: str, package_name: str) -> str:
    """`server.api.counter` відносно `server.api` -> `counter:`.

    Вкладені пакети дають шлях через `/`: `server.api.admin.tables` ->
    `admin/tables:`.
    """

    relative = module_name
    if module_name.startswith(package_name + "."):
        relative = module_name[len(package_name) + 1 :]
    return relative.replace(".", "/") + KEY_SEPARATOR


def discover_handler_modules(
    package: str | ModuleType,
) -> Iterator[tuple[ModuleType, str]]:
    """Рекурсивно імпортує модулі пакета й віддає пари (module, prefix).

    Приватні модулі/пакети (ім'я з `_`) пропускаються. Помилка імпорту не
    ковтається: зламане джерело handler-ів має зупинити старт.
    """

    pkg = importlib.import_module(package) if isinstance(package, str) else package
    search_path = getattr(pkg, "__path__", None)
    if search_path is None:
        raise ValueError(f"{pkg.__name__} is not a package")

    for info in sorted(
        pkgutil.walk_packages(search_path, prefix=pkg.__name__ + "."),
        key=lambda item: item.name,
    ):
        leaf = info.name.rsplit(".", 1)[-1]
        relative_parts = info.name[len(pkg.__name__) + 1 :].split(".")
        if any(part.startswith("_") for part in relative_parts):
            continue
        if info.ispkg:
            continue
        module = importlib.import_module(info.name)
        logger.debug("[Registry] Loaded handler source %s (%s)", info.name, leaf)
        yield module, module_key_prefix(info.name, pkg.__name__)


def load_registry(
    package: str | ModuleType,
    registry: HandlerRegistry | None = None,
) -> HandlerRegistry:
    """Будує (і заморожує) реєстр з усіх модулів пакета.

    Власника кожної definition визначаємо після імпорту всіх модулів: імпорт
    з іншого джерела пропускається, лише якщо те джерело теж скановане.
    Публічний експорт-handler без ключа зупиняє старт.
    """

    registry = registry if registry is not None else HandlerRegistry()
    sources = list(discover_handler_modules(package))
    owners = {module.__name__ for module, _ in sources}
    for module, prefix in sources:
        registry.register(module, prefix, owners=owners)

    for module, _ in sources:
        for export_name, value in _public_handlers(module):
            if registry.resolve_key_by_reference(value) is None:
                logger.error(
                    "[Registry] %s.%s exported but not registered",
                    module.__name__,
                    export_name,
                )
                raise UnregisteredHandlerError(f"{module.__name__}.{export_name}")
    registry.freeze()
    logger.info("[Registry] %d handlers loaded: %s", len(registry), registry.keys())
    return registry


__all__ = (
    "HandlerRegistry",
    "module_key_prefix",
    "discover_handler_modules",
    "load_registry",
)
