"""Сховище даних для handler-ів (SQLAlchemy Core поверх SQLite/іншої БД).

Ядро протоколу трактує DataStore як непрозорий handle: воно лише передає його
у `ctx.db`. Handler-и викликають `fetch_all/fetch_one/execute` або беруть
`connect()` для кількох операцій в одній транзакції.

Ізоляцію конкурентних мутацій ядро не забезпечує: це відповідальність БД
(для SQLite записи серіалізуються самим файлом/з'єднанням).

Виклики синхронні й виконуються прямо в event loop: поки триває запит до БД,
інші з'єднання чекають. Для короткого SQLite-запиту це мікросекунди; in-memory
БД тримає одне спільне з'єднання (StaticPool), яке не можна ділити між
потоками `asyncio.to_thread`. Для файлової БД з повільними запитами handler
має сам винести роботу з loop (`await asyncio.to_thread(ctx.db.fetch_all, stmt)`).
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import Connection, Table, create_engine, event, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.pool import StaticPool
from sqlalchemy.sql.expression import Executable

from server.schema import TABLES, metadata

logger = logging.getLogger("sync_lite.datastore")


def _is_memory_sqlite(url: str) -> bool:
    parsed = make_url(url)
    if not parsed.drivername.startswith("sqlite"):
        return False
    return parsed.database in (None, "", ":memory:")


class DataStore:
    """Обгортка над SQLAlchemy Engine з хелперами для handler-ів."""

    def __init__(self, url: str, *, echo: bool = False) -> None:
        self.url = url
        if _is_memory_sqlite(url):
            # Одне спільне з'єднання, інакше кожне checkout бачить порожню БД.
            self._engine: Engine = create_engine(
                url,
                echo=echo,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        else:
            self._engine = create_engine(url, echo=echo)
        if self._engine.dialect.name == "sqlite":
            self._configure_sqlite(self._engine)

    @staticmethod
    def _configure_sqlite(engine: Engine) -> None:
        """PRAGMA foreign_keys=ON (каскадне видалення задач колонки)."""

        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_connection: Any, connection_record: Any) -> None:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    @property
    def engine(self) -> Engine:
        return self._engine

    # ── Схема ─────────────────────────────────────────────────────────────

    def init_schema(self) -> list[str]:
        """Створює відсутні таблиці; повертає імена щойно створених."""

        existing = set(inspect(self._engine).get_table_names())
        missing = [name for name in metadata.tables if name not in existing]
        metadata.create_all(self._engine, checkfirst=True)
        for name in metadata.tables:
            if name in missing:
                logger.info("[DataStore] Created table: %s", name)
            else:
                logger.debug("[DataStore] Table %s already exists", name)
        return missing

    def table(self, name: str) -> Table | None:
        return TABLES.get(name)

    def table_names(self) -> list[str]:
        return sorted(TABLES)

    # ── Запити ────────────────────────────────────────────────────────────

    @contextmanager
    def connect(self) -> Iterator[Connection]:
        """Транзакція: commit при успіху, rollback при винятку."""

        with self._engine.begin() as conn:
            yield conn

    def fetch_all(self, statement: Executable) -> list[dict[str, Any]]:
        with self.connect() as conn:
            return [dict(row) for row in conn.execute(statement).mappings()]

    def fetch_one(self, statement: Executable) -> dict[str, Any] | None:
        with self.connect() as conn:
            row = conn.execute(statement).mappings().first()
        return dict(row) if row is not None else None

    def execute(self, statement: Executable) -> int:
        """Виконує insert/update/delete; повертає кількість змінених рядків."""

        with self.connect() as conn:
            result = conn.execute(statement)
            return int(result.rowcount or 0)

    def close(self) -> None:
        self._engine.dispose()


__all__ = ("DataStore",)
