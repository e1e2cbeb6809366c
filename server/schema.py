"""SQLAlchemy-таблиці прикладної схеми.

SQLAlchemy Core (не ORM): handler-и будують запити явно. Службові колонки
`_id`, `_createdAt`, `_updatedAt` однакові для всіх таблиць; час — UTC ms.
"""

from sqlalchemy import BigInteger, Column, ForeignKey, Integer, MetaData, String, Table, Text

# Спільна metadata для всіх таблиць
metadata = MetaData()


def _system_columns() -> list[Column]:
    return [
        Column("_id", String(64), primary_key=True),
        Column("_createdAt", BigInteger, nullable=False),
        Column("_updatedAt", BigInteger, nullable=False),
    ]


counters_table = Table(
    "counters",
    metadata,
    *_system_columns(),
    Column("name", String(128), nullable=False),
    Column("value", Integer, nullable=False, default=0),
)

columns_table = Table(
    "columns",
    metadata,
    *_system_columns(),
    Column("name", String(256), nullable=False),
)

tasks_table = Table(
    "tasks",
    metadata,
    *_system_columns(),
    Column("columnId", String(64), ForeignKey("columns._id", ondelete="CASCADE"), nullable=False),
    Column("title", String(256), nullable=False),
    Column("description", Text, nullable=False),
)

# Таблиці, доступні адмін-запитам за назвою.
TABLES: dict[str, Table] = {
    "counters": counters_table,
    "columns": columns_table,
    "tasks": tasks_table,
}
