"""SSOT для серіалізації (JSON) та часу.

Мета: дати консервативний, сумісний зі stdlib `json` набір функцій,
щоб не дублювати `json.dumps/json.loads` у сервері, клієнті та кеші.

Принципи:
- без "магії" та прихованих перетворень;
- детермінований порядок ключів (на цьому тримаються ключі клієнтського кешу);
- fallback у `str(obj)` тільки коли інакше не можна.
"""

from __future__ import annotations

# ── Imports ───────────────────────────────────────────────────────────────
import json
from dataclasses import asdict, is_dataclass
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel

# ── Time ──────────────────────────────────────────────────────────────────


def utc_now_ms() -> int:
    """Повертає поточний UTC timestamp у мілісекундах."""

    return int(datetime.now(tz=UTC).timestamp() * 1000)


def dt_to_iso_z(dt: datetime) -> str:
    """Конвертує datetime у RFC3339 рядок із суфіксом `Z` (UTC).

    - Якщо `dt` naive (tzinfo=None), трактуємо як UTC (консервативно).
    - Якщо `dt` має tzinfo, переводимо у UTC.
    """

    if dt.tzinfo is None:
        dt_utc = dt.replace(tzinfo=UTC)
    else:
        dt_utc = dt.astimezone(UTC)
    return dt_utc.isoformat().replace("+00:00", "Z")


# ── JSON-friendly conversion ──────────────────────────────────────────────


def to_jsonable(obj: Any) -> Any:
    """Конвертує об'єкт у JSON-friendly значення (консервативно).

    Підтримка:
    - pydantic-модель -> dict (`model_dump(mode="json")`)
    - datetime -> RFC3339 з `Z` (UTC)
    - date -> ISO YYYY-MM-DD
    - Decimal -> str (щоб уникнути втрати точності)
    - Enum -> value
    - Path -> str
    - dataclass -> dict (через asdict) + рекурсія

    Інше:
    - колекції/словники обробляються рекурсивно;
    - крайній fallback: `str(obj)`.
    """

    if obj is None or isinstance(obj, (str, int, float, bool)):
        return obj

    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json")

    if isinstance(obj, datetime):
        return dt_to_iso_z(obj)

    if isinstance(obj, date):
        return obj.isoformat()

    if isinstance(obj, Decimal):
        return str(obj)

    if isinstance(obj, Enum):
        return to_jsonable(obj.value)

    if isinstance(obj, Path):
        return str(obj)

    if is_dataclass(obj) and not isinstance(obj, type):
        return to_jsonable(asdict(obj))

    if isinstance(obj, dict):
        return {str(k): to_jsonable(v) for k, v in obj.items()}

    if isinstance(obj, (list, tuple, set, frozenset)):
        return [to_jsonable(v) for v in obj]

    # Рядки SQLAlchemy (Row/RowMapping) поводяться як Mapping.
    mapping_fn = getattr(obj, "_asdict", None)
    if callable(mapping_fn):
        return to_jsonable(dict(mapping_fn()))

    return str(obj)


# ── JSON I/O ──────────────────────────────────────────────────────────────


def json_dumps(obj: Any) -> str:
    """Компактний детермінований JSON (sort_keys, без ASCII-escape).

    Складні типи проходять через `to_jsonable`.
    """

    return json.dumps(
        obj,
        ensure_ascii=False,
        sort_keys=True,
        separators=(",", ":"),
        default=to_jsonable,
    )


def json_loads(data: str | bytes | bytearray) -> Any:
    """Десеріалізує JSON у Python-об'єкт.

    Підтримує як ``str``, так і ``bytes/bytearray`` (бінарні WS-фрейми).
    Для bytes використовуємо UTF-8 з ``errors='replace'``.
    """

    if isinstance(data, (bytes, bytearray)):
        text = data.decode("utf-8", errors="replace")
    else:
        text = data
    return json.loads(text)


__all__ = (
    "utc_now_ms",
    "dt_to_iso_z",
    "to_jsonable",
    "json_dumps",
    "json_loads",
)
