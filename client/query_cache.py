"""Клієнтський кеш результатів query.

Ключ кешу — детермінований JSON пари `[key, params]` із відсортованими
ключами об'єктів, тож структурно рівні params дають той самий ключ, а
`None`/відсутні params — один спільний. TTL немає: запис живе, доки його не
перезапише наступна відповідь або оптимістичне оновлення.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from typing import Any

from core.serialization import json_dumps

logger = logging.getLogger("sync_lite.client.cache")

CacheListener = Callable[[Any], None]


def _canonical(value: Any) -> Any:
    """Цілі float (`1.0`) -> int, щоб `{"a": 1}` і `{"a": 1.0}` дали один ключ."""

    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, dict):
        return {k: _canonical(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_canonical(v) for v in value]
    return value


def get_query_cache_key(key: str, params: Any = None) -> str:
    """Детермінований ключ кешу для (query key, params)."""

    return json_dumps([key, _canonical(params)])


class QueryCache:
    """Сховище `cache key -> value` з підписками на конкретний ключ."""

    def __init__(self) -> None:
        self._entries: dict[str, Any] = {}
        self._listeners: dict[str, list[CacheListener]] = defaultdict(list)

    def has(self, cache_key: str) -> bool:
        return cache_key in self._entries

    def get(self, cache_key: str, default: Any = None) -> Any:
        return self._entries.get(cache_key, default)

    def set(self, cache_key: str, value: Any) -> None:
        """Записує значення і синхронно сповіщає підписників цього ключа."""

        self._entries[cache_key] = value
        for listener in list(self._listeners.get(cache_key, ())):
            try:
                listener(value)
            except Exception:
                logger.exception("[QueryCache] Subscriber failed for %s", cache_key)

    def subscribe(self, cache_key: str, callback: CacheListener) -> Callable[[], None]:
        self._listeners[cache_key].append(callback)

        def unsubscribe() -> None:
            listeners = self._listeners.get(cache_key)
            if listeners and callback in listeners:
                listeners.remove(callback)
                if not listeners:
                    self._listeners.pop(cache_key, None)

        return unsubscribe

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class LocalStore:
    """Оптимістичний доступ до кешу через (key, params), без ручного ключа."""

    def __init__(self, cache: QueryCache) -> None:
        self._cache = cache

    def get_query(self, key: str, params: Any = None) -> Any:
        return self._cache.get(get_query_cache_key(key, params))

    def set_query(self, key: str, params: Any, value: Any) -> None:
        self._cache.set(get_query_cache_key(key, params), value)


__all__ = ("LocalStore", "QueryCache", "get_query_cache_key")
