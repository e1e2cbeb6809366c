"""Клієнтська частина sync_lite: з'єднання, кеш, підписки й мутації."""

from client.connection import ConnectionManager, ConnectionStatus, ReconnectPolicy
from client.query_cache import LocalStore, QueryCache, get_query_cache_key
from client.realtime import QuerySubscription, RealtimeClient

__all__ = (
    "ConnectionManager",
    "ConnectionStatus",
    "LocalStore",
    "QueryCache",
    "QuerySubscription",
    "RealtimeClient",
    "ReconnectPolicy",
    "get_query_cache_key",
)
