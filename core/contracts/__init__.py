"""Контракти (schemas) між клієнтом і сервером sync_lite.

Принцип: contract-first — спочатку описуємо payload, потім імплементуємо.
Тут живе лише wire-протокол; доменні схеми таблиць — у `server/schema.py`.
"""

from __future__ import annotations

from .wire import (  # noqa: F401
    ClientRequestMessage,
    DataResponseMessage,
    ErrorResponseMessage,
    MessageType,
    MutationRequestMessage,
    QueryRequestMessage,
    RequeryMessage,
    WireMessage,
    encode_wire_message,
    parse_client_request,
    parse_wire_message,
)

__all__ = [
    "MessageType",
    "QueryRequestMessage",
    "MutationRequestMessage",
    "DataResponseMessage",
    "RequeryMessage",
    "ErrorResponseMessage",
    "WireMessage",
    "ClientRequestMessage",
    "parse_wire_message",
    "parse_client_request",
    "encode_wire_message",
]
