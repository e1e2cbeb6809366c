"""Серверна частина sync_lite: реєстр handler-ів, валідація, dispatch, інвалідація."""

from __future__ import annotations

from server.handlers import HandlerContext, HandlerDefinition, HandlerKind, mutation, query

__all__ = [
    "HandlerContext",
    "HandlerDefinition",
    "HandlerKind",
    "mutation",
    "query",
]
