"""Шар валідації аргументів викликів.

Кожен вхідний виклик проходить через `validate()` до того, як потрапити в
handler. Handler отримує провалідоване значення (pydantic-модель з уже
застосованими дефолтами й коерсією), а не сирий payload клієнта.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from pydantic import BaseModel, ValidationError

from core.errors import ArgsValidationError
from server.handlers import HandlerDefinition

ROOT_ISSUE_PATH = "_root"
NO_ARGUMENTS_MESSAGE = "this call accepts no arguments"


def _is_empty_payload(raw_args: Any) -> bool:
    if raw_args is None:
        return True
    if isinstance(raw_args, (Mapping, Sequence)) and not isinstance(raw_args, (str, bytes)):
        return len(raw_args) == 0
    return False


def issues_from_pydantic(exc: ValidationError) -> dict[str, str]:
    """pydantic ValidationError -> мапа `dotted.path -> повідомлення`.

    Кілька помилок на одному шляху склеюються через `; `.
    """

    issues: dict[str, str] = {}
    for err in exc.errors():
        loc = err.get("loc") or ()
        path = ".".join(str(part) for part in loc) or ROOT_ISSUE_PATH
        msg = str(err.get("msg") or "invalid value")
        if path in issues:
            issues[path] = f"{issues[path]}; {msg}"
        else:
            issues[path] = msg
    return issues


def validate(handler: HandlerDefinition, raw_args: Any) -> BaseModel | None:
    """Перевіряє `raw_args` проти схеми handler-а.

    - без схеми: порожній/відсутній payload -> None, інакше ArgsValidationError;
    - зі схемою: `model_validate(raw_args or {})`; провал -> ArgsValidationError
      з картою помилок по полях.
    """

    schema = handler.args_schema
    if schema is None:
        if _is_empty_payload(raw_args):
            return None
        raise ArgsValidationError(
            NO_ARGUMENTS_MESSAGE,
            {ROOT_ISSUE_PATH: NO_ARGUMENTS_MESSAGE},
        )

    payload = {} if raw_args is None else raw_args
    try:
        return schema.model_validate(payload)
    except ValidationError as exc:
        raise ArgsValidationError(
            "Invalid arguments", issues_from_pydantic(exc)
        ) from exc


__all__ = (
    "ROOT_ISSUE_PATH",
    "NO_ARGUMENTS_MESSAGE",
    "issues_from_pydantic",
    "validate",
)
