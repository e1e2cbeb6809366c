"""Wire-протокол sync_lite: тегований union повідомлень між клієнтом і сервером.

Один JSON-об'єкт на WS-фрейм:

    QUERY        {type, id?, queryKey, params?}
    MUTATION     {type, id?, mutationKey, args?}
    DATA_UPDATE  {type, id?, queryKey?, data}
    REQUERY      {type, queryKey}
    ERROR        {type, id?, message, error?}

Правила:
- `id` генерує клієнт; сервер повертає його у відповіді (DATA_UPDATE/ERROR);
- forward-compatible: зайві ключі ігноруються;
- опційні поля зі значенням None не серіалізуються, але `data` у DATA_UPDATE
  присутнє завжди (None — валідний результат query).
"""

from __future__ import annotations

from enum import StrEnum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from core.errors import ProtocolError
from core.serialization import json_dumps, json_loads, to_jsonable

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


class MessageType(StrEnum):
    QUERY = "QUERY"
    MUTATION = "MUTATION"
    DATA_UPDATE = "DATA_UPDATE"
    REQUERY = "REQUERY"
    ERROR = "ERROR"


class _WireBase(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    def to_wire(self) -> dict[str, Any]:
        """JSON-friendly dict у форматі протоколу (camelCase ключі)."""

        payload = self.model_dump(by_alias=True, exclude_none=True)
        return to_jsonable(payload)


class QueryRequestMessage(_WireBase):
    type: Literal["QUERY"] = "QUERY"
    id: str | None = None
    query_key: str = Field(alias="queryKey", min_length=1)
    params: Any = None


class MutationRequestMessage(_WireBase):
    type: Literal["MUTATION"] = "MUTATION"
    id: str | None = None
    mutation_key: str = Field(alias="mutationKey", min_length=1)
    args: Any = None


class DataResponseMessage(_WireBase):
    type: Literal["DATA_UPDATE"] = "DATA_UPDATE"
    id: str | None = None
    query_key: str | None = Field(default=None, alias="queryKey")
    data: Any = None

    def to_wire(self) -> dict[str, Any]:
        payload = super().to_wire()
        payload["data"] = to_jsonable(self.data)
        return payload


class RequeryMessage(_WireBase):
    type: Literal["REQUERY"] = "REQUERY"
    query_key: str = Field(alias="queryKey", min_length=1)


class ErrorResponseMessage(_WireBase):
    type: Literal["ERROR"] = "ERROR"
    id: str | None = None
    message: str
    error: Any = None


WireMessage = Annotated[
    Union[
        QueryRequestMessage,
        MutationRequestMessage,
        DataResponseMessage,
        RequeryMessage,
        ErrorResponseMessage,
    ],
    Field(discriminator="type"),
]
ClientRequestMessage = Union[QueryRequestMessage, MutationRequestMessage]

_WIRE_ADAPTER: TypeAdapter[Any] = TypeAdapter(WireMessage)


def _describe_validation_error(exc: ValidationError) -> str:
    parts: list[str] = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "")
        msg = err.get("msg", "invalid")
        parts.append(f"{loc}: {msg}" if loc else str(msg))
    return "; ".join(parts) or "invalid message"


def parse_wire_message(raw: str | bytes | bytearray | dict[str, Any]) -> Any:
    """Парсить сирий фрейм (str/bytes або вже розібраний dict) у Wire Message.

    Кидає ProtocolError на некоректний JSON, не-об'єкт або невідомий `type`.
    """

    if isinstance(raw, dict):
        obj: Any = raw
    else:
        try:
            obj = json_loads(raw)
        except (ValueError, TypeError) as exc:
            raise ProtocolError(f"Invalid JSON message format: {exc}") from exc
        except RecursionError as exc:
            raise ProtocolError("Invalid JSON message format: nesting too deep") from exc

    if not isinstance(obj, dict):
        raise ProtocolError("Invalid message: expected a JSON object")

    try:
        return _WIRE_ADAPTER.validate_python(obj)
    except ValidationError as exc:
        raise ProtocolError(
            f"Invalid message: {_describe_validation_error(exc)}"
        ) from exc


def parse_client_request(raw: str | bytes | bytearray) -> ClientRequestMessage:
    """Серверний вхід: приймаємо лише QUERY/MUTATION."""

    message = parse_wire_message(raw)
    if not isinstance(message, (QueryRequestMessage, MutationRequestMessage)):
        raise ProtocolError(
            f"Invalid message: type {message.type} cannot be sent by a client"
        )
    return message


def encode_wire_message(message: _WireBase) -> str:
    """Wire Message -> JSON-рядок (один фрейм)."""

    return json_dumps(message.to_wire())
