"""Тести wire-протоколу: формат фреймів, ігнорування зайвих полів, помилки парсингу."""

from __future__ import annotations

import json

import pytest

from core.contracts.wire import (
    DataResponseMessage,
    ErrorResponseMessage,
    MutationRequestMessage,
    QueryRequestMessage,
    RequeryMessage,
    encode_wire_message,
    parse_client_request,
    parse_wire_message,
)
from core.errors import ProtocolError


def test_query_request_uses_camel_case_and_omits_none() -> None:
    msg = QueryRequestMessage(id="q1", query_key="counter:get_counter")
    wire = json.loads(encode_wire_message(msg))

    assert wire == {"type": "QUERY", "id": "q1", "queryKey": "counter:get_counter"}


def test_data_response_always_carries_data_even_when_none() -> None:
    wire = json.loads(encode_wire_message(DataResponseMessage(id="x", data=None)))

    assert wire["type"] == "DATA_UPDATE"
    assert "data" in wire and wire["data"] is None
    assert "queryKey" not in wire


def test_parse_each_message_type() -> None:
    assert isinstance(
        parse_wire_message('{"type":"MUTATION","mutationKey":"counter:increment_counter"}'),
        MutationRequestMessage,
    )
    requery = parse_wire_message(b'{"type":"REQUERY","queryKey":"counter:get_counter"}')
    assert isinstance(requery, RequeryMessage)
    assert requery.query_key == "counter:get_counter"

    err = parse_wire_message({"type": "ERROR", "id": "1", "message": "boom", "error": {"a": 1}})
    assert isinstance(err, ErrorResponseMessage)
    assert err.error == {"a": 1}


def test_unknown_extra_fields_are_ignored() -> None:
    msg = parse_wire_message(
        '{"type":"QUERY","id":"1","queryKey":"k:q","params":{"a":1},"extra":true}'
    )
    assert isinstance(msg, QueryRequestMessage)
    assert msg.params == {"a": 1}
    assert "extra" not in msg.to_wire()


def test_invalid_json_raises_protocol_error() -> None:
    with pytest.raises(ProtocolError) as exc_info:
        parse_wire_message("{not json")
    assert str(exc_info.value).startswith("Invalid JSON message format:")


@pytest.mark.parametrize(
    "raw",
    [
        "[1, 2, 3]",
        '{"type":"NOPE"}',
        '{"type":"QUERY"}',
        '{"type":"QUERY","queryKey":""}',
    ],
)
def test_malformed_messages_raise_protocol_error(raw: str) -> None:
    with pytest.raises(ProtocolError):
        parse_wire_message(raw)


def test_client_request_rejects_server_only_types() -> None:
    with pytest.raises(ProtocolError, match="cannot be sent by a client"):
        parse_client_request('{"type":"REQUERY","queryKey":"counter:get_counter"}')

    request = parse_client_request('{"type":"QUERY","queryKey":"counter:get_counter"}')
    assert isinstance(request, QueryRequestMessage)
    assert request.id is None
