# Copyright (c) 2024 blobrelay developers
# This software is distributed under the terms of the MIT License.

"""
The wire representation is a UTF-8 JSON object.
A standalone envelope (control message) and a fragment differ in the ``kind`` field;
the first fragment of a transfer additionally carries all envelope fields.
"""

from __future__ import annotations
import json
import typing
from .._error import MessageFormatError
from .._timestamp import Timestamp
from ._model import TransferEnvelope, Fragment, Message


KIND_ENVELOPE = "envelope"
KIND_FRAGMENT = "fragment"


def serialize_message(message: Message) -> bytes:
    """
    >>> env = TransferEnvelope("t1", "cam", Timestamp(1, 0), total_size=4, fragment_count=1, fragment_size=8)
    >>> serialize_message(env)
    b'{"kind":"envelope","transfer_id":"t1","source_id":"cam","created_at":1,"total_size":4,...}'
    >>> serialize_message(Fragment("t1", 0, "YWJj", is_last=True))
    b'{"kind":"fragment","transfer_id":"t1","sequence_index":0,"is_last":true,"payload_chunk":"YWJj"}'
    """
    if isinstance(message, TransferEnvelope):
        obj: typing.Dict[str, typing.Any] = {"kind": KIND_ENVELOPE}
        obj.update(_envelope_to_fields(message))
    elif isinstance(message, Fragment):
        obj = {
            "kind": KIND_FRAGMENT,
            "transfer_id": message.transfer_id,
            "sequence_index": message.sequence_index,
            "is_last": message.is_last,
            "payload_chunk": message.payload_chunk,
        }
        if message.envelope is not None:
            obj.update(_envelope_to_fields(message.envelope))
    else:
        raise TypeError(f"Cannot serialize {type(message).__name__}")
    try:
        return json.dumps(obj, separators=(",", ":"), ensure_ascii=False).encode("utf8")
    except (TypeError, ValueError) as ex:
        raise MessageFormatError(f"Message cannot be serialized (check the attributes): {ex}") from ex


def deserialize_message(data: typing.Union[bytes, bytearray, memoryview, str]) -> Message:
    """
    :raises: :class:`MessageFormatError` if the data is not a valid message.
    """
    try:
        obj = json.loads(bytes(data).decode("utf8") if not isinstance(data, str) else data)
    except (UnicodeDecodeError, ValueError, RecursionError) as ex:
        raise MessageFormatError(f"Not a JSON message: {ex}") from None
    if not isinstance(obj, dict):
        raise MessageFormatError(f"Message shall be a JSON object, not {type(obj).__name__}")

    kind = obj.get("kind")
    try:
        if kind == KIND_ENVELOPE:
            return _envelope_from_fields(obj)
        if kind == KIND_FRAGMENT:
            index = _get(obj, "sequence_index", int)
            return Fragment(
                transfer_id=_get(obj, "transfer_id", str),
                sequence_index=index,
                payload_chunk=_get(obj, "payload_chunk", str),
                is_last=_get(obj, "is_last", bool),
                envelope=_envelope_from_fields(obj) if index == 0 and "fragment_count" in obj else None,
            )
    except (TypeError, ValueError) as ex:
        if isinstance(ex, MessageFormatError):
            raise
        raise MessageFormatError(f"Invalid {kind} message: {ex}") from None
    raise MessageFormatError(f"Unknown message kind: {kind!r}")


def _envelope_to_fields(envelope: TransferEnvelope) -> typing.Dict[str, typing.Any]:
    out = {
        "transfer_id": envelope.transfer_id,
        "source_id": envelope.source_id,
        "created_at": envelope.created_at.system_ns,
        "total_size": envelope.total_size,
        "fragment_count": envelope.fragment_count,
        "fragment_size": envelope.fragment_size,
        "attributes": dict(envelope.attributes),
    }
    if envelope.checksum is not None:
        out["checksum"] = envelope.checksum
    return out


def _envelope_from_fields(obj: typing.Mapping[str, typing.Any]) -> TransferEnvelope:
    attributes = obj.get("attributes", {})
    if not isinstance(attributes, dict):
        raise MessageFormatError(f"Attributes shall be an object, not {type(attributes).__name__}")
    checksum = obj.get("checksum")
    if checksum is not None:
        checksum = _get(obj, "checksum", int)
    return TransferEnvelope(
        transfer_id=_get(obj, "transfer_id", str),
        source_id=_get(obj, "source_id", str),
        created_at=Timestamp.from_system_ns(_get(obj, "created_at", int)),
        total_size=_get(obj, "total_size", int),
        fragment_count=_get(obj, "fragment_count", int),
        fragment_size=_get(obj, "fragment_size", int),
        attributes=attributes,
        checksum=checksum,
    )


T = typing.TypeVar("T")


def _get(obj: typing.Mapping[str, typing.Any], key: str, ty: typing.Type[T]) -> T:
    try:
        value = obj[key]
    except KeyError:
        raise MessageFormatError(f"Missing required field {key!r}") from None
    # bool is a subclass of int, which is never what the sender meant.
    if not isinstance(value, ty) or (ty is int and isinstance(value, bool)):
        raise MessageFormatError(f"Field {key!r} shall be {ty.__name__}, got {type(value).__name__}")
    return value


def _unittest_wire() -> None:
    from pytest import raises

    env = TransferEnvelope(
        "t1",
        "cam",
        Timestamp.from_seconds(1700000000, 5),
        total_size=8,
        fragment_count=2,
        fragment_size=4,
        attributes={"resolution": [640, 480], "fw": "1.2.3"},
        checksum=0xDEADBEEF,
    )
    restored = deserialize_message(serialize_message(env))
    assert isinstance(restored, TransferEnvelope)
    assert restored.created_at.system_ns == env.created_at.system_ns
    assert restored.created_at.monotonic_ns == 0  # Monotonic time does not travel.
    assert restored.attributes == env.attributes
    assert restored.checksum == 0xDEADBEEF

    frag0 = deserialize_message(serialize_message(Fragment("t1", 0, "YWJj", is_last=False, envelope=env)))
    assert isinstance(frag0, Fragment)
    assert frag0.envelope is not None and frag0.envelope.fragment_count == 2
    frag1 = deserialize_message(serialize_message(Fragment("t1", 1, "ZGVm", is_last=True)))
    assert frag1 == Fragment("t1", 1, "ZGVm", is_last=True)

    with raises(MessageFormatError):
        deserialize_message(b"\xff\xfe")
    with raises(MessageFormatError):
        deserialize_message(b"[1, 2]")
    with raises(MessageFormatError):  # Nesting beyond the recursion limit of the parser.
        deserialize_message(b"[" * 200_000)
    with raises(MessageFormatError):
        deserialize_message(b'{"kind": "telemetry"}')
    with raises(MessageFormatError):
        deserialize_message(b'{"kind": "fragment", "transfer_id": "t1", "is_last": true, "payload_chunk": ""}')
    with raises(MessageFormatError):
        deserialize_message(
            b'{"kind": "fragment", "transfer_id": "t1", "sequence_index": true, "is_last": true, "payload_chunk": ""}'
        )
    with raises(MessageFormatError):  # Negative index is rejected by the model.
        deserialize_message(
            b'{"kind": "fragment", "transfer_id": "t1", "sequence_index": -1, "is_last": true, "payload_chunk": ""}'
        )
    with raises(MessageFormatError):  # Inconsistent envelope.
        deserialize_message(
            b'{"kind": "envelope", "transfer_id": "t1", "source_id": "x", "created_at": 0, '
            b'"total_size": 100, "fragment_count": 1, "fragment_size": 10}'
        )
    with raises(MessageFormatError):
        serialize_message(
            TransferEnvelope("t", "s", Timestamp(0, 0), 0, 0, 1, attributes={"x": object()}),
        )
