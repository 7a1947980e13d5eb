# Copyright (c) 2024 blobrelay developers
# This software is distributed under the terms of the MIT License.

from __future__ import annotations
import typing
import dataclasses
from .._timestamp import Timestamp
from ..util import repr_attributes


@dataclasses.dataclass(frozen=True)
class TransferEnvelope:
    """
    Metadata describing one transfer. Fixed for the lifetime of the transfer.
    The required fields form a closed schema; anything else goes into :attr:`attributes`
    which is passed through without validation.
    """

    transfer_id: str
    """
    Opaque unique identifier assigned by the sender.
    """

    source_id: str
    """
    Identity of the sending device.
    """

    created_at: Timestamp
    """
    Sender-side creation timestamp. Only the system time sample is transmitted.
    """

    total_size: int
    """
    Length of the encoded payload in bytes (not the length of the blob).
    """

    fragment_count: int
    """
    Zero if and only if the payload is empty.
    """

    fragment_size: int
    """
    Nominal encoded bytes per fragment. Only the last fragment may be shorter.
    """

    attributes: typing.Mapping[str, typing.Any] = dataclasses.field(default_factory=dict)
    """
    Free-form JSON-compatible metadata, e.g., image resolution or firmware version.
    """

    checksum: typing.Optional[int] = None
    """
    CRC-32C of the encoded payload, if the sender provides it.
    """

    def __post_init__(self) -> None:
        if not isinstance(self.transfer_id, str) or not isinstance(self.source_id, str):
            raise TypeError("Transfer-ID and source-ID shall be strings")
        if not isinstance(self.created_at, Timestamp):
            raise TypeError(f"Bad creation timestamp type: {type(self.created_at).__name__}")
        if self.total_size < 0 or self.fragment_count < 0 or self.fragment_size < 1:
            raise ValueError(f"Invalid size parameters: {self!r}")
        if self.fragment_count != -(-self.total_size // self.fragment_size):
            raise ValueError(
                f"Fragment count {self.fragment_count} is inconsistent with "
                f"total size {self.total_size} at fragment size {self.fragment_size}"
            )
        if self.checksum is not None and not 0 <= self.checksum <= 0xFFFFFFFF:
            raise ValueError(f"Invalid checksum: {self.checksum}")

    def __repr__(self) -> str:
        kwargs = {f.name: getattr(self, f.name) for f in dataclasses.fields(self)}
        kwargs["transfer_id"] = repr(self.transfer_id)
        kwargs["source_id"] = repr(self.source_id)
        kwargs["created_at"] = str(self.created_at)
        return repr_attributes(self, **kwargs)


@dataclasses.dataclass(frozen=True)
class Fragment:
    """
    One bounded-size contiguous slice of the encoded payload.
    """

    transfer_id: str

    sequence_index: int
    """
    Zero-based, unique within the transfer.
    """

    payload_chunk: str
    """
    A contiguous slice of the encoded payload.
    """

    is_last: bool
    """
    True for the fragment with the highest index of the transfer.
    """

    envelope: typing.Optional[TransferEnvelope] = None
    """
    The first fragment carries a copy of the envelope so that the transfer is recoverable
    even if the standalone envelope message is lost.
    """

    def __post_init__(self) -> None:
        if not isinstance(self.transfer_id, str) or not self.transfer_id:
            raise ValueError(f"Invalid transfer-ID: {self.transfer_id!r}")
        if self.sequence_index < 0:
            raise ValueError(f"Invalid sequence index: {self.sequence_index}")
        if not isinstance(self.is_last, bool):
            raise TypeError(f"Bad end of transfer flag: {type(self.is_last).__name__}")
        if not isinstance(self.payload_chunk, str):
            raise TypeError(f"Bad payload chunk type: {type(self.payload_chunk).__name__}")
        if self.envelope is not None and self.envelope.transfer_id != self.transfer_id:
            raise ValueError(f"Piggybacked envelope belongs to another transfer: {self.envelope.transfer_id!r}")

    def __repr__(self) -> str:
        """
        If the chunk is unreasonably long for a sensible string representation,
        it is truncated and suffixed with an ellipsis.
        """
        payload_length_limit = 100
        if len(self.payload_chunk) > payload_length_limit:
            chunk = self.payload_chunk[:payload_length_limit] + "..."
        else:
            chunk = self.payload_chunk
        return repr_attributes(
            self,
            transfer_id=repr(self.transfer_id),
            sequence_index=self.sequence_index,
            is_last=self.is_last,
            payload_chunk=repr(chunk),
            envelope=self.envelope is not None,
        )


Message = typing.Union[TransferEnvelope, Fragment]
"""
Anything that travels over the wire: a standalone envelope (control message) or a fragment.
"""


# noinspection PyTypeChecker
def _unittest_model_ctor() -> None:
    from pytest import raises

    ts = Timestamp.from_seconds(1700000000, 1)
    env = TransferEnvelope("abc", "cam-1", ts, total_size=10, fragment_count=4, fragment_size=3)
    assert env.attributes == {}
    assert env.checksum is None
    assert "transfer_id='abc'" in repr(env)

    TransferEnvelope("abc", "cam-1", ts, total_size=0, fragment_count=0, fragment_size=3)

    with raises(ValueError):
        TransferEnvelope("abc", "cam-1", ts, total_size=10, fragment_count=3, fragment_size=3)
    with raises(ValueError):
        TransferEnvelope("abc", "cam-1", ts, total_size=0, fragment_count=1, fragment_size=3)
    with raises(ValueError):
        TransferEnvelope("abc", "cam-1", ts, total_size=10, fragment_count=1, fragment_size=0)
    with raises(TypeError):
        TransferEnvelope("abc", 123, ts, total_size=1, fragment_count=1, fragment_size=1)  # type: ignore
    with raises(TypeError):
        TransferEnvelope("abc", "cam-1", 0, total_size=1, fragment_count=1, fragment_size=1)  # type: ignore
    with raises(ValueError):
        TransferEnvelope("abc", "cam-1", ts, total_size=1, fragment_count=1, fragment_size=1, checksum=2**32)

    Fragment("abc", 0, "YWJj", is_last=True, envelope=env)
    with raises(ValueError):
        Fragment("", 0, "YWJj", is_last=True)
    with raises(ValueError):
        Fragment("abc", -1, "YWJj", is_last=True)
    with raises(TypeError):
        Fragment("abc", 0, "YWJj", is_last=1)  # type: ignore
    with raises(TypeError):
        Fragment("abc", 0, b"YWJj", is_last=True)  # type: ignore
    with raises(ValueError):
        Fragment("xyz", 0, "YWJj", is_last=True, envelope=env)

    long = Fragment("abc", 1, "A" * 1000, is_last=False)
    assert "..." in repr(long) and len(repr(long)) < 200
