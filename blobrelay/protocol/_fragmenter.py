# Copyright (c) 2024 blobrelay developers
# This software is distributed under the terms of the MIT License.

from __future__ import annotations
import uuid
import typing
import logging
import dataclasses
from .._error import PayloadTooLarge
from .._timestamp import Timestamp
from ..util import mark_last
from ._codec import encode
from ._crc import CRC32C
from ._model import TransferEnvelope, Fragment


_logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class OutgoingTransfer:
    """
    The envelope is known upfront; the fragments are produced lazily on iteration.
    The fragment iterable can be iterated more than once, each pass yields the same fragments.
    """

    envelope: TransferEnvelope
    fragments: typing.Iterable[Fragment]


def fragment_blob(
    blob: typing.Union[bytes, bytearray, memoryview],
    source_id: str,
    fragment_size: int,
    *,
    attributes: typing.Optional[typing.Mapping[str, typing.Any]] = None,
    max_transfer_size: typing.Optional[int] = None,
    transfer_id: typing.Optional[str] = None,
    created_at: typing.Optional[Timestamp] = None,
) -> OutgoingTransfer:
    r"""
    Encodes the blob and splits the encoded payload into fragments of at most ``fragment_size`` bytes.

    :param blob: The data to transfer. May be empty, in which case there are no fragments at all
        and the envelope alone completes the transfer.

    :param source_id: Identity of the sending device.

    :param fragment_size: Max encoded bytes per fragment; should leave headroom for the envelope fields
        under the maximum message size of the transport.

    :param attributes: Free-form metadata passed through to the receiver.

    :param max_transfer_size: If the encoded payload would be larger, :class:`PayloadTooLarge` is raised.

    :param transfer_id: A fresh UUID is generated unless specified.

    :param created_at: Current time unless specified.

    >>> tr = fragment_blob(b"He thought about the Horse", "cam-1", 16, transfer_id="a1b2")
    >>> tr.envelope.total_size, tr.envelope.fragment_count
    (36, 3)
    >>> [f.payload_chunk for f in tr.fragments]
    ['SGUgdGhvdWdodCBh', 'Ym91dCB0aGUgSG9y', 'c2U=']
    >>> [f.is_last for f in tr.fragments]
    [False, False, True]
    """
    if fragment_size < 1:
        raise ValueError(f"Invalid fragment size: {fragment_size}")
    encoded = encode(blob)
    if max_transfer_size is not None and len(encoded) > max_transfer_size:
        raise PayloadTooLarge(
            f"The encoded payload of {len(encoded)} bytes exceeds the limit of {max_transfer_size} bytes "
            f"(blob size {len(blob)} bytes)"
        )
    envelope = TransferEnvelope(
        transfer_id=transfer_id if transfer_id is not None else uuid.uuid4().hex,
        source_id=source_id,
        created_at=created_at or Timestamp.now(),
        total_size=len(encoded),
        fragment_count=-(-len(encoded) // fragment_size),
        fragment_size=fragment_size,
        attributes=dict(attributes or {}),
        checksum=CRC32C.new(encoded.encode("ascii")).value,
    )
    _logger.debug("New outgoing transfer: %r", envelope)
    return OutgoingTransfer(envelope=envelope, fragments=_FragmentSequence(envelope, encoded))


class _FragmentSequence:
    def __init__(self, envelope: TransferEnvelope, encoded: str) -> None:
        self._envelope = envelope
        self._encoded = encoded

    def __iter__(self) -> typing.Iterator[Fragment]:
        size = self._envelope.fragment_size
        chunks = (self._encoded[offset : offset + size] for offset in range(0, len(self._encoded), size))
        for index, (is_last, chunk) in enumerate(mark_last(chunks)):
            yield Fragment(
                transfer_id=self._envelope.transfer_id,
                sequence_index=index,
                payload_chunk=chunk,
                is_last=is_last,
                envelope=self._envelope if index == 0 else None,
            )

    def __len__(self) -> int:
        return self._envelope.fragment_count

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._envelope.transfer_id!r}, count={len(self)})"


def _unittest_fragment_blob() -> None:
    import os
    from pytest import raises
    from ._codec import decode

    blob = os.urandom(10_000)
    tr = fragment_blob(blob, "cam-1", 1500, attributes={"w": 640})
    assert tr.envelope.total_size == 13_336
    assert tr.envelope.fragment_count == 9
    assert len(tr.envelope.transfer_id) == 32
    assert tr.envelope.attributes == {"w": 640}
    frags = list(tr.fragments)
    assert frags == list(tr.fragments)  # Repeatable.
    assert len(frags) == len(tr.fragments) == 9  # type: ignore
    assert [f.sequence_index for f in frags] == list(range(9))
    assert all(len(f.payload_chunk) == 1500 for f in frags[:-1])
    assert len(frags[-1].payload_chunk) == 13_336 - 8 * 1500
    assert frags[0].envelope == tr.envelope
    assert all(f.envelope is None for f in frags[1:])
    assert decode("".join(f.payload_chunk for f in frags)) == blob
    assert CRC32C.new("".join(f.payload_chunk for f in frags).encode()).value == tr.envelope.checksum

    # Each transfer gets a fresh identity.
    assert fragment_blob(blob, "cam-1", 1500).envelope.transfer_id != tr.envelope.transfer_id

    # Exact multiple: no short last fragment.
    tr = fragment_blob(b"abcdef", "cam-1", 4)
    assert [f.payload_chunk for f in tr.fragments] == ["YWJj", "ZGVm"]

    # Empty blob: no fragments at all.
    tr = fragment_blob(b"", "cam-1", 100)
    assert tr.envelope.total_size == 0 and tr.envelope.fragment_count == 0
    assert list(tr.fragments) == []

    with raises(PayloadTooLarge):
        fragment_blob(b"x" * 300, "cam-1", 100, max_transfer_size=399)
    assert fragment_blob(b"x" * 300, "cam-1", 100, max_transfer_size=400).envelope.fragment_count == 4

    with raises(ValueError):
        fragment_blob(b"abc", "cam-1", 0)
