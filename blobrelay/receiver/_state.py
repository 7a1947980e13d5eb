# Copyright (c) 2024 blobrelay developers
# This software is distributed under the terms of the MIT License.

from __future__ import annotations
import enum
import typing
import dataclasses
from .._timestamp import Timestamp
from ..protocol import TransferEnvelope
from ..util import repr_attributes


class TransferStatus(enum.Enum):
    COLLECTING = enum.auto()
    COMPLETE = enum.auto()
    FAILED = enum.auto()
    EXPIRED = enum.auto()

    @property
    def terminal(self) -> bool:
        """
        >>> TransferStatus.COLLECTING.terminal, TransferStatus.EXPIRED.terminal
        (False, True)
        """
        return self is not TransferStatus.COLLECTING


class Reason(enum.Enum):
    """
    Explains why a transfer ended up in a terminal state other than COMPLETE.
    Reasons are recorded and logged; they are never raised.
    """

    FRAGMENT_MISMATCH = enum.auto()
    """
    Two fragments with the same index carry different content.
    """

    ENVELOPE_MISMATCH = enum.auto()
    """
    Two different envelopes were received for the same transfer,
    or a fragment does not fit into the shape declared by the envelope.
    """

    SIZE_EXCEEDED = enum.auto()
    """
    The fragments buffered before the envelope became known exceed the configured transfer size ceiling.
    """

    CODEC_ERROR = enum.auto()
    """
    The reassembled payload could not be decoded.
    """

    VALIDATION_ERROR = enum.auto()
    """
    The reassembled payload does not match the envelope (size or checksum).
    """

    IDLE_TIMEOUT = enum.auto()
    """
    No fragments arrived for longer than the idle timeout.
    """

    DURATION_EXCEEDED = enum.auto()
    """
    The transfer has been collecting for longer than the overall duration ceiling.
    """


@dataclasses.dataclass
class TransferState:
    """
    Receiver-side state of one transfer. Owned by the registry; mutated only under the per-transfer lock.
    """

    transfer_id: str
    first_seen_at: Timestamp
    last_activity_at: Timestamp
    envelope: typing.Optional[TransferEnvelope] = None
    received: typing.Set[int] = dataclasses.field(default_factory=set)
    buffer: typing.Dict[int, str] = dataclasses.field(default_factory=dict)
    last_index: typing.Optional[int] = None
    """
    Index of a buffered fragment flagged as the last one, if seen.
    """

    status: TransferStatus = TransferStatus.COLLECTING
    reason: typing.Optional[Reason] = None
    resolved_at: typing.Optional[Timestamp] = None
    held_bytes: int = 0

    @property
    def complete(self) -> bool:
        return self.envelope is not None and len(self.received) == self.envelope.fragment_count

    def resolve(self, status: TransferStatus, timestamp: Timestamp, reason: typing.Optional[Reason] = None) -> None:
        """
        Moves the state into a terminal status and releases the buffers. The state becomes a tombstone.
        """
        assert status.terminal and not self.status.terminal
        self.status = status
        self.reason = reason
        self.resolved_at = timestamp
        self.buffer.clear()
        self.held_bytes = 0

    def snapshot(self) -> TransferSnapshot:
        return TransferSnapshot(
            transfer_id=self.transfer_id,
            envelope=self.envelope,
            received=frozenset(self.received),
            status=self.status,
            reason=self.reason,
            first_seen_at=self.first_seen_at,
            last_activity_at=self.last_activity_at,
            resolved_at=self.resolved_at,
            held_bytes=self.held_bytes,
        )

    def __repr__(self) -> str:
        return repr_attributes(
            self,
            transfer_id=repr(self.transfer_id),
            status=self.status.name,
            reason=self.reason.name if self.reason else None,
            received=len(self.received),
            expected=self.envelope.fragment_count if self.envelope else None,
            held_bytes=self.held_bytes,
        )


@dataclasses.dataclass(frozen=True)
class TransferSnapshot:
    """
    An immutable copy of :class:`TransferState` for inspection outside of the lock.
    """

    transfer_id: str
    envelope: typing.Optional[TransferEnvelope]
    received: typing.FrozenSet[int]
    status: TransferStatus
    reason: typing.Optional[Reason]
    first_seen_at: Timestamp
    last_activity_at: Timestamp
    resolved_at: typing.Optional[Timestamp]
    held_bytes: int


def _unittest_state() -> None:
    from pytest import raises

    ts = Timestamp.from_seconds(100, 10)
    st = TransferState("abc", first_seen_at=ts, last_activity_at=ts)
    assert not st.complete
    st.buffer[0] = "YWJj"
    st.received.add(0)
    st.held_bytes = 4
    snap = st.snapshot()
    st.resolve(TransferStatus.FAILED, ts, Reason.FRAGMENT_MISMATCH)
    assert st.buffer == {} and st.held_bytes == 0
    assert st.resolved_at == ts
    assert "FRAGMENT_MISMATCH" in repr(st)
    assert snap.status == TransferStatus.COLLECTING and snap.held_bytes == 4 and snap.received == {0}
    with raises(AssertionError):
        st.resolve(TransferStatus.EXPIRED, ts, Reason.IDLE_TIMEOUT)
