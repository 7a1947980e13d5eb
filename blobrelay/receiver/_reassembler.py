# Copyright (c) 2024 blobrelay developers
# This software is distributed under the terms of the MIT License.

from __future__ import annotations
import typing
import asyncio
import logging
import dataclasses
from .._config import RelayConfig
from .._error import CodecError, ValidationError
from .._timestamp import Timestamp
from ..protocol import TransferEnvelope, Fragment, Message, decode
from ..util import broadcast, repr_attributes_noexcept
from ._state import TransferState, TransferStatus, TransferSnapshot, Reason
from ._registry import TransferRegistry
from ._validator import validate_transfer


ResolutionHandler = typing.Callable[[TransferSnapshot], None]

_logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class CompletedTransfer:
    envelope: TransferEnvelope
    blob: bytes
    timestamp: Timestamp
    """
    Local time when the last missing piece arrived.
    """


@dataclasses.dataclass
class ReassemblerStatistics:
    accepted: int = 0
    """Fragments and envelopes that changed the state of a transfer."""

    duplicates: int = 0
    """Identical re-arrivals of already accepted fragments or envelopes."""

    late: int = 0
    """Messages discarded because their transfer is already resolved."""

    completed: int = 0
    failed: int = 0
    expired: int = 0


class Reassembler:
    """
    Reconstructs blobs from fragments arriving in any order, possibly duplicated, possibly incomplete.

    Each transfer goes through a simple state machine::

        COLLECTING --> COMPLETE
                   --> FAILED  (a conflict is detected or the payload is invalid)
                   --> EXPIRED (no activity for too long or the transfer takes too long overall)

    Terminal states are never left. A resolved transfer stays in the registry as a tombstone without buffers
    for the grace window so that late duplicates of it are recognized and discarded.

    A message referring to an unknown transfer creates its state. If the envelope is not known yet,
    the transfer is a placeholder: its fragments are buffered, bounded by the transfer size ceiling,
    until the envelope arrives (either standalone or piggybacked on the first fragment).

    The methods never raise because of bad input; protocol violations resolve the affected transfer
    with a :class:`Reason` and are reported in the log.
    """

    def __init__(self, config: typing.Optional[RelayConfig] = None) -> None:
        self._config = config or RelayConfig()
        self._registry = TransferRegistry()
        self._stats = ReassemblerStatistics()
        self._resolution_handlers: typing.List[ResolutionHandler] = []

    @property
    def config(self) -> RelayConfig:
        return self._config

    @property
    def registry(self) -> TransferRegistry:
        return self._registry

    def add_resolution_handler(self, handler: ResolutionHandler) -> None:
        """
        The handler is invoked synchronously with a snapshot of every transfer that reaches a terminal state.
        Exceptions raised by handlers are logged and suppressed.
        """
        self._resolution_handlers.append(handler)

    def remove_resolution_handler(self, handler: ResolutionHandler) -> None:
        self._resolution_handlers.remove(handler)

    async def ingest(
        self, message: Message, timestamp: typing.Optional[Timestamp] = None
    ) -> typing.Optional[CompletedTransfer]:
        """
        Updates the state of the transfer the message belongs to.

        :param message: A standalone envelope or a fragment (possibly with a piggybacked envelope).
        :param timestamp: Local reception time; current time by default.
        :return: The reconstructed transfer if this message has completed it; None otherwise.
            A transfer is returned at most once regardless of how many times its fragments arrive.
        """
        timestamp = timestamp or Timestamp.now()
        async with self._registry.locked(message.transfer_id):
            state = self._registry.get(message.transfer_id)
            if state is not None and state.status.terminal:
                self._stats.late += 1
                _logger.debug("%s: late message for %r discarded: %r", self, state, message)
                return None
            if state is None:
                state = self._registry.create(message.transfer_id, timestamp)
            state.last_activity_at = timestamp

            if isinstance(message, TransferEnvelope):
                self._process_envelope(state, message, timestamp)
            else:
                if message.envelope is not None:
                    self._process_envelope(state, message.envelope, timestamp)
                if not state.status.terminal:
                    self._process_fragment(state, message, timestamp)

            if state.status is TransferStatus.COLLECTING and state.complete:
                return await self._finalize(state, timestamp)
        return None

    async def sweep(self, now: typing.Optional[Timestamp] = None) -> None:
        """
        Expires stalled transfers and purges the tombstones whose grace window is over.
        Intended to be invoked periodically; see :class:`blobrelay.receiver.Receiver`.
        """
        now = now or Timestamp.now()
        for transfer_id in self._registry.transfer_ids:
            async with self._registry.locked(transfer_id):
                state = self._registry.get(transfer_id)
                if state is None:
                    continue
                if state.status.terminal:
                    assert state.resolved_at is not None
                    if now.seconds_since(state.resolved_at) > self._config.grace_window_after_terminal:
                        self._registry.purge(transfer_id)
                elif now.seconds_since(state.last_activity_at) > self._config.idle_timeout:
                    self._expire(state, now, Reason.IDLE_TIMEOUT)
                elif now.seconds_since(state.first_seen_at) > self._config.max_transfer_duration:
                    self._expire(state, now, Reason.DURATION_EXCEEDED)

    def get_status(self, transfer_id: str) -> typing.Optional[TransferSnapshot]:
        """
        None if the transfer is unknown or its tombstone has been purged.
        """
        state = self._registry.get(transfer_id)
        return state.snapshot() if state is not None else None

    def sample_statistics(self) -> ReassemblerStatistics:
        return dataclasses.replace(self._stats)

    def _process_envelope(self, state: TransferState, envelope: TransferEnvelope, timestamp: Timestamp) -> None:
        if state.envelope is not None:
            if state.envelope == envelope:
                self._stats.duplicates += 1
            else:
                self._fail(state, timestamp, Reason.ENVELOPE_MISMATCH, f"{envelope!r} != {state.envelope!r}")
            return

        if envelope.total_size > self._config.max_transfer_size:
            self._fail(
                state,
                timestamp,
                Reason.SIZE_EXCEEDED,
                f"declared size {envelope.total_size} exceeds the limit of {self._config.max_transfer_size}",
            )
            return
        for index, chunk in sorted(state.buffer.items()):
            problem = _check_fragment_shape(envelope, index, chunk, index == state.last_index)
            if problem:
                self._fail(state, timestamp, Reason.ENVELOPE_MISMATCH, f"buffered fragment #{index}: {problem}")
                return
        state.envelope = envelope
        self._stats.accepted += 1
        _logger.debug("%s: envelope attached: %r", self, state)

    def _process_fragment(self, state: TransferState, fragment: Fragment, timestamp: Timestamp) -> None:
        index, chunk = fragment.sequence_index, fragment.payload_chunk
        if index in state.received:
            if state.buffer[index] == chunk and fragment.is_last == (index == state.last_index):
                self._stats.duplicates += 1
                _logger.debug("%s: duplicate fragment #%d of %r", self, index, state.transfer_id)
            else:
                self._fail(state, timestamp, Reason.FRAGMENT_MISMATCH, f"fragment #{index} differs from the held one")
            return

        if state.envelope is not None:
            problem = _check_fragment_shape(state.envelope, index, chunk, fragment.is_last)
            if problem:
                self._fail(state, timestamp, Reason.ENVELOPE_MISMATCH, f"fragment #{index}: {problem}")
                return
        else:
            # Without the envelope only the fragments themselves can be checked against each other.
            if fragment.is_last and state.last_index is not None:
                self._fail(
                    state,
                    timestamp,
                    Reason.FRAGMENT_MISMATCH,
                    f"fragments #{state.last_index} and #{index} are both flagged last",
                )
                return
            if state.last_index is not None and index > state.last_index:
                self._fail(
                    state,
                    timestamp,
                    Reason.FRAGMENT_MISMATCH,
                    f"fragment #{index} is past the last fragment #{state.last_index}",
                )
                return
            if fragment.is_last and any(i > index for i in state.received):
                self._fail(state, timestamp, Reason.FRAGMENT_MISMATCH, f"fragment #{index} is flagged last but is not")
                return
            if state.held_bytes + len(chunk) > self._config.max_transfer_size:
                self._fail(
                    state,
                    timestamp,
                    Reason.SIZE_EXCEEDED,
                    f"{state.held_bytes + len(chunk)} bytes buffered without the envelope, "
                    f"limit {self._config.max_transfer_size}",
                )
                return

        state.buffer[index] = chunk
        state.received.add(index)
        state.held_bytes += len(chunk)
        if fragment.is_last:
            state.last_index = index
        self._stats.accepted += 1
        _logger.debug("%s: accepted fragment #%d: %r", self, index, state)

    async def _finalize(self, state: TransferState, timestamp: Timestamp) -> typing.Optional[CompletedTransfer]:
        envelope = state.envelope
        assert envelope is not None
        encoded = "".join(state.buffer[i] for i in range(envelope.fragment_count))
        # Other messages of this transfer wait on the lock until the executor is done.
        loop = asyncio.get_running_loop()
        try:
            blob = await loop.run_in_executor(None, _validate_and_decode, envelope, encoded)
        except ValidationError as ex:
            self._fail(state, timestamp, Reason.VALIDATION_ERROR, str(ex))
            return None
        except CodecError as ex:
            self._fail(state, timestamp, Reason.CODEC_ERROR, str(ex))
            return None
        self._resolve(state, TransferStatus.COMPLETE, timestamp)
        self._stats.completed += 1
        _logger.info(
            "%s: transfer %r from %r completed: %d bytes in %d fragments, %.3f s since the first arrival",
            self,
            envelope.transfer_id,
            envelope.source_id,
            len(blob),
            envelope.fragment_count,
            timestamp.seconds_since(state.first_seen_at),
        )
        return CompletedTransfer(envelope=envelope, blob=blob, timestamp=timestamp)

    def _fail(self, state: TransferState, timestamp: Timestamp, reason: Reason, detail: str) -> None:
        _logger.warning("%s: transfer %r failed: %s: %s", self, state.transfer_id, reason.name, detail)
        self._stats.failed += 1
        self._resolve(state, TransferStatus.FAILED, timestamp, reason)

    def _expire(self, state: TransferState, timestamp: Timestamp, reason: Reason) -> None:
        _logger.info(
            "%s: transfer %r expired: %s; received %d of %s fragments",
            self,
            state.transfer_id,
            reason.name,
            len(state.received),
            state.envelope.fragment_count if state.envelope else "unknown",
        )
        self._stats.expired += 1
        self._resolve(state, TransferStatus.EXPIRED, timestamp, reason)

    def _resolve(
        self,
        state: TransferState,
        status: TransferStatus,
        timestamp: Timestamp,
        reason: typing.Optional[Reason] = None,
    ) -> None:
        state.resolve(status, timestamp, reason)
        broadcast(self._resolution_handlers)(state.snapshot())

    def __repr__(self) -> str:
        return repr_attributes_noexcept(self, transfers=len(self._registry), held_bytes=self._registry.held_bytes)


def _validate_and_decode(envelope: TransferEnvelope, encoded: str) -> bytes:
    validate_transfer(envelope, encoded)
    return decode(encoded)


def _check_fragment_shape(envelope: TransferEnvelope, index: int, chunk: str, is_last: bool) -> typing.Optional[str]:
    """
    Returns a description of the problem if the fragment does not fit the envelope.

    >>> env = TransferEnvelope("t", "s", Timestamp(0, 0), total_size=10, fragment_count=3, fragment_size=4)
    >>> _check_fragment_shape(env, 2, "YQ", True) is None
    True
    >>> _check_fragment_shape(env, 3, "YQ", True)
    'index 3 is out of range for 3 fragments'
    >>> _check_fragment_shape(env, 1, "YWJj", True)
    'the last fragment flag is misplaced'
    >>> _check_fragment_shape(env, 0, "YWJ", False)
    'chunk length 3, expected 4'
    """
    count = envelope.fragment_count
    if index >= count:
        return f"index {index} is out of range for {count} fragments"
    if is_last != (index == count - 1):
        return "the last fragment flag is misplaced"
    expected = envelope.fragment_size if index < count - 1 else envelope.total_size - index * envelope.fragment_size
    if len(chunk) != expected:
        return f"chunk length {len(chunk)}, expected {expected}"
    return None
