# Copyright (c) 2024 blobrelay developers
# This software is distributed under the terms of the MIT License.

from __future__ import annotations
import typing
import asyncio
import inspect
import logging
import functools
import itertools
import dataclasses
from .._config import RelayConfig
from .._error import TransferAbandoned, TransferAborted
from ..protocol import TransferEnvelope, Message, fragment_blob
from ..util import repr_attributes
from ._dispatcher import TransportDispatcher, DeliveryResult


CaptureSource = typing.Callable[[], typing.Union[bytes, typing.Awaitable[bytes]]]
"""
Produces the blob to send, e.g., takes a picture. May be a coroutine function.
Failures should be reported by raising :class:`blobrelay.CaptureError`.
"""

_logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class SendReport:
    """
    The sender-side outcome of a successfully delivered transfer.
    """

    envelope: TransferEnvelope

    results: typing.Sequence[DeliveryResult]
    """
    One entry per message in the order of transmission: the standalone envelope first, then the fragments.
    """

    failed_over: bool
    """
    True if at least a part of the transfer was delivered via the secondary transport.
    """

    @property
    def confirmed(self) -> bool:
        """
        True if the reception of every message has been confirmed by the remote side.
        """
        return all(r is DeliveryResult.ACKED for r in self.results)


class BlobSender:
    """
    Runs one transfer at a time: concurrent :meth:`send` calls are served one after another,
    which bounds the outbound memory use to a single blob in flight.
    The envelope is transmitted first, then the fragments in ascending order.
    """

    def __init__(
        self,
        dispatcher: TransportDispatcher,
        source_id: str,
        *,
        capture: typing.Optional[CaptureSource] = None,
    ) -> None:
        self._dispatcher = dispatcher
        self._source_id = str(source_id)
        self._capture = capture
        self._lock = asyncio.Lock()
        self._abort_requested = False
        self._current: typing.Optional[TransferEnvelope] = None

    @property
    def config(self) -> RelayConfig:
        return self._dispatcher.config

    @property
    def current_transfer(self) -> typing.Optional[TransferEnvelope]:
        """
        The envelope of the transfer being sent now, None if idle.
        """
        return self._current

    async def send(
        self,
        blob: typing.Optional[typing.Union[bytes, bytearray, memoryview]] = None,
        *,
        attributes: typing.Optional[typing.Mapping[str, typing.Any]] = None,
    ) -> SendReport:
        """
        Sends the blob, or if none is given, captures one using the capture source.

        :raises:
            :class:`blobrelay.CaptureError` (or whatever the capture source raises) -- propagated unchanged,
            nothing is sent.

            :class:`blobrelay.PayloadTooLarge` -- the blob exceeds the configured ceiling, nothing is sent.

            :class:`blobrelay.TransferAbandoned` -- a message could not be delivered via either transport.
            The transfer is not retried; it is up to the caller to persist the blob and retry later, or drop it.

            :class:`blobrelay.TransferAborted` -- :meth:`abort` was invoked while the transfer was in progress.
        """
        async with self._lock:
            self._abort_requested = False
            if blob is None:
                blob = await self._do_capture()
            transfer = await asyncio.get_running_loop().run_in_executor(
                None,
                functools.partial(
                    fragment_blob,
                    blob,
                    self._source_id,
                    self.config.fragment_size,
                    attributes=attributes,
                    max_transfer_size=self.config.max_transfer_size,
                ),
            )
            envelope = transfer.envelope
            _logger.info(
                "%s: sending transfer %s: %d bytes, %d fragments",
                self,
                envelope.transfer_id,
                len(blob),
                envelope.fragment_count,
            )
            self._current = envelope
            try:
                self._dispatcher.begin_transfer()
                results: typing.List[DeliveryResult] = []
                failed_over = False
                messages: typing.Iterable[Message] = itertools.chain([envelope], transfer.fragments)
                for message in messages:
                    if self._abort_requested:
                        _logger.info(
                            "%s: transfer %s aborted after %d messages", self, envelope.transfer_id, len(results)
                        )
                        raise TransferAborted(f"Transfer {envelope.transfer_id} aborted after {len(results)} messages")
                    result = await self._dispatcher.send(message)
                    failed_over = failed_over or self._dispatcher.failed_over
                    if result is DeliveryResult.FAILED:
                        raise TransferAbandoned(
                            f"Transfer {envelope.transfer_id} abandoned: could not deliver {message!r} "
                            f"after {len(results)} messages"
                        )
                    results.append(result)
            finally:
                self._current = None
                self._abort_requested = False
            report = SendReport(envelope=envelope, results=results, failed_over=failed_over)
            _logger.info(
                "%s: transfer %s sent; confirmed=%s, failed_over=%s",
                self,
                envelope.transfer_id,
                report.confirmed,
                failed_over,
            )
            return report

    def abort(self) -> None:
        """
        Cooperative: the in-flight transfer (if any) stops before its next message is sent,
        and :meth:`send` raises :class:`blobrelay.TransferAborted`. Has no effect when idle.
        """
        if self._current is not None:
            _logger.info("%s: abort requested for transfer %s", self, self._current.transfer_id)
            self._abort_requested = True

    async def _do_capture(self) -> bytes:
        if self._capture is None:
            raise ValueError("Neither a blob nor a capture source is provided")
        out = self._capture()
        if inspect.isawaitable(out):
            out = await out
        if not isinstance(out, (bytes, bytearray, memoryview)):
            raise TypeError(f"The capture source returned {type(out).__name__} instead of bytes")
        return bytes(out)

    def __repr__(self) -> str:
        return repr_attributes(self, source_id=repr(self._source_id))
