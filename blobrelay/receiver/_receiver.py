# Copyright (c) 2024 blobrelay developers
# This software is distributed under the terms of the MIT License.

from __future__ import annotations
import typing
import asyncio
import logging
import dataclasses
from .._config import RelayConfig
from .._error import MessageFormatError, ResourceClosedError
from .._timestamp import Timestamp
from ..protocol import Message, deserialize_message
from ..transport import PublishTransport
from ..util import repr_attributes
from ._reassembler import Reassembler, CompletedTransfer
from ._sink import Sink


_logger = logging.getLogger(__name__)


@dataclasses.dataclass
class ReceiverStatistics:
    messages: int = 0
    """Raw messages received, including malformed ones."""

    malformed: int = 0
    """Messages that could not be parsed and were dropped."""

    stored: int = 0
    """Blobs handed over to the sink successfully."""

    sink_errors: int = 0


class Receiver:
    """
    Receives messages from any number of transports, reassembles transfers, and hands the completed blobs
    over to the sink.

    The sink is invoked outside of the per-transfer lock; its exceptions propagate out of :meth:`ingest`
    unchanged (the transfer is resolved as COMPLETE regardless, so a retransmission will not store it again).
    Stalled transfers are expired by a background task started by :meth:`start`.
    """

    def __init__(self, sink: Sink, config: typing.Optional[RelayConfig] = None) -> None:
        if not isinstance(sink, Sink):
            raise TypeError(f"Invalid sink: {sink!r}")
        self._sink = sink
        self._config = config or RelayConfig()
        self._reassembler = Reassembler(self._config)
        self._stats = ReceiverStatistics()
        self._maybe_task: typing.Optional[asyncio.Task[None]] = None
        self._bound: typing.List[PublishTransport] = []
        self._closed = False

    @property
    def reassembler(self) -> Reassembler:
        return self._reassembler

    @property
    def sink(self) -> Sink:
        return self._sink

    def bind(self, transport: PublishTransport) -> None:
        """
        Subscribes to the configured topic on the transport. The transport is not closed by the receiver.
        """
        if self._closed:
            raise ResourceClosedError(f"{self} is closed")
        transport.subscribe(self._config.topic, self._on_message)
        self._bound.append(transport)
        _logger.info("%s: bound to %r on topic %r", self, transport, self._config.topic)

    def start(self) -> None:
        """
        Launches the periodic sweep task; requires a running event loop. Idempotent.
        """
        if self._closed:
            raise ResourceClosedError(f"{self} is closed")
        if self._maybe_task is None:
            self._maybe_task = asyncio.get_running_loop().create_task(self._sweep_task_function())

    async def ingest(self, data: typing.Union[bytes, bytearray, memoryview]) -> typing.Optional[CompletedTransfer]:
        """
        Accepts a raw message as received from a transport. Malformed messages are logged, counted, and dropped.
        """
        self._stats.messages += 1
        try:
            message = deserialize_message(data)
        except MessageFormatError as ex:
            self._stats.malformed += 1
            _logger.warning("%s: dropping malformed message of %d bytes: %s", self, len(data), ex)
            return None
        return await self.ingest_message(message)

    async def ingest_message(
        self, message: Message, timestamp: typing.Optional[Timestamp] = None
    ) -> typing.Optional[CompletedTransfer]:
        """
        Same as :meth:`ingest` but the message is already parsed.
        :return: The transfer completed by this message, if any, after it has been stored.
        """
        if self._closed:
            raise ResourceClosedError(f"{self} is closed")
        completed = await self._reassembler.ingest(message, timestamp)
        if completed is not None:
            try:
                await self._sink.store(completed.envelope, completed.blob)
            except Exception as ex:
                self._stats.sink_errors += 1
                _logger.error("%s: could not store %r: %s", self, completed.envelope.transfer_id, ex)
                raise
            self._stats.stored += 1
        return completed

    def sample_statistics(self) -> ReceiverStatistics:
        return dataclasses.replace(self._stats)

    def close(self) -> None:
        """
        Stops the sweep task. The bound transports are not closed. Idempotent.
        """
        self._closed = True
        if self._maybe_task is not None:
            self._maybe_task.cancel()
            self._maybe_task = None
        self._bound.clear()

    async def _on_message(self, data: bytes) -> None:
        if self._closed:
            _logger.debug("%s: closed, message of %d bytes ignored", self, len(data))
            return
        await self.ingest(data)

    async def _sweep_task_function(self) -> None:
        try:
            while not self._closed:
                await asyncio.sleep(self._config.sweep_interval)
                try:
                    await self._reassembler.sweep()
                except Exception as ex:  # pragma: no cover
                    _logger.exception("%s: sweep failed: %s", self, ex)
        except asyncio.CancelledError:
            _logger.debug("%s: sweep task cancelled", self)
        finally:
            _logger.debug("%s: sweep task is stopping", self)

    def __repr__(self) -> str:
        return repr_attributes(self, sink=self._sink, reassembler=self._reassembler)
