# Copyright (c) 2024 blobrelay developers
# This software is distributed under the terms of the MIT License.

from __future__ import annotations
import enum
import typing
import asyncio
import logging
import dataclasses
from .._config import RelayConfig
from .._error import TransportError, ResourceClosedError
from ..protocol import Message, serialize_message
from ..transport import PublishTransport, RequestTransport, is_success_status
from ..util import repr_attributes


_logger = logging.getLogger(__name__)


class DeliveryResult(enum.Enum):
    ACKED = enum.auto()
    """
    The remote side has confirmed the reception: an acknowledged publication or a 2xx response.
    """

    SENT_UNCONFIRMED = enum.auto()
    """
    The primary transport has accepted the message but it cannot confirm the reception.
    """

    FAILED = enum.auto()
    """
    The retry budget is exhausted on every available transport.
    """


@dataclasses.dataclass
class DispatcherStatistics:
    messages: int = 0
    """Messages delivered with either ACKED or SENT_UNCONFIRMED."""

    retries: int = 0
    """Attempts beyond the first one, summed over both transports."""

    failovers: int = 0
    """Transfers that were switched over to the secondary transport."""

    failures: int = 0
    """Messages that ended up FAILED."""

    secondary_messages: int = 0
    """Messages delivered via the secondary transport (included in ``messages``)."""


class TransportDispatcher:
    """
    Delivers messages over the primary transport, retrying with a bounded exponential backoff;
    once the primary transport exhausts the retry budget for a message, the dispatcher fails over to the
    secondary transport for the rest of the transfer.
    The failover is sticky until :meth:`begin_transfer` is invoked, so the fragments of one transfer never
    alternate between two delivery paths.

    The dispatcher is not intended for concurrent use; one transfer at a time is sent through it
    (see :class:`blobrelay.sender.BlobSender`).
    """

    def __init__(
        self,
        primary: PublishTransport,
        secondary: typing.Optional[RequestTransport],
        config: typing.Optional[RelayConfig] = None,
    ) -> None:
        self._primary = primary
        self._secondary = secondary
        self._config = config or RelayConfig()
        self._failed_over = False
        self._stats = DispatcherStatistics()
        if not isinstance(self._primary, PublishTransport):
            raise TypeError(f"Invalid primary transport: {self._primary!r}")
        if self._secondary is not None and not isinstance(self._secondary, RequestTransport):
            raise TypeError(f"Invalid secondary transport: {self._secondary!r}")

    @property
    def config(self) -> RelayConfig:
        return self._config

    @property
    def failed_over(self) -> bool:
        """
        True if the current transfer is being delivered via the secondary transport.
        """
        return self._failed_over

    def begin_transfer(self) -> None:
        """
        Resets the failover state. Invoked by the sender before the first message of each transfer,
        which gives the primary transport another chance.
        """
        if self._failed_over:
            _logger.info("%s: switching back to the primary transport for the new transfer", self)
        self._failed_over = False

    async def send(self, message: Message) -> DeliveryResult:
        """
        Never raises on transport failures; those are retried and eventually reported as
        :attr:`DeliveryResult.FAILED`.

        :raises: :class:`blobrelay.ResourceClosedError` if a transport is closed;
            :class:`blobrelay.MessageFormatError` if the message cannot be serialized.
        """
        data = serialize_message(message)
        if not self._failed_over:
            result = await self._retry(self._attempt_primary, data)
            if result is not DeliveryResult.FAILED:
                self._stats.messages += 1
                return result
            if self._secondary is None:
                _logger.error("%s: primary transport failed, no secondary transport available: %r", self, message)
                self._stats.failures += 1
                return DeliveryResult.FAILED
            _logger.warning(
                "%s: primary transport failed after %d attempts, failing over to the secondary transport: %r",
                self,
                self._config.max_retries + 1,
                message,
            )
            self._failed_over = True
            self._stats.failovers += 1

        result = await self._retry(self._attempt_secondary, data)
        if result is DeliveryResult.FAILED:
            _logger.error("%s: secondary transport failed as well: %r", self, message)
            self._stats.failures += 1
        else:
            self._stats.messages += 1
            self._stats.secondary_messages += 1
        return result

    def sample_statistics(self) -> DispatcherStatistics:
        return dataclasses.replace(self._stats)

    def get_backoff(self, attempt: int) -> float:
        """
        The delay before the retry number ``attempt`` (one-based).

        >>> from blobrelay.transport.loopback import LoopbackPublishTransport
        >>> d = TransportDispatcher(LoopbackPublishTransport(), None, RelayConfig(backoff_base=0.1, backoff_max=0.5))
        >>> [d.get_backoff(x) for x in range(1, 5)]
        [0.1, 0.2, 0.4, 0.5]
        """
        return float(min(self._config.backoff_base * 2 ** (attempt - 1), self._config.backoff_max))

    async def _retry(
        self, attempt_fn: typing.Callable[[bytes], typing.Awaitable[typing.Optional[DeliveryResult]]], data: bytes
    ) -> DeliveryResult:
        for attempt in range(self._config.max_retries + 1):
            if attempt > 0:
                self._stats.retries += 1
                await asyncio.sleep(self.get_backoff(attempt))
            result = await attempt_fn(data)
            if result is not None:
                return result
        return DeliveryResult.FAILED

    async def _attempt_primary(self, data: bytes) -> typing.Optional[DeliveryResult]:
        """
        None means that the attempt has failed and may be retried.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._config.ack_deadline
        try:
            ok = await asyncio.wait_for(
                self._primary.publish(self._config.topic, data, deadline),
                timeout=self._config.ack_deadline,
            )
        except ResourceClosedError:
            raise
        except asyncio.TimeoutError:
            ok = False
        except TransportError as ex:
            _logger.info("%s: publication failed: %s", self, ex)
            return None
        if not ok:
            _logger.info("%s: publication timed out after %.3f s", self, self._config.ack_deadline)
            return None
        return DeliveryResult.ACKED if self._primary.acknowledged else DeliveryResult.SENT_UNCONFIRMED

    async def _attempt_secondary(self, data: bytes) -> typing.Optional[DeliveryResult]:
        assert self._secondary is not None
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._config.ack_deadline
        try:
            status = await asyncio.wait_for(
                self._secondary.request(self._config.endpoint, data, deadline),
                timeout=self._config.ack_deadline,
            )
        except ResourceClosedError:
            raise
        except asyncio.TimeoutError:
            _logger.info("%s: request timed out after %.3f s", self, self._config.ack_deadline)
            return None
        except TransportError as ex:
            _logger.info("%s: request failed: %s", self, ex)
            return None
        if is_success_status(status):
            return DeliveryResult.ACKED
        if _is_retryable_status(status):
            _logger.info("%s: request rejected with status %d, will retry", self, status)
            return None
        _logger.error("%s: request rejected with non-retryable status %d", self, status)
        return DeliveryResult.FAILED

    def __repr__(self) -> str:
        return repr_attributes(self, primary=self._primary, secondary=self._secondary, failed_over=self._failed_over)


def _is_retryable_status(status: int) -> bool:
    """
    >>> [_is_retryable_status(x) for x in (400, 404, 408, 413, 429, 500, 503)]
    [False, False, True, False, True, True, True]
    """
    return status in (408, 429) or status >= 500
