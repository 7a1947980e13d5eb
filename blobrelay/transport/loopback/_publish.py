# Copyright (c) 2024 blobrelay developers
# This software is distributed under the terms of the MIT License.

from __future__ import annotations
import typing
import asyncio
import logging
import dataclasses
from ..._error import ResourceClosedError
from ..._timestamp import Timestamp
from ...util import broadcast, repr_attributes
from .._transport import PublishTransport, MessageHandler
from ._statistics import LoopbackStatistics


_logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class LoopbackCapture:
    """
    A record of one published message, delivered to the capture handlers before it reaches the subscribers.
    """

    timestamp: Timestamp
    topic: str
    data: bytes


class LoopbackPublishTransport(PublishTransport):
    """
    Every published message is delivered to the handlers subscribed to the same topic, in the order of subscription.
    The handlers are awaited before :meth:`publish` returns.

    >>> import asyncio
    >>> received = []
    >>> async def on_message(data: bytes) -> None:
    ...     received.append(data)
    >>> tr = LoopbackPublishTransport()
    >>> tr.subscribe("camera/0", on_message)
    >>> asyncio.run(tr.publish("camera/0", b"hello", monotonic_deadline=float("inf")))
    True
    >>> received
    [b'hello']
    """

    def __init__(self, *, acknowledged: bool = True) -> None:
        self._acknowledged = bool(acknowledged)
        self._subscriptions: typing.Dict[str, typing.List[MessageHandler]] = {}
        self._capture_handlers: typing.List[typing.Callable[[LoopbackCapture], None]] = []
        self._publish_result: typing.Union[bool, Exception] = True
        self._send_delay = 0.0
        self._stats = LoopbackStatistics()
        self._closed = False

    @property
    def acknowledged(self) -> bool:
        return self._acknowledged

    @property
    def publish_result(self) -> typing.Union[bool, Exception]:
        """
        Test rigging. If True, :meth:`publish` will succeed (this is the default).
        If False, it will time out without delivering the message. If :class:`Exception`, it will be raised.
        """
        return self._publish_result

    @publish_result.setter
    def publish_result(self, value: typing.Union[bool, Exception]) -> None:
        self._publish_result = value

    @property
    def send_delay(self) -> float:
        """
        Test rigging. If positive, this delay will be inserted for each published message.
        If after the delay the deadline is in the past, the publication is assumed to have timed out.
        """
        return self._send_delay

    @send_delay.setter
    def send_delay(self, value: float) -> None:
        if float(value) >= 0:
            self._send_delay = float(value)
        else:
            raise ValueError(f"Send delay shall be a non-negative number of seconds, got {value}")

    def begin_capture(self, handler: typing.Callable[[LoopbackCapture], None]) -> None:
        self._capture_handlers.append(handler)

    def subscribe(self, topic: str, handler: MessageHandler) -> None:
        if self._closed:
            raise ResourceClosedError(f"{self} is closed")
        self._subscriptions.setdefault(topic, []).append(handler)

    async def publish(self, topic: str, data: bytes, monotonic_deadline: float) -> bool:
        if self._closed:
            raise ResourceClosedError(f"{self} is closed")
        if isinstance(self._publish_result, Exception):
            self._stats.errors += 1
            raise self._publish_result
        if self._send_delay > 0:
            await asyncio.sleep(self._send_delay)
            if asyncio.get_running_loop().time() > monotonic_deadline:
                self._stats.drops += 1
                return False
        if not self._publish_result:
            self._stats.drops += 1
            return False

        data = bytes(data)
        broadcast(self._capture_handlers)(LoopbackCapture(Timestamp.now(), topic, data))
        for handler in list(self._subscriptions.get(topic, [])):
            try:
                await handler(data)
            except Exception as ex:
                _logger.exception("%s: Unhandled exception in the subscription handler %s: %s", self, handler, ex)
        self._stats.messages += 1
        self._stats.payload_bytes += len(data)
        return True

    def sample_statistics(self) -> LoopbackStatistics:
        return dataclasses.replace(self._stats)

    @property
    def topics(self) -> typing.Sequence[str]:
        return list(self._subscriptions)

    def close(self) -> None:
        self._closed = True
        self._subscriptions.clear()

    def __repr__(self) -> str:
        return repr_attributes(self, acknowledged=self._acknowledged, topics=self.topics)
