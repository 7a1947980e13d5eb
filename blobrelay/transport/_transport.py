# Copyright (c) 2024 blobrelay developers
# This software is distributed under the terms of the MIT License.

from __future__ import annotations
import abc
import typing
from ..util import repr_attributes


MessageHandler = typing.Callable[[bytes], typing.Awaitable[None]]
"""
Invoked by a publish/subscribe transport for every message received on a subscribed topic.
"""


class PublishTransport(abc.ABC):
    """
    The primary transport: a lossy, unordered, size-bounded publish/subscribe medium (e.g., an MQTT broker).
    Delivery is assumed to be at-most-once; the protocol never relies on ordering.

    Transport instances own the client connection state; they are constructed and closed explicitly by the
    application and injected into the dispatcher and the receiver, which allows tests to use a loopback instance.
    """

    @property
    @abc.abstractmethod
    def acknowledged(self) -> bool:
        """
        True if a successful :meth:`publish` means that the remote side (broker) has confirmed the reception.
        False if it only means that the message has been handed over to the network.
        """
        raise NotImplementedError

    @abc.abstractmethod
    async def publish(self, topic: str, data: bytes, monotonic_deadline: float) -> bool:
        """
        :param topic: Where to publish.
        :param data: The serialized message.
        :param monotonic_deadline: The deadline in the domain of the event loop time.
            If the message could not be published (and acknowledged, if supported) by then, False is returned.

        :returns: True on success, False on timeout.

        :raises: :class:`blobrelay.TransportError` if the transport reports failure;
            :class:`blobrelay.ResourceClosedError` if the transport is closed.
        """
        raise NotImplementedError

    @abc.abstractmethod
    def subscribe(self, topic: str, handler: MessageHandler) -> None:
        """
        Registers the handler for the topic. The handler is awaited for each received message;
        exceptions it raises are logged by the transport and otherwise ignored.
        """
        raise NotImplementedError

    @abc.abstractmethod
    def close(self) -> None:
        """
        Further operations will raise :class:`blobrelay.ResourceClosedError`. Double close is harmless.
        """
        raise NotImplementedError

    def __repr__(self) -> str:
        return repr_attributes(self, acknowledged=self.acknowledged)


class RequestTransport(abc.ABC):
    """
    The secondary transport: a request/response medium (e.g., HTTP) used when the primary one is failing.
    A response is itself a confirmation of delivery.
    """

    @abc.abstractmethod
    async def request(self, endpoint: str, data: bytes, monotonic_deadline: float) -> int:
        """
        :returns: An HTTP-style status code; 2xx means the message was accepted.

        :raises: :class:`asyncio.TimeoutError` if the deadline has passed;
            :class:`blobrelay.TransportError` if the request could not be performed.
        """
        raise NotImplementedError

    @abc.abstractmethod
    def close(self) -> None:
        raise NotImplementedError

    def __repr__(self) -> str:
        return repr_attributes(self)


def is_success_status(status: int) -> bool:
    """
    >>> is_success_status(202), is_success_status(204), is_success_status(400), is_success_status(503)
    (True, True, False, False)
    """
    return 200 <= status < 300
