# Copyright (c) 2024 blobrelay developers
# This software is distributed under the terms of the MIT License.

from __future__ import annotations
import typing
import asyncio
import logging
import dataclasses
from ..._error import ResourceClosedError
from ...util import repr_attributes
from .._transport import RequestTransport
from ._statistics import LoopbackStatistics


RequestHandler = typing.Callable[[str, bytes], typing.Awaitable[int]]
"""
Accepts the endpoint and the request body, returns the status code.
"""

_logger = logging.getLogger(__name__)


class LoopbackRequestTransport(RequestTransport):
    """
    Routes every request directly into the handler, which plays the role of the server.
    Without a handler, every request is answered with 404.
    """

    def __init__(self, handler: typing.Optional[RequestHandler] = None) -> None:
        self._handler = handler
        self._status_override: typing.Optional[typing.Union[int, Exception]] = None
        self._requests: typing.List[typing.Tuple[str, bytes]] = []
        self._stats = LoopbackStatistics()
        self._closed = False

    @property
    def status_override(self) -> typing.Optional[typing.Union[int, Exception]]:
        """
        Test rigging. If None (default), the handler is invoked.
        If an integer, the handler is not invoked and the request is answered with this status code.
        If :class:`Exception`, it will be raised.
        """
        return self._status_override

    @status_override.setter
    def status_override(self, value: typing.Optional[typing.Union[int, Exception]]) -> None:
        self._status_override = value

    @property
    def requests(self) -> typing.Sequence[typing.Tuple[str, bytes]]:
        """
        All requests issued so far, including failed ones, in the order of issuance.
        """
        return list(self._requests)

    async def request(self, endpoint: str, data: bytes, monotonic_deadline: float) -> int:
        if self._closed:
            raise ResourceClosedError(f"{self} is closed")
        self._requests.append((endpoint, bytes(data)))
        override = self._status_override
        if isinstance(override, Exception):
            self._stats.errors += 1
            raise override
        if override is not None:
            status = int(override)
        elif self._handler is None:
            status = 404
        else:
            timeout = monotonic_deadline - asyncio.get_running_loop().time()
            try:
                status = await asyncio.wait_for(self._handler(endpoint, bytes(data)), timeout=max(timeout, 0.0))
            except asyncio.TimeoutError:
                self._stats.drops += 1
                raise
        _logger.debug("%s: %s %d bytes -> %d", self, endpoint, len(data), status)
        self._stats.messages += 1
        self._stats.payload_bytes += len(data)
        return status

    def sample_statistics(self) -> LoopbackStatistics:
        return dataclasses.replace(self._stats)

    def close(self) -> None:
        self._closed = True

    def __repr__(self) -> str:
        return repr_attributes(self, handler=self._handler)
