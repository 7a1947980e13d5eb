# Copyright (c) 2024 blobrelay developers
# This software is distributed under the terms of the MIT License.

from __future__ import annotations
import typing
import asyncio
import logging
import aiohttp
from ..._error import TransportError, ResourceClosedError
from ...util import repr_attributes
from .._transport import RequestTransport


_logger = logging.getLogger(__name__)


class HTTPRequestTransport(RequestTransport):
    """
    POSTs each message to ``base_url + endpoint`` with the content type ``application/json``.
    The response body is ignored; only the status code matters.

    The client session is created lazily on the first request because it has to be bound to the running event loop.
    If a session is passed to the constructor, it is used as-is and it is not closed by :meth:`close`.
    """

    CONTENT_TYPE = "application/json"

    def __init__(
        self,
        base_url: str,
        *,
        session: typing.Optional[aiohttp.ClientSession] = None,
        headers: typing.Optional[typing.Mapping[str, str]] = None,
    ) -> None:
        self._base_url = str(base_url).rstrip("/")
        self._session = session
        self._owns_session = session is None
        self._headers = {"Content-Type": self.CONTENT_TYPE, **dict(headers or {})}
        self._closed = False

    @property
    def base_url(self) -> str:
        return self._base_url

    async def request(self, endpoint: str, data: bytes, monotonic_deadline: float) -> int:
        if self._closed:
            raise ResourceClosedError(f"{self} is closed")
        timeout = monotonic_deadline - asyncio.get_running_loop().time()
        if timeout <= 0:
            raise asyncio.TimeoutError(f"The deadline has passed before the request to {endpoint} could be issued")
        if self._session is None:
            self._session = aiohttp.ClientSession()
        url = self._base_url + "/" + endpoint.lstrip("/")
        try:
            async with self._session.post(
                url,
                data=bytes(data),
                headers=self._headers,
                timeout=aiohttp.ClientTimeout(total=timeout),
            ) as response:
                await response.read()
                _logger.debug("%s: POST %s (%d bytes) -> %d", self, url, len(data), response.status)
                return response.status
        except aiohttp.ClientError as ex:
            raise TransportError(f"POST {url} failed: {type(ex).__name__}: {ex}") from ex

    async def aclose(self) -> None:
        """
        Closes the transport and awaits the closure of the owned client session.
        """
        self._closed = True
        session, self._session = self._session, None
        if session is not None and self._owns_session:
            await session.close()

    def close(self) -> None:
        """
        The owned client session is closed in the background on the running event loop.
        Use :meth:`aclose` to wait until it is closed.
        """
        self._closed = True
        session, self._session = self._session, None
        if session is not None and self._owns_session and not session.closed:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                _logger.warning("%s: no running event loop, the client session cannot be closed", self)
            else:
                loop.create_task(session.close())

    def __repr__(self) -> str:
        return repr_attributes(self, repr(self._base_url))
