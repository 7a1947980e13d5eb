# Copyright (c) 2024 blobrelay developers
# This software is distributed under the terms of the MIT License.

from __future__ import annotations
import typing
import logging
from aiohttp import web
from ..._error import MessageFormatError
from ...protocol import Message, deserialize_message
from ...util import repr_attributes


IngressHandler = typing.Callable[[Message], typing.Awaitable[object]]
"""
Normally this is :meth:`blobrelay.receiver.Receiver.ingest_message`.
"""

_logger = logging.getLogger(__name__)


class HTTPIngress:
    """
    An :mod:`aiohttp` web application accepting messages POSTed by :class:`HTTPRequestTransport`.

    Responses:

    - 202 -- the message has been handed over to the handler (which does not imply that its transfer is complete).
    - 400 -- the message is malformed; the sender should not retry it.
    - 413 -- the message exceeds ``max_message_size``.
    - 500 -- the handler has raised (e.g., the sink failed to persist a completed transfer).
    """

    def __init__(
        self,
        handler: IngressHandler,
        endpoint: str = "/blobrelay/fragments",
        *,
        max_message_size: int = 1024**2,
    ) -> None:
        self._handler = handler
        self._endpoint = "/" + endpoint.lstrip("/")
        self._app = web.Application(client_max_size=max_message_size)
        self._app.router.add_post(self._endpoint, self._serve)
        self._runner: typing.Optional[web.AppRunner] = None

    @property
    def app(self) -> web.Application:
        """
        The application can be mounted into a larger one or served with a test server.
        """
        return self._app

    @property
    def endpoint(self) -> str:
        return self._endpoint

    async def start(self, host: str = "127.0.0.1", port: int = 0) -> typing.Tuple[str, int]:
        """
        Serves the application until :meth:`close`. Port zero selects an ephemeral port.

        :returns: The address actually bound.
        """
        if self._runner is not None:
            raise RuntimeError(f"{self} is already running")
        runner = web.AppRunner(self._app)
        await runner.setup()
        site = web.TCPSite(runner, host, port)
        await site.start()
        self._runner = runner
        addr = runner.addresses[0]
        _logger.info("%s is listening on %s", self, addr)
        return str(addr[0]), int(addr[1])

    async def close(self) -> None:
        runner, self._runner = self._runner, None
        if runner is not None:
            await runner.cleanup()

    async def _serve(self, request: web.Request) -> web.Response:
        body = await request.read()
        try:
            message = deserialize_message(body)
        except MessageFormatError as ex:
            _logger.warning("%s: rejecting malformed message from %s: %s", self, request.remote, ex)
            return web.Response(status=400, text=str(ex))
        await self._handler(message)
        return web.Response(status=202)

    def __repr__(self) -> str:
        return repr_attributes(self, endpoint=repr(self._endpoint))
