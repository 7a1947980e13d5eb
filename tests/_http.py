# Copyright (c) 2024 blobrelay developers
# This software is distributed under the terms of the MIT License.

import os
import typing
import asyncio
import logging
import aiohttp
import pytest
from blobrelay import RelayConfig, Timestamp, TransportError, ResourceClosedError
from blobrelay.protocol import TransferEnvelope, Message, fragment_blob, serialize_message
from blobrelay.transport.loopback import LoopbackPublishTransport
from blobrelay.transport.http import HTTPRequestTransport, HTTPIngress
from blobrelay.sender import TransportDispatcher, BlobSender
from blobrelay.receiver import Receiver, MemorySink

pytestmark = pytest.mark.asyncio


async def _unittest_http_round_trip() -> None:
    loop = asyncio.get_running_loop()
    sink = MemorySink()
    rx = Receiver(sink)
    ingress = HTTPIngress(rx.ingest_message, "blobrelay/fragments")
    assert ingress.endpoint == "/blobrelay/fragments"
    host, port = await ingress.start()
    with pytest.raises(RuntimeError):
        await ingress.start()
    client = HTTPRequestTransport(f"http://{host}:{port}/")
    assert client.base_url == f"http://{host}:{port}"
    try:
        blob = os.urandom(3000)
        tr = fragment_blob(blob, "cam-1", 1024)
        for msg in [tr.envelope, *tr.fragments]:
            assert await client.request("/blobrelay/fragments", serialize_message(msg), loop.time() + 5.0) == 202
        assert [b for _, b in sink.items] == [blob]

        # Malformed and misdirected messages.
        assert await client.request("/blobrelay/fragments", b"garbage", loop.time() + 5.0) == 400
        assert await client.request("/elsewhere", serialize_message(tr.envelope), loop.time() + 5.0) == 404
        assert rx.sample_statistics().stored == 1

        with pytest.raises(asyncio.TimeoutError):
            await client.request("/blobrelay/fragments", b"{}", loop.time() - 1.0)
    finally:
        await client.aclose()
        await ingress.close()
    await ingress.close()  # Idempotent.

    with pytest.raises(ResourceClosedError):
        await client.request("/blobrelay/fragments", b"{}", loop.time() + 5.0)


async def _unittest_http_errors(caplog: typing.Any) -> None:
    loop = asyncio.get_running_loop()

    async def handle(message: Message) -> None:
        raise OSError("disk full")

    ingress = HTTPIngress(handle, max_message_size=1024)
    host, port = await ingress.start()
    session = aiohttp.ClientSession()
    client = HTTPRequestTransport(f"http://{host}:{port}", session=session, headers={"X-Device": "cam-1"})
    try:
        env = TransferEnvelope("t", "cam-1", Timestamp.now(), total_size=0, fragment_count=0, fragment_size=1)
        with caplog.at_level(logging.CRITICAL):
            assert await client.request("/blobrelay/fragments", serialize_message(env), loop.time() + 5.0) == 500
        assert await client.request("/blobrelay/fragments", b" " * 2000, loop.time() + 5.0) == 413
    finally:
        client.close()
        await ingress.close()
    assert not session.closed  # Not owned by the transport.
    await session.close()

    # Nobody is listening anymore.
    client = HTTPRequestTransport(f"http://{host}:{port}")
    with pytest.raises(TransportError):
        await client.request("/blobrelay/fragments", b"{}", loop.time() + 5.0)
    client.close()
    await asyncio.sleep(0.05)  # Let the background closure complete.


async def _unittest_http_failover() -> None:
    config = RelayConfig(fragment_size=512, ack_deadline=2.0, max_retries=1, backoff_base=0.001, backoff_max=0.01)
    sink = MemorySink()
    rx = Receiver(sink, config)
    ingress = HTTPIngress(rx.ingest_message, config.endpoint)
    host, port = await ingress.start()

    primary = LoopbackPublishTransport()
    rx.bind(primary)
    primary.publish_result = TransportError("broker unreachable")
    secondary = HTTPRequestTransport(f"http://{host}:{port}")
    sender = BlobSender(TransportDispatcher(primary, secondary, config), "cam-1")
    try:
        blob = os.urandom(2000)
        report = await sender.send(blob)
        assert report.failed_over and report.confirmed
        assert [b for _, b in sink.items] == [blob]
    finally:
        await secondary.aclose()
        await ingress.close()
