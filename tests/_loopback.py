# Copyright (c) 2024 blobrelay developers
# This software is distributed under the terms of the MIT License.

import typing
import asyncio
import logging
import pytest
from blobrelay import TransportError, ResourceClosedError
from blobrelay.transport import PublishTransport, RequestTransport
from blobrelay.transport.loopback import LoopbackPublishTransport, LoopbackRequestTransport, LoopbackCapture
from blobrelay.transport.loopback import LoopbackStatistics

pytestmark = pytest.mark.asyncio


async def _unittest_loopback_publish(caplog: typing.Any) -> None:
    loop = asyncio.get_running_loop()
    tr = LoopbackPublishTransport()
    assert isinstance(tr, PublishTransport)
    assert tr.acknowledged
    assert not LoopbackPublishTransport(acknowledged=False).acknowledged
    assert tr.publish_result is True
    assert tr.send_delay == 0.0

    inbox_a: typing.List[bytes] = []
    inbox_b: typing.List[bytes] = []
    captured: typing.List[LoopbackCapture] = []

    async def on_a(data: bytes) -> None:
        inbox_a.append(data)

    async def on_b(data: bytes) -> None:
        inbox_b.append(data)

    async def on_broken(data: bytes) -> None:
        raise RuntimeError(data)

    tr.subscribe("camera/0", on_a)
    tr.subscribe("camera/1", on_b)
    tr.begin_capture(captured.append)
    assert set(tr.topics) == {"camera/0", "camera/1"}
    assert "camera/0" in repr(tr)

    assert await tr.publish("camera/0", b"abc", loop.time() + 1.0)
    assert await tr.publish("camera/2", b"nobody", loop.time() + 1.0)  # No subscribers is not an error.
    assert inbox_a == [b"abc"] and inbox_b == []
    assert [(c.topic, c.data) for c in captured] == [("camera/0", b"abc"), ("camera/2", b"nobody")]
    assert tr.sample_statistics() == LoopbackStatistics(messages=2, payload_bytes=9)

    # A failing handler does not affect the others nor the publisher.
    tr.subscribe("camera/1", on_broken)
    with caplog.at_level(logging.CRITICAL, logger="blobrelay.transport.loopback"):
        assert await tr.publish("camera/1", b"def", loop.time() + 1.0)
    assert inbox_b == [b"def"]

    # Rigging.
    tr.publish_result = False
    assert not await tr.publish("camera/0", b"lost", loop.time() + 1.0)
    tr.publish_result = TransportError("broker unreachable")
    with pytest.raises(TransportError):
        await tr.publish("camera/0", b"lost", loop.time() + 1.0)
    tr.publish_result = True
    tr.send_delay = 0.05
    assert not await tr.publish("camera/0", b"late", loop.time() + 0.01)
    assert await tr.publish("camera/0", b"on time", loop.time() + 1.0)
    with pytest.raises(ValueError):
        tr.send_delay = -1
    assert inbox_a == [b"abc", b"on time"]
    stats = tr.sample_statistics()
    assert (stats.messages, stats.drops, stats.errors) == (4, 2, 1)

    tr.close()
    tr.close()
    with pytest.raises(ResourceClosedError):
        await tr.publish("camera/0", b"abc", loop.time() + 1.0)
    with pytest.raises(ResourceClosedError):
        tr.subscribe("camera/0", on_a)


async def _unittest_loopback_request() -> None:
    loop = asyncio.get_running_loop()
    served: typing.List[typing.Tuple[str, bytes]] = []

    async def serve(endpoint: str, data: bytes) -> int:
        served.append((endpoint, data))
        if data == b"slow":
            await asyncio.sleep(1.0)
        return 202

    tr = LoopbackRequestTransport(serve)
    assert isinstance(tr, RequestTransport)
    assert await tr.request("/in", b"abc", loop.time() + 1.0) == 202
    assert served == [("/in", b"abc")]

    tr.status_override = 503
    assert await tr.request("/in", b"def", loop.time() + 1.0) == 503
    tr.status_override = TransportError("connection refused")
    with pytest.raises(TransportError):
        await tr.request("/in", b"ghi", loop.time() + 1.0)
    tr.status_override = None
    with pytest.raises(asyncio.TimeoutError):
        await tr.request("/in", b"slow", loop.time() + 0.05)
    assert served == [("/in", b"abc"), ("/in", b"slow")]
    assert [d for _, d in tr.requests] == [b"abc", b"def", b"ghi", b"slow"]
    stats = tr.sample_statistics()
    assert (stats.messages, stats.drops, stats.errors) == (2, 1, 1)

    assert await LoopbackRequestTransport().request("/in", b"abc", loop.time() + 1.0) == 404

    tr.close()
    with pytest.raises(ResourceClosedError):
        await tr.request("/in", b"abc", loop.time() + 1.0)
