# Copyright (c) 2024 blobrelay developers
# This software is distributed under the terms of the MIT License.

import os
import typing
import asyncio
import dataclasses
import pytest
from blobrelay import RelayConfig, TransportError, CaptureError, PayloadTooLarge, TransferAbandoned, TransferAborted
from blobrelay.protocol import Fragment, deserialize_message
from blobrelay.transport.loopback import LoopbackPublishTransport, LoopbackRequestTransport, LoopbackCapture
from blobrelay.sender import TransportDispatcher, BlobSender, DeliveryResult
from blobrelay.receiver import Receiver, MemorySink, TransferStatus

pytestmark = pytest.mark.asyncio


class _BrokerWithOutage(LoopbackPublishTransport):
    """
    The broker becomes unreachable once the fragment with the specified index is published.
    """

    def __init__(self, outage_from_fragment: typing.Optional[int] = None) -> None:
        super().__init__()
        self.outage_from_fragment = outage_from_fragment

    async def publish(self, topic: str, data: bytes, monotonic_deadline: float) -> bool:
        msg = deserialize_message(data)
        if (
            self.outage_from_fragment is not None
            and isinstance(msg, Fragment)
            and msg.sequence_index >= self.outage_from_fragment
        ):
            self.publish_result = TransportError("broker unreachable")
        return await super().publish(topic, data, monotonic_deadline)


@dataclasses.dataclass
class _Link:
    sender: BlobSender
    dispatcher: TransportDispatcher
    primary: LoopbackPublishTransport
    secondary: LoopbackRequestTransport
    receiver: Receiver
    sink: MemorySink


def _make_link(config: RelayConfig, primary: typing.Optional[LoopbackPublishTransport] = None) -> _Link:
    sink = MemorySink()
    receiver = Receiver(sink, config)
    primary = primary or LoopbackPublishTransport()
    receiver.bind(primary)

    async def serve(_endpoint: str, data: bytes) -> int:
        await receiver.ingest(data)
        return 202

    secondary = LoopbackRequestTransport(serve)
    dispatcher = TransportDispatcher(primary, secondary, config)
    return _Link(
        sender=BlobSender(dispatcher, "cam-1"),
        dispatcher=dispatcher,
        primary=primary,
        secondary=secondary,
        receiver=receiver,
        sink=sink,
    )


async def _unittest_sender_primary_only(fast_config: RelayConfig) -> None:
    link = _make_link(fast_config)
    blob = os.urandom(7500)
    report = await link.sender.send(blob, attributes={"resolution": [640, 480]})
    assert report.envelope.fragment_count == 7
    assert report.results == [DeliveryResult.ACKED] * 8  # The envelope and seven fragments.
    assert report.confirmed
    assert not report.failed_over
    assert link.sender.current_transfer is None

    assert len(link.sink.items) == 1
    envelope, stored = link.sink.items[0]
    assert stored == blob
    assert envelope.transfer_id == report.envelope.transfer_id
    assert envelope.source_id == "cam-1"
    assert envelope.attributes == {"resolution": [640, 480]}
    assert link.secondary.requests == []
    assert link.receiver.sample_statistics().stored == 1
    assert "cam-1" in repr(link.sender)


async def _unittest_sender_failover_mid_transfer(fast_config: RelayConfig) -> None:
    link = _make_link(fast_config, _BrokerWithOutage(outage_from_fragment=4))
    blob = os.urandom(7500)
    report = await link.sender.send(blob)
    assert report.failed_over
    assert report.confirmed
    assert len(report.results) == 8

    # Fragments 0-3 went through the broker, 4-6 were delivered via the fallback, the blob is intact.
    assert [e for e, _ in link.sink.items] == [report.envelope]
    assert link.sink.items[0][1] == blob
    fallback = [deserialize_message(data) for _, data in link.secondary.requests]
    assert [m.sequence_index for m in fallback if isinstance(m, Fragment)] == [4, 5, 6]
    assert all(endpoint == fast_config.endpoint for endpoint, _ in link.secondary.requests)

    primary_stats = link.primary.sample_statistics()
    assert primary_stats.messages == 5  # The envelope and fragments 0-3.
    assert primary_stats.errors == fast_config.max_retries + 1

    stats = link.dispatcher.sample_statistics()
    assert stats.failovers == 1
    assert stats.secondary_messages == 3
    assert stats.messages == 8
    assert stats.failures == 0

    status = link.receiver.reassembler.get_status(report.envelope.transfer_id)
    assert status is not None and status.status == TransferStatus.COMPLETE


async def _unittest_sender_abandoned(fast_config: RelayConfig) -> None:
    primary = LoopbackPublishTransport()
    primary.publish_result = False
    sender = BlobSender(TransportDispatcher(primary, None, fast_config), "cam-1")
    with pytest.raises(TransferAbandoned):
        await sender.send(b"hello")
    assert sender.current_transfer is None

    # Both transports down.
    link = _make_link(fast_config)
    link.primary.publish_result = TransportError("broker unreachable")
    link.secondary.status_override = 503
    with pytest.raises(TransferAbandoned):
        await link.sender.send(b"hello")
    assert link.sink.items == []
    assert link.dispatcher.sample_statistics().failures == 1

    # The next transfer gives the primary transport another chance.
    link.primary.publish_result = True
    report = await link.sender.send(b"hello")
    assert not report.failed_over
    assert len(link.sink.items) == 1


async def _unittest_sender_capture(fast_config: RelayConfig) -> None:
    link = _make_link(fast_config)

    sender = BlobSender(link.dispatcher, "cam-1", capture=lambda: b"\xff\xd8picture")
    await sender.send()
    assert link.sink.items[-1][1] == b"\xff\xd8picture"

    async def capture_async() -> bytes:
        await asyncio.sleep(0.001)
        return b"\xff\xd8another"

    sender = BlobSender(link.dispatcher, "cam-1", capture=capture_async)
    await sender.send()
    assert link.sink.items[-1][1] == b"\xff\xd8another"

    # The explicit blob takes precedence over the capture source.
    await sender.send(b"explicit")
    assert link.sink.items[-1][1] == b"explicit"

    def capture_broken() -> bytes:
        raise CaptureError("lens cap is on")

    messages_before = link.primary.sample_statistics().messages
    sender = BlobSender(link.dispatcher, "cam-1", capture=capture_broken)
    with pytest.raises(CaptureError, match="lens cap"):
        await sender.send()
    assert link.primary.sample_statistics().messages == messages_before

    with pytest.raises(ValueError):
        await BlobSender(link.dispatcher, "cam-1").send()
    with pytest.raises(TypeError):
        await BlobSender(link.dispatcher, "cam-1", capture=lambda: "not bytes").send()  # type: ignore


async def _unittest_sender_limits(fast_config: RelayConfig) -> None:
    link = _make_link(dataclasses.replace(fast_config, max_transfer_size=100))
    with pytest.raises(PayloadTooLarge):
        await link.sender.send(b"x" * 100)  # 136 bytes encoded.
    assert link.primary.sample_statistics().messages == 0
    await link.sender.send(b"x" * 75)  # Exactly 100 bytes encoded.
    assert link.sink.items[-1][1] == b"x" * 75


async def _unittest_sender_zero_length(fast_config: RelayConfig) -> None:
    link = _make_link(fast_config)
    report = await link.sender.send(b"")
    assert report.envelope.fragment_count == 0
    assert report.results == [DeliveryResult.ACKED]
    assert link.sink.items[0][1] == b""


async def _unittest_sender_unconfirmed(fast_config: RelayConfig) -> None:
    link = _make_link(fast_config, LoopbackPublishTransport(acknowledged=False))
    report = await link.sender.send(b"hello world")
    assert report.results == [DeliveryResult.SENT_UNCONFIRMED] * 2
    assert not report.confirmed
    assert link.sink.items[0][1] == b"hello world"


async def _unittest_sender_abort(fast_config: RelayConfig) -> None:
    link = _make_link(fast_config)
    captured: typing.List[LoopbackCapture] = []

    def on_capture(cap: LoopbackCapture) -> None:
        captured.append(cap)
        if len(captured) == 3:
            link.sender.abort()

    link.primary.begin_capture(on_capture)
    with pytest.raises(TransferAborted):
        await link.sender.send(os.urandom(7500))
    assert len(captured) == 3  # The envelope and fragments 0 and 1; nothing after the abort.
    assert link.sink.items == []
    assert link.sender.current_transfer is None

    transfer_id = deserialize_message(captured[0].data).transfer_id
    status = link.receiver.reassembler.get_status(transfer_id)
    assert status is not None and status.status == TransferStatus.COLLECTING

    # Aborting an idle sender has no effect.
    link.sender.abort()
    await link.sender.send(b"after the abort")
    assert link.sink.items[-1][1] == b"after the abort"


async def _unittest_sender_serialization(fast_config: RelayConfig) -> None:
    link = _make_link(fast_config)
    order: typing.List[str] = []
    link.primary.begin_capture(lambda cap: order.append(deserialize_message(cap.data).transfer_id))

    reports = await asyncio.gather(*(link.sender.send(os.urandom(5000)) for _ in range(3)))
    ids = [r.envelope.transfer_id for r in reports]
    assert len(set(ids)) == 3
    # Transfers are never interleaved: each one is sent entirely before the next one begins.
    collapsed = [x for i, x in enumerate(order) if i == 0 or order[i - 1] != x]
    assert sorted(collapsed) == sorted(ids)
    assert len(link.sink.items) == 3
