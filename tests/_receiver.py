# Copyright (c) 2024 blobrelay developers
# This software is distributed under the terms of the MIT License.

import os
import json
import logging
import typing
import asyncio
import pathlib
import pytest
from blobrelay import RelayConfig, ResourceClosedError
from blobrelay.protocol import TransferEnvelope, Fragment, fragment_blob, serialize_message
from blobrelay.transport.loopback import LoopbackPublishTransport
from blobrelay.receiver import Receiver, Sink, MemorySink, DirectorySink, TransferStatus, Reason

pytestmark = pytest.mark.asyncio


class _BrokenSink(Sink):
    def __init__(self) -> None:
        self.calls = 0

    async def store(self, envelope: TransferEnvelope, blob: bytes) -> None:
        self.calls += 1
        raise OSError("disk full")


class _GatedSink(Sink):
    """
    Holds the store of the gated transfer until released.
    """

    def __init__(self, gated_transfer_id: str) -> None:
        self.gated_transfer_id = gated_transfer_id
        self.entered = asyncio.Event()
        self.release = asyncio.Event()
        self.stored: typing.List[str] = []

    async def store(self, envelope: TransferEnvelope, blob: bytes) -> None:
        if envelope.transfer_id == self.gated_transfer_id:
            self.entered.set()
            await self.release.wait()
        self.stored.append(envelope.transfer_id)


def _wire(blob: bytes, fragment_size: int = 1500) -> typing.Tuple[TransferEnvelope, typing.List[bytes]]:
    tr = fragment_blob(blob, "cam-1", fragment_size)
    return tr.envelope, [serialize_message(tr.envelope)] + [serialize_message(f) for f in tr.fragments]


async def _unittest_receiver_retransmission() -> None:
    sink = MemorySink()
    rx = Receiver(sink)
    blob = os.urandom(7500)
    envelope, messages = _wire(blob)
    for _ in range(2):
        for m in messages:
            await rx.ingest(m)
    assert len(sink.items) == 1
    assert sink.items[0][1] == blob
    assert sink.items[0][0].transfer_id == envelope.transfer_id
    stats = rx.sample_statistics()
    assert stats.messages == 16 and stats.stored == 1 and stats.malformed == 0
    assert rx.reassembler.sample_statistics().late == 8
    assert "MemorySink" in repr(rx)


async def _unittest_receiver_mismatch_not_persisted() -> None:
    sink = MemorySink()
    rx = Receiver(sink)
    envelope, messages = _wire(os.urandom(7500))
    await rx.ingest(messages[3])  # Fragment #2.
    await rx.ingest_message(Fragment(envelope.transfer_id, 2, "B" * 1500, is_last=False))
    for m in messages:
        assert await rx.ingest(m) is None
    assert sink.items == []
    status = rx.reassembler.get_status(envelope.transfer_id)
    assert status is not None
    assert (status.status, status.reason) == (TransferStatus.FAILED, Reason.FRAGMENT_MISMATCH)


async def _unittest_receiver_malformed() -> None:
    rx = Receiver(MemorySink())
    assert await rx.ingest(b"\x00\x01garbage") is None
    assert await rx.ingest(b'{"kind": "fragment"}') is None
    assert await rx.ingest(b'{"kind": "fragment", "transfer_id": "t", "sequence_index": 0, "is_last": 1}') is None
    assert await rx.ingest(b"[" * 200_000) is None
    stats = rx.sample_statistics()
    assert stats.messages == 4 and stats.malformed == 4
    assert len(rx.reassembler.registry) == 0


async def _unittest_receiver_sink_failure() -> None:
    sink = _BrokenSink()
    rx = Receiver(sink)
    _, messages = _wire(b"hello world")
    await rx.ingest(messages[0])
    with pytest.raises(OSError, match="disk full"):
        await rx.ingest(messages[1])
    assert sink.calls == 1
    assert rx.sample_statistics().sink_errors == 1
    assert rx.sample_statistics().stored == 0
    # The transfer is resolved, so a retransmission does not reach the sink again.
    for m in messages:
        assert await rx.ingest(m) is None
    assert sink.calls == 1

    with pytest.raises(TypeError):
        Receiver(MemorySink)  # type: ignore


async def _unittest_receiver_directory_sink(tmp_path: pathlib.Path) -> None:
    rx = Receiver(DirectorySink(tmp_path))
    blob = os.urandom(3000)
    envelope, messages = _wire(blob, 512)
    for m in reversed(messages):
        await rx.ingest(m)
    assert (tmp_path / f"{envelope.transfer_id}.bin").read_bytes() == blob
    meta = json.loads((tmp_path / f"{envelope.transfer_id}.json").read_text())
    assert meta["transfer_id"] == envelope.transfer_id
    assert meta["size"] == 3000


async def _unittest_receiver_bound_with_sweep() -> None:
    config = RelayConfig(idle_timeout=0.1, grace_window_after_terminal=0.1, sweep_interval=0.02)
    sink = MemorySink()
    rx = Receiver(sink, config)
    primary = LoopbackPublishTransport()
    rx.bind(primary)
    assert primary.topics == [config.topic]
    rx.start()
    rx.start()  # Idempotent.

    loop = asyncio.get_running_loop()
    deadline = loop.time() + 1.0

    # A complete transfer is stored.
    _, messages = _wire(b"complete", 4)
    for m in messages:
        assert await primary.publish(config.topic, m, deadline)
    assert sink.items[0][1] == b"complete"

    # An incomplete transfer is expired, then forgotten along with the completed one.
    envelope, messages = _wire(os.urandom(100), 16)
    for m in messages[:3]:
        assert await primary.publish(config.topic, m, deadline)
    assert len(rx.reassembler.registry) == 2
    assert rx.reassembler.registry.held_bytes > 0

    while len(rx.reassembler.registry) > 0:
        assert loop.time() < deadline + 5.0, "The sweeper did not purge the transfers in time"
        await asyncio.sleep(0.02)
    assert rx.reassembler.registry.held_bytes == 0
    assert rx.reassembler.sample_statistics().expired == 1

    rx.close()
    rx.close()  # Idempotent.
    with pytest.raises(ResourceClosedError):
        await rx.ingest_message(Fragment("t", 0, "YWJj", is_last=True))
    with pytest.raises(ResourceClosedError):
        rx.bind(primary)
    with pytest.raises(ResourceClosedError):
        rx.start()
    await asyncio.sleep(0.05)  # Let the cancelled task finish.


async def _unittest_receiver_slow_sink() -> None:
    envelope_a, messages_a = _wire(os.urandom(3000), 512)
    envelope_b, messages_b = _wire(os.urandom(3000), 512)
    sink = _GatedSink(envelope_a.transfer_id)
    rx = Receiver(sink)
    for m in messages_a[:-1]:
        assert await rx.ingest(m) is None
    task_a = asyncio.get_running_loop().create_task(rx.ingest(messages_a[-1]))
    await asyncio.wait_for(sink.entered.wait(), 5.0)

    # The sink is invoked outside of the transfer lock, so B is not held up by the store of A.
    completed_b = None
    for m in messages_b:
        completed_b = await rx.ingest(m)
    assert completed_b is not None and completed_b.envelope == envelope_b
    assert sink.stored == [envelope_b.transfer_id]
    assert not task_a.done()
    assert rx.sample_statistics().stored == 1

    sink.release.set()
    completed_a = await asyncio.wait_for(task_a, 5.0)
    assert completed_a is not None and completed_a.envelope == envelope_a
    assert sink.stored == [envelope_b.transfer_id, envelope_a.transfer_id]
    assert rx.sample_statistics().stored == 2


async def _unittest_receiver_closed_ignores_bound_transport(caplog: pytest.LogCaptureFixture) -> None:
    config = RelayConfig()
    sink = MemorySink()
    rx = Receiver(sink, config)
    primary = LoopbackPublishTransport()
    rx.bind(primary)
    rx.close()
    _, messages = _wire(b"after close", 4)
    deadline = asyncio.get_running_loop().time() + 1.0
    with caplog.at_level(logging.DEBUG):
        for m in messages:
            assert await primary.publish(config.topic, m, deadline)
    assert not [r for r in caplog.records if r.levelno >= logging.ERROR]
    assert sink.items == []
    assert rx.sample_statistics().messages == 0
    assert len(rx.reassembler.registry) == 0
