# Copyright (c) 2024 blobrelay developers
# This software is distributed under the terms of the MIT License.

from __future__ import annotations
import abc
import json
import hashlib
import typing
import asyncio
import logging
import pathlib
from ..protocol import TransferEnvelope
from ..util import repr_attributes


_logger = logging.getLogger(__name__)


class Sink(abc.ABC):
    """
    The downstream storage boundary. :meth:`store` is invoked exactly once per completed transfer.
    Retrying on failure is up to the implementation; an exception propagates to whoever fed the receiver.
    """

    @abc.abstractmethod
    async def store(self, envelope: TransferEnvelope, blob: bytes) -> None:
        raise NotImplementedError

    def __repr__(self) -> str:
        return repr_attributes(self)


class MemorySink(Sink):
    """
    Keeps the received blobs in a list. Useful for testing and for embedding into an application
    that consumes the blobs itself.

    >>> import asyncio
    >>> from blobrelay import Timestamp
    >>> sink = MemorySink()
    >>> env = TransferEnvelope("t1", "cam", Timestamp(0, 0), total_size=4, fragment_count=1, fragment_size=4)
    >>> asyncio.run(sink.store(env, b"abc"))
    >>> [(e.transfer_id, b) for e, b in sink.items]
    [('t1', b'abc')]
    """

    def __init__(self) -> None:
        self._items: typing.List[typing.Tuple[TransferEnvelope, bytes]] = []

    @property
    def items(self) -> typing.Sequence[typing.Tuple[TransferEnvelope, bytes]]:
        return self._items

    async def store(self, envelope: TransferEnvelope, blob: bytes) -> None:
        self._items.append((envelope, blob))

    def __repr__(self) -> str:
        return repr_attributes(self, items=len(self._items))


class DirectorySink(Sink):
    """
    Writes each blob into ``<transfer_id>.bin`` and its metadata into ``<transfer_id>.json``;
    a transfer-ID that is not a safe file name is sanitized and suffixed with its digest.
    The files are created exclusively, so a transfer is never written twice;
    an attempt to do so raises :class:`FileExistsError`.
    The file I/O runs in the default executor to keep the event loop responsive.
    """

    def __init__(self, directory: typing.Union[str, pathlib.Path]) -> None:
        self._directory = pathlib.Path(directory)
        self._directory.mkdir(parents=True, exist_ok=True)

    @property
    def directory(self) -> pathlib.Path:
        return self._directory

    async def store(self, envelope: TransferEnvelope, blob: bytes) -> None:
        await asyncio.get_running_loop().run_in_executor(None, self._store_sync, envelope, blob)

    def _store_sync(self, envelope: TransferEnvelope, blob: bytes) -> None:
        name = _sanitize_file_name(envelope.transfer_id)
        metadata = {
            "transfer_id": envelope.transfer_id,
            "source_id": envelope.source_id,
            "created_at": envelope.created_at.system_ns,
            "size": len(blob),
            "attributes": dict(envelope.attributes),
        }
        # The metadata goes first; the blob file appearing means the transfer is stored entirely.
        with open(self._directory / f"{name}.json", "x", encoding="utf8") as f:
            json.dump(metadata, f, ensure_ascii=False, indent=2)
        with open(self._directory / f"{name}.bin", "xb") as f:
            f.write(blob)
        _logger.info("%s: stored %r (%d bytes)", self, envelope.transfer_id, len(blob))

    def __repr__(self) -> str:
        return repr_attributes(self, str(self._directory))


def _sanitize_file_name(transfer_id: str) -> str:
    """
    Transfer-IDs are opaque, so they are not trusted to be valid file names.
    If any character had to be replaced, a digest of the original ID is appended to keep the names distinct.

    >>> _sanitize_file_name("0123abcd")
    '0123abcd'
    >>> _sanitize_file_name("../etc/passwd")
    '.._etc_passwd-7fef78f53440'
    >>> _sanitize_file_name("a/b") != _sanitize_file_name("a_b")
    True
    """
    name = "".join(c if c.isalnum() or c in "-_." else "_" for c in transfer_id)
    if name != transfer_id:
        name += "-" + hashlib.sha256(transfer_id.encode("utf8")).hexdigest()[:12]
    return name


def _unittest_directory_sink(tmp_path: pathlib.Path) -> None:
    from pytest import raises
    from .._timestamp import Timestamp

    sink = DirectorySink(tmp_path / "out")
    env = TransferEnvelope(
        "t1", "cam", Timestamp.from_seconds(1700000000, 0), 4, 1, 4, attributes={"resolution": [640, 480]}
    )
    asyncio.run(sink.store(env, b"\xff\xd8"))
    assert (tmp_path / "out" / "t1.bin").read_bytes() == b"\xff\xd8"
    meta = json.loads((tmp_path / "out" / "t1.json").read_text())
    assert meta["source_id"] == "cam"
    assert meta["size"] == 2
    assert meta["attributes"] == {"resolution": [640, 480]}
    with raises(FileExistsError):
        asyncio.run(sink.store(env, b"\xff\xd8"))

    # IDs that differ only in the characters unfit for file names do not collide.
    for tid in ("a/b", "a_b"):
        asyncio.run(sink.store(TransferEnvelope(tid, "cam", Timestamp(0, 0), 4, 1, 4), tid.encode()))
    assert (tmp_path / "out" / "a_b.bin").read_bytes() == b"a_b"
    assert (tmp_path / "out" / "a_b-c14cddc033f6.bin").read_bytes() == b"a/b"
    assert "out" in repr(sink)
