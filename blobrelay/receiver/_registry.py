# Copyright (c) 2024 blobrelay developers
# This software is distributed under the terms of the MIT License.

from __future__ import annotations
import typing
import asyncio
import logging
import contextlib
from .._timestamp import Timestamp
from ..util import repr_attributes
from ._state import TransferState, TransferStatus


_logger = logging.getLogger(__name__)


class TransferRegistry:
    """
    Keeps the state of every known transfer keyed by its transfer-ID, including the tombstones of the resolved ones.
    Each transfer has its own lock so that updates to one transfer never wait for another.
    A lock lives only while the transfer has a state or while someone is holding or awaiting it.
    """

    def __init__(self) -> None:
        self._states: typing.Dict[str, TransferState] = {}
        self._locks: typing.Dict[str, asyncio.Lock] = {}
        self._lock_users: typing.Dict[str, int] = {}

    @contextlib.asynccontextmanager
    async def locked(self, transfer_id: str) -> typing.AsyncIterator[None]:
        """
        Exclusive access to the state of the specified transfer, whether it exists or not.
        """
        lock = self._locks.setdefault(transfer_id, asyncio.Lock())
        self._lock_users[transfer_id] = self._lock_users.get(transfer_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[transfer_id] -= 1
            if self._lock_users[transfer_id] == 0:
                del self._lock_users[transfer_id]
                if transfer_id not in self._states:
                    del self._locks[transfer_id]

    def get(self, transfer_id: str) -> typing.Optional[TransferState]:
        return self._states.get(transfer_id)

    def create(self, transfer_id: str, timestamp: Timestamp) -> TransferState:
        """
        The caller shall hold the lock of the transfer.
        """
        if transfer_id in self._states:
            raise ValueError(f"Transfer {transfer_id!r} is already registered")
        state = TransferState(transfer_id, first_seen_at=timestamp, last_activity_at=timestamp)
        self._states[transfer_id] = state
        _logger.debug("%s: new transfer %r", self, transfer_id)
        return state

    def purge(self, transfer_id: str) -> None:
        """
        Forgets the transfer. The caller shall hold the lock of the transfer, which is released later.
        """
        state = self._states.pop(transfer_id)
        _logger.debug("%s: purged %r", self, state)

    @property
    def transfer_ids(self) -> typing.List[str]:
        """
        A copy, safe to iterate while the registry is being modified.
        """
        return list(self._states)

    @property
    def held_bytes(self) -> int:
        """
        Encoded bytes buffered by all transfers that are still being collected.
        """
        return sum(s.held_bytes for s in self._states.values())

    def count(self, status: TransferStatus) -> int:
        return sum(1 for s in self._states.values() if s.status is status)

    def __len__(self) -> int:
        return len(self._states)

    def __contains__(self, transfer_id: object) -> bool:
        return transfer_id in self._states

    def __repr__(self) -> str:
        return repr_attributes(self, transfers=len(self._states), locks=len(self._locks))


def _unittest_registry() -> None:
    import pytest

    async def run() -> None:
        reg = TransferRegistry()
        ts = Timestamp.from_seconds(0, 0)
        async with reg.locked("a"):
            st = reg.create("a", ts)
            st.held_bytes = 10
            with pytest.raises(ValueError):
                reg.create("a", ts)
        assert len(reg) == 1 and "a" in reg and reg.get("a") is st
        assert reg.held_bytes == 10
        assert reg.count(TransferStatus.COLLECTING) == 1
        assert reg.transfer_ids == ["a"]

        # No state was created, so the lock is not retained.
        async with reg.locked("b"):
            pass
        assert "b" not in reg._locks  # pylint: disable=protected-access

        # Mutual exclusion per key, independence across keys.
        order: typing.List[str] = []

        async def hold(key: str, tag: str, delay: float) -> None:
            async with reg.locked(key):
                order.append(tag + "+")
                await asyncio.sleep(delay)
                order.append(tag + "-")

        await asyncio.gather(hold("a", "x", 0.05), hold("a", "y", 0.0), hold("c", "z", 0.01))
        assert order.index("x-") < order.index("y+")
        assert order.index("z+") < order.index("x-")

        async with reg.locked("a"):
            reg.purge("a")
        assert len(reg) == 0
        assert reg._locks == {}  # pylint: disable=protected-access
        assert reg._lock_users == {}  # pylint: disable=protected-access

    asyncio.run(run())
