# Copyright (c) 2024 blobrelay developers
# This software is distributed under the terms of the MIT License.

from __future__ import annotations
import time
import typing
import decimal
import datetime


_AnyScalar = typing.Union[float, int, decimal.Decimal]

_DECIMAL_NANO = decimal.Decimal("1e-9")


class Timestamp:
    """
    Timestamps are hashable and immutable.

    A timestamp instance contains a pair of time samples:
    the *system time* (wall time), which is what the sender stamps into the envelope and transmits,
    and the *monotonic time*, which is used only locally for measuring idle intervals and deadlines.
    Monotonic samples taken on different hosts are not comparable.

    >>> ts = Timestamp.from_seconds(1700000000.5, 42)
    >>> ts.system_ns, ts.monotonic_ns
    (1700000000500000000, 42000000000)
    >>> ts.monotonic
    Decimal('42.000000000')
    """

    def __init__(self, system_ns: int, monotonic_ns: int) -> None:
        """
        :param system_ns:       Belongs to the domain of :func:`time.time_ns`. Units are nanoseconds.
        :param monotonic_ns:    Belongs to the domain of :func:`time.monotonic_ns`. Units are nanoseconds.
        """
        self._system_ns = int(system_ns)
        self._monotonic_ns = int(monotonic_ns)

        if self._system_ns < 0 or self._monotonic_ns < 0:
            raise ValueError(f"Neither of the timestamp samples can be negative; found this: {self!r}")

    @staticmethod
    def from_seconds(system: _AnyScalar, monotonic: _AnyScalar) -> Timestamp:
        """
        Both inputs are in seconds (not nanoseconds) of any numerical type.
        """
        return Timestamp(system_ns=Timestamp._second_to_ns(system), monotonic_ns=Timestamp._second_to_ns(monotonic))

    @staticmethod
    def from_system_ns(system_ns: int) -> Timestamp:
        """
        Used when the timestamp arrives over the wire: only the system sample is meaningful there,
        so the monotonic sample is set to zero.
        """
        return Timestamp(system_ns=system_ns, monotonic_ns=0)

    @staticmethod
    def now() -> Timestamp:
        """
        Constructs a new timestamp instance populated with current time.
        Clocks are sampled non-atomically; monotonic first.
        """
        return Timestamp(monotonic_ns=time.monotonic_ns(), system_ns=time.time_ns())

    @property
    def system(self) -> decimal.Decimal:
        """System time in seconds."""
        return self._ns_to_second(self._system_ns)

    @property
    def monotonic(self) -> decimal.Decimal:
        """Monotonic time in seconds."""
        return self._ns_to_second(self._monotonic_ns)

    @property
    def system_ns(self) -> int:
        return self._system_ns

    @property
    def monotonic_ns(self) -> int:
        return self._monotonic_ns

    def seconds_since(self, earlier: Timestamp) -> float:
        """
        Monotonic interval between two local timestamps.

        >>> Timestamp.from_seconds(0, 12.5).seconds_since(Timestamp.from_seconds(0, 10))
        2.5
        """
        return (self._monotonic_ns - earlier._monotonic_ns) / 1e9

    @staticmethod
    def _second_to_ns(x: _AnyScalar) -> int:
        return int(decimal.Decimal(x) / _DECIMAL_NANO)

    @staticmethod
    def _ns_to_second(x: int) -> decimal.Decimal:
        return decimal.Decimal(x) * _DECIMAL_NANO

    def __eq__(self, other: typing.Any) -> bool:
        if isinstance(other, Timestamp):
            return self._system_ns == other._system_ns and self._monotonic_ns == other._monotonic_ns
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._system_ns + self._monotonic_ns)

    def __str__(self) -> str:
        dt = datetime.datetime.fromtimestamp(float(self.system))  # Precision loss is OK - system time is imprecise
        iso = dt.isoformat(timespec="microseconds")
        return f"{iso}/{self.monotonic:.6f}"

    def __repr__(self) -> str:
        return f"{type(self).__name__}(system_ns={self._system_ns}, monotonic_ns={self._monotonic_ns})"


def _unittest_timestamp() -> None:
    from pytest import raises

    with raises(ValueError):
        Timestamp(-1, 0)

    a = Timestamp.from_seconds(10, 20)
    assert a == Timestamp(10 * 10**9, 20 * 10**9)
    assert a != Timestamp(10 * 10**9, 21 * 10**9)
    assert hash(a) == hash(Timestamp(10 * 10**9, 20 * 10**9))
    assert Timestamp.from_system_ns(123).monotonic_ns == 0
    assert Timestamp.from_seconds(0, 1).seconds_since(Timestamp.from_seconds(0, 3)) == -2.0

    now = Timestamp.now()
    assert now.system_ns > 0 and now.monotonic_ns >= 0
    assert "Timestamp(system_ns=" in repr(now)
