# Copyright (c) 2024 blobrelay developers
# This software is distributed under the terms of the MIT License.

from __future__ import annotations
import abc
import typing


class CRCAlgorithm(abc.ABC):
    """
    Implementations are default-constructible.
    """

    @abc.abstractmethod
    def add(self, data: typing.Union[bytes, bytearray, memoryview]) -> None:
        """
        Updates the value with the specified block of data.
        """
        raise NotImplementedError

    @property
    @abc.abstractmethod
    def value(self) -> int:
        """
        The current CRC value, with output XOR applied, if applicable.
        """
        raise NotImplementedError

    @classmethod
    def new(cls, *fragments: typing.Union[bytes, bytearray, memoryview]) -> CRCAlgorithm:
        """
        A factory that creates the new instance with the value computed over the fragments.
        """
        self = cls()
        for frag in fragments:
            self.add(frag)
        return self


class CRC32C(CRCAlgorithm):
    """
    CRC-32C (Castagnoli) as used for the envelope checksum of the encoded payload.

    >>> assert CRC32C.new(b"123456789").value == 0xE3069283
    >>> c = CRC32C()
    >>> c.add(b"1234")
    >>> c.add(b"56789")
    >>> hex(c.value)
    '0xe3069283'
    """

    def __init__(self) -> None:
        self._value = 0xFFFFFFFF

    def add(self, data: typing.Union[bytes, bytearray, memoryview]) -> None:
        val = self._value
        for x in bytes(data):
            val = (val >> 8) ^ _CRC32C_TABLE[x ^ (val & 0xFF)]
        self._value = val

    @property
    def value(self) -> int:
        return self._value ^ 0xFFFFFFFF


def _make_table(reflected_polynomial: int) -> typing.List[int]:
    table = []
    for i in range(256):
        crc = i
        for _ in range(8):
            crc = (crc >> 1) ^ reflected_polynomial if crc & 1 else crc >> 1
        table.append(crc)
    return table


_CRC32C_TABLE = _make_table(0x82F63B78)


def _unittest_crc32c() -> None:
    assert CRC32C.new().value == 0
    assert CRC32C.new(b"").value == 0
    assert CRC32C.new(b"\x00" * 32).value == 0x8A9136AA
    assert CRC32C.new(b"\xff" * 32).value == 0x62A8AB43
    assert CRC32C.new(b"12345", memoryview(b"6789")).value == 0xE3069283
