# Copyright (c) 2024 blobrelay developers
# This software is distributed under the terms of the MIT License.

import base64
import binascii
import typing
from .._error import CodecError


def encode(blob: typing.Union[bytes, bytearray, memoryview]) -> str:
    """
    Converts a blob into its transport-safe text form (standard base64 alphabet with padding).

    >>> encode(b"\\xff\\xd8\\xff\\xe0")
    '/9j/4A=='
    >>> encode(b"")
    ''
    """
    return base64.b64encode(bytes(blob)).decode("ascii")


def decode(text: str) -> bytes:
    """
    The inverse of :func:`encode`. Strict: characters outside of the alphabet and broken padding are rejected.

    >>> decode('/9j/4A==')
    b'\\xff\\xd8\\xff\\xe0'
    >>> try:
    ...     decode('/9j/4A=')
    ... except CodecError as ex:
    ...     print(type(ex).__name__)
    CodecError
    """
    try:
        return base64.b64decode(text.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as ex:
        raise CodecError(f"Malformed encoded text ({len(text)} characters): {ex}") from None


def _unittest_codec() -> None:
    import os
    from pytest import raises

    for size in (0, 1, 2, 3, 4, 1000, 1001, 1002):
        blob = os.urandom(size)
        assert decode(encode(blob)) == blob
        assert len(encode(blob)) == (size + 2) // 3 * 4

    assert encode(memoryview(b"abc")) == "YWJj"

    with raises(CodecError):
        decode("YWJj$")  # Outside of the alphabet.
    with raises(CodecError):
        decode("YWJ")  # Missing padding.
    with raises(CodecError):
        decode("ЖЖЖЖ")  # Not even ASCII.
    with raises(ValueError):  # CodecError is also a ValueError.
        decode("Y===")
