# Copyright (c) 2024 blobrelay developers
# This software is distributed under the terms of the MIT License.

from .._error import ValidationError
from ..protocol import TransferEnvelope, CRC32C


def validate_transfer(envelope: TransferEnvelope, encoded_payload: str) -> None:
    """
    Checks the reassembled encoded payload against its envelope before it is decoded and handed to the sink.

    :raises: :class:`blobrelay.ValidationError` if the identity fields are empty,
        the payload size differs from the declared one, or the checksum (if any) disagrees.
    """
    if not envelope.transfer_id:
        raise ValidationError("Empty transfer-ID")
    if not envelope.source_id:
        raise ValidationError(f"Transfer {envelope.transfer_id!r} has an empty source-ID")
    if len(encoded_payload) != envelope.total_size:
        raise ValidationError(
            f"Transfer {envelope.transfer_id!r} size mismatch: "
            f"declared {envelope.total_size} bytes, reassembled {len(encoded_payload)} bytes"
        )
    if envelope.checksum is not None:
        try:
            crc = CRC32C.new(encoded_payload.encode("ascii")).value
        except UnicodeEncodeError:
            raise ValidationError(f"Transfer {envelope.transfer_id!r} payload is not ASCII") from None
        if crc != envelope.checksum:
            raise ValidationError(
                f"Transfer {envelope.transfer_id!r} checksum mismatch: "
                f"declared {envelope.checksum:08x}, computed {crc:08x}"
            )


def _unittest_validator() -> None:
    from pytest import raises
    from .._timestamp import Timestamp

    ts = Timestamp.now()
    env = TransferEnvelope("abc", "cam", ts, total_size=4, fragment_count=1, fragment_size=4)
    validate_transfer(env, "YWJj")
    with raises(ValidationError, match="size"):
        validate_transfer(env, "YWJjZA==")
    with raises(ValidationError, match="source"):
        validate_transfer(TransferEnvelope("abc", "", ts, total_size=4, fragment_count=1, fragment_size=4), "YWJj")
    with raises(ValidationError, match="transfer-ID"):
        validate_transfer(TransferEnvelope("", "cam", ts, total_size=4, fragment_count=1, fragment_size=4), "YWJj")

    crc = CRC32C.new(b"YWJj").value
    good = TransferEnvelope("abc", "cam", ts, total_size=4, fragment_count=1, fragment_size=4, checksum=crc)
    validate_transfer(good, "YWJj")
    bad = TransferEnvelope("abc", "cam", ts, total_size=4, fragment_count=1, fragment_size=4, checksum=crc ^ 1)
    with raises(ValidationError, match="checksum"):
        validate_transfer(bad, "YWJj")
