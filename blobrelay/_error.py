# Copyright (c) 2024 blobrelay developers
# This software is distributed under the terms of the MIT License.


class RelayError(RuntimeError):
    """
    This is the root exception class for all blob relay errors.
    The application may use this type as the base exception type for all relay-related errors
    that occur at runtime.

    Data inconsistencies detected by the receiver (fragment or envelope mismatch) are not exceptions;
    they are resolved into a terminal transfer state with a :class:`blobrelay.receiver.Reason`
    and never escape the reassembler.
    """


class CodecError(RelayError, ValueError):
    """
    The encoded text could not be decoded: characters outside of the alphabet or invalid padding.
    This is a local error that is not retried.
    """


class PayloadTooLarge(RelayError):
    """
    The encoded payload would exceed the configured transfer size ceiling.
    Raised before anything is sent.
    """


class TransferAbandoned(RelayError):
    """
    The message could not be delivered over the primary nor the secondary transport within the retry budget.
    The transfer is not retried automatically; the caller decides whether to persist and retry later or drop.
    """


class TransferAborted(RelayError):
    """
    The outgoing transfer was cooperatively aborted by the caller between two message sends.
    """


class ValidationError(RelayError):
    """
    The transfer is structurally complete but semantically invalid (e.g., the declared size does not match).
    """


class CaptureError(RelayError):
    """
    The capture source failed to produce a blob. The transfer is aborted before fragmentation begins.
    Capture sources should raise this type (or a subclass); it is propagated to the caller unchanged.
    """


class MessageFormatError(RelayError, ValueError):
    """
    An inbound wire message could not be parsed or lacks required fields.
    """


class InvalidConfigurationError(RelayError):
    """
    The configuration is invalid, e.g., a configuration environment variable could not be parsed.
    """


class TransportError(RelayError):
    """
    A transport reported a failure to deliver a message.
    Transport implementations should wrap their native errors into this type.
    """


class ResourceClosedError(TransportError):
    """
    The requested operation could not be performed because an associated resource has already been terminated.
    Double-close should not raise exceptions.
    """
