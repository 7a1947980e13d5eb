# Copyright (c) 2024 blobrelay developers
# This software is distributed under the terms of the MIT License.

"""
The transfer protocol: how a blob becomes a sequence of messages and what those messages look like.

A transfer is announced by a :class:`TransferEnvelope` and carried by a sequence of :class:`Fragment`,
each holding a contiguous slice of the base64-encoded blob.
The transport gives no ordering guarantee, therefore the envelope is sent as a standalone control message
*and* piggybacked onto the first fragment; whichever arrives first tells the receiver how many fragments to expect.
"""

from ._codec import encode as encode
from ._codec import decode as decode

from ._crc import CRCAlgorithm as CRCAlgorithm
from ._crc import CRC32C as CRC32C

from ._model import TransferEnvelope as TransferEnvelope
from ._model import Fragment as Fragment
from ._model import Message as Message

from ._wire import serialize_message as serialize_message
from ._wire import deserialize_message as deserialize_message

from ._fragmenter import fragment_blob as fragment_blob
from ._fragmenter import OutgoingTransfer as OutgoingTransfer
