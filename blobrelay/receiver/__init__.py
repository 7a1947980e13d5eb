# Copyright (c) 2024 blobrelay developers
# This software is distributed under the terms of the MIT License.

"""
The receiving side. :class:`Receiver` is the entry point: it parses inbound messages,
feeds them into the :class:`Reassembler`, and stores completed blobs via a :class:`Sink`.
"""

from ._state import TransferStatus as TransferStatus
from ._state import Reason as Reason
from ._state import TransferState as TransferState
from ._state import TransferSnapshot as TransferSnapshot

from ._registry import TransferRegistry as TransferRegistry

from ._validator import validate_transfer as validate_transfer

from ._reassembler import Reassembler as Reassembler
from ._reassembler import ReassemblerStatistics as ReassemblerStatistics
from ._reassembler import CompletedTransfer as CompletedTransfer
from ._reassembler import ResolutionHandler as ResolutionHandler

from ._sink import Sink as Sink
from ._sink import MemorySink as MemorySink
from ._sink import DirectorySink as DirectorySink

from ._receiver import Receiver as Receiver
from ._receiver import ReceiverStatistics as ReceiverStatistics
