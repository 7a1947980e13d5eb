# Copyright (c) 2024 blobrelay developers
# This software is distributed under the terms of the MIT License.

"""
The sending side: :class:`BlobSender` turns a blob into messages and pushes them through
:class:`TransportDispatcher`, which owns the retry and failover policy.
"""

from ._dispatcher import TransportDispatcher as TransportDispatcher
from ._dispatcher import DeliveryResult as DeliveryResult
from ._dispatcher import DispatcherStatistics as DispatcherStatistics

from ._sender import BlobSender as BlobSender
from ._sender import SendReport as SendReport
from ._sender import CaptureSource as CaptureSource
