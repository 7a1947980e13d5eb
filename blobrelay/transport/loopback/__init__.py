# Copyright (c) 2024 blobrelay developers
# This software is distributed under the terms of the MIT License.

"""
In-process transports that short-circuit the sender and the receiver as if there was an underlying network.
They are intended for testing and API usage demonstrations; both offer test rigging to inject failures and delays.
"""

from ._publish import LoopbackPublishTransport as LoopbackPublishTransport
from ._publish import LoopbackCapture as LoopbackCapture
from ._request import LoopbackRequestTransport as LoopbackRequestTransport
from ._request import RequestHandler as RequestHandler
from ._statistics import LoopbackStatistics as LoopbackStatistics
