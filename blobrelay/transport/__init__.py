# Copyright (c) 2024 blobrelay developers
# This software is distributed under the terms of the MIT License.

"""
Abstract transport model
++++++++++++++++++++++++

Two kinds of transports are involved in a relay:

- :class:`PublishTransport` -- the primary, publish/subscribe medium. Lossy, unordered, size-limited.
- :class:`RequestTransport` -- the secondary, request/response medium used as a fallback.

The relay core never accesses a transport as an ambient singleton:
instances are created by the application, injected into :class:`blobrelay.sender.TransportDispatcher`
and :class:`blobrelay.receiver.Receiver`, and closed by the application.

Concrete implementations reside in their own submodules, which are not auto-imported:

- :mod:`blobrelay.transport.loopback` -- in-process implementations for testing and demonstration.
- :mod:`blobrelay.transport.http` -- the secondary transport over HTTP, client and server sides.
"""

from ._transport import PublishTransport as PublishTransport
from ._transport import RequestTransport as RequestTransport
from ._transport import MessageHandler as MessageHandler
from ._transport import is_success_status as is_success_status

from .._error import TransportError as TransportError
from .._error import ResourceClosedError as ResourceClosedError
