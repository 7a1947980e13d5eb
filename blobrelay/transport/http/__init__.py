# Copyright (c) 2024 blobrelay developers
# This software is distributed under the terms of the MIT License.

"""
The secondary transport over HTTP, built on :mod:`aiohttp`.

- :class:`HTTPRequestTransport` is the sender side: each message is POSTed to the ingress endpoint.
- :class:`HTTPIngress` is the receiver side: a small web application that parses the POSTed messages and
  hands them over to the same reassembly path as the messages arriving through the primary transport.
"""

from ._client import HTTPRequestTransport as HTTPRequestTransport
from ._ingress import HTTPIngress as HTTPIngress
from ._ingress import IngressHandler as IngressHandler
