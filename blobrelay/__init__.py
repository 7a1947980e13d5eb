# Copyright (c) 2024 blobrelay developers
# This software is distributed under the terms of the MIT License.

r"""
Chunked transfer of binary blobs (e.g., camera images) from constrained devices
over a lossy, size-limited publish/subscribe transport with a request/response fallback.

Sub-package overview
++++++++++++++++++++

The following submodules are auto-imported when the root module ``blobrelay`` is imported:

- :mod:`blobrelay.util`
- :mod:`blobrelay.protocol` -- codec, envelope/fragment model, wire format, fragmenter.
- :mod:`blobrelay.transport` -- abstract transports, but not concrete implementation submodules.
- :mod:`blobrelay.sender` -- transport dispatcher with retry and failover, sender task.
- :mod:`blobrelay.receiver` -- reassembler, transfer registry, validation, sinks.

Concrete transports (:mod:`blobrelay.transport.loopback`, :mod:`blobrelay.transport.http`)
are never auto-imported; the application imports the ones it needs.


Log level override
++++++++++++++++++

The environment variable ``BLOBRELAY_LOGLEVEL`` can be set to one of the following values to override
the library log level:

- ``CRITICAL``
- ``FATAL``
- ``ERROR``
- ``WARNING``
- ``INFO``
- ``DEBUG``
"""

import os as _os


from ._version import __version__ as __version__

__version_info__ = tuple(map(int, __version__.split(".")[:3]))
__license__ = "MIT"


_log_level_from_env = _os.environ.get("BLOBRELAY_LOGLEVEL")
if _log_level_from_env is not None:
    import logging as _logging

    _logging.basicConfig(
        format="%(asctime)s %(process)5d %(levelname)-8s %(name)s: %(message)s", level=_log_level_from_env
    )
    _logging.getLogger(__name__).setLevel(_log_level_from_env)
    _logging.getLogger(__name__).info("Log config from env var; level: %r", _log_level_from_env)


from ._error import RelayError as RelayError
from ._error import CodecError as CodecError
from ._error import PayloadTooLarge as PayloadTooLarge
from ._error import TransferAbandoned as TransferAbandoned
from ._error import TransferAborted as TransferAborted
from ._error import ValidationError as ValidationError
from ._error import CaptureError as CaptureError
from ._error import MessageFormatError as MessageFormatError
from ._error import InvalidConfigurationError as InvalidConfigurationError
from ._error import TransportError as TransportError
from ._error import ResourceClosedError as ResourceClosedError

from ._timestamp import Timestamp as Timestamp

from ._config import RelayConfig as RelayConfig

# The sub-packages are imported in the order of their interdependency.
import blobrelay.util as util  # pylint: disable=R0402,C0413  # noqa
import blobrelay.protocol as protocol  # pylint: disable=R0402,C0413  # noqa
import blobrelay.transport as transport  # pylint: disable=R0402,C0413  # noqa
import blobrelay.sender as sender  # pylint: disable=R0402,C0413  # noqa
import blobrelay.receiver as receiver  # pylint: disable=R0402,C0413  # noqa
