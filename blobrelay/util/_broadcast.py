# Copyright (c) 2024 blobrelay developers
# This software is distributed under the terms of the MIT License.

import typing
import logging

R = typing.TypeVar("R")

_logger = logging.getLogger(__name__)


def broadcast(
    functions: typing.Iterable[typing.Callable[..., R]]
) -> typing.Callable[..., typing.List[typing.Union[R, Exception]]]:
    """
    Returns a function that invokes each supplied function in series with the same arguments.
    If a function raises, the exception is logged and placed into the output list instead of the result,
    so one misbehaving listener cannot prevent the others from being notified.

    ..  doctest::
        :hide:

        >>> _logger.setLevel(100)  # Suppress error reports from the following doctest.

    >>> def on_complete(transfer_id):
    ...     return f"stored {transfer_id}"
    >>> def on_complete_broken(transfer_id):
    ...     raise OSError(transfer_id)
    >>> broadcast([on_complete, on_complete_broken])("abc")
    ['stored abc', OSError('abc')]
    >>> broadcast([])()
    []
    """

    def delegate(*args: typing.Any, **kwargs: typing.Any) -> typing.List[typing.Union[R, Exception]]:
        out: typing.List[typing.Union[R, Exception]] = []
        for fn in functions:
            try:
                r: typing.Union[R, Exception] = fn(*args, **kwargs)
            except Exception as ex:
                r = ex
                _logger.exception("Unhandled exception in %s: %s", fn, ex)
            out.append(r)
        return out

    return delegate
