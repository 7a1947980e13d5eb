# Copyright (c) 2024 blobrelay developers
# This software is distributed under the terms of the MIT License.

import typing


T = typing.TypeVar("T")


def mark_last(it: typing.Iterable[T]) -> typing.Iterator[typing.Tuple[bool, T]]:
    """
    Like :func:`enumerate`, but pairs every item with a flag that is True only for the last one.
    The fragmenter uses it to set the end-of-transfer flag without knowing the length of the input in advance.

    >>> list(mark_last("abc"))
    [(False, 'a'), (False, 'b'), (True, 'c')]
    >>> list(mark_last([]))
    []
    """
    it = iter(it)
    try:
        last = next(it)
    except StopIteration:
        return
    for val in it:
        yield False, last
        last = val
    yield True, last
