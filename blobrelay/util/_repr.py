# Copyright (c) 2024 blobrelay developers
# This software is distributed under the terms of the MIT License.


def repr_attributes(obj: object, *anonymous_elements: object, **named_elements: object) -> str:
    """
    Constructs a :func:`repr` form of an object from the given elements; values are rendered with :func:`str`.

    >>> class Registry: pass
    >>> repr_attributes(Registry())
    'Registry()'
    >>> repr_attributes(Registry(), 3, idle_timeout=30.0, topic=repr('camera/0'))
    "Registry(3, idle_timeout=30.0, topic='camera/0')"
    """
    fld = list(map(str, anonymous_elements)) + list(f"{name}={value}" for name, value in named_elements.items())
    return f"{type(obj).__name__}(" + ", ".join(fld) + ")"


def repr_attributes_noexcept(obj: object, *anonymous_elements: object, **named_elements: object) -> str:
    """
    Same as :func:`repr_attributes` but never raises; used in log statements and ``__repr__`` of objects
    that may be partially constructed or torn down.

    >>> class Sink: pass
    >>> class Broken:
    ...     def __str__(self) -> str:
    ...         raise OSError('disk unplugged')
    >>> repr_attributes_noexcept(Sink(), root=Broken())
    "<REPR FAILED: OSError('disk unplugged')>"
    """
    try:
        return repr_attributes(obj, *anonymous_elements, **named_elements)
    except Exception as ex:
        try:
            return f"<REPR FAILED: {ex!r}>"
        except Exception:
            return "<REPR FAILED: UNKNOWN ERROR>"
