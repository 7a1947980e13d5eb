# Copyright (c) 2024 blobrelay developers
# This software is distributed under the terms of the MIT License.

"""
Small helpers shared across the library.
"""

from ._broadcast import broadcast as broadcast

from ._mark_last import mark_last as mark_last

from ._repr import repr_attributes as repr_attributes
from ._repr import repr_attributes_noexcept as repr_attributes_noexcept
