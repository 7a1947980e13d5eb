# Copyright (c) 2024 blobrelay developers
# This software is distributed under the terms of the MIT License.

import dataclasses


@dataclasses.dataclass
class LoopbackStatistics:
    messages: int = 0
    """Messages delivered successfully."""

    payload_bytes: int = 0

    drops: int = 0
    """Messages that timed out (rigged or due to the send delay)."""

    errors: int = 0
    """Messages that failed with an exception (rigged)."""
