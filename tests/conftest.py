# Copyright (c) 2024 blobrelay developers
# This software is distributed under the terms of the MIT License.

import sys
import logging
import pytest
import blobrelay


GIBIBYTE = 1024**3

MEMORY_LIMIT = 4 * GIBIBYTE
"""
The test suite artificially limits the amount of consumed memory in order to avoid triggering the OOM killer
should a reassembly test go crazy and buffer everything it sees.
"""

_logger = logging.getLogger(__name__)


@pytest.fixture(scope="session", autouse=True)
def _configure_host_environment() -> None:
    if sys.platform.startswith("linux"):
        import resource

        _logger.info("Limiting process memory usage to %.1f GiB", MEMORY_LIMIT / GIBIBYTE)
        resource.setrlimit(resource.RLIMIT_AS, (MEMORY_LIMIT, MEMORY_LIMIT))


@pytest.fixture()
def fast_config() -> blobrelay.RelayConfig:
    """
    Short deadlines and backoffs so that the retry and failover paths are exercised quickly.
    """
    return blobrelay.RelayConfig(
        fragment_size=1500,
        ack_deadline=0.5,
        max_retries=2,
        backoff_base=0.001,
        backoff_max=0.01,
        idle_timeout=30.0,
        grace_window_after_terminal=60.0,
        sweep_interval=0.05,
    )
