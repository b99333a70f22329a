"""Shared utilities: exceptions, logging, clocks and async helpers."""

from kernel_memory.utils import async_utils, clock, exceptions, logging_utils
from kernel_memory.utils.clock import FakeClock, SystemClock, utc_now
from kernel_memory.utils.logging_utils import get_logger, setup_logging

__all__ = [
    "FakeClock",
    "SystemClock",
    "async_utils",
    "clock",
    "exceptions",
    "get_logger",
    "logging_utils",
    "setup_logging",
    "utc_now",
]
