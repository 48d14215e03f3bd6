"""
Timing helper for slow server operations.
"""

import logging
import time
from typing import Optional


class LogTimer:
    """
    Context manager that logs the duration of a block.

    A run longer than ``slow_after`` seconds is logged at WARNING; an
    exception is logged at ERROR and re-raised.

    Example:
        with LogTimer("snapshot_save", logger, slow_after=1.0):
            await store.save(data)
    """

    def __init__(
        self,
        operation: str,
        logger: Optional[logging.Logger] = None,
        level: int = logging.DEBUG,
        slow_after: Optional[float] = None
    ):
        self.operation = operation
        self.logger = logger or logging.getLogger(__name__)
        self.level = level
        self.slow_after = slow_after
        self.duration: Optional[float] = None
        self._started: Optional[float] = None

    def __enter__(self) -> 'LogTimer':
        self._started = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.duration = time.perf_counter() - self._started
        if exc_type is not None:
            self.logger.error("%s failed after %.3fs: %s", self.operation, self.duration, exc_val)
        elif self.slow_after is not None and self.duration > self.slow_after:
            self.logger.warning("%s took %.3fs", self.operation, self.duration)
        else:
            self.logger.log(self.level, "%s took %.3fs", self.operation, self.duration)
        return False


__all__ = ['LogTimer']
