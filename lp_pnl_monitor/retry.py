#!/usr/bin/env python3
"""
Retry Policy Module for LP PnL Monitor
Bounded retries for chain and price-API calls

Version: 1.0.0
"""

import logging
import time

from .exceptions import ConfigError, InvalidRangeError, InvalidTickError, RetryExhaustedError

logger = logging.getLogger(__name__)

# Logic errors are never retried
FAIL_FAST_ERRORS = (ConfigError, InvalidRangeError, InvalidTickError)


class RetryPolicy:
    """Retry a callable up to max_attempts times with a fixed or linear delay.

    Once attempts run out RetryExhaustedError is raised with the last error
    attached.
    """

    def __init__(self, max_attempts=3, delay=1.0, backoff="fixed", sleep=time.sleep):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if backoff not in ("fixed", "linear"):
            raise ValueError(f"Unknown backoff: {backoff}")
        self.max_attempts = max_attempts
        self.delay = delay
        self.backoff = backoff
        self._sleep = sleep

    @classmethod
    def from_config(cls, section, **kwargs):
        return cls(
            max_attempts=int(section.get("attempts", 3)),
            delay=float(section.get("delay", 1.0)),
            backoff=section.get("backoff", "fixed"),
            **kwargs
        )

    def delay_for(self, attempt):
        """Delay after failed attempt number `attempt` (1-based)"""
        if self.backoff == "linear":
            return self.delay * attempt
        return self.delay

    def call(self, fn, *args, description=None, **kwargs):
        description = description or getattr(fn, "__name__", "call")
        last_error = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return fn(*args, **kwargs)
            except FAIL_FAST_ERRORS:
                raise
            except Exception as e:
                last_error = e
                logger.warning("Retry %d/%d failed for %s: %s", attempt, self.max_attempts, description, e)
                if attempt < self.max_attempts:
                    self._sleep(self.delay_for(attempt))
        raise RetryExhaustedError(description, self.max_attempts, last_error) from last_error
