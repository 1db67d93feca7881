#!/usr/bin/env python3
"""
Exceptions Module for LP PnL Monitor

Failure classes, from most to least recoverable:
- transient I/O (RPC, price API) is retried and escalates as RetryExhaustedError
- a failed scan cycle is logged by the outer loop, which waits for the next cycle
- unreadable position or pool state degrades to zero placeholders in valuation
- configuration and invariant violations fail fast and are never retried

Version: 1.0.0
"""


class LPMonitorError(Exception):
    """Base class for all monitor errors"""


class ConfigError(LPMonitorError):
    """Invalid or incomplete configuration"""


class UnsupportedDexError(ConfigError):
    """dex_type has no registered variant"""

    def __init__(self, dex_type):
        self.dex_type = dex_type
        super().__init__(f"Unsupported DEX type: {dex_type!r}")


class InvalidRangeError(LPMonitorError, ValueError):
    """tick_lower must be strictly below tick_upper"""

    def __init__(self, tick_lower, tick_upper):
        self.tick_lower = tick_lower
        self.tick_upper = tick_upper
        super().__init__(f"Invalid tick range: lower={tick_lower} upper={tick_upper}")


class InvalidTickError(LPMonitorError, ValueError):
    """Tick outside the AMM's supported bounds"""


class ChainReadError(LPMonitorError):
    """A contract read or receipt lookup returned unusable data"""


class PriceUnavailableError(LPMonitorError):
    """The price oracle returned no price, or a zero price"""


class RetryExhaustedError(LPMonitorError):
    """Raised once a RetryPolicy has used up all of its attempts"""

    def __init__(self, description, attempts, last_error):
        self.description = description
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"{description} failed after {attempts} attempts: {last_error}")
