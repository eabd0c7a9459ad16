"""Exception types raised by shardplan.

Only configuration problems and unreadable storage are errors.  Corrupt or
missing timing data degrades to defaults and is never raised.
"""

from __future__ import annotations


class ShardplanError(Exception):
    """Base class for all shardplan errors."""


class ConfigurationError(ShardplanError, ValueError):
    """Raised for invalid caller input such as a non-positive shard count."""


class TimingStoreError(ShardplanError):
    """Raised when an existing timing file cannot be read or written."""


class DiscoveryError(ShardplanError):
    """Raised when Playwright test discovery produces no usable output."""


class ReportFormatError(ShardplanError):
    """Raised when a Playwright JSON report lacks the config needed for test IDs."""
