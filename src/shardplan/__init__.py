"""shardplan: timing-aware test sharding for Playwright suites."""

__version__ = "0.1.0"
