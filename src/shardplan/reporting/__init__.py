"""Post-run timing extraction from Playwright reports."""

from shardplan.reporting.extract import extract_measurements, read_batch, read_report, write_batch

__all__ = ["extract_measurements", "read_batch", "read_report", "write_batch"]
