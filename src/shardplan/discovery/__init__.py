"""Test discovery from Playwright or from spec file sources."""

from shardplan.discovery.playwright import (
    DiscoveredTest,
    discover_tests,
    discover_tests_from_files,
    group_tests_by_file,
    load_test_list,
    parse_playwright_list_output,
    parse_tests_from_source,
)

__all__ = [
    "DiscoveredTest",
    "discover_tests",
    "discover_tests_from_files",
    "group_tests_by_file",
    "load_test_list",
    "parse_playwright_list_output",
    "parse_tests_from_source",
]
