"""Shard assignment: branch-and-bound search, LPT fallback and grep patterns."""

from shardplan.sharding.branch_bound import calculate_lower_bound
from shardplan.sharding.grep import determine_grep_strategy, generate_grep_pattern, generate_grep_patterns
from shardplan.sharding.lpt import assign_files_lpt, calculate_balance_ratio
from shardplan.sharding.scheduler import DEFAULT_TIMEOUT_MS, MAX_SEARCH_UNITS, assign

__all__ = [
    "DEFAULT_TIMEOUT_MS",
    "MAX_SEARCH_UNITS",
    "assign",
    "assign_files_lpt",
    "calculate_balance_ratio",
    "calculate_lower_bound",
    "determine_grep_strategy",
    "generate_grep_pattern",
    "generate_grep_patterns",
]
