"""Playwright ``--grep`` patterns for shard test lists.

Playwright matches ``--grep`` against the full title of a test: describe
titles and the test title joined with `` › ``.  Each shard runs its tests by
passing the alternation of their escaped full titles; very long patterns are
written to a grep file instead.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from shardplan.models.test_id import UnitId, parse_test_id

MAX_GREP_PATTERN_LENGTH = 4000
"""Patterns longer than this are written to a file."""

TITLE_SEPARATOR = " › "

_REGEX_SPECIAL = re.compile(r"[.*+?^${}()|\[\]\\]")


@dataclass(frozen=True)
class GrepStrategy:
    """How one shard should select its tests."""

    strategy: str
    """``"pattern"`` for ``--grep`` or ``"file"`` for a grep file."""

    content: str


def escape_regex(text: str) -> str:
    """Backslash-escape regular expression metacharacters."""
    return _REGEX_SPECIAL.sub(lambda m: "\\" + m.group(0), text)


def extract_full_title(test_id: UnitId | str) -> str:
    """Return the Playwright full title of a test id.

    Falls back to the id itself when it carries no titles.
    """
    structured = test_id if isinstance(test_id, UnitId) else parse_test_id(test_id)
    return TITLE_SEPARATOR.join(structured.title_path) or str(test_id)


def generate_grep_pattern(test_ids: Iterable[UnitId | str]) -> str:
    """Alternation matching any of *test_ids*, or ``""`` for none."""
    return "|".join(escape_regex(extract_full_title(t)) for t in test_ids)


def generate_grep_patterns(lanes: Mapping[int, Iterable[UnitId | str]]) -> dict[int, str]:
    """Build one pattern per shard index."""
    return {index: generate_grep_pattern(ids) for index, ids in lanes.items()}


def is_pattern_too_long(pattern: str) -> bool:
    return len(pattern) > MAX_GREP_PATTERN_LENGTH


def generate_grep_file_content(test_ids: Iterable[UnitId | str]) -> str:
    """One escaped full title per line."""
    return "\n".join(escape_regex(extract_full_title(t)) for t in test_ids)


def determine_grep_strategy(test_ids: Iterable[UnitId | str]) -> GrepStrategy:
    """Choose between an inline pattern and a grep file."""
    ids = list(test_ids)
    if not ids:
        return GrepStrategy(strategy="pattern", content="")

    pattern = generate_grep_pattern(ids)
    if is_pattern_too_long(pattern):
        return GrepStrategy(strategy="file", content=generate_grep_file_content(ids))
    return GrepStrategy(strategy="pattern", content=pattern)
