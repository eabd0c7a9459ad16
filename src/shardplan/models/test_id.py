"""Canonical test identifiers.

The wire format is ``group::title-1::title-2::...::final-title`` where *group*
is a forward-slash relative path.  Titles may themselves contain ``::``, so the
string form is only ever split at the first separator.  Inside shardplan an
identifier travels as a ``UnitId`` pair and is joined only when written out.
"""

from __future__ import annotations

import posixpath
from dataclasses import dataclass
from pathlib import PurePath

SEPARATOR = "::"


@dataclass(frozen=True)
class UnitId:
    """Structured form of a canonical test identifier."""

    group: str
    """Owning file, relative and forward-slash normalised."""

    title_path: tuple[str, ...] = ()
    """Describe-block titles followed by the test title."""

    def __str__(self) -> str:
        return build_test_id(self.group, self.title_path)

    @property
    def title(self) -> str:
        """Final title segment, or the empty string for a bare group."""
        return self.title_path[-1] if self.title_path else ""


def normalize_group(path: str) -> str:
    """Return *path* with backslashes converted to forward slashes."""
    return path.replace("\\", "/")


def build_test_id(group: str, title_path: tuple[str, ...] | list[str]) -> str:
    """Join a group and its title path into the canonical string form."""
    return SEPARATOR.join([group, *title_path])


def group_of(test_id: str) -> str:
    """Return the group of a canonical id (everything before the first ``::``)."""
    return test_id.split(SEPARATOR, 1)[0]


def parse_test_id(test_id: str) -> UnitId:
    """Parse a canonical id string.

    The group is anchored on the first separator.  Title segments are split on
    every remaining separator, which is lossy for titles that contain ``::``;
    callers that hold the structured id should keep it instead of re-parsing.
    """
    group, _, rest = test_id.partition(SEPARATOR)
    titles = tuple(rest.split(SEPARATOR)) if rest else ()
    return UnitId(group=group, title_path=titles)


def resolve_group(
    file_path: str,
    *,
    test_dir: str | None = None,
    root_dir: str | None = None,
) -> str:
    """Turn a file path reported by Playwright into a group.

    Absolute paths are made relative to *test_dir*.  Relative paths are taken
    as relative to *root_dir* and re-based onto *test_dir* when both are known;
    otherwise they are used as reported.
    """
    normalized = normalize_group(file_path)
    if not test_dir:
        return normalized
    base = normalize_group(test_dir)
    if posixpath.isabs(normalized) or PurePath(file_path).is_absolute():
        return posixpath.relpath(normalized, base)
    if root_dir:
        return posixpath.relpath(posixpath.join(normalize_group(root_dir), normalized), base)
    return normalized
