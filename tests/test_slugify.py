"""Tests for shardplan.utils.slugify."""

from __future__ import annotations

import pytest

from shardplan.utils.slugify import slugify


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("chromium", "chromium"),
        ("Mobile Chrome", "mobile-chrome"),
        ("  Desktop / Safari (beta) ", "desktop-safari-beta"),
        ("refs/heads/main", "refs-heads-main"),
        ("---", ""),
    ],
)
def test_slugify(text: str, expected: str) -> None:
    assert slugify(text) == expected
