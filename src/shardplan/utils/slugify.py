"""Slugs for artifact and cache-key names."""

from __future__ import annotations

import re

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def slugify(text: str) -> str:
    """Lowercase *text* and collapse every non-alphanumeric run into one hyphen.

    >>> slugify("Mobile Chrome")
    'mobile-chrome'
    >>> slugify("refs/heads/main")
    'refs-heads-main'
    """
    return _NON_ALNUM.sub("-", text.lower()).strip("-")
