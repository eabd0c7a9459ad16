"""Playwright test discovery.

The accurate path runs ``npx playwright test --list --reporter=json`` and walks
the suite tree it prints; that also expands parameterised tests.  When
Playwright is unavailable, ``discover_tests_from_files`` scans spec files with
regular expressions, which only sees literal ``test('...')`` titles.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from shardplan.errors import DiscoveryError
from shardplan.models.test_id import UnitId, normalize_group, parse_test_id, resolve_group
from shardplan.utils.subprocess_runner import SubprocessError, run_subprocess

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_GLOB_PATTERN = "**/*.spec.ts"
LIST_TIMEOUT = 300.0

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)
_DESCRIBE = re.compile(r"""\b(?:test\.)?describe(?:\.\w+)*\s*\(\s*(['"`])(.*?)\1""")
_TEST = re.compile(r"""\b(?:test|it)(?:\.(?:only|skip|fixme|fail|slow))?\s*\(\s*(['"`])(.*?)\1""")


@dataclass(frozen=True)
class DiscoveredTest:
    """One test found by discovery."""

    test_id: UnitId
    title: str
    line: int = 0
    column: int = 0

    @property
    def file(self) -> str:
        return self.test_id.group

    @property
    def id(self) -> str:
        return str(self.test_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "file": self.file,
            "title": self.title,
            "titlePath": list(self.test_id.title_path),
            "testId": self.id,
            "line": self.line,
            "column": self.column,
        }


# ── Playwright --list ─────────────────────────────────────────────


def nested_titles(parent_titles: list[str], suite: dict[str, Any], file_path: str) -> list[str]:
    """Describe titles in effect inside *suite*.

    Top-level suites are titled with their file path, which is not a describe
    block and is left out.
    """
    title = suite.get("title") or ""
    if not title:
        return parent_titles
    if not parent_titles:
        name = normalize_group(title)
        path = normalize_group(file_path)
        if path == name or path.endswith("/" + name):
            return parent_titles
    return [*parent_titles, title]


def select_project(config: dict[str, Any], project: str | None) -> dict[str, Any]:
    projects = config.get("projects") or []
    if not isinstance(projects, list) or not projects:
        return {}
    if project:
        for candidate in projects:
            if isinstance(candidate, dict) and candidate.get("name") == project:
                return candidate
    first = projects[0]
    return first if isinstance(first, dict) else {}


def _walk_suite(
    suite: dict[str, Any],
    parent_titles: list[str],
    parent_file: str,
    context: dict[str, str | None],
    found: list[DiscoveredTest],
) -> None:
    file_path = suite.get("file") or parent_file
    titles = nested_titles(parent_titles, suite, file_path)

    for spec in suite.get("specs") or []:
        spec_file = spec.get("file") or file_path
        group = resolve_group(spec_file, test_dir=context["test_dir"], root_dir=context["root_dir"])
        title_path = (*titles, spec.get("title", ""))
        found.append(
            DiscoveredTest(
                test_id=UnitId(group=group, title_path=title_path),
                title=spec.get("title", ""),
                line=int(spec.get("line", 0) or 0),
                column=int(spec.get("column", 0) or 0),
            )
        )

    for nested in suite.get("suites") or []:
        _walk_suite(nested, titles, file_path, context, found)


def _decode_list_output(text: str) -> dict[str, Any]:
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        match = _JSON_OBJECT.search(text)
        if match is None:
            msg = "Playwright --list output contains no JSON object"
            raise DiscoveryError(msg) from None
        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError as exc:
            msg = f"Cannot parse Playwright --list output: {exc}"
            raise DiscoveryError(msg) from exc

    if not isinstance(data, dict):
        msg = "Playwright --list output is not a JSON object"
        raise DiscoveryError(msg)
    return data


def parse_playwright_list_output(text: str, project: str | None = None) -> list[DiscoveredTest]:
    """Parse ``playwright test --list --reporter=json`` output.

    Surrounding non-JSON text (warnings printed before the report) is
    tolerated.  Test ids are relative to the selected project's ``testDir``.

    Raises:
        DiscoveryError: If no JSON object can be decoded from *text*.
    """
    data = _decode_list_output(text)
    config = data.get("config") if isinstance(data.get("config"), dict) else {}
    selected = select_project(config, project)
    context: dict[str, str | None] = {
        "test_dir": selected.get("testDir") or None,
        "root_dir": config.get("rootDir") or None,
    }

    found: list[DiscoveredTest] = []
    for suite in data.get("suites") or []:
        if isinstance(suite, dict):
            _walk_suite(suite, [], "", context, found)
    return found


async def discover_tests(
    test_dir: Path,
    project: str | None = None,
    config_dir: Path | None = None,
) -> list[DiscoveredTest]:
    """Run Playwright in list mode and return every test it reports.

    Args:
        test_dir: Test directory, used as working directory unless
            *config_dir* is given.
        project: Playwright project name.
        config_dir: Directory holding ``playwright.config.ts``.

    Raises:
        DiscoveryError: If Playwright cannot be run or prints nothing usable.
    """
    command = ["npx", "playwright", "test", "--list", "--reporter=json"]
    if project:
        command.append(f"--project={project}")

    try:
        result = await run_subprocess(command, cwd=config_dir or test_dir, timeout=LIST_TIMEOUT)
    except (SubprocessError, ValueError) as exc:
        msg = f"Cannot run Playwright: {exc}"
        raise DiscoveryError(msg) from exc

    if not result.stdout.strip():
        msg = f"Playwright --list failed (exit {result.returncode}): {result.stderr.strip()}"
        raise DiscoveryError(msg)
    if not result.success:
        logger.warning("Playwright --list exited with %d, parsing its output anyway", result.returncode)

    tests = parse_playwright_list_output(result.stdout, project)
    logger.info("Discovered %d tests with Playwright --list", len(tests))
    return tests


def load_test_list(path: Path, project: str | None = None) -> list[DiscoveredTest]:
    """Read a pre-generated test list.

    Accepts saved ``--list --reporter=json`` output or a JSON array of
    canonical test ids.

    Raises:
        DiscoveryError: If the file cannot be read or parsed.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        msg = f"Cannot read test list {path}: {exc}"
        raise DiscoveryError(msg) from exc

    stripped = text.lstrip()
    if stripped.startswith("["):
        try:
            ids = json.loads(stripped)
        except json.JSONDecodeError as exc:
            msg = f"Cannot parse test list {path}: {exc}"
            raise DiscoveryError(msg) from exc
        return [_from_id(str(test_id)) for test_id in ids]

    return parse_playwright_list_output(text, project)


def _from_id(test_id: str) -> DiscoveredTest:
    structured = parse_test_id(test_id)
    return DiscoveredTest(test_id=structured, title=structured.title)


# ── Source scanning fallback ──────────────────────────────────────


def _block_end(source: str, start: int) -> int:
    """Offset of the brace closing the first block opened after *start*."""
    depth = 0
    opened = False
    for offset in range(start, len(source)):
        char = source[offset]
        if char == "{":
            depth += 1
            opened = True
        elif char == "}":
            depth -= 1
            if opened and depth == 0:
                return offset
    return len(source)


def _line_and_column(source: str, offset: int) -> tuple[int, int]:
    line = source.count("\n", 0, offset) + 1
    column = offset - (source.rfind("\n", 0, offset) + 1) + 1
    return line, column


def parse_tests_from_source(source: str, file_name: str) -> list[DiscoveredTest]:
    """Find ``test()``/``it()`` calls and the ``describe`` blocks around them.

    Brace counting is naive: braces inside strings or comments can shift
    block boundaries.  Only literal string titles are recognised.
    """
    describes = [
        (match.group(2), match.start(), _block_end(source, match.start()))
        for match in _DESCRIBE.finditer(source)
    ]

    group = normalize_group(file_name)
    tests: list[DiscoveredTest] = []
    for match in _TEST.finditer(source):
        position = match.start()
        titles = [title for title, start, end in describes if start < position < end]
        title = match.group(2)
        line, column = _line_and_column(source, position)
        tests.append(
            DiscoveredTest(
                test_id=UnitId(group=group, title_path=(*titles, title)),
                title=title,
                line=line,
                column=column,
            )
        )
    return tests


def discover_tests_from_files(test_dir: Path, glob_pattern: str = DEFAULT_GLOB_PATTERN) -> list[DiscoveredTest]:
    """Scan spec files under *test_dir* without running Playwright."""
    tests: list[DiscoveredTest] = []
    for path in sorted(test_dir.glob(glob_pattern)):
        if not path.is_file():
            continue
        try:
            source = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Skipping unreadable spec file %s: %s", path, exc)
            continue
        tests.extend(parse_tests_from_source(source, path.relative_to(test_dir).as_posix()))

    logger.info("Discovered %d tests by scanning %s", len(tests), test_dir)
    return tests


def group_tests_by_file(tests: list[DiscoveredTest]) -> dict[str, list[DiscoveredTest]]:
    """Group tests by owning file, preserving discovery order."""
    grouped: dict[str, list[DiscoveredTest]] = {}
    for test in tests:
        grouped.setdefault(test.file, []).append(test)
    return grouped
