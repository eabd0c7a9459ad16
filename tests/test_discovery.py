"""Tests for shardplan.discovery.playwright."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any
from unittest.mock import AsyncMock, patch

import pytest

from shardplan.discovery.playwright import (
    DiscoveredTest,
    discover_tests,
    discover_tests_from_files,
    group_tests_by_file,
    load_test_list,
    parse_playwright_list_output,
    parse_tests_from_source,
)
from shardplan.errors import DiscoveryError
from shardplan.models.test_id import UnitId
from shardplan.utils.subprocess_runner import SubprocessError, SubprocessResult

if TYPE_CHECKING:
    from pathlib import Path


def _list_output() -> dict[str, Any]:
    return {
        "config": {
            "rootDir": "/proj/e2e",
            "projects": [
                {"name": "chromium", "testDir": "/proj/e2e"},
                {"name": "mobile", "testDir": "/proj/e2e/mobile"},
            ],
        },
        "suites": [
            {
                "title": "auth/login.spec.ts",
                "file": "auth/login.spec.ts",
                "specs": [{"title": "top level", "file": "auth/login.spec.ts", "line": 3, "column": 5}],
                "suites": [
                    {
                        "title": "Login",
                        "file": "auth/login.spec.ts",
                        "specs": [{"title": "works", "file": "auth/login.spec.ts", "line": 8, "column": 7}],
                        "suites": [
                            {
                                "title": "errors",
                                "file": "auth/login.spec.ts",
                                "specs": [{"title": "bad password", "file": "auth/login.spec.ts"}],
                            }
                        ],
                    }
                ],
            },
            {
                "title": "cart.spec.ts",
                "file": "cart.spec.ts",
                "specs": [{"title": "adds item", "file": "cart.spec.ts", "line": 1, "column": 1}],
            },
        ],
    }


# ── --list parsing ────────────────────────────────────────────────


class TestParseListOutput:
    def test_walks_nested_suites(self) -> None:
        tests = parse_playwright_list_output(json.dumps(_list_output()))
        assert [t.id for t in tests] == [
            "auth/login.spec.ts::top level",
            "auth/login.spec.ts::Login::works",
            "auth/login.spec.ts::Login::errors::bad password",
            "cart.spec.ts::adds item",
        ]

    def test_keeps_positions(self) -> None:
        test = parse_playwright_list_output(json.dumps(_list_output()))[1]
        assert (test.title, test.line, test.column) == ("works", 8, 7)
        assert test.file == "auth/login.spec.ts"

    def test_ids_relative_to_selected_project(self) -> None:
        data = _list_output()
        data["suites"] = [
            {
                "title": "mobile/menu.spec.ts",
                "file": "mobile/menu.spec.ts",
                "specs": [{"title": "opens", "file": "mobile/menu.spec.ts"}],
            }
        ]
        tests = parse_playwright_list_output(json.dumps(data), project="mobile")
        assert tests[0].id == "menu.spec.ts::opens"

    def test_tolerates_surrounding_text(self) -> None:
        text = "Warning: something noisy\n" + json.dumps(_list_output()) + "\nDone.\n"
        assert len(parse_playwright_list_output(text)) == 4

    def test_without_config_uses_reported_paths(self) -> None:
        data = {"suites": [{"title": "a.spec.ts", "file": "a.spec.ts", "specs": [{"title": "t"}]}]}
        assert [t.id for t in parse_playwright_list_output(json.dumps(data))] == ["a.spec.ts::t"]

    def test_no_json_raises(self) -> None:
        with pytest.raises(DiscoveryError, match="no JSON object"):
            parse_playwright_list_output("Error: no tests found")

    def test_json_array_raises(self) -> None:
        with pytest.raises(DiscoveryError, match="not a JSON object"):
            parse_playwright_list_output("[]")

    def test_to_dict(self) -> None:
        test = DiscoveredTest(UnitId("a.spec.ts", ("Suite", "t")), "t", 4, 2)
        assert test.to_dict() == {
            "file": "a.spec.ts",
            "title": "t",
            "titlePath": ["Suite", "t"],
            "testId": "a.spec.ts::Suite::t",
            "line": 4,
            "column": 2,
        }


class TestDiscoverTests:
    async def test_parses_subprocess_output(self, tmp_path: Path) -> None:
        result = SubprocessResult(returncode=0, stdout=json.dumps(_list_output()), stderr="")
        with patch("shardplan.discovery.playwright.run_subprocess", new=AsyncMock(return_value=result)) as run:
            tests = await discover_tests(tmp_path, project="chromium")

        assert len(tests) == 4
        command = run.call_args.args[0]
        assert command[:5] == ["npx", "playwright", "test", "--list", "--reporter=json"]
        assert "--project=chromium" in command
        assert run.call_args.kwargs["cwd"] == tmp_path

    async def test_config_dir_is_working_directory(self, tmp_path: Path) -> None:
        config_dir = tmp_path / "config"
        result = SubprocessResult(returncode=0, stdout=json.dumps(_list_output()), stderr="")
        with patch("shardplan.discovery.playwright.run_subprocess", new=AsyncMock(return_value=result)) as run:
            await discover_tests(tmp_path, config_dir=config_dir)
        assert run.call_args.kwargs["cwd"] == config_dir
        assert not any(arg.startswith("--project") for arg in run.call_args.args[0])

    async def test_non_zero_exit_with_output_still_parses(self, tmp_path: Path) -> None:
        result = SubprocessResult(returncode=1, stdout=json.dumps(_list_output()), stderr="warn")
        with patch("shardplan.discovery.playwright.run_subprocess", new=AsyncMock(return_value=result)):
            assert len(await discover_tests(tmp_path)) == 4

    async def test_empty_output_raises(self, tmp_path: Path) -> None:
        result = SubprocessResult(returncode=1, stdout="", stderr="Error: config not found")
        with (
            patch("shardplan.discovery.playwright.run_subprocess", new=AsyncMock(return_value=result)),
            pytest.raises(DiscoveryError, match="config not found"),
        ):
            await discover_tests(tmp_path)

    async def test_missing_npx_raises(self, tmp_path: Path) -> None:
        error = SubprocessError("Command not found: npx", SubprocessResult(-1, "", ""))
        with (
            patch("shardplan.discovery.playwright.run_subprocess", new=AsyncMock(side_effect=error)),
            pytest.raises(DiscoveryError, match="Cannot run Playwright"),
        ):
            await discover_tests(tmp_path)


class TestLoadTestList:
    def test_list_output_file(self, tmp_path: Path) -> None:
        path = tmp_path / "tests.json"
        path.write_text(json.dumps(_list_output()), encoding="utf-8")
        assert len(load_test_list(path)) == 4

    def test_array_of_ids(self, tmp_path: Path) -> None:
        path = tmp_path / "tests.json"
        path.write_text(json.dumps(["a.spec.ts::Suite::t1", "b.spec.ts::t2"]), encoding="utf-8")
        tests = load_test_list(path)
        assert [t.id for t in tests] == ["a.spec.ts::Suite::t1", "b.spec.ts::t2"]
        assert tests[0].title == "t1"

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(DiscoveryError, match="Cannot read test list"):
            load_test_list(tmp_path / "missing.json")

    def test_invalid_array_raises(self, tmp_path: Path) -> None:
        path = tmp_path / "tests.json"
        path.write_text("[not json", encoding="utf-8")
        with pytest.raises(DiscoveryError, match="Cannot parse test list"):
            load_test_list(path)


# ── Source scanning ───────────────────────────────────────────────

_SPEC_SOURCE = """\
import { test, expect } from '@playwright/test';

test.describe('Login', () => {
  test('works', async ({ page }) => {
    await page.goto('/');
  });

  test.describe.serial('nested', () => {
    test.skip("skipped", async () => {});
  });
});

test('top level', async () => {});
it(`template title`, () => {});
"""


class TestParseTestsFromSource:
    def test_nesting(self) -> None:
        tests = parse_tests_from_source(_SPEC_SOURCE, "auth/login.spec.ts")
        assert [t.test_id.title_path for t in tests] == [
            ("Login", "works"),
            ("Login", "nested", "skipped"),
            ("top level",),
            ("template title",),
        ]
        assert all(t.file == "auth/login.spec.ts" for t in tests)

    def test_positions(self) -> None:
        works = parse_tests_from_source(_SPEC_SOURCE, "a.spec.ts")[0]
        assert (works.line, works.column) == (4, 3)

    def test_ignores_lookalike_identifiers(self) -> None:
        source = "submit('x');\nlatest('y');\nconst t = attest('z');\n"
        assert parse_tests_from_source(source, "a.spec.ts") == []

    def test_backslash_file_name(self) -> None:
        (test,) = parse_tests_from_source("test('t', () => {});", "dir\\a.spec.ts")
        assert test.id == "dir/a.spec.ts::t"


class TestDiscoverFromFiles:
    def test_scans_matching_files(self, tmp_path: Path) -> None:
        (tmp_path / "auth").mkdir()
        (tmp_path / "auth" / "login.spec.ts").write_text(_SPEC_SOURCE, encoding="utf-8")
        (tmp_path / "cart.spec.ts").write_text("test('adds', () => {});", encoding="utf-8")
        (tmp_path / "helpers.ts").write_text("test('not a spec', () => {});", encoding="utf-8")

        tests = discover_tests_from_files(tmp_path)
        assert {t.file for t in tests} == {"auth/login.spec.ts", "cart.spec.ts"}
        assert len(tests) == 5

    def test_custom_glob(self, tmp_path: Path) -> None:
        (tmp_path / "a.test.js").write_text("it('x', () => {});", encoding="utf-8")
        tests = discover_tests_from_files(tmp_path, "**/*.test.js")
        assert [t.id for t in tests] == ["a.test.js::x"]

    def test_group_by_file_keeps_order(self) -> None:
        tests = [
            DiscoveredTest(UnitId("b.spec.ts", ("1",)), "1"),
            DiscoveredTest(UnitId("a.spec.ts", ("2",)), "2"),
            DiscoveredTest(UnitId("b.spec.ts", ("3",)), "3"),
        ]
        grouped = group_tests_by_file(tests)
        assert list(grouped) == ["b.spec.ts", "a.spec.ts"]
        assert [t.title for t in grouped["b.spec.ts"]] == ["1", "3"]
