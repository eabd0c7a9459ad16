"""Tests for shardplan.reporting.extract."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

import pytest

from shardplan.errors import ReportFormatError, ShardplanError
from shardplan.reporting.extract import (
    extract_measurements,
    read_batch,
    read_report,
    report_test_dir,
    write_batch,
)
from shardplan.timing.store import MeasurementBatch

if TYPE_CHECKING:
    from pathlib import Path


def _spec(title: str, *durations: int) -> dict[str, Any]:
    return {
        "title": title,
        "tests": [{"results": [{"duration": d, "status": "passed"} for d in durations]}],
    }


def _report() -> dict[str, Any]:
    return {
        "config": {
            "rootDir": "/proj/e2e",
            "projects": [{"name": "chromium", "testDir": "/proj/e2e"}],
        },
        "suites": [
            {
                "title": "auth/login.spec.ts",
                "file": "auth/login.spec.ts",
                "specs": [_spec("top level", 1200)],
                "suites": [
                    {
                        "title": "Login",
                        "file": "auth/login.spec.ts",
                        "specs": [_spec("flaky", 3000, 2500)],
                    }
                ],
            }
        ],
    }


class TestReportTestDir:
    def test_selected_project(self) -> None:
        report = {"config": {"projects": [{"name": "a", "testDir": "/x"}, {"name": "b", "testDir": "/y"}]}}
        assert report_test_dir(report, "b") == "/y"

    def test_unknown_project_uses_first(self) -> None:
        report = {"config": {"projects": [{"name": "a", "testDir": "/x"}]}}
        assert report_test_dir(report, "default") == "/x"

    @pytest.mark.parametrize(
        ("report", "message"),
        [
            ({}, "no config"),
            ({"config": {"projects": []}}, "no projects"),
            ({"config": {"projects": [{"name": "a"}]}}, "no testDir"),
        ],
    )
    def test_missing_parts_raise(self, report: dict[str, Any], message: str) -> None:
        with pytest.raises(ReportFormatError, match=message):
            report_test_dir(report, "a")


class TestExtractMeasurements:
    def test_ids_and_durations(self) -> None:
        batch = extract_measurements(_report(), "chromium", lane_index=3)
        assert batch.lane_index == 3
        assert batch.group_label == "chromium"
        assert batch.measurements == {
            "auth/login.spec.ts::top level": 1200,
            "auth/login.spec.ts::Login::flaky": 5500,
        }

    def test_absolute_file_paths(self) -> None:
        report = _report()
        report["suites"][0]["file"] = "/proj/e2e/auth/login.spec.ts"
        report["suites"][0]["suites"][0]["file"] = "/proj/e2e/auth/login.spec.ts"
        assert "auth/login.spec.ts::Login::flaky" in extract_measurements(report, "chromium").measurements

    def test_same_id_is_summed(self) -> None:
        report = _report()
        report["suites"].append(report["suites"][0])
        assert extract_measurements(report, "chromium").measurements["auth/login.spec.ts::top level"] == 2400

    def test_unusable_result_duration_counts_as_zero(self) -> None:
        report = _report()
        flaky = report["suites"][0]["suites"][0]["specs"][0]
        flaky["tests"][0]["results"].append({"duration": float("inf"), "status": "failed"})
        flaky["tests"][0]["results"].append({"duration": "slow", "status": "failed"})
        flaky["tests"][0]["results"].append({"duration": -1, "status": "skipped"})
        assert extract_measurements(report, "chromium").measurements["auth/login.spec.ts::Login::flaky"] == 5500

    def test_missing_test_dir_is_shardplan_error(self) -> None:
        with pytest.raises(ShardplanError):
            extract_measurements({"config": {"projects": [{"name": "x"}]}, "suites": []})


class TestFiles:
    def test_read_report(self, tmp_path: Path) -> None:
        path = tmp_path / "results.json"
        path.write_text(json.dumps(_report()), encoding="utf-8")
        assert read_report(path)["config"]["rootDir"] == "/proj/e2e"

    def test_read_report_invalid(self, tmp_path: Path) -> None:
        path = tmp_path / "results.json"
        path.write_text("not json", encoding="utf-8")
        with pytest.raises(ReportFormatError, match="Failed to read"):
            read_report(path)

    def test_read_report_not_object(self, tmp_path: Path) -> None:
        path = tmp_path / "results.json"
        path.write_text("[]", encoding="utf-8")
        with pytest.raises(ReportFormatError, match="not a JSON object"):
            read_report(path)

    def test_batch_file(self, tmp_path: Path) -> None:
        path = tmp_path / "out" / "timing-chromium-2.json"
        batch = MeasurementBatch(2, "chromium", {"a.spec.ts::t": 100})
        write_batch(path, batch)
        assert json.loads(path.read_text(encoding="utf-8")) == {
            "laneIndex": 2,
            "groupLabel": "chromium",
            "measurements": {"a.spec.ts::t": 100},
        }
        assert read_batch(path) == batch

    def test_invalid_batch(self, tmp_path: Path) -> None:
        path = tmp_path / "batch.json"
        path.write_text('"just a string"', encoding="utf-8")
        with pytest.raises(ReportFormatError, match="Invalid timing batch"):
            read_batch(path)

    @pytest.mark.parametrize("value", ["Infinity", "1e400", "NaN", "-5"])
    def test_unusable_batch_duration(self, tmp_path: Path, value: str) -> None:
        path = tmp_path / "batch.json"
        path.write_text(
            '{"laneIndex": 1, "groupLabel": "chromium", "measurements": {"a.spec.ts::t": %s}}' % value,
            encoding="utf-8",
        )
        with pytest.raises(ReportFormatError, match="Invalid timing batch"):
            read_batch(path)
