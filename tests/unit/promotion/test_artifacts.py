"""Unit tests for pipeline artifact readers."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from budgetguard.promotion.artifacts import ArtifactError, PipelineArtifacts, parse_trivy_output


def _trivy(*results: list[tuple[str, str]]) -> str:
    return json.dumps(
        {
            "Results": [
                {
                    "Target": f"target-{i}",
                    "Vulnerabilities": [
                        {"VulnerabilityID": cve, "Severity": severity} for cve, severity in vulns
                    ],
                }
                for i, vulns in enumerate(results)
            ]
        }
    )


class TestParseTrivyOutput:
    """Tests for parse_trivy_output()."""

    @pytest.mark.requirement("promotion-vulnerabilities")
    def test_counts_by_severity(self) -> None:
        output = _trivy(
            [("CVE-2026-0001", "CRITICAL"), ("CVE-2026-0002", "HIGH")],
            [("CVE-2026-0003", "medium"), ("CVE-2026-0004", "LOW"), ("CVE-2026-0005", "UNKNOWN")],
        )
        summary = parse_trivy_output(output)

        assert summary.critical_count == 1
        assert summary.high_count == 1
        assert summary.medium_count == 1
        assert summary.low_count == 1
        assert summary.critical_ids == ["CVE-2026-0001"]
        assert summary.high_ids == ["CVE-2026-0002"]

    @pytest.mark.requirement("promotion-vulnerabilities")
    def test_same_cve_counts_once(self) -> None:
        """A CVE reported for several targets is one finding."""
        output = _trivy(
            [("CVE-2026-0001", "CRITICAL")],
            [("CVE-2026-0001", "CRITICAL")],
        )
        assert parse_trivy_output(output).critical_count == 1

    def test_null_vulnerabilities(self) -> None:
        output = json.dumps({"Results": [{"Target": "app", "Vulnerabilities": None}]})
        assert parse_trivy_output(output).high_count == 0

    @pytest.mark.parametrize("output", ["not json", "[]", '{"SchemaVersion": 2}'])
    def test_invalid_output(self, output: str) -> None:
        with pytest.raises(ArtifactError, match="trivy.json"):
            parse_trivy_output(output)


class TestPipelineArtifacts:
    """Tests for PipelineArtifacts readers."""

    def test_test_suites(self, tmp_path: Path) -> None:
        (tmp_path / "tests.json").write_text(
            json.dumps({"unit": {"passed": 120, "failed": 0}, "e2e": {"passed": 8, "failed": 1}})
        )
        suites = PipelineArtifacts(tmp_path).test_suites()

        assert suites["unit"].ok is True
        assert suites["e2e"].ok is False
        assert suites["e2e"].failed == 1

    def test_suite_that_ran_nothing_fails(self, tmp_path: Path) -> None:
        (tmp_path / "tests.json").write_text(json.dumps({"unit": {"passed": 0, "failed": 0}}))
        assert PipelineArtifacts(tmp_path).test_suites()["unit"].ok is False

    def test_coverage(self, tmp_path: Path) -> None:
        (tmp_path / "coverage.json").write_text(
            json.dumps({"totals": {"percent_covered": 86.4, "covered_lines": 864}})
        )
        assert PipelineArtifacts(tmp_path).coverage_percent() == pytest.approx(86.4)

    def test_coverage_without_totals(self, tmp_path: Path) -> None:
        (tmp_path / "coverage.json").write_text(json.dumps({"files": {}}))
        with pytest.raises(ArtifactError, match="percent_covered"):
            PipelineArtifacts(tmp_path).coverage_percent()

    def test_quality_score(self, tmp_path: Path) -> None:
        (tmp_path / "quality.json").write_text(json.dumps({"score": 87.5}))
        assert PipelineArtifacts(tmp_path).quality_score() == 87.5

    @pytest.mark.parametrize(
        "reader", ["test_suites", "coverage_percent", "vulnerabilities", "quality_score"]
    )
    def test_missing_artifact(self, tmp_path: Path, reader: str) -> None:
        with pytest.raises(ArtifactError, match="not found"):
            getattr(PipelineArtifacts(tmp_path), reader)()

    def test_malformed_json(self, tmp_path: Path) -> None:
        (tmp_path / "tests.json").write_text("{")
        with pytest.raises(ArtifactError, match="invalid JSON"):
            PipelineArtifacts(tmp_path).test_suites()
