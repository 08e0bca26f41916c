"""Readers for build pipeline artifacts consumed by the promotion gate.

The pipeline publishes one directory of JSON files per release:

- ``tests.json``: test suite results, ``{"unit": {"passed": 120, "failed": 0}, ...}``
- ``coverage.json``: coverage.py JSON report (``totals.percent_covered``)
- ``trivy.json``: Trivy JSON output (``trivy image --format json``)
- ``quality.json``: code quality summary, ``{"score": 87.5}``

Every reader raises ArtifactError when its file is missing or malformed;
the validator turns that into a failing check.

Example:
    >>> artifacts = PipelineArtifacts(Path("artifacts"))
    >>> artifacts.coverage_percent()
    86.4
    >>> artifacts.vulnerabilities().critical_count
    0
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field

logger = structlog.get_logger(__name__)

TESTS_FILE = "tests.json"
COVERAGE_FILE = "coverage.json"
TRIVY_FILE = "trivy.json"
QUALITY_FILE = "quality.json"


class ArtifactError(Exception):
    """Raised when a pipeline artifact is missing or cannot be parsed.

    Attributes:
        artifact: File name of the artifact.
        message: Description of the problem.
    """

    def __init__(self, artifact: str, message: str) -> None:
        self.artifact = artifact
        self.message = message
        super().__init__(f"{artifact}: {message}")


class SuiteResult(BaseModel):
    """Pass/fail counts of one test suite."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    passed: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)
    skipped: int = Field(default=0, ge=0)

    @property
    def ok(self) -> bool:
        """A suite passes when it ran something and nothing failed."""
        return self.failed == 0 and self.passed > 0


class VulnerabilitySummary(BaseModel):
    """Vulnerability counts by severity, deduplicated by CVE id.

    Attributes:
        critical_count: CRITICAL findings.
        high_count: HIGH findings.
        medium_count: MEDIUM findings.
        low_count: LOW findings.
        critical_ids: CVE ids of the CRITICAL findings.
        high_ids: CVE ids of the HIGH findings.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    critical_count: int = 0
    high_count: int = 0
    medium_count: int = 0
    low_count: int = 0
    critical_ids: list[str] = Field(default_factory=list)
    high_ids: list[str] = Field(default_factory=list)


def _load_json(path: Path) -> Any:
    if not path.exists():
        raise ArtifactError(path.name, f"not found in {path.parent}")
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        logger.error("artifact_parse_failed", artifact=path.name, error=str(e))
        raise ArtifactError(path.name, f"invalid JSON: {e}") from e
    except OSError as e:
        raise ArtifactError(path.name, f"unreadable: {e}") from e


def parse_trivy_output(output: str) -> VulnerabilitySummary:
    """Parse Trivy JSON output into a VulnerabilitySummary.

    The same CVE reported for several targets counts once.

    Raises:
        ArtifactError: If the output is not Trivy JSON.

    Examples:
        >>> parse_trivy_output('{"Results": []}').critical_count
        0
    """
    log = logger.bind(scanner="trivy")
    try:
        data = json.loads(output)
    except json.JSONDecodeError as e:
        log.error("trivy_parse_failed", error=str(e))
        raise ArtifactError(TRIVY_FILE, f"invalid Trivy JSON: {e}") from e

    if not isinstance(data, dict) or "Results" not in data:
        log.error("trivy_missing_results_key")
        raise ArtifactError(TRIVY_FILE, "missing 'Results' key in Trivy output")

    counts = {"CRITICAL": 0, "HIGH": 0, "MEDIUM": 0, "LOW": 0}
    ids: dict[str, list[str]] = {"CRITICAL": [], "HIGH": []}
    seen: set[str] = set()

    for result in data.get("Results") or []:
        for vuln in result.get("Vulnerabilities") or []:
            cve_id = vuln.get("VulnerabilityID", "UNKNOWN")
            severity = str(vuln.get("Severity", "UNKNOWN")).upper()
            if cve_id in seen:
                continue
            seen.add(cve_id)
            # UNKNOWN and other severities are not counted
            if severity in counts:
                counts[severity] += 1
            if severity in ids:
                ids[severity].append(cve_id)

    log.info(
        "trivy_parse_complete",
        critical=counts["CRITICAL"],
        high=counts["HIGH"],
        medium=counts["MEDIUM"],
        low=counts["LOW"],
    )
    return VulnerabilitySummary(
        critical_count=counts["CRITICAL"],
        high_count=counts["HIGH"],
        medium_count=counts["MEDIUM"],
        low_count=counts["LOW"],
        critical_ids=ids["CRITICAL"],
        high_ids=ids["HIGH"],
    )


class PipelineArtifacts:
    """Artifact directory published by the build pipeline.

    Args:
        root: Directory holding the artifact files.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def test_suites(self) -> dict[str, SuiteResult]:
        """Suite name -> result from ``tests.json``."""
        data = _load_json(self.root / TESTS_FILE)
        if not isinstance(data, dict):
            raise ArtifactError(TESTS_FILE, "expected an object of suites")
        suites = {}
        for name, raw in data.items():
            if not isinstance(raw, dict):
                raise ArtifactError(TESTS_FILE, f"suite {name!r} is not an object")
            try:
                suites[name] = SuiteResult(
                    name=name,
                    passed=int(raw.get("passed", 0)),
                    failed=int(raw.get("failed", 0)),
                    skipped=int(raw.get("skipped", 0)),
                )
            except (TypeError, ValueError) as e:
                raise ArtifactError(TESTS_FILE, f"suite {name!r}: {e}") from e
        return suites

    def coverage_percent(self) -> float:
        """Total line coverage from a coverage.py JSON report."""
        data = _load_json(self.root / COVERAGE_FILE)
        try:
            return float(data["totals"]["percent_covered"])
        except (KeyError, TypeError, ValueError) as e:
            raise ArtifactError(COVERAGE_FILE, "missing totals.percent_covered") from e

    def vulnerabilities(self) -> VulnerabilitySummary:
        path = self.root / TRIVY_FILE
        if not path.exists():
            raise ArtifactError(TRIVY_FILE, f"not found in {self.root}")
        return parse_trivy_output(path.read_text(encoding="utf-8"))

    def quality_score(self) -> float:
        """Code quality score (0-100) from ``quality.json``."""
        data = _load_json(self.root / QUALITY_FILE)
        try:
            return float(data["score"])
        except (KeyError, TypeError, ValueError) as e:
            raise ArtifactError(QUALITY_FILE, "missing numeric 'score'") from e


__all__ = [
    "ArtifactError",
    "PipelineArtifacts",
    "SuiteResult",
    "VulnerabilitySummary",
    "parse_trivy_output",
]
