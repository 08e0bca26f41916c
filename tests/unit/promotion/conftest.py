"""Fixtures shared by the promotion tests."""

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

import pytest

from budgetguard.backends.argocd import AppStatus
from budgetguard.schemas.config import GuardConfig, PromotionSettings


class StaticController:
    """Controller double reporting a fixed deployment."""

    def __init__(
        self,
        environment: str,
        deployed_at: datetime | None,
        health: str = "Healthy",
    ) -> None:
        self.app_name = f"app-{environment}"
        self.deployed_at = deployed_at
        self.health = health
        self.syncs: list[str | None] = []
        self.wait_error: Exception | None = None

    def status(self) -> AppStatus:
        return AppStatus(
            app_name=self.app_name,
            health_status=self.health,
            sync_status="Synced",
            revision="ccc333",
            history_id=3,
            deployed_at=self.deployed_at,
        )

    def sync(self, revision: str | None = None) -> None:
        self.syncs.append(revision)

    def wait_for_healthy(self, deadline: Any, *, after_sync: bool = False) -> AppStatus:
        if self.wait_error is not None:
            raise self.wait_error
        return self.status()


def write_artifacts(
    root: Path,
    *,
    coverage: float = 90.0,
    e2e_failed: int = 0,
    critical: int = 0,
    quality: float = 92.0,
) -> Path:
    """Publish a set of pipeline artifacts into ``root``."""
    root.mkdir(parents=True, exist_ok=True)
    (root / "tests.json").write_text(
        json.dumps(
            {
                "unit": {"passed": 420, "failed": 0},
                "integration": {"passed": 64, "failed": 0},
                "e2e": {"passed": 12, "failed": e2e_failed},
            }
        )
    )
    (root / "coverage.json").write_text(json.dumps({"totals": {"percent_covered": coverage}}))
    vulns = [
        {"VulnerabilityID": f"CVE-2026-{i:04d}", "Severity": "CRITICAL"} for i in range(critical)
    ]
    (root / "trivy.json").write_text(
        json.dumps({"Results": [{"Target": "app", "Vulnerabilities": vulns}]})
    )
    (root / "quality.json").write_text(json.dumps({"score": quality}))
    return root


@pytest.fixture
def publish_artifacts() -> Callable[..., Path]:
    """Writer for pipeline artifact directories."""
    return write_artifacts


@pytest.fixture
def artifacts_dir(tmp_path: Path) -> Path:
    return write_artifacts(tmp_path / "artifacts")


@pytest.fixture
def guard_config(state_dir: Path, artifacts_dir: Path) -> GuardConfig:
    return GuardConfig(
        state_dir=state_dir,
        promotion=PromotionSettings(artifacts_dir=artifacts_dir, settle_seconds=0),
    )


@pytest.fixture
def controllers(now: datetime) -> dict[str, StaticController]:
    """One controller per environment, each deployed two hours ago."""
    deployed = now - timedelta(hours=2)
    return {
        env: StaticController(env, deployed)
        for env in ("dev", "staging", "canary", "production")
    }


@pytest.fixture
def controller_factory(
    controllers: dict[str, StaticController],
) -> Callable[[str], StaticController]:
    return controllers.__getitem__
