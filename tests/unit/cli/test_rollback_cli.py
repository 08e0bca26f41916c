"""Tests for the rollback and promote CLI commands."""

from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from budgetguard.cli.main import cli
from budgetguard.rollback.history import AttemptLog
from budgetguard.schemas.rollback import RollbackAttemptRecord, RollbackOutcome
from budgetguard.schemas.slo import BudgetTier


def _invoke(runner, config_path, *args):
    return runner.invoke(cli, ["--config", str(config_path), "--log-level", "ERROR", *args])


@pytest.mark.requirement("CLI-ROLLBACK")
def test_rollback_check_within_budget_records_skip(
    runner, config_file, metrics, state_dir
) -> None:
    metrics(availability=0.9999)

    result = _invoke(runner, config_file(), "rollback", "check", "--output", "json")

    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert payload["environment"] == "production"
    assert payload["tier"] == "ok"
    assert payload["decision"]["should_rollback"] is False
    assert payload["execution"] is None

    records = AttemptLog(state_dir).records("production")
    assert len(records) == 1
    assert records[0].outcome == RollbackOutcome.SKIPPED


def test_rollback_check_warning(runner, config_file, metrics) -> None:
    metrics(availability=0.9994)

    result = _invoke(runner, config_file(), "rollback", "check")

    assert result.exit_code == 1
    assert "Decision:     skip" in result.stdout


def test_rollback_history_empty(runner, config_file) -> None:
    result = _invoke(runner, config_file(), "rollback", "history")

    assert result.exit_code == 0
    assert "No rollback attempts recorded." in result.stdout


def test_rollback_history_newest_first(runner, config_file, state_dir) -> None:
    log = AttemptLog(state_dir)
    for reason in ("first", "second", "third"):
        log.append(
            RollbackAttemptRecord(
                timestamp=datetime.now(timezone.utc),
                environment="production",
                trigger_tier=BudgetTier.CRITICAL,
                outcome=RollbackOutcome.SKIPPED,
                reason=reason,
            )
        )

    result = _invoke(
        runner, config_file(), "rollback", "history", "--limit", "2", "--output", "json"
    )

    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert [r["reason"] for r in payload] == ["third", "second"]


def test_rollback_execute_rejects_invalid_commit(runner, config_file) -> None:
    result = _invoke(
        runner,
        config_file(),
        "rollback",
        "execute",
        "--reason",
        "bad deploy",
        "--commit",
        "not-a-sha",
        "--output",
        "json",
    )

    assert result.exit_code == 2


def test_rollback_execute_requires_reason(runner, config_file) -> None:
    result = _invoke(runner, config_file(), "rollback", "execute")

    assert result.exit_code == 2
    assert "--reason" in result.output


@pytest.mark.requirement("CLI-PROMOTE")
def test_promote_validate_rejects_non_adjacent_edge(runner, config_file) -> None:
    result = _invoke(
        runner, config_file(), "promote", "validate", "dev", "production", "--output", "json"
    )

    assert result.exit_code == 4
    payload = json.loads(result.stdout)
    assert payload["error_type"] == "InvalidEdgeError"
    assert payload["from_env"] == "dev"
    assert payload["to_env"] == "production"


def test_promote_rejects_unknown_environment(runner, config_file) -> None:
    result = _invoke(runner, config_file(), "promote", "validate", "dev", "qa")

    assert result.exit_code == 2
