"""Unit tests for the approval store."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

import pytest

from budgetguard.promotion.approvals import ApprovalStore
from budgetguard.schemas.promotion import PromotionEdge

EDGE = PromotionEdge.resolve("canary", "production")
REQUIRED = {"release-manager": 1, "sre": 1}


class TestApprovalStore:
    """Tests for ApprovalStore."""

    def test_records_are_persisted(self, state_dir: Path, now: datetime) -> None:
        ApprovalStore(state_dir).record(EDGE, "v1.4.0", "alice", "release-manager", now=now)

        approvals = ApprovalStore(state_dir).approvals(EDGE, "v1.4.0")
        assert [(a.approver, a.role) for a in approvals] == [("alice", "release-manager")]
        assert approvals[0].edge == "canary->production"
        assert (state_dir / "approvals" / "canary-to-production.jsonl").exists()

    @pytest.mark.requirement("promotion-approvals")
    def test_missing_roles(self, state_dir: Path, now: datetime) -> None:
        store = ApprovalStore(state_dir)
        assert store.missing(EDGE, "v1.4.0", REQUIRED) == REQUIRED

        store.record(EDGE, "v1.4.0", "alice", "release-manager", now=now)
        assert store.missing(EDGE, "v1.4.0", REQUIRED) == {"sre": 1}

        store.record(EDGE, "v1.4.0", "bob", "sre", now=now)
        assert store.missing(EDGE, "v1.4.0", REQUIRED) == {}

    @pytest.mark.requirement("promotion-approvals")
    def test_approver_counts_once(self, state_dir: Path, now: datetime) -> None:
        """One person cannot satisfy two roles."""
        store = ApprovalStore(state_dir)
        store.record(EDGE, "v1.4.0", "alice", "release-manager", now=now)
        store.record(EDGE, "v1.4.0", "alice", "sre", now=now)

        assert store.missing(EDGE, "v1.4.0", REQUIRED) == {"sre": 1}

    def test_bound_to_release(self, state_dir: Path, now: datetime) -> None:
        """Approving one release does not approve the next."""
        store = ApprovalStore(state_dir)
        store.record(EDGE, "v1.4.0", "alice", "release-manager", now=now)
        assert store.approvals(EDGE, "v1.5.0") == []

    def test_reapproval_is_idempotent(self, state_dir: Path, now: datetime) -> None:
        store = ApprovalStore(state_dir)
        first = store.record(EDGE, "v1.4.0", "alice", "release-manager", now=now)
        second = store.record(EDGE, "v1.4.0", "alice", "release-manager", now=now)

        assert first.recorded_at == second.recorded_at
        lines = store.path_for(EDGE).read_text().splitlines()
        assert len(lines) == 1

    def test_corrupt_lines_are_skipped(self, state_dir: Path, now: datetime) -> None:
        store = ApprovalStore(state_dir)
        store.record(EDGE, "v1.4.0", "alice", "release-manager", now=now)
        with store.path_for(EDGE).open("a") as f:
            f.write("{garbage\n")

        assert len(store.approvals(EDGE, "v1.4.0")) == 1
