"""Unit tests for synthetic phase injection."""

from __future__ import annotations

from pathlib import Path

import pytest

from ravel.core import scheduler
from ravel.core.errors import DuplicatePhaseIdError, MalformedPhaseError, UnknownPhaseError
from ravel.core.graph import build_graph, build_phases
from ravel.core.injector import (
    add_synthetic_phase,
    inject_fix_phase,
    next_fix_id,
    settle_fix_phase,
    synthetic_group_label,
)
from ravel.core.lifecycle import PhaseLifecycle
from ravel.core.models import (
    IntegrationOutcome,
    IntegrationRecord,
    ParsedPlan,
    PhaseSpec,
    PhaseStatus,
    PlanState,
    ReviewVerdict,
    TransitionRequest,
)
from ravel.core.state import reconcile_state

S = PhaseStatus


@pytest.fixture
def approved_group() -> PlanState:
    """Group A = {1, 2}, both PR_APPROVED; 3 waits on both."""
    plan = ParsedPlan(
        name="Plan",
        path=Path("/tmp/plan.md"),
        phases=[
            PhaseSpec(id="1", name="One", order=0, file_targets=["a.py"]),
            PhaseSpec(id="2", name="Two", order=1, file_targets=["b.py"]),
            PhaseSpec(id="3", name="Three", order=2, depends_on=["1", "2"]),
        ],
    )
    state = reconcile_state(None, plan, build_phases(plan, build_graph(plan.phases)), "main")
    state.get("1").status = S.PR_APPROVED
    state.get("2").status = S.PR_APPROVED
    return state


class TestInjectFixPhase:
    """Tests for fix phases created after a failed integration build."""

    def test_creates_pending_fix(self, approved_group: PlanState) -> None:
        fix = inject_fix_phase(approved_group, "A", description="tests fail on merged branch")

        assert fix.id == "I-A"
        assert fix.status == S.PENDING
        assert fix.synthetic
        assert fix.explicit_dependencies == ["1", "2"]
        assert fix.implicit_dependencies == []
        assert fix.file_targets == []
        assert fix.resolves == ["1", "2"]
        assert fix.group is None
        assert fix.level == 1
        assert fix.description == "tests fail on merged branch"
        assert approved_group.phases["I-A"] is fix

    def test_fix_is_immediately_ready(self, approved_group: PlanState) -> None:
        inject_fix_phase(approved_group, "A")

        assert [p.id for p in scheduler.ready(approved_group)] == ["I-A"]

    def test_members_stay_approved(self, approved_group: PlanState) -> None:
        inject_fix_phase(approved_group, "A")

        assert approved_group.get("1").status == S.PR_APPROVED
        assert approved_group.get("2").status == S.PR_APPROVED

    def test_second_fix_gets_fresh_id(self, approved_group: PlanState) -> None:
        inject_fix_phase(approved_group, "A")

        assert next_fix_id(approved_group, "A") == "I-A-2"
        assert inject_fix_phase(approved_group, "A").id == "I-A-2"


class TestSettleFixPhase:
    """Tests for completing a group through its fix phase."""

    def test_fix_done_completes_members(self, approved_group: PlanState) -> None:
        lifecycle = PhaseLifecycle()
        fix = inject_fix_phase(approved_group, "A")
        approved_group.integrations.append(
            IntegrationRecord(
                group="A",
                outcome=IntegrationOutcome.BUILD_FAILED,
                phase_ids=["1", "2"],
                fix_phase=fix.id,
            )
        )

        for target in (S.DISPATCHED, S.DEVELOPING, S.FOR_REVIEW):
            lifecycle.apply(approved_group, TransitionRequest(phase_id=fix.id, target=target))
        lifecycle.review(approved_group, ReviewVerdict(phase_id=fix.id, approved=True, review_refs=["fix-review.md"]))

        assert fix.status == S.DONE
        for pid in ("1", "2"):
            member = approved_group.get(pid)
            assert member.status == S.DONE
            assert "fix-review.md" in member.review_refs
            assert member.history[-1].reason == "merged via I-A"
        assert approved_group.integrations[-1].resolved
        assert [p.id for p in scheduler.ready(approved_group)] == ["3"]

    def test_escalated_fix_leaves_members_approved(self, approved_group: PlanState) -> None:
        lifecycle = PhaseLifecycle(max_retry=1)
        fix = inject_fix_phase(approved_group, "A")
        for target in (S.DISPATCHED, S.DEVELOPING, S.FOR_REVIEW):
            lifecycle.apply(approved_group, TransitionRequest(phase_id=fix.id, target=target))
        lifecycle.review(approved_group, ReviewVerdict(phase_id=fix.id, approved=False))

        assert fix.status == S.ESCALATED
        assert approved_group.get("1").status == S.PR_APPROVED
        assert approved_group.get("2").status == S.PR_APPROVED
        assert [p.id for p in scheduler.blocked(approved_group)] == ["3"]
        assert scheduler.escalated_ancestors(approved_group, approved_group.get("3")) == ["I-A"]

    def test_settle_skips_members_already_done(self, approved_group: PlanState) -> None:
        fix = inject_fix_phase(approved_group, "A")
        approved_group.get("1").status = S.DONE

        assert settle_fix_phase(approved_group, fix) == ["2"]


class TestAddSyntheticPhase:
    """Tests for operator-added phases."""

    def test_adhoc_phase(self, approved_group: PlanState) -> None:
        phase = add_synthetic_phase(approved_group, "Hotfix logging", ["1"])

        assert phase.id == "I-1"
        assert phase.synthetic
        assert phase.explicit_dependencies == ["1"]
        assert phase.level == 1
        assert phase.group is None
        assert phase.order == 3
        assert phase.branch_name == "ravel/i-1-hotfix-logging"

    def test_adhoc_ids_increment(self, approved_group: PlanState) -> None:
        add_synthetic_phase(approved_group, "First", [])

        assert add_synthetic_phase(approved_group, "Second", []).id == "I-2"

    def test_explicit_id(self, approved_group: PlanState) -> None:
        phase = add_synthetic_phase(approved_group, "Docs", [], phase_id="I-docs")

        assert phase.id == "I-docs"

    def test_explicit_id_needs_prefix(self, approved_group: PlanState) -> None:
        with pytest.raises(MalformedPhaseError):
            add_synthetic_phase(approved_group, "Docs", [], phase_id="docs")

    def test_duplicate_id(self, approved_group: PlanState) -> None:
        add_synthetic_phase(approved_group, "Docs", [], phase_id="I-docs")

        with pytest.raises(DuplicatePhaseIdError):
            add_synthetic_phase(approved_group, "Docs again", [], phase_id="I-docs")

    def test_unknown_dependency(self, approved_group: PlanState) -> None:
        with pytest.raises(UnknownPhaseError):
            add_synthetic_phase(approved_group, "Orphan", ["42"])

        assert "I-1" not in approved_group.phases

    def test_synthetic_group_namespace(self, approved_group: PlanState) -> None:
        first = add_synthetic_phase(approved_group, "Left", [], group="hotfix")
        second = add_synthetic_phase(approved_group, "Right", [], group="S-hotfix")

        assert first.group == second.group == "S-hotfix"
        assert synthetic_group_label("A") == "S-A"
        assert [m.id for m in approved_group.members("S-hotfix")] == [first.id, second.id]
