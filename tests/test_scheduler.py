"""Unit tests for readiness queries."""

from __future__ import annotations

from pathlib import Path

import pytest

from ravel.core import scheduler
from ravel.core.errors import UnknownGroupError
from ravel.core.graph import build_graph, build_phases
from ravel.core.injector import inject_fix_phase
from ravel.core.models import (
    GroupReady,
    IntegrationOutcome,
    IntegrationRecord,
    ParsedPlan,
    PhaseReady,
    PhaseSpec,
    PhaseStatus,
    PlanState,
)
from ravel.core.state import reconcile_state

S = PhaseStatus


def make_state(*specs: PhaseSpec) -> PlanState:
    plan = ParsedPlan(name="Plan", path=Path("/tmp/plan.md"), phases=list(specs))
    return reconcile_state(None, plan, build_phases(plan, build_graph(plan.phases)), "main")


@pytest.fixture
def diamond() -> PlanState:
    return make_state(
        PhaseSpec(id="1", name="One", order=0),
        PhaseSpec(id="2", name="Two", order=1),
        PhaseSpec(id="3", name="Three", order=2, depends_on=["1", "2"]),
    )


@pytest.fixture
def wide() -> PlanState:
    """Group A of three phases feeding a solo phase."""
    return make_state(
        PhaseSpec(id="1", name="One", order=0),
        PhaseSpec(id="2", name="Two", order=1),
        PhaseSpec(id="3", name="Three", order=2),
        PhaseSpec(id="4", name="Four", order=3, depends_on=["1", "2", "3"]),
    )


class TestReady:
    """Tests for ready()."""

    def test_initial_ready(self, diamond: PlanState) -> None:
        assert [p.id for p in scheduler.ready(diamond)] == ["1", "2"]

    def test_ready_after_dependencies_done(self, diamond: PlanState) -> None:
        diamond.get("1").status = S.DONE
        assert [p.id for p in scheduler.ready(diamond)] == ["2"]

        diamond.get("2").status = S.DONE
        assert [p.id for p in scheduler.ready(diamond)] == ["3"]

    def test_dispatched_phase_not_ready(self, diamond: PlanState) -> None:
        diamond.get("1").status = S.DISPATCHED
        assert [p.id for p in scheduler.ready(diamond)] == ["2"]

    def test_pr_approved_does_not_satisfy(self, diamond: PlanState) -> None:
        """Only DONE counts; approved-but-unintegrated work is not on the base."""
        diamond.get("1").status = S.PR_APPROVED
        diamond.get("2").status = S.PR_APPROVED

        assert scheduler.ready(diamond) == []

    def test_natural_order(self) -> None:
        state = make_state(*(PhaseSpec(id=str(i), name=f"P{i}", order=i) for i in (10, 2, 1)))

        assert [p.id for p in scheduler.ready(state)] == ["1", "2", "10"]

    def test_removed_dependency_is_satisfied(self, diamond: PlanState) -> None:
        diamond.get("1").status = S.DONE
        diamond.get("2").removed = True

        assert [p.id for p in scheduler.ready(diamond)] == ["3"]


class TestGroupReady:
    """Tests for the integration gate."""

    def test_needs_every_member(self, wide: PlanState) -> None:
        wide.get("1").status = S.PR_APPROVED
        wide.get("2").status = S.PR_APPROVED
        wide.get("3").status = S.FOR_REVIEW

        check = scheduler.check_group(wide, "A")
        assert not check.ready
        assert check.waiting_on == ["3"]
        assert check.statuses["3"] == S.FOR_REVIEW

        wide.get("3").status = S.PR_APPROVED
        assert scheduler.group_ready(wide, "A")

    def test_escalated_member_excluded(self, wide: PlanState) -> None:
        wide.get("1").status = S.PR_APPROVED
        wide.get("2").status = S.PR_APPROVED
        wide.get("3").status = S.ESCALATED

        assert scheduler.group_ready(wide, "A")

    def test_all_escalated_is_not_ready(self, wide: PlanState) -> None:
        for pid in ("1", "2", "3"):
            wide.get(pid).status = S.ESCALATED

        assert not scheduler.group_ready(wide, "A")

    def test_done_member_does_not_block(self, wide: PlanState) -> None:
        """A member resolved by an operator is already on the base."""
        wide.get("1").status = S.DONE
        wide.get("2").status = S.PR_APPROVED
        wide.get("3").status = S.PR_APPROVED

        check = scheduler.check_group(wide, "A")
        assert check.ready
        assert check.waiting_on == []

    def test_integrated_group_is_not_ready(self, wide: PlanState) -> None:
        for pid in ("1", "2", "3"):
            wide.get(pid).status = S.DONE

        assert not scheduler.group_ready(wide, "A")

    def test_unknown_group(self, wide: PlanState) -> None:
        with pytest.raises(UnknownGroupError):
            scheduler.check_group(wide, "Z")


class TestBlocked:
    """Tests for escalation blocking."""

    def test_transitively_blocked(self) -> None:
        state = make_state(
            PhaseSpec(id="1", name="One", order=0),
            PhaseSpec(id="2", name="Two", order=1, depends_on=["1"]),
            PhaseSpec(id="3", name="Three", order=2, depends_on=["2"]),
        )
        state.get("1").status = S.ESCALATED

        assert [p.id for p in scheduler.blocked(state)] == ["2", "3"]
        assert scheduler.escalated_ancestors(state, state.get("3")) == ["1"]

    def test_removed_escalation_does_not_block(self, diamond: PlanState) -> None:
        diamond.get("1").status = S.ESCALATED
        diamond.get("1").removed = True

        assert scheduler.blocked(diamond) == []

    def test_blocked_behind_escalated_fix_phase(self, diamond: PlanState) -> None:
        """Approved members wait on their fix phase, so its escalation blocks dependents."""
        diamond.get("1").status = S.PR_APPROVED
        diamond.get("2").status = S.PR_APPROVED
        fix = inject_fix_phase(diamond, "A")
        fix.status = S.ESCALATED

        assert [p.id for p in scheduler.blocked(diamond)] == ["3"]

        fix.status = S.DONE
        assert scheduler.blocked(diamond) == []


class TestEvents:
    """Tests for dispatcher events and integration bookkeeping."""

    def test_phase_ready_events(self, diamond: PlanState) -> None:
        events = scheduler.events(diamond)

        assert all(isinstance(e, PhaseReady) for e in events)
        assert [e.phase_id for e in events] == ["1", "2"]
        assert events[0].group == "A"
        assert events[0].branch_name == "ravel/phase-1-one"

    def test_group_ready_event(self, diamond: PlanState) -> None:
        diamond.get("1").status = S.PR_APPROVED
        diamond.get("2").status = S.PR_APPROVED

        events = scheduler.events(diamond)

        assert len(events) == 1
        event = events[0]
        assert isinstance(event, GroupReady)
        assert event.phase_ids == ["1", "2"]
        assert event.integration_branch == "ravel/integrate/main/a"
        assert event.base_point == "main"

    def test_unresolved_conflict_hides_group(self, diamond: PlanState) -> None:
        diamond.get("1").status = S.PR_APPROVED
        diamond.get("2").status = S.PR_APPROVED
        diamond.integrations.append(
            IntegrationRecord(group="A", outcome=IntegrationOutcome.CONFLICT, phase_ids=["1", "2"])
        )

        assert scheduler.has_unresolved_conflict(diamond, "A")
        assert scheduler.awaiting_integration(diamond) == []
