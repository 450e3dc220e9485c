"""Command surface over the status store.

The orchestrator holds no plan state of its own: every operation loads the
plan's status document, mutates it under the store lock, and saves it, so
the process can stop and resume at any point.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING

from ravel.config import Config, get_orchestrator_dir
from ravel.core import scheduler
from ravel.core.errors import GroupNotReadyError, MergeConflictError
from ravel.core.graph import build_graph, build_phases
from ravel.core.injector import add_synthetic_phase, inject_fix_phase
from ravel.core.lifecycle import PhaseLifecycle
from ravel.core.models import (
    GroupCheck,
    GroupReady,
    IntegrationOutcome,
    IntegrationRecord,
    Phase,
    PhaseReady,
    PhaseStatus,
    PlanState,
    ReviewVerdict,
    TransitionRequest,
)
from ravel.core.state import StateStore, reconcile_state
from ravel.notifications.base import ConsoleNotifier, Notifier, NullNotifier
from ravel.parsers.plan import parse_plan

if TYPE_CHECKING:
    from collections.abc import Generator

logger = logging.getLogger(__name__)


class Orchestrator:
    """Coordinates parsing, scheduling, and transitions for one plan."""

    def __init__(
        self,
        plan_path: Path,
        config: Config | None = None,
        notifier: Notifier | None = None,
        project_root: Path | None = None,
    ) -> None:
        self.plan_path = plan_path.resolve()
        self.project_root = (project_root or Path.cwd()).resolve()
        self.config = config or Config.load(get_orchestrator_dir(self.project_root) / "config.yaml")

        self.store = StateStore.for_plan(
            self.plan_path,
            self.config.resolve_state_dir(self.project_root),
            lock_timeout=self.config.lock_timeout,
        )
        self.lifecycle = PhaseLifecycle(
            max_retry=self.config.max_retry,
            worker_timeout_retries=self.config.worker_timeout_retries,
        )
        self.notifier = notifier if notifier is not None else self._create_notifier()

    def _create_notifier(self) -> Notifier:
        """Create notifier based on configuration."""
        if not self.config.notifications.enabled or self.config.notifications.provider == "none":
            return NullNotifier()
        return ConsoleNotifier()

    # =========================================================================
    # Queries
    # =========================================================================

    def status(self) -> PlanState:
        return self.store.load()

    def next(self) -> list[Phase]:
        """Phases that may be dispatched now."""
        return scheduler.ready(self.store.load())

    def check_group(self, group: str) -> GroupCheck:
        return scheduler.check_group(self.store.load(), group)

    def events(self) -> list[PhaseReady | GroupReady]:
        return scheduler.events(self.store.load(), self.config.branch_prefix)

    # =========================================================================
    # Mutations
    # =========================================================================

    def parse(self, base: str | None = None) -> PlanState:
        """Parse the plan, build its graph, and create or reconcile the store.

        Nothing is written if parsing or graph validation fails.
        """
        plan = parse_plan(self.plan_path, synthetic_prefix=self.config.synthetic_prefix)
        graph = build_graph(plan.phases)
        fresh = build_phases(plan, graph, self.config.branch_prefix)

        with self.store.lock():
            existing = self.store.load() if self.store.exists() else None
            fallback = existing.base_point if existing else self.config.default_base
            base_point = base or plan.base_branch or fallback

            before = self._snapshot(existing) if existing else set()
            state = reconcile_state(existing, plan, fresh, base_point)
            self.store.save(state)

        if existing is None:
            logger.info(f"Initialized {self.store.path.name} for {plan.name} against {base_point}")
        self._announce(before, state)
        return state

    def update(self, request: TransitionRequest) -> Phase:
        """Apply a status transition requested by a worker or operator."""
        with self._mutation() as state:
            self.lifecycle.apply(state, request)
            phase = state.get(request.phase_id)
        return phase

    def review(self, verdict: ReviewVerdict) -> Phase:
        with self._mutation() as state:
            self.lifecycle.review(state, verdict)
            phase = state.get(verdict.phase_id)
        return phase

    def report_timeout(self, phase_id: str) -> Phase:
        with self._mutation() as state:
            self.lifecycle.report_timeout(state, phase_id)
            phase = state.get(phase_id)
        return phase

    def resolve(self, phase_id: str, remove: bool = False) -> Phase:
        with self._mutation() as state:
            self.lifecycle.resolve_escalation(state, phase_id, remove=remove)
            phase = state.get(phase_id)
        return phase

    def add_phase(
        self,
        name: str | None = None,
        depends_on: list[str] | None = None,
        phase_id: str | None = None,
        group: str | None = None,
        description: str | None = None,
        fix_group: str | None = None,
    ) -> Phase:
        """Add a synthetic phase, either ad hoc or as the fix for a group."""
        with self._mutation() as state:
            if fix_group is not None:
                self._require_integrable(state, fix_group)
                phase = self._inject_fix(state, fix_group, description)
            else:
                phase = add_synthetic_phase(
                    state,
                    name or "Ad hoc phase",
                    depends_on or [],
                    phase_id=phase_id,
                    group=group,
                    description=description,
                    prefix=self.config.synthetic_prefix,
                    branch_prefix=self.config.branch_prefix,
                )
        return phase

    def integrate(
        self,
        group: str,
        outcome: IntegrationOutcome,
        detail: str | None = None,
    ) -> IntegrationRecord:
        """Record the result of merging a ready group.

        Raises:
            GroupNotReadyError: If a member is not approved or a fix is pending.
            MergeConflictError: After recording a conflict; members stay approved.
        """
        conflict: MergeConflictError | None = None

        with self._mutation() as state:
            self._require_integrable(state, group)
            members = [m.id for m in state.members(group) if m.status == PhaseStatus.PR_APPROVED and not m.removed]

            if outcome == IntegrationOutcome.BUILD_FAILED:
                self._inject_fix(state, group, detail)
                record = state.integrations[-1]
            else:
                record = IntegrationRecord(group=group, outcome=outcome, phase_ids=members, detail=detail)
                if outcome == IntegrationOutcome.SUCCESS:
                    branch = scheduler.integration_branch(state, group, self.config.branch_prefix)
                    self.lifecycle.complete_integration(state, group, f"integrated into {branch}")
                    for earlier in state.integrations:
                        if earlier.group == group:
                            earlier.resolved = True
                    record.resolved = True
                else:
                    conflict = MergeConflictError(group, members, detail)
                    logger.error(str(conflict))
                state.integrations.append(record)

        if conflict is not None:
            self.notifier.error(f"Group {group} needs manual merge", str(conflict))
            raise conflict
        return record

    # =========================================================================
    # Helpers
    # =========================================================================

    def _require_integrable(self, state: PlanState, group: str) -> None:
        check = scheduler.check_group(state, group)
        if not check.ready:
            raise GroupNotReadyError(group, check.waiting_on)
        fix = scheduler.open_fix_phase(state, group)
        if fix is not None:
            raise GroupNotReadyError(group, [fix.id])

    def _inject_fix(self, state: PlanState, group: str, detail: str | None) -> Phase:
        fix = inject_fix_phase(
            state,
            group,
            description=detail,
            prefix=self.config.synthetic_prefix,
            branch_prefix=self.config.branch_prefix,
        )
        state.integrations.append(
            IntegrationRecord(
                group=group,
                outcome=IntegrationOutcome.BUILD_FAILED,
                phase_ids=list(fix.resolves),
                detail=detail,
                fix_phase=fix.id,
            )
        )
        return fix

    @contextmanager
    def _mutation(self) -> Generator[PlanState]:
        """Run one locked load/mutate/save, then announce new events."""
        with self.store.transaction() as state:
            before = self._snapshot(state)
            yield state
        self._announce(before, state)

    def _snapshot(self, state: PlanState) -> set[tuple[str, str]]:
        keys = {_event_key(e) for e in scheduler.events(state, self.config.branch_prefix)}
        keys.update(("escalated", p.id) for p in state.phases.values() if p.status == PhaseStatus.ESCALATED)
        return keys

    def _announce(self, before: set[tuple[str, str]], state: PlanState) -> None:
        for event in scheduler.events(state, self.config.branch_prefix):
            if _event_key(event) in before:
                continue
            if isinstance(event, PhaseReady):
                self.notifier.phase_ready(event)
            else:
                self.notifier.group_ready(event)

        for phase in state.phases.values():
            if phase.status == PhaseStatus.ESCALATED and ("escalated", phase.id) not in before:
                reason = phase.history[-1].reason if phase.history else None
                self.notifier.escalated(phase.id, reason or "escalated")


def _event_key(event: PhaseReady | GroupReady) -> tuple[str, str]:
    if isinstance(event, PhaseReady):
        return ("phase", event.phase_id)
    return ("group", event.group)
