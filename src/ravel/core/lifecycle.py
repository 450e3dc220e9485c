"""Phase lifecycle state machine.

PENDING -> DISPATCHED -> DEVELOPING -> FOR_REVIEW -> MERGED -> DONE        (solo)
                                                   -> PR_APPROVED -> DONE  (parallel, after integration)
                                                   -> REJECTED -> FIXING -> FOR_REVIEW ...
                                                               -> ESCALATED (after max_retry rejections)
"""

from __future__ import annotations

import logging

from ravel.config import MAX_RETRY
from ravel.core.errors import InvalidTransitionError
from ravel.core.injector import settle_fix_phase
from ravel.core.models import (
    REMOVED_BY_OPERATOR,
    Phase,
    PhaseStatus,
    PlanState,
    ReviewVerdict,
    StatusChange,
    TransitionRequest,
)
from ravel.core.scheduler import unmet_dependencies

logger = logging.getLogger(__name__)

S = PhaseStatus

TRANSITIONS: dict[PhaseStatus, frozenset[PhaseStatus]] = {
    S.PENDING: frozenset({S.DISPATCHED}),
    S.DISPATCHED: frozenset({S.DEVELOPING}),
    S.DEVELOPING: frozenset({S.FOR_REVIEW}),
    S.FOR_REVIEW: frozenset({S.MERGED, S.PR_APPROVED, S.REJECTED}),
    S.MERGED: frozenset({S.DONE}),
    S.PR_APPROVED: frozenset({S.DONE}),
    S.REJECTED: frozenset({S.FIXING, S.ESCALATED}),
    S.FIXING: frozenset({S.FOR_REVIEW}),
    S.ESCALATED: frozenset(),
    S.DONE: frozenset(),
}

# Only a human may take these
MANUAL_TRANSITIONS: frozenset[tuple[PhaseStatus, PhaseStatus]] = frozenset(
    {
        (S.ESCALATED, S.DONE),
        (S.PR_APPROVED, S.DONE),
    }
)

# States in which an external worker is expected to report progress
WORKER_STATES: frozenset[PhaseStatus] = frozenset({S.DISPATCHED, S.DEVELOPING, S.FIXING})


class PhaseLifecycle:
    """Applies status transitions to phases inside a PlanState."""

    def __init__(self, max_retry: int = MAX_RETRY, worker_timeout_retries: int = 1) -> None:
        self.max_retry = max_retry
        self.worker_timeout_retries = worker_timeout_retries

    def apply(self, state: PlanState, request: TransitionRequest) -> list[StatusChange]:
        """Apply a requested transition.

        Returns the changes recorded; empty for an idempotent no-op.

        Raises:
            InvalidTransitionError: If the table or a guard forbids the move.
            UnknownPhaseError: If the phase does not exist.
        """
        phase = state.get(request.phase_id)
        current, target = phase.status, request.target

        if phase.removed:
            raise InvalidTransitionError(phase.id, current, target, "phase was removed")
        if request.expected_attempts is not None and request.expected_attempts != phase.attempts:
            raise InvalidTransitionError(
                phase.id,
                current,
                target,
                f"expected attempts {request.expected_attempts}, found {phase.attempts}",
            )

        if current == S.DISPATCHED and target == S.DISPATCHED:
            logger.debug(f"Phase {phase.id} already dispatched")
            return []

        if request.manual:
            if target == S.ESCALATED and not current.is_terminal:
                return self.abandon(state, phase.id, request.reason or "abandoned by operator")
            if (current, target) in MANUAL_TRANSITIONS:
                phase.add_review_refs(request.review_refs)
                return self._finish(state, phase, request.reason or "completed by operator")

        if target not in TRANSITIONS[current]:
            raise InvalidTransitionError(phase.id, current, target)
        self._check_guard(state, phase, target)

        if target == S.REJECTED:
            phase.attempts += 1
        phase.add_review_refs(request.review_refs)
        changes = [phase.move_to(target, request.reason)]
        logger.info(f"Phase {phase.id}: {current.value} -> {target.value}")

        if target == S.MERGED:
            changes.extend(self._finish(state, phase, "merged"))
        elif target == S.REJECTED and phase.attempts >= self.max_retry:
            changes.append(phase.move_to(S.ESCALATED, f"rejected {phase.attempts} times"))
            logger.warning(f"Phase {phase.id} escalated after {phase.attempts} rejections")

        return changes

    def review(self, state: PlanState, verdict: ReviewVerdict) -> list[StatusChange]:
        """Route a review verdict to MERGED, PR_APPROVED, or REJECTED."""
        phase = state.get(verdict.phase_id)
        if verdict.approved:
            target = S.MERGED if phase.is_solo else S.PR_APPROVED
        else:
            target = S.REJECTED
        return self.apply(
            state,
            TransitionRequest(
                phase_id=phase.id,
                target=target,
                review_refs=verdict.review_refs,
                reason=verdict.reason,
            ),
        )

    def _check_guard(self, state: PlanState, phase: Phase, target: PhaseStatus) -> None:
        current = phase.status

        if target == S.DISPATCHED:
            unmet = unmet_dependencies(state, phase)
            if unmet:
                raise InvalidTransitionError(phase.id, current, target, f"waiting on {', '.join(unmet)}")
        elif target == S.MERGED and not phase.is_solo:
            raise InvalidTransitionError(phase.id, current, target, f"phase is in parallel group {phase.group}")
        elif target == S.PR_APPROVED and phase.is_solo:
            raise InvalidTransitionError(phase.id, current, target, "solo phases merge directly")
        elif target == S.FIXING and phase.attempts >= self.max_retry:
            raise InvalidTransitionError(phase.id, current, target, f"retry limit {self.max_retry} reached")
        elif target == S.ESCALATED and phase.attempts < self.max_retry:
            raise InvalidTransitionError(
                phase.id, current, target, f"{phase.attempts} of {self.max_retry} attempts used"
            )
        elif target == S.DONE and current == S.PR_APPROVED:
            raise InvalidTransitionError(phase.id, current, target, "parallel phases complete through group integration")

    def _finish(self, state: PlanState, phase: Phase, reason: str) -> list[StatusChange]:
        changes = [phase.move_to(S.DONE, reason)]
        logger.info(f"Phase {phase.id} done ({reason})")
        if phase.synthetic and phase.resolves:
            settle_fix_phase(state, phase)
        return changes

    # =========================================================================
    # Integration, liveness, and human intervention
    # =========================================================================

    def complete_integration(self, state: PlanState, group: str, reason: str) -> list[str]:
        """Mark every approved member of an integrated group DONE."""
        completed: list[str] = []
        for member in state.members(group):
            if member.status == S.PR_APPROVED and not member.removed:
                self._finish(state, member, reason)
                completed.append(member.id)
        return completed

    def report_timeout(self, state: PlanState, phase_id: str) -> list[StatusChange]:
        """Handle an unresponsive worker: redispatch, then escalate."""
        phase = state.get(phase_id)
        if phase.status not in WORKER_STATES:
            raise InvalidTransitionError(phase.id, phase.status, S.DISPATCHED, "no worker is running")

        phase.timeouts += 1
        if phase.timeouts <= self.worker_timeout_retries:
            target = S.DISPATCHED if phase.status == S.DEVELOPING else phase.status
            logger.warning(f"Phase {phase.id} worker timed out ({phase.timeouts}); redispatching")
            return [phase.move_to(target, f"worker timeout {phase.timeouts}; redispatched")]

        logger.warning(f"Phase {phase.id} escalated after {phase.timeouts} worker timeouts")
        return [phase.move_to(S.ESCALATED, f"worker unresponsive after {phase.timeouts} timeouts")]

    def abandon(self, state: PlanState, phase_id: str, reason: str) -> list[StatusChange]:
        """Force a phase to ESCALATED. The only way to cancel work."""
        phase = state.get(phase_id)
        if phase.status.is_terminal:
            raise InvalidTransitionError(phase.id, phase.status, S.ESCALATED, "phase already finished")
        logger.warning(f"Phase {phase.id} abandoned: {reason}")
        return [phase.move_to(S.ESCALATED, reason)]

    def resolve_escalation(self, state: PlanState, phase_id: str, remove: bool = False) -> list[StatusChange]:
        """Human resolution of an escalated phase: complete it or remove it."""
        phase = state.get(phase_id)
        if phase.status != S.ESCALATED:
            raise InvalidTransitionError(phase.id, phase.status, S.DONE, "only escalated phases can be resolved")

        if remove:
            change = phase.mark_removed(REMOVED_BY_OPERATOR)
            logger.info(f"Phase {phase.id} removed; dependents unblocked")
            return [change]

        return self._finish(state, phase, "resolved by operator")
