"""Core data models for ravel."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field

from ravel.core.errors import UnknownPhaseError

# History reasons that set or clear Phase.removed
REMOVED_BY_OPERATOR = "removed by operator"
REMOVED_FROM_PLAN = "no longer in plan"
RESTORED_TO_PLAN = "restored to plan"


class PhaseStatus(str, Enum):
    """Status of a phase in the implement -> review -> merge lifecycle."""

    PENDING = "pending"
    DISPATCHED = "dispatched"
    DEVELOPING = "developing"
    FOR_REVIEW = "for_review"
    MERGED = "merged"
    PR_APPROVED = "pr_approved"
    REJECTED = "rejected"
    FIXING = "fixing"
    ESCALATED = "escalated"
    DONE = "done"

    @property
    def is_terminal(self) -> bool:
        return self in (PhaseStatus.DONE, PhaseStatus.ESCALATED)


class IntegrationOutcome(str, Enum):
    """Result of merging a parallel group into its integration branch."""

    SUCCESS = "success"
    BUILD_FAILED = "build_failed"  # Clean merge, verification failed
    CONFLICT = "conflict"  # Merge conflict, needs a human


# =============================================================================
# Plan Models
# =============================================================================


class PhaseSpec(BaseModel):
    """A phase as declared in the plan document."""

    id: str
    name: str
    order: int
    depends_on: list[str] = Field(default_factory=list)
    file_targets: list[str] = Field(default_factory=list)
    scope: str = ""
    acceptance_criteria: list[str] = Field(default_factory=list)
    tests: list[str] = Field(default_factory=list)


class ParsedPlan(BaseModel):
    """A plan document parsed into ordered phase records."""

    name: str
    path: Path
    base_branch: str | None = None
    phases: list[PhaseSpec]

    @property
    def phase_ids(self) -> list[str]:
        return [p.id for p in self.phases]


# =============================================================================
# State Models
# =============================================================================


class StatusChange(BaseModel):
    """One recorded step through the lifecycle."""

    from_status: PhaseStatus | None
    to_status: PhaseStatus
    at: datetime = Field(default_factory=datetime.now)
    reason: str | None = None


class Phase(BaseModel):
    """A phase as tracked by the status store."""

    id: str
    name: str
    branch_name: str
    order: int
    level: int = 0
    group: str | None = None
    explicit_dependencies: list[str] = Field(default_factory=list)
    implicit_dependencies: list[str] = Field(default_factory=list)
    file_targets: list[str] = Field(default_factory=list)
    status: PhaseStatus = PhaseStatus.PENDING
    attempts: int = 0
    timeouts: int = 0
    review_refs: list[str] = Field(default_factory=list)
    synthetic: bool = False
    resolves: list[str] = Field(
        default_factory=list,
        description="Group members whose integration this fix phase carries",
    )
    removed: bool = False
    description: str | None = None
    history: list[StatusChange] = Field(default_factory=list)

    @property
    def dependencies(self) -> list[str]:
        """Explicit and implicit dependencies, explicit first."""
        return self.explicit_dependencies + [d for d in self.implicit_dependencies if d not in self.explicit_dependencies]

    @property
    def is_solo(self) -> bool:
        return self.group is None

    def move_to(self, status: PhaseStatus, reason: str | None = None) -> StatusChange:
        """Set the status and append the step to the history."""
        change = StatusChange(from_status=self.status, to_status=status, reason=reason)
        self.history.append(change)
        self.status = status
        return change

    def mark_removed(self, reason: str) -> StatusChange:
        """Drop the phase from scheduling without changing its status."""
        change = StatusChange(from_status=self.status, to_status=self.status, reason=reason)
        self.history.append(change)
        self.removed = True
        return change

    @property
    def removed_by_operator(self) -> bool:
        return any(change.reason == REMOVED_BY_OPERATOR for change in self.history)

    def add_review_refs(self, refs: list[str]) -> None:
        for ref in refs:
            if ref not in self.review_refs:
                self.review_refs.append(ref)


class IntegrationRecord(BaseModel):
    """One attempt at integrating a parallel group."""

    group: str
    outcome: IntegrationOutcome
    phase_ids: list[str]
    detail: str | None = None
    fix_phase: str | None = None
    resolved: bool = False
    recorded_at: datetime = Field(default_factory=datetime.now)


class PlanState(BaseModel):
    """The durable record for one plan: the single source of truth."""

    plan_name: str
    plan_path: Path
    base_point: str
    phases: dict[str, Phase] = Field(default_factory=dict)
    integrations: list[IntegrationRecord] = Field(default_factory=list)
    revision: int = 0
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    def get(self, phase_id: str) -> Phase:
        """Look up a phase, raising UnknownPhaseError if absent."""
        try:
            return self.phases[phase_id]
        except KeyError:
            raise UnknownPhaseError(phase_id) from None

    def group_labels(self) -> list[str]:
        """All group labels in use, organic first, in first-seen order."""
        labels: list[str] = []
        for phase in sorted(self.phases.values(), key=lambda p: (p.synthetic, p.level, p.order)):
            if phase.group is not None and phase.group not in labels:
                labels.append(phase.group)
        return labels

    def members(self, group: str) -> list[Phase]:
        return sorted(
            (p for p in self.phases.values() if p.group == group),
            key=lambda p: p.order,
        )


# =============================================================================
# Events
# =============================================================================


class TransitionRequest(BaseModel):
    """A status transition requested by a worker, reviewer, or operator."""

    phase_id: str
    target: PhaseStatus
    review_refs: list[str] = Field(default_factory=list)
    expected_attempts: int | None = None
    reason: str | None = None
    manual: bool = False


class ReviewVerdict(BaseModel):
    """Outcome of reviewing a phase's artifact."""

    phase_id: str
    approved: bool
    review_refs: list[str] = Field(default_factory=list)
    reason: str | None = None


class PhaseReady(BaseModel):
    """Emitted when a phase may be dispatched."""

    phase_id: str
    name: str
    branch_name: str
    group: str | None
    level: int


class GroupReady(BaseModel):
    """Emitted when every member of a group is approved and can be merged."""

    group: str
    phase_ids: list[str]
    branches: list[str]
    integration_branch: str
    base_point: str


class GroupCheck(BaseModel):
    """Answer to a check-group query."""

    group: str
    ready: bool
    statuses: dict[str, PhaseStatus]
    waiting_on: list[str] = Field(default_factory=list)
