"""Error taxonomy for plan parsing, graph building, and phase transitions."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ravel.core.models import PhaseStatus


class RavelError(Exception):
    """Base class for all ravel errors."""


# =============================================================================
# Plan / graph errors (fatal for the whole run)
# =============================================================================


class PlanError(RavelError):
    """The plan document cannot be turned into a valid graph."""


class MalformedPhaseError(PlanError):
    """A phase block is missing a required section or is otherwise invalid."""

    def __init__(self, phase_id: str, reason: str) -> None:
        self.phase_id = phase_id
        self.reason = reason
        super().__init__(f"Phase {phase_id} is malformed: {reason}")


class UnknownDependencyError(MalformedPhaseError):
    """A phase depends on an id that is not declared in the plan."""

    def __init__(self, phase_id: str, dependency: str) -> None:
        self.dependency = dependency
        super().__init__(phase_id, f"depends on unknown phase {dependency}")


class DuplicatePhaseIdError(PlanError):
    def __init__(self, phase_id: str) -> None:
        self.phase_id = phase_id
        super().__init__(f"Duplicate phase id: {phase_id}")


class CycleError(PlanError):
    """The dependency graph contains a cycle."""

    def __init__(self, cycle: list[str]) -> None:
        self.cycle = cycle
        path = " -> ".join([*cycle, cycle[0]]) if cycle else ""
        super().__init__(f"Circular dependency detected: {path}")


class PlanDriftError(PlanError):
    """The plan changed shape after some of its phases were completed."""

    def __init__(self, phase_ids: list[str]) -> None:
        self.phase_ids = phase_ids
        super().__init__(f"Completed phases missing from plan: {', '.join(phase_ids)}")


# =============================================================================
# Mutation errors (abort only the requested change)
# =============================================================================


class InvalidTransitionError(RavelError):
    """A requested transition is not allowed by the lifecycle."""

    def __init__(
        self,
        phase_id: str,
        current: PhaseStatus,
        requested: PhaseStatus,
        reason: str | None = None,
    ) -> None:
        self.phase_id = phase_id
        self.current = current
        self.requested = requested
        self.reason = reason
        message = f"Phase {phase_id}: cannot move from {current.value} to {requested.value}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class UnknownPhaseError(RavelError):
    def __init__(self, phase_id: str) -> None:
        self.phase_id = phase_id
        super().__init__(f"Unknown phase: {phase_id}")


class UnknownGroupError(RavelError):
    def __init__(self, group: str) -> None:
        self.group = group
        super().__init__(f"Unknown group: {group}")


class GroupNotReadyError(RavelError):
    """Integration was requested before every member was approved."""

    def __init__(self, group: str, waiting_on: list[str]) -> None:
        self.group = group
        self.waiting_on = waiting_on
        super().__init__(f"Group {group} is not ready; waiting on: {', '.join(waiting_on)}")


class MergeConflictError(RavelError):
    """Merging a group conflicted. Requires human resolution."""

    def __init__(self, group: str, phase_ids: list[str], detail: str | None = None) -> None:
        self.group = group
        self.phase_ids = phase_ids
        self.detail = detail
        message = f"Merge conflict integrating group {group} (phases {', '.join(phase_ids)})"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class StateStoreError(RavelError):
    """The status store could not be locked, read, or written."""
