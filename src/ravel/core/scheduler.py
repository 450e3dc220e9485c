"""Readiness queries over a plan's status record.

Every function here is pure: it reads a PlanState and never mutates it.
"""

from __future__ import annotations

import re

from ravel.core.errors import UnknownGroupError
from ravel.core.graph import slugify
from ravel.core.models import (
    GroupCheck,
    GroupReady,
    IntegrationOutcome,
    Phase,
    PhaseReady,
    PhaseStatus,
    PlanState,
)


def natural_key(phase_id: str) -> tuple[tuple[int, int | str], ...]:
    """Sort key that orders "2" before "10" and "3.1" after "3"."""
    parts = re.findall(r"\d+|\D+", phase_id)
    return tuple((0, int(p)) if p.isdigit() else (1, p) for p in parts)


def schedule_key(phase: Phase) -> tuple[int, tuple[tuple[int, int | str], ...]]:
    return (phase.level, natural_key(phase.id))


def dependency_satisfied(state: PlanState, phase: Phase, dep_id: str) -> bool:
    """A dependency is satisfied once DONE or removed.

    A fix phase also accepts the group members it resolves once they are
    approved, since their completion waits on the fix itself.
    """
    dep = state.phases.get(dep_id)
    if dep is None:
        return False
    if dep.removed or dep.status == PhaseStatus.DONE:
        return True
    return dep_id in phase.resolves and dep.status == PhaseStatus.PR_APPROVED


def unmet_dependencies(state: PlanState, phase: Phase) -> list[str]:
    return [d for d in phase.dependencies if not dependency_satisfied(state, phase, d)]


def dependencies_satisfied(state: PlanState, phase: Phase) -> bool:
    return not unmet_dependencies(state, phase)


def ready(state: PlanState) -> list[Phase]:
    """PENDING phases whose whole dependency set is satisfied, by level then id."""
    candidates = [
        p
        for p in state.phases.values()
        if p.status == PhaseStatus.PENDING and not p.removed and dependencies_satisfied(state, p)
    ]
    return sorted(candidates, key=schedule_key)


def check_group(state: PlanState, group: str) -> GroupCheck:
    """Report whether every live member of a group is PR_APPROVED.

    Members already DONE, removed, or escalated are out of the merge and
    neither block it nor count towards it.
    """
    members = state.members(group)
    if not members:
        raise UnknownGroupError(group)

    eligible = [m for m in members if not m.removed and m.status not in (PhaseStatus.ESCALATED, PhaseStatus.DONE)]
    waiting = [m.id for m in eligible if m.status != PhaseStatus.PR_APPROVED]
    return GroupCheck(
        group=group,
        ready=bool(eligible) and not waiting,
        statuses={m.id: m.status for m in members},
        waiting_on=waiting,
    )


def group_ready(state: PlanState, group: str) -> bool:
    return check_group(state, group).ready


def open_fix_phase(state: PlanState, group: str) -> Phase | None:
    """The unfinished fix phase injected for a group, if any."""
    for record in reversed(state.integrations):
        if record.group != group or record.fix_phase is None:
            continue
        fix = state.phases.get(record.fix_phase)
        if fix is not None and fix.status != PhaseStatus.DONE and not fix.removed:
            return fix
    return None


def has_unresolved_conflict(state: PlanState, group: str) -> bool:
    for record in reversed(state.integrations):
        if record.group == group:
            return record.outcome == IntegrationOutcome.CONFLICT and not record.resolved
    return False


def awaiting_integration(state: PlanState) -> list[str]:
    """Groups ready to merge that have no fix phase or conflict outstanding."""
    return [
        label
        for label in state.group_labels()
        if group_ready(state, label)
        and open_fix_phase(state, label) is None
        and not has_unresolved_conflict(state, label)
    ]


def escalated_ancestors(state: PlanState, phase: Phase) -> list[str]:
    """Escalated phases anywhere in this phase's dependency closure.

    An approved group member only completes through its open fix phase, so
    the walk continues into that fix phase as well.
    """
    fixes: dict[str, list[str]] = {}
    for p in state.phases.values():
        if p.synthetic and not p.removed and p.status != PhaseStatus.DONE:
            for member in p.resolves:
                fixes.setdefault(member, []).append(p.id)

    found: list[str] = []
    stack = list(phase.dependencies)
    seen: set[str] = {phase.id}
    while stack:
        dep_id = stack.pop()
        if dep_id in seen:
            continue
        seen.add(dep_id)
        dep = state.phases.get(dep_id)
        if dep is None or dep.removed:
            continue
        if dep.status == PhaseStatus.ESCALATED:
            found.append(dep_id)
        elif dep.status != PhaseStatus.DONE:
            stack.extend(dep.dependencies)
            if dep.status == PhaseStatus.PR_APPROVED:
                stack.extend(fixes.get(dep_id, []))
    return sorted(found, key=natural_key)


def blocked(state: PlanState) -> list[Phase]:
    """PENDING phases that can never start until a human resolves an escalation."""
    stuck = [
        p
        for p in state.phases.values()
        if p.status == PhaseStatus.PENDING and not p.removed and escalated_ancestors(state, p)
    ]
    return sorted(stuck, key=schedule_key)


def integration_branch(state: PlanState, group: str, branch_prefix: str = "ravel/") -> str:
    return f"{branch_prefix}integrate/{slugify(state.base_point)}/{group.lower()}"


def events(state: PlanState, branch_prefix: str = "ravel/") -> list[PhaseReady | GroupReady]:
    """Everything the dispatcher may act on right now."""
    result: list[PhaseReady | GroupReady] = [
        PhaseReady(
            phase_id=p.id,
            name=p.name,
            branch_name=p.branch_name,
            group=p.group,
            level=p.level,
        )
        for p in ready(state)
    ]
    for label in awaiting_integration(state):
        members = [m for m in state.members(label) if m.status == PhaseStatus.PR_APPROVED]
        result.append(
            GroupReady(
                group=label,
                phase_ids=[m.id for m in members],
                branches=[m.branch_name for m in members],
                integration_branch=integration_branch(state, label, branch_prefix),
                base_point=state.base_point,
            )
        )
    return result
