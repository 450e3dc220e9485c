"""Runtime graph extension with synthetic phases."""

from __future__ import annotations

import logging

from ravel.core.errors import DuplicatePhaseIdError, MalformedPhaseError
from ravel.core.graph import branch_name_for
from ravel.core.models import IntegrationOutcome, Phase, PhaseStatus, PlanState, StatusChange

logger = logging.getLogger(__name__)

SYNTHETIC_GROUP_PREFIX = "S-"


def synthetic_group_label(label: str) -> str:
    """Map an operator-supplied label into the synthetic namespace."""
    return label if label.startswith(SYNTHETIC_GROUP_PREFIX) else f"{SYNTHETIC_GROUP_PREFIX}{label}"


def next_fix_id(state: PlanState, group: str, prefix: str = "I-") -> str:
    """I-A for the first fix of group A, then I-A-2, I-A-3, ..."""
    base = f"{prefix}{group}"
    if base not in state.phases:
        return base
    n = 2
    while f"{base}-{n}" in state.phases:
        n += 1
    return f"{base}-{n}"


def next_adhoc_id(state: PlanState, prefix: str = "I-") -> str:
    n = 1
    while f"{prefix}{n}" in state.phases:
        n += 1
    return f"{prefix}{n}"


def _next_order(state: PlanState) -> int:
    return max((p.order for p in state.phases.values()), default=-1) + 1


def _level_after(state: PlanState, depends_on: list[str]) -> int:
    if not depends_on:
        return 0
    return 1 + max(state.get(d).level for d in depends_on)


def inject_fix_phase(
    state: PlanState,
    group: str,
    description: str | None = None,
    prefix: str = "I-",
    branch_prefix: str = "ravel/",
) -> Phase:
    """Add a fix phase for a group whose integration build failed.

    The fix depends on every approved member and carries their combined
    work; it has no file-target edges of its own.
    """
    members = [m for m in state.members(group) if m.status == PhaseStatus.PR_APPROVED and not m.removed]
    member_ids = [m.id for m in members]

    fix_id = next_fix_id(state, group, prefix)
    name = f"Fix integration of group {group}"
    fix = Phase(
        id=fix_id,
        name=name,
        branch_name=branch_name_for(branch_prefix, fix_id, name, synthetic=True),
        order=_next_order(state),
        level=_level_after(state, member_ids),
        group=None,
        explicit_dependencies=member_ids,
        synthetic=True,
        resolves=member_ids,
        description=description,
        history=[
            StatusChange(
                from_status=None,
                to_status=PhaseStatus.PENDING,
                reason=f"injected after group {group} failed integration",
            )
        ],
    )
    state.phases[fix_id] = fix
    logger.info(f"Injected fix phase {fix_id} for group {group} (depends on {', '.join(member_ids)})")
    return fix


def add_synthetic_phase(
    state: PlanState,
    name: str,
    depends_on: list[str],
    phase_id: str | None = None,
    group: str | None = None,
    description: str | None = None,
    prefix: str = "I-",
    branch_prefix: str = "ravel/",
) -> Phase:
    """Add an ad hoc synthetic phase depending on any phases already stored.

    Raises:
        UnknownPhaseError: If a dependency is not in the store.
        DuplicatePhaseIdError: If the requested id is taken.
        MalformedPhaseError: If the requested id lacks the synthetic prefix.
    """
    for dep in depends_on:
        state.get(dep)

    if phase_id is None:
        phase_id = next_adhoc_id(state, prefix)
    elif not phase_id.startswith(prefix):
        raise MalformedPhaseError(phase_id, f"synthetic phase ids must start with '{prefix}'")
    if phase_id in state.phases:
        raise DuplicatePhaseIdError(phase_id)

    phase = Phase(
        id=phase_id,
        name=name,
        branch_name=branch_name_for(branch_prefix, phase_id, name, synthetic=True),
        order=_next_order(state),
        level=_level_after(state, depends_on),
        group=synthetic_group_label(group) if group else None,
        explicit_dependencies=list(dict.fromkeys(depends_on)),
        synthetic=True,
        description=description,
        history=[StatusChange(from_status=None, to_status=PhaseStatus.PENDING, reason="added by operator")],
    )
    state.phases[phase_id] = phase
    logger.info(f"Added synthetic phase {phase_id} ({name})")
    return phase


def settle_fix_phase(state: PlanState, fix: Phase) -> list[str]:
    """Complete the members a finished fix phase resolves.

    Their work is considered merged through the fix, so each records the
    fix's review refs.
    """
    settled: list[str] = []
    for pid in fix.resolves:
        member = state.get(pid)
        if member.status != PhaseStatus.PR_APPROVED:
            continue
        member.add_review_refs(fix.review_refs)
        member.move_to(PhaseStatus.DONE, reason=f"merged via {fix.id}")
        settled.append(pid)

    for record in state.integrations:
        if record.fix_phase == fix.id and record.outcome == IntegrationOutcome.BUILD_FAILED:
            record.resolved = True

    if settled:
        logger.info(f"Fix phase {fix.id} done; completed {', '.join(settled)}")
    return settled
