"""Plan auditor for deterministic pre-flight validation."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from ravel.core.audit import AuditIssue, AuditResult, AuditSeverity, AuditSummary
from ravel.core.errors import (
    CycleError,
    DuplicatePhaseIdError,
    MalformedPhaseError,
    PlanError,
    UnknownDependencyError,
)
from ravel.core.graph import build_graph
from ravel.parsers.plan import parse_plan

if TYPE_CHECKING:
    from ravel.core.graph import PhaseGraph
    from ravel.core.models import ParsedPlan


class PlanAuditor:
    """Auditor for validating plan structure without touching any state."""

    def __init__(self, synthetic_prefix: str = "I-") -> None:
        self.synthetic_prefix = synthetic_prefix

    def audit(self, plan_path: Path) -> AuditResult:
        """Run all audit checks on a plan.

        Args:
            plan_path: Path to the plan markdown file.

        Returns:
            AuditResult with pass/fail and list of issues.
        """
        try:
            plan = parse_plan(plan_path, synthetic_prefix=self.synthetic_prefix)
        except FileNotFoundError:
            return self._failed(plan_path, "PLAN_NOT_FOUND", f"Plan not found: {plan_path}", [])
        except PlanError as e:
            return self._failed(plan_path, _error_code(e), str(e), _error_ids(e))

        try:
            graph = build_graph(plan.phases)
        except CycleError as e:
            return self._failed(plan_path, "CIRCULAR_DEPENDENCY", str(e), e.cycle, phases_found=len(plan.phases))

        issues: list[AuditIssue] = []
        issues.extend(self._check_tests(plan))
        issues.extend(self._check_file_targets(plan))
        issues.extend(self._check_implicit_edges(graph))

        errors = sum(1 for i in issues if i.severity == AuditSeverity.ERROR)
        warnings = sum(1 for i in issues if i.severity == AuditSeverity.WARNING)
        groups = sorted({g for g in graph.groups.values() if g is not None}, key=lambda g: (len(g), g))

        summary = AuditSummary(
            plan=plan.name,
            phases_found=len(plan.phases),
            levels=len(graph.level_sets()),
            groups=groups,
            parallel_phases=sum(1 for g in graph.groups.values() if g is not None),
            implicit_edges=sum(len(deps) for deps in graph.implicit.values()),
            errors=errors,
            warnings=warnings,
        )
        return AuditResult(passed=errors == 0, issues=issues, summary=summary)

    def _failed(
        self,
        plan_path: Path,
        code: str,
        message: str,
        phase_ids: list[str],
        phases_found: int = 0,
    ) -> AuditResult:
        return AuditResult(
            passed=False,
            issues=[AuditIssue(severity=AuditSeverity.ERROR, code=code, message=message, phase_ids=phase_ids)],
            summary=AuditSummary(
                plan=str(plan_path),
                phases_found=phases_found,
                levels=0,
                groups=[],
                parallel_phases=0,
                implicit_edges=0,
                errors=1,
                warnings=0,
            ),
        )

    def _check_tests(self, plan: ParsedPlan) -> list[AuditIssue]:
        """Phases should say how they are tested."""
        return [
            AuditIssue(
                severity=AuditSeverity.WARNING,
                code="NO_TESTS",
                message=f"Phase {p.id} has no Tests section items",
                phase_ids=[p.id],
            )
            for p in plan.phases
            if not p.tests
        ]

    def _check_file_targets(self, plan: ParsedPlan) -> list[AuditIssue]:
        """Without file targets, overlapping edits cannot be ordered."""
        return [
            AuditIssue(
                severity=AuditSeverity.WARNING,
                code="NO_FILE_TARGETS",
                message=f"Phase {p.id} declares no file targets; conflicting edits cannot be detected",
                phase_ids=[p.id],
            )
            for p in plan.phases
            if not p.file_targets
        ]

    def _check_implicit_edges(self, graph: PhaseGraph) -> list[AuditIssue]:
        issues: list[AuditIssue] = []
        for phase_id in graph.order:
            for dep in graph.implicit.get(phase_id, []):
                issues.append(
                    AuditIssue(
                        severity=AuditSeverity.INFO,
                        code="IMPLICIT_DEPENDENCY",
                        message=f"Phase {phase_id} will wait for phase {dep} (shared file targets)",
                        phase_ids=[dep, phase_id],
                    )
                )
        return issues


def _error_code(error: PlanError) -> str:
    if isinstance(error, UnknownDependencyError):
        return "UNKNOWN_DEPENDENCY"
    if isinstance(error, MalformedPhaseError):
        return "MALFORMED_PHASE"
    if isinstance(error, DuplicatePhaseIdError):
        return "DUPLICATE_PHASE_ID"
    return "PLAN_PARSE_ERROR"


def _error_ids(error: PlanError) -> list[str]:
    phase_id = getattr(error, "phase_id", None)
    return [phase_id] if phase_id else []
