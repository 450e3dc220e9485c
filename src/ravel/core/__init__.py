"""Core orchestration logic."""

from ravel.core.audit import AuditIssue, AuditResult, AuditSeverity, AuditSummary
from ravel.core.auditor import PlanAuditor
from ravel.core.errors import (
    CycleError,
    DuplicatePhaseIdError,
    GroupNotReadyError,
    InvalidTransitionError,
    MalformedPhaseError,
    MergeConflictError,
    PlanDriftError,
    RavelError,
    StateStoreError,
    UnknownDependencyError,
    UnknownGroupError,
    UnknownPhaseError,
)
from ravel.core.models import (
    GroupCheck,
    GroupReady,
    IntegrationOutcome,
    IntegrationRecord,
    ParsedPlan,
    Phase,
    PhaseReady,
    PhaseSpec,
    PhaseStatus,
    PlanState,
    ReviewVerdict,
    TransitionRequest,
)

__all__ = [
    "AuditIssue",
    "AuditResult",
    "AuditSeverity",
    "AuditSummary",
    "CycleError",
    "DuplicatePhaseIdError",
    "GroupCheck",
    "GroupNotReadyError",
    "GroupReady",
    "IntegrationOutcome",
    "IntegrationRecord",
    "InvalidTransitionError",
    "MalformedPhaseError",
    "MergeConflictError",
    "ParsedPlan",
    "Phase",
    "PhaseReady",
    "PhaseSpec",
    "PhaseStatus",
    "PlanAuditor",
    "PlanDriftError",
    "PlanState",
    "RavelError",
    "ReviewVerdict",
    "StateStoreError",
    "TransitionRequest",
    "UnknownDependencyError",
    "UnknownGroupError",
    "UnknownPhaseError",
]
