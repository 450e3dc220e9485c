"""Audit models for plan validation."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class AuditSeverity(str, Enum):
    """Severity level for audit issues."""

    ERROR = "error"  # Plan cannot run
    WARNING = "warning"  # Plan may have issues
    INFO = "info"  # Worth knowing before dispatch


class AuditIssue(BaseModel):
    """An issue found during plan audit."""

    severity: AuditSeverity
    code: str  # e.g., "MALFORMED_PHASE", "CIRCULAR_DEPENDENCY"
    message: str
    phase_ids: list[str] = Field(default_factory=list)


class AuditSummary(BaseModel):
    """Summary of audit results."""

    plan: str
    phases_found: int
    levels: int
    groups: list[str]
    parallel_phases: int
    implicit_edges: int
    errors: int
    warnings: int


class AuditResult(BaseModel):
    """Result of auditing a plan."""

    passed: bool
    issues: list[AuditIssue]
    summary: AuditSummary
