"""Parser for phased plan documents."""

from __future__ import annotations

import logging
import re
from pathlib import Path

from ravel.core.errors import (
    DuplicatePhaseIdError,
    MalformedPhaseError,
    PlanError,
    UnknownDependencyError,
)
from ravel.core.models import ParsedPlan, PhaseSpec

logger = logging.getLogger(__name__)

PHASE_ID_PATTERN = r"[A-Za-z0-9][\w.-]*"

_PHASE_HEADING = re.compile(
    rf"^##[ \t]+Phase[ \t]+({PHASE_ID_PATTERN})[ \t]*[:\-–][ \t]*(\S.*?)[ \t]*$",
    re.MULTILINE | re.IGNORECASE,
)
# Anything that looks like a phase heading, well-formed or not
_PHASE_LIKE_HEADING = re.compile(r"^##[ \t]+Phase\b[ \t]*(\S*).*$", re.MULTILINE | re.IGNORECASE)
_ANY_H2 = re.compile(r"^##\s", re.MULTILINE)
_SECTION_HEADING = re.compile(r"^###\s+(.+?)\s*:?\s*$", re.MULTILINE)
_DEPENDS = re.compile(
    r"^\s*(?:\*\*)?Depends(?:\s+On)?:(?:\*\*)?\s*(.*?)\s*$",
    re.MULTILINE | re.IGNORECASE,
)
_LIST_ITEM = re.compile(r"^\s*(?:[-*+]|\d+[.)])\s+(?:\[[ xX]\]\s+)?(.+?)\s*$", re.MULTILINE)
_PHASE_ID = re.compile(rf"^{PHASE_ID_PATTERN}$")

SECTION_ALIASES = {
    "scope": "scope",
    "files": "files",
    "file targets": "files",
    "acceptance criteria": "acceptance",
    "acceptance": "acceptance",
    "tests": "tests",
    "testing": "tests",
}


def parse_plan(plan_path: Path, synthetic_prefix: str = "I-") -> ParsedPlan:
    """Parse a plan markdown file.

    Expected format:
    ```markdown
    # Checkout Revamp - Master Plan

    **Base Branch:** main

    ## Phase 1: Order Model
    **Depends On:** None

    ### Scope
    Introduce the order aggregate.

    ### Files
    - `src/orders/models.py`

    ### Acceptance Criteria
    - [ ] Orders persist with line items

    ### Tests
    - `tests/test_orders.py`
    ```
    """
    content = plan_path.read_text(encoding="utf-8")
    return parse_plan_text(content, plan_path, synthetic_prefix=synthetic_prefix)


def parse_plan_text(content: str, plan_path: Path, synthetic_prefix: str = "I-") -> ParsedPlan:
    """Parse plan markdown already read into memory."""
    name_match = re.search(r"^#\s+(.+?)(?:\s*-\s*Master Plan)?\s*$", content, re.MULTILINE)
    name = name_match.group(1).strip() if name_match else plan_path.stem

    phases = _parse_phase_blocks(content, synthetic_prefix)
    if not phases:
        raise PlanError(f"No phase blocks found in {plan_path}")

    _check_dependencies_exist(phases)

    logger.debug(f"Parsed {len(phases)} phases from {plan_path}")
    return ParsedPlan(
        name=name,
        path=plan_path,
        base_branch=_parse_base_branch(content),
        phases=phases,
    )


def _parse_phase_blocks(content: str, synthetic_prefix: str) -> list[PhaseSpec]:
    """Split the document on `## Phase <id>: <name>` headings."""
    phases: list[PhaseSpec] = []
    seen: set[str] = set()

    for heading in _PHASE_LIKE_HEADING.finditer(content):
        if not _PHASE_HEADING.fullmatch(heading.group(0)):
            raise MalformedPhaseError(
                heading.group(1).rstrip(":") or "?",
                f"heading '{heading.group(0).strip()}' must read '## Phase <id>: <name>'",
            )

    for order, match in enumerate(_PHASE_HEADING.finditer(content)):
        phase_id = match.group(1)
        name = match.group(2).strip()

        if phase_id in seen:
            raise DuplicatePhaseIdError(phase_id)
        seen.add(phase_id)

        if phase_id.startswith(synthetic_prefix):
            raise MalformedPhaseError(phase_id, f"ids starting with '{synthetic_prefix}' are reserved for injected phases")

        # Block runs until the next level-2 heading of any kind
        body = content[match.end() :]
        next_h2 = _ANY_H2.search(body)
        if next_h2:
            body = body[: next_h2.start()]

        phases.append(_parse_phase_body(phase_id, name, order, body))

    return phases


def _parse_phase_body(phase_id: str, name: str, order: int, body: str) -> PhaseSpec:
    sections = _split_sections(body)

    scope = sections.get("scope")
    if scope is None:
        raise MalformedPhaseError(phase_id, "missing Scope section")
    if not scope.strip():
        raise MalformedPhaseError(phase_id, "Scope section is empty")

    acceptance = sections.get("acceptance")
    if acceptance is None:
        raise MalformedPhaseError(phase_id, "missing Acceptance Criteria section")
    criteria = _list_items(acceptance)
    if not criteria:
        raise MalformedPhaseError(phase_id, "Acceptance Criteria section has no criteria")

    return PhaseSpec(
        id=phase_id,
        name=name,
        order=order,
        depends_on=_parse_dependencies(phase_id, body),
        file_targets=_parse_file_targets(sections.get("files", "")),
        scope=scope.strip(),
        acceptance_criteria=criteria,
        tests=_list_items(sections.get("tests", "")),
    )


def _split_sections(body: str) -> dict[str, str]:
    """Map normalised `###` section names to their text."""
    sections: dict[str, str] = {}
    headings = list(_SECTION_HEADING.finditer(body))
    for i, heading in enumerate(headings):
        key = SECTION_ALIASES.get(heading.group(1).strip().lower())
        if key is None:
            continue
        end = headings[i + 1].start() if i + 1 < len(headings) else len(body)
        sections[key] = body[heading.end() : end]
    return sections


def _parse_dependencies(phase_id: str, body: str) -> list[str]:
    """Extract explicit dependencies.

    Valid patterns:
    - **Depends On:** Phase 1, Phase 2
    - **Depends On:** Phase 1 (schema), Phase 3
    - DEPENDS: 1,2
    - **Depends On:** None
    """
    match = _DEPENDS.search(body)
    if not match:
        return []

    value = match.group(1).strip()
    if not value or value.lower().startswith(("n/a", "none", "-", "no ")):
        return []

    value = re.sub(r"\([^)]*\)", "", value)
    deps: list[str] = []
    for token in re.split(r"[,;]", value):
        token = re.sub(r"^phase\s+", "", token.strip(), flags=re.IGNORECASE).strip("*` ")
        if not token:
            continue
        if not _PHASE_ID.match(token):
            raise MalformedPhaseError(phase_id, f"unreadable dependency '{token}'")
        if token not in deps:
            deps.append(token)
    return deps


def _parse_file_targets(section: str) -> list[str]:
    targets: list[str] = []
    for item in _list_items(section):
        ticked = re.search(r"`([^`]+)`", item)
        raw = ticked.group(1) if ticked else item.split()[0]
        path = _normalise_path(raw)
        if path and path not in targets:
            targets.append(path)
    return targets


def _normalise_path(raw: str) -> str:
    path = raw.strip().replace("\\", "/")
    while path.startswith("./"):
        path = path[2:]
    return path.rstrip("/")


def _list_items(section: str) -> list[str]:
    return [m.group(1).strip() for m in _LIST_ITEM.finditer(section) if m.group(1).strip()]


def _check_dependencies_exist(phases: list[PhaseSpec]) -> None:
    known = {p.id for p in phases}
    for phase in phases:
        for dep in phase.depends_on:
            if dep not in known:
                raise UnknownDependencyError(phase.id, dep)


def _parse_base_branch(content: str) -> str | None:
    """Extract the base point.

    Supports formats:
    - **Base Branch:** main
    - Base Branch: release/2.0
    - **Base:** 3f2a9c1
    """
    patterns = [
        r"\*\*Base(?:\s*Branch)?:?\*\*:?\s*`?([^\s`]+)`?",
        r"^Base(?:\s*Branch)?:\s*`?([^\s`]+)`?",
    ]
    for pattern in patterns:
        match = re.search(pattern, content, re.IGNORECASE | re.MULTILINE)
        if match:
            return match.group(1).strip()
    return None
