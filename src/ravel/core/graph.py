"""Dependency graph construction: implicit edges, cycle detection, leveling."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from ravel.core.errors import CycleError
from ravel.core.models import ParsedPlan, Phase, PhaseSpec, PhaseStatus, StatusChange

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)


@dataclass
class PhaseGraph:
    """A validated DAG over phase ids.

    Attributes:
        order: Phase ids in declaration order
        explicit: Phase id -> dependencies declared by the plan author
        implicit: Phase id -> dependencies inferred from shared file targets
        levels: Phase id -> topological depth (0 for no dependencies)
        groups: Phase id -> group letter, or None for solo phases
    """

    order: list[str]
    explicit: dict[str, list[str]]
    implicit: dict[str, list[str]] = field(default_factory=dict)
    levels: dict[str, int] = field(default_factory=dict)
    groups: dict[str, str | None] = field(default_factory=dict)

    def dependencies(self, phase_id: str) -> list[str]:
        explicit = self.explicit.get(phase_id, [])
        return explicit + [d for d in self.implicit.get(phase_id, []) if d not in explicit]

    @property
    def edges(self) -> list[tuple[str, str]]:
        """All edges as (dependency, dependent) pairs."""
        return [(dep, pid) for pid in self.order for dep in self.dependencies(pid)]

    def level_sets(self) -> list[list[str]]:
        """Phase ids per level, each in declaration order."""
        if not self.levels:
            return []
        sets: list[list[str]] = [[] for _ in range(max(self.levels.values()) + 1)]
        for pid in self.order:
            sets[self.levels[pid]].append(pid)
        return sets


def build_graph(phases: list[PhaseSpec]) -> PhaseGraph:
    """Build and validate the dependency graph for parsed phases.

    Raises:
        CycleError: If explicit and implicit edges together form a cycle.
    """
    order = [p.id for p in sorted(phases, key=lambda p: p.order)]
    explicit = {p.id: list(p.depends_on) for p in phases}
    graph = PhaseGraph(order=order, explicit=explicit)

    graph.implicit = infer_implicit_dependencies(phases, explicit)
    topo = topological_order(order, graph.dependencies)
    graph.levels = compute_levels(topo, graph.dependencies)
    graph.groups = assign_groups(order, graph.levels)

    parallel = sum(1 for g in graph.groups.values() if g is not None)
    logger.debug(
        f"Built graph: {len(order)} phases, {len(graph.edges)} edges, "
        f"{len(graph.level_sets())} levels, {parallel} parallel phases"
    )
    return graph


def infer_implicit_dependencies(
    phases: list[PhaseSpec],
    explicit: dict[str, list[str]],
) -> dict[str, list[str]]:
    """Order phases that touch the same files.

    For every pair sharing a file target that is not already ordered, in
    either direction and transitively, by explicit edges or by implicit edges
    added before it, the later-declared phase depends on the earlier one.
    Implicit edges alone never close a cycle.
    """
    implicit: dict[str, list[str]] = {p.id: [] for p in phases}
    ordered = sorted(phases, key=lambda p: p.order)

    def edges(phase_id: str) -> list[str]:
        return explicit.get(phase_id, []) + implicit.get(phase_id, [])

    for i, earlier in enumerate(ordered):
        earlier_files = set(earlier.file_targets)
        if not earlier_files:
            continue
        for later in ordered[i + 1 :]:
            overlap = earlier_files & set(later.file_targets)
            if not overlap:
                continue
            if _reaches(edges, later.id, earlier.id) or _reaches(edges, earlier.id, later.id):
                continue
            implicit[later.id].append(earlier.id)
            logger.debug(f"Implicit dependency {earlier.id} -> {later.id} (shared: {', '.join(sorted(overlap))})")

    return implicit


def _reaches(dependencies: Callable[[str], list[str]], start: str, target: str) -> bool:
    """True if `start` depends on `target` directly or transitively."""
    stack = list(dependencies(start))
    seen: set[str] = set()
    while stack:
        node = stack.pop()
        if node == target:
            return True
        if node in seen:
            continue
        seen.add(node)
        stack.extend(dependencies(node))
    return False


def topological_order(order: list[str], dependencies: Callable[[str], list[str]]) -> list[str]:
    """Depth-first traversal returning dependencies before dependents.

    Raises:
        CycleError: On a back-edge into the current recursion stack, naming
            the stack segment that forms the cycle.
    """
    visited: set[str] = set()
    rec_stack: set[str] = set()
    result: list[str] = []

    def visit(node: str, path: list[str]) -> None:
        visited.add(node)
        rec_stack.add(node)
        path.append(node)

        for neighbor in dependencies(node):
            if neighbor not in visited:
                visit(neighbor, path)
            elif neighbor in rec_stack:
                cycle_start = path.index(neighbor)
                raise CycleError(path[cycle_start:])

        path.pop()
        rec_stack.remove(node)
        result.append(node)

    for phase_id in order:
        if phase_id not in visited:
            visit(phase_id, [])

    return result


def compute_levels(topo: list[str], dependencies: Callable[[str], list[str]]) -> dict[str, int]:
    levels: dict[str, int] = {}
    for phase_id in topo:
        deps = dependencies(phase_id)
        levels[phase_id] = 1 + max(levels[d] for d in deps) if deps else 0
    return levels


def assign_groups(order: list[str], levels: dict[str, int]) -> dict[str, str | None]:
    """Label each parallel level with successive letters; solo levels get None."""
    by_level: dict[int, list[str]] = {}
    for phase_id in order:
        by_level.setdefault(levels[phase_id], []).append(phase_id)

    groups: dict[str, str | None] = {}
    next_label = 0
    for level in sorted(by_level):
        members = by_level[level]
        if len(members) == 1:
            groups[members[0]] = None
            continue
        label = group_label(next_label)
        next_label += 1
        for phase_id in members:
            groups[phase_id] = label
    return groups


def group_label(index: int) -> str:
    """0 -> A, 25 -> Z, 26 -> AA, 27 -> AB, ..."""
    label = ""
    index += 1
    while index:
        index, rem = divmod(index - 1, 26)
        label = chr(ord("A") + rem) + label
    return label


def is_organic_group(label: str) -> bool:
    return label.isalpha() and label.isupper()


def slugify(text: str, max_length: int = 40) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")
    return slug[:max_length].rstrip("-") or "phase"


def branch_name_for(prefix: str, phase_id: str, name: str, synthetic: bool = False) -> str:
    if synthetic:
        return f"{prefix}{phase_id.lower()}-{slugify(name)}"
    return f"{prefix}phase-{phase_id.lower()}-{slugify(name)}"


def build_phases(plan: ParsedPlan, graph: PhaseGraph, branch_prefix: str = "ravel/") -> dict[str, Phase]:
    """Create PENDING phase records for a freshly built graph."""
    phases: dict[str, Phase] = {}
    for spec in sorted(plan.phases, key=lambda p: p.order):
        phases[spec.id] = Phase(
            id=spec.id,
            name=spec.name,
            branch_name=branch_name_for(branch_prefix, spec.id, spec.name),
            order=spec.order,
            level=graph.levels[spec.id],
            group=graph.groups[spec.id],
            explicit_dependencies=list(graph.explicit[spec.id]),
            implicit_dependencies=list(graph.implicit.get(spec.id, [])),
            file_targets=list(spec.file_targets),
            history=[StatusChange(from_status=None, to_status=PhaseStatus.PENDING, reason="parsed")],
        )
    return phases
