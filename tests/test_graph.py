"""Unit tests for dependency graph construction."""

from __future__ import annotations

from pathlib import Path

import pytest

from ravel.core.errors import CycleError
from ravel.core.graph import (
    branch_name_for,
    build_graph,
    build_phases,
    group_label,
    is_organic_group,
    slugify,
)
from ravel.core.models import ParsedPlan, PhaseSpec, PhaseStatus


def spec(phase_id: str, order: int, depends_on: list[str] | None = None, files: list[str] | None = None) -> PhaseSpec:
    """Helper to create a PhaseSpec with only the graph-relevant fields."""
    return PhaseSpec(
        id=phase_id,
        name=f"Phase {phase_id}",
        order=order,
        depends_on=depends_on or [],
        file_targets=files or [],
    )


class TestLevels:
    """Tests for topological leveling and group assignment."""

    def test_diamond(self) -> None:
        """Two independent phases share a group; their dependent is solo."""
        graph = build_graph([spec("1", 0), spec("2", 1), spec("3", 2, ["1", "2"])])

        assert graph.levels == {"1": 0, "2": 0, "3": 1}
        assert graph.groups == {"1": "A", "2": "A", "3": None}
        assert graph.level_sets() == [["1", "2"], ["3"]]

    def test_chain_has_no_groups(self) -> None:
        graph = build_graph([spec("1", 0), spec("2", 1, ["1"]), spec("3", 2, ["2"])])

        assert graph.levels == {"1": 0, "2": 1, "3": 2}
        assert all(g is None for g in graph.groups.values())

    def test_letters_only_for_parallel_levels(self) -> None:
        """A solo level between two parallel levels does not consume a letter."""
        graph = build_graph(
            [
                spec("1", 0),
                spec("2", 1),
                spec("3", 2, ["1", "2"]),
                spec("4", 3, ["3"]),
                spec("5", 4, ["3"]),
            ]
        )

        assert graph.groups == {"1": "A", "2": "A", "3": None, "4": "B", "5": "B"}

    def test_level_is_longest_path(self) -> None:
        graph = build_graph([spec("1", 0), spec("2", 1, ["1"]), spec("3", 2, ["1", "2"])])

        assert graph.levels["3"] == 2

    def test_edges(self) -> None:
        graph = build_graph([spec("1", 0), spec("2", 1, ["1"])])

        assert graph.edges == [("1", "2")]


class TestCycles:
    """Tests for cycle detection."""

    def test_two_phase_cycle(self) -> None:
        """A depends on B and B on A: the error names both."""
        with pytest.raises(CycleError) as exc_info:
            build_graph([spec("A", 0, ["B"]), spec("B", 1, ["A"])])

        assert sorted(exc_info.value.cycle) == ["A", "B"]
        assert "Circular dependency detected" in str(exc_info.value)
        assert "A -> B -> A" in str(exc_info.value)

    def test_self_dependency(self) -> None:
        with pytest.raises(CycleError) as exc_info:
            build_graph([spec("1", 0, ["1"])])

        assert exc_info.value.cycle == ["1"]

    def test_longer_cycle_reports_only_members(self) -> None:
        with pytest.raises(CycleError) as exc_info:
            build_graph([spec("0", 0), spec("1", 1, ["0", "3"]), spec("2", 2, ["1"]), spec("3", 3, ["2"])])

        assert sorted(exc_info.value.cycle) == ["1", "2", "3"]

    def test_implicit_edge_never_reverses_explicit_order(self) -> None:
        phases = [
            spec("1", 0, ["3"]),
            spec("2", 1, ["1"], files=["a.py"]),
            spec("3", 2, files=["a.py"]),
        ]
        # 2 already reaches 3 through 1
        graph = build_graph(phases)

        assert graph.implicit["3"] == []
        assert graph.levels == {"3": 0, "1": 1, "2": 2}

    def test_implicit_edges_follow_earlier_implicit_edges(self) -> None:
        """A file-overlap edge is skipped when earlier implicit edges already order the pair."""
        phases = [
            spec("1", 0, ["3"], files=["a.py"]),
            spec("2", 1, files=["a.py", "b.py"]),
            spec("3", 2, files=["b.py"]),
        ]
        # 2 -> 1 is implicit, 1 -> 3 explicit, so 2 already reaches 3
        graph = build_graph(phases)

        assert graph.implicit == {"1": [], "2": ["1"], "3": []}
        assert graph.levels == {"3": 0, "1": 1, "2": 2}


class TestImplicitDependencies:
    """Tests for file-overlap edges."""

    def test_shared_file_orders_by_declaration(self) -> None:
        graph = build_graph([spec("1", 0, files=["src/a.py"]), spec("2", 1, files=["src/a.py", "src/b.py"])])

        assert graph.implicit == {"1": [], "2": ["1"]}
        assert graph.dependencies("2") == ["1"]
        assert graph.groups == {"1": None, "2": None}

    def test_no_edge_when_already_ordered(self) -> None:
        graph = build_graph(
            [
                spec("1", 0, files=["src/a.py"]),
                spec("2", 1, ["1"]),
                spec("3", 2, ["2"], files=["src/a.py"]),
            ]
        )

        assert graph.implicit["3"] == []

    def test_disjoint_files_stay_parallel(self) -> None:
        graph = build_graph([spec("1", 0, files=["src/a.py"]), spec("2", 1, files=["src/b.py"])])

        assert graph.groups == {"1": "A", "2": "A"}

    def test_deterministic(self) -> None:
        """Same input, same edges, regardless of list order."""
        phases = [
            spec("1", 0, files=["x.py"]),
            spec("2", 1, files=["x.py", "y.py"]),
            spec("3", 2, files=["y.py"]),
        ]
        first = build_graph(phases)
        second = build_graph(list(reversed(phases)))

        assert first.implicit == second.implicit
        assert first.implicit["3"] == ["2"]
        assert first.levels == second.levels


class TestNaming:
    """Tests for labels and branch names."""

    @pytest.mark.parametrize(
        ("index", "label"),
        [(0, "A"), (1, "B"), (25, "Z"), (26, "AA"), (27, "AB"), (51, "AZ"), (52, "BA")],
    )
    def test_group_label(self, index: int, label: str) -> None:
        assert group_label(index) == label

    def test_organic_group(self) -> None:
        assert is_organic_group("A")
        assert is_organic_group("AB")
        assert not is_organic_group("S-hotfix")

    def test_slugify(self) -> None:
        assert slugify("Add Payment Client (v2)!") == "add-payment-client-v2"
        assert slugify("???") == "phase"

    def test_branch_names(self) -> None:
        assert branch_name_for("ravel/", "3", "Checkout Flow") == "ravel/phase-3-checkout-flow"
        assert branch_name_for("ravel/", "I-A", "Fix group A", synthetic=True) == "ravel/i-a-fix-group-a"


class TestBuildPhases:
    """Tests for turning a graph into stored phase records."""

    def test_records_start_pending(self) -> None:
        phases = [spec("1", 0, files=["a.py"]), spec("2", 1, files=["a.py"])]
        plan = ParsedPlan(name="Plan", path=Path("plan.md"), phases=phases)
        records = build_phases(plan, build_graph(phases))

        assert list(records) == ["1", "2"]
        assert records["2"].status == PhaseStatus.PENDING
        assert records["2"].implicit_dependencies == ["1"]
        assert records["2"].explicit_dependencies == []
        assert records["2"].level == 1
        assert records["1"].history[0].to_status == PhaseStatus.PENDING
        assert records["1"].branch_name == "ravel/phase-1-phase-1"
