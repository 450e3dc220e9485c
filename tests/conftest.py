"""Shared fixtures for ravel tests."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest

from ravel.config import Config, NotificationConfig
from ravel.core.orchestrator import Orchestrator
from ravel.notifications.base import NullNotifier

PlanWriter = Callable[..., Path]


def phase_block(
    phase_id: str,
    name: str,
    depends: str | None = None,
    files: list[str] | None = None,
    tests: bool = True,
) -> str:
    """Render one `## Phase` block in the plan format."""
    lines = [f"## Phase {phase_id}: {name}", f"**Depends On:** {depends or 'None'}", ""]
    lines += ["### Scope", f"Implement {name.lower()}.", ""]
    if files:
        lines.append("### Files")
        lines += [f"- `{f}`" for f in files]
        lines.append("")
    lines += ["### Acceptance Criteria", f"- [ ] {name} works", ""]
    if tests:
        lines += ["### Tests", f"- `tests/test_phase_{phase_id.lower()}.py`", ""]
    return "\n".join(lines)


@pytest.fixture
def write_plan(tmp_path: Path) -> PlanWriter:
    """Write a plan built from phase blocks and return its path."""

    def _write(*blocks: str, name: str = "Test Plan", base: str | None = "main", filename: str = "plan.md") -> Path:
        header = [f"# {name} - Master Plan", ""]
        if base:
            header += [f"**Base Branch:** {base}", ""]
        path = tmp_path / filename
        path.write_text("\n".join(header) + "\n" + "\n".join(blocks), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def diamond_plan(write_plan: PlanWriter) -> Path:
    """Phases 1 and 2 run in parallel; 3 depends on both."""
    return write_plan(
        phase_block("1", "Order Model", files=["src/orders.py"]),
        phase_block("2", "Payment Client", files=["src/payments.py"]),
        phase_block("3", "Checkout Flow", depends="Phase 1, Phase 2", files=["src/checkout.py"]),
    )


@pytest.fixture
def chain_plan(write_plan: PlanWriter) -> Path:
    """Three solo phases in sequence."""
    return write_plan(
        phase_block("1", "Schema", files=["src/schema.py"]),
        phase_block("2", "Repository", depends="Phase 1", files=["src/repo.py"]),
        phase_block("3", "Service", depends="Phase 2", files=["src/service.py"]),
    )


@pytest.fixture
def config(tmp_path: Path) -> Config:
    """Config with an isolated state directory and notifications off."""
    return Config(
        state_dir=tmp_path / "state",
        lock_timeout=0.5,
        notifications=NotificationConfig(enabled=False),
    )


@pytest.fixture
def make_orchestrator(config: Config, tmp_path: Path) -> Callable[[Path], Orchestrator]:
    def _make(plan_path: Path) -> Orchestrator:
        return Orchestrator(plan_path, config, notifier=NullNotifier(), project_root=tmp_path)

    return _make


@pytest.fixture
def orchestrator(diamond_plan: Path, make_orchestrator: Callable[[Path], Orchestrator]) -> Orchestrator:
    """An orchestrator over the parsed diamond plan."""
    orch = make_orchestrator(diamond_plan)
    orch.parse()
    return orch
