"""Status store: one durable JSON document per plan.

Writes are serialised by an exclusive ``flock`` on a sibling lock file and
land via write-to-temp, fsync, ``os.replace``. The previous document is kept
as ``.bak`` so a reader can recover from a damaged main file; the document
with the higher ``revision`` wins.
"""

from __future__ import annotations

import fcntl
import hashlib
import logging
import os
import tempfile
import time
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

from ravel.core.errors import PlanDriftError, StateStoreError
from ravel.core.graph import slugify
from ravel.core.models import (
    REMOVED_FROM_PLAN,
    RESTORED_TO_PLAN,
    ParsedPlan,
    Phase,
    PhaseStatus,
    PlanState,
    StatusChange,
)

if TYPE_CHECKING:
    from collections.abc import Generator

logger = logging.getLogger(__name__)


class StateStore:
    """Manages the status document for a single plan."""

    def __init__(self, path: Path, lock_timeout: float = 10.0) -> None:
        self.path = path
        self.lock_timeout = lock_timeout
        self._lock_depth = 0

    @classmethod
    def for_plan(cls, plan_path: Path, state_dir: Path, lock_timeout: float = 10.0) -> StateStore:
        """Address the store deterministically from the plan's identity."""
        resolved = plan_path.resolve()
        digest = hashlib.sha1(str(resolved).encode("utf-8")).hexdigest()[:8]
        return cls(state_dir / f"{slugify(resolved.stem)}-{digest}.json", lock_timeout)

    @property
    def backup_path(self) -> Path:
        return self.path.with_name(self.path.name + ".bak")

    @property
    def lock_path(self) -> Path:
        return self.path.with_name(self.path.name + ".lock")

    def exists(self) -> bool:
        return self.path.exists() or self.backup_path.exists()

    # =========================================================================
    # Locking
    # =========================================================================

    @contextmanager
    def lock(self) -> Generator[None]:
        """Hold the exclusive per-plan write lock. Re-entrant within one store."""
        if self._lock_depth:
            self._lock_depth += 1
            try:
                yield
            finally:
                self._lock_depth -= 1
            return

        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.lock_path, os.O_CREAT | os.O_RDWR, 0o644)
        try:
            deadline = time.monotonic() + self.lock_timeout
            while True:
                try:
                    fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                    break
                except BlockingIOError:
                    if time.monotonic() >= deadline:
                        raise StateStoreError(f"Timed out waiting for state lock: {self.lock_path}") from None
                    time.sleep(0.05)

            self._lock_depth = 1
            try:
                self._remove_stale_temp_files()
                yield
            finally:
                self._lock_depth = 0
                fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)

    @contextmanager
    def transaction(self) -> Generator[PlanState]:
        """Load, let the caller mutate, then save. Nothing is saved on error."""
        with self.lock():
            state = self.load()
            yield state
            self.save(state)

    # =========================================================================
    # Read / Write
    # =========================================================================

    def load(self) -> PlanState:
        """Read the freshest intact document."""
        main = self._read(self.path)
        backup = self._read(self.backup_path)
        candidates = [s for s in (main, backup) if s is not None]

        if not candidates:
            if self.exists():
                raise StateStoreError(f"Status document is unreadable: {self.path}")
            raise StateStoreError(f"No status document at {self.path}; parse the plan first")

        best = max(candidates, key=lambda s: s.revision)
        if best is backup:
            logger.warning(f"Recovered status from backup {self.backup_path} (revision {best.revision})")
        return best

    def save(self, state: PlanState) -> None:
        """Atomically replace the document, bumping its revision."""
        with self.lock():
            state.revision += 1
            state.updated_at = datetime.now()

            if self._read(self.path) is not None:
                self._atomic_write(self.backup_path, self.path.read_text(encoding="utf-8"))
            self._atomic_write(self.path, state.model_dump_json(indent=2))
            logger.debug(f"Saved {self.path.name} at revision {state.revision}")

    def _read(self, path: Path) -> PlanState | None:
        try:
            return PlanState.model_validate_json(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable status document {path}: {e}")
            return None

    def _atomic_write(self, target: Path, text: str) -> None:
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp", dir=target.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(text)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, target)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def _remove_stale_temp_files(self) -> None:
        for stale in self.path.parent.glob(f".{self.path.name}.*.tmp"):
            logger.debug(f"Removing partial write {stale.name}")
            stale.unlink(missing_ok=True)


# =============================================================================
# Reconciliation
# =============================================================================


def reconcile_state(
    existing: PlanState | None,
    plan: ParsedPlan,
    fresh: dict[str, Phase],
    base_point: str,
) -> PlanState:
    """Merge a fresh parse into persisted state.

    Persisted progress (status, attempts, timeouts, review refs, history)
    always survives. Phases past PENDING keep their group and level.
    Organic phases missing from the plan are marked removed, unless they are
    DONE, which is drift. A removed phase that reappears is scheduled again
    unless an operator removed it.

    Raises:
        PlanDriftError: If a DONE phase no longer appears in the plan.
    """
    if existing is None:
        return PlanState(
            plan_name=plan.name,
            plan_path=plan.path,
            base_point=base_point,
            phases=fresh,
        )

    if base_point != existing.base_point:
        logger.warning(f"Keeping base point {existing.base_point}; ignoring requested {base_point}")

    missing = [pid for pid, p in existing.phases.items() if not p.synthetic and pid not in fresh]
    drifted = [pid for pid in missing if existing.phases[pid].status == PhaseStatus.DONE]
    if drifted:
        raise PlanDriftError(drifted)

    merged: dict[str, Phase] = {}
    for pid, phase in fresh.items():
        old = existing.phases.get(pid)
        if old is None:
            merged[pid] = phase
            logger.info(f"New phase {pid} added to plan")
            continue

        update: dict[str, object] = {
            "name": old.name,
            "branch_name": old.branch_name,
            "status": old.status,
            "attempts": old.attempts,
            "timeouts": old.timeouts,
            "review_refs": list(old.review_refs),
            "history": list(old.history),
            "removed": old.removed and old.removed_by_operator,
        }
        if old.status != PhaseStatus.PENDING:
            update["group"] = old.group
            update["level"] = old.level
        merged[pid] = phase.model_copy(update=update)
        if old.removed and not old.removed_by_operator:
            merged[pid].history.append(
                StatusChange(from_status=old.status, to_status=old.status, reason=RESTORED_TO_PLAN)
            )
            logger.info(f"Phase {pid} restored to plan")

    for pid, old in existing.phases.items():
        if pid in merged:
            continue
        if not old.synthetic and not old.removed:
            logger.warning(f"Phase {pid} ({old.status.value}) no longer in plan; marking removed")
            old = old.model_copy(deep=True)
            old.mark_removed(REMOVED_FROM_PLAN)
        merged[pid] = old

    return existing.model_copy(update={"plan_name": plan.name, "phases": merged})
