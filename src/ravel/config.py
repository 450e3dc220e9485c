"""Configuration management for ravel."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field

MAX_RETRY = 3


class NotificationConfig(BaseModel):
    """Notification settings."""

    enabled: bool = True
    provider: Literal["console", "none"] = "console"


class Config(BaseModel):
    """Ravel configuration.

    Retry settings:
        max_retry: Review attempts before a phase escalates (the first attempt counts)
        worker_timeout_retries: Redispatches allowed for an unresponsive worker
    """

    max_retry: int = Field(default=MAX_RETRY, ge=1, description="Review attempts before escalation")
    worker_timeout_retries: int = Field(
        default=1,
        ge=0,
        description="Redispatches after a worker timeout before escalating",
    )
    synthetic_prefix: str = Field(default="I-", min_length=1, description="Id prefix for injected fix phases")
    branch_prefix: str = Field(default="ravel/", description="Prefix for derived branch names")
    default_base: str = Field(default="main", description="Base point used when the plan names none")
    lock_timeout: float = Field(default=10.0, gt=0, description="Seconds to wait for the state lock")
    state_dir: Path = Field(default=Path(".ravel/state"), description="Where status documents live")
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)

    @classmethod
    def load(cls, config_path: Path | None = None) -> Config:
        """Load configuration from file or use defaults."""
        if config_path is None:
            config_path = Path(".ravel/config.yaml")

        if config_path.exists():
            with config_path.open() as f:
                data = yaml.safe_load(f) or {}
            return cls.model_validate(data)

        return cls()

    def save(self, config_path: Path) -> None:
        """Save configuration to file."""
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with config_path.open("w") as f:
            yaml.dump(self.model_dump(mode="json"), f, default_flow_style=False)

    def resolve_state_dir(self, project_root: Path) -> Path:
        if self.state_dir.is_absolute():
            return self.state_dir
        return project_root / self.state_dir


def get_orchestrator_dir(project_root: Path | None = None) -> Path:
    """Get the .ravel directory, creating if needed."""
    if project_root is None:
        project_root = Path.cwd()
    orchestrator_dir = project_root / ".ravel"
    orchestrator_dir.mkdir(parents=True, exist_ok=True)
    return orchestrator_dir
