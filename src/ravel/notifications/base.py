"""Base notification interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Literal

from rich.markup import escape

if TYPE_CHECKING:
    from ravel.core.models import GroupReady, PhaseReady

NotificationLevel = Literal["info", "success", "warning", "error", "alert"]


class Notifier(ABC):
    """Abstract base class for notification providers."""

    @abstractmethod
    def notify(
        self,
        title: str,
        message: str,
        level: NotificationLevel = "info",
    ) -> None:
        """Send a notification.

        Args:
            title: Notification title
            message: Notification body
            level: Severity level
        """

    def error(self, title: str, message: str) -> None:
        """Send an error notification."""
        self.notify(title, message, "error")

    def phase_ready(self, event: PhaseReady) -> None:
        """Announce that a phase can be dispatched."""
        where = f"group {event.group}" if event.group else "solo"
        self.notify(f"Phase {event.phase_id} ready", f"{event.name} ({where}) on {event.branch_name}", "info")

    def group_ready(self, event: GroupReady) -> None:
        """Announce that a group can be integrated."""
        self.notify(
            f"Group {event.group} ready to integrate",
            f"Merge {', '.join(event.branches)} into {event.integration_branch} from {event.base_point}",
            "success",
        )

    def escalated(self, phase_id: str, reason: str) -> None:
        self.notify(f"Phase {phase_id} escalated", reason, "alert")


class ConsoleNotifier(Notifier):
    """Simple console-based notifier using Rich."""

    def __init__(self) -> None:
        from rich.console import Console

        self.console = Console()

    def notify(
        self,
        title: str,
        message: str,
        level: NotificationLevel = "info",
    ) -> None:
        """Print notification to console with appropriate styling."""
        styles = {
            "info": "blue",
            "success": "green",
            "warning": "yellow",
            "error": "red",
            "alert": "bold red",
        }
        icons = {
            "info": "i",
            "success": "+",
            "warning": "!",
            "error": "x",
            "alert": "!!!",
        }

        style = styles.get(level, "blue")
        icon = icons.get(level, "i")

        # Names and branches come verbatim from the plan and may contain brackets
        self.console.print(f"[{style}]{escape(f'[{icon}] {title}')}[/{style}]")
        if message:
            self.console.print(f"    {escape(message)}")


class NullNotifier(Notifier):
    """No-op notifier for testing or when notifications are disabled."""

    def notify(
        self,
        title: str,
        message: str,
        level: NotificationLevel = "info",
    ) -> None:
        """Do nothing."""
