"""Event notification providers."""

from ravel.notifications.base import ConsoleNotifier, Notifier, NullNotifier

__all__ = ["ConsoleNotifier", "Notifier", "NullNotifier"]
