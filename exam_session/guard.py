"""
Interrupt Guard: holds leave attempts while a session is in progress.

A leave attempt (page switch, tab close, exit button) is parked until the user
confirms or declines. Confirming saves a snapshot and runs the navigation;
declining drops it and hands back the navigation state captured when the
attempt was made. Once the session is completed or cancelled the guard lets
everything through.
"""
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from .models import SessionStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Interrupt:
    action: Callable[[], Any]
    restore_state: Any = None
    reason: str = "navigation"


class InterruptGuard:
    def __init__(
        self,
        status: Callable[[], Optional[SessionStatus]],
        save_snapshot: Callable[[], Any],
    ):
        self._status = status
        self._save_snapshot = save_snapshot
        self.pending: Optional[Interrupt] = None

    @property
    def armed(self) -> bool:
        return self._status() is SessionStatus.IN_PROGRESS

    def intercept(self, action: Callable[[], Any], restore_state: Any = None, reason: str = "navigation") -> bool:
        """
        Route a leave attempt through the guard.

        Returns:
            True if the action ran immediately (guard disarmed), False if it awaits confirmation.
        """
        if not self.armed:
            self.pending = None
            action()
            return True
        self.pending = Interrupt(action, restore_state, reason)
        logger.debug(f"Leave attempt ({reason}) held for confirmation")
        return False

    def confirm(self) -> bool:
        """Save progress, then perform the held action. Returns False if nothing was pending."""
        interrupt = self.pending
        if interrupt is None:
            return False
        self.pending = None
        if self.armed:
            self._save_snapshot()
        interrupt.action()
        logger.info(f"Leave ({interrupt.reason}) confirmed")
        return True

    def decline(self) -> Any:
        """Cancel the held action and return the navigation state from before the attempt."""
        interrupt = self.pending
        self.pending = None
        if interrupt is None:
            return None
        return interrupt.restore_state
