"""Cooperative pause, resume and cancel control for a running migration.

Phase loops call :meth:`MigrationController.checkpoint` before each user or
class. A pause blocks the next checkpoint; a cancel makes it return False.
Requests already in flight are never interrupted.
"""

import asyncio
from collections.abc import Callable

from edu_migration.client.exceptions import MigrationError
from edu_migration.migration.models import MigrationStatus
from edu_migration.utils.logging import get_logger

logger = get_logger(__name__)


class MigrationController:
    """State machine over idle, running, paused, cancelled and completed."""

    def __init__(self, on_change: Callable[[MigrationStatus], None] | None = None):
        """Initialize controller.

        Args:
            on_change: Called with the new status after every transition
        """
        self._status = MigrationStatus.IDLE
        self._resumed = asyncio.Event()
        self._resumed.set()
        self._on_change = on_change

    @property
    def status(self) -> MigrationStatus:
        return self._status

    @property
    def is_active(self) -> bool:
        return self._status in (MigrationStatus.RUNNING, MigrationStatus.PAUSED)

    @property
    def is_cancelled(self) -> bool:
        return self._status is MigrationStatus.CANCELLED

    def _transition(self, status: MigrationStatus) -> None:
        previous = self._status
        self._status = status
        logger.info("migration_status_changed", previous=previous.value, status=status.value)
        if self._on_change:
            self._on_change(status)

    def start(self) -> None:
        """Enter the running state.

        Raises:
            MigrationError: If a migration is already running or paused
        """
        if self.is_active:
            raise MigrationError(f"A migration is already {self._status.value}")
        self._resumed.set()
        self._transition(MigrationStatus.RUNNING)

    def pause(self) -> bool:
        """Block the next checkpoint. Returns False if not running."""
        if self._status is not MigrationStatus.RUNNING:
            return False
        self._resumed.clear()
        self._transition(MigrationStatus.PAUSED)
        return True

    def resume(self) -> bool:
        """Release a paused migration. Returns False if not paused."""
        if self._status is not MigrationStatus.PAUSED:
            return False
        self._transition(MigrationStatus.RUNNING)
        self._resumed.set()
        return True

    def cancel(self) -> bool:
        """Stop before the next unit of work. Returns False if nothing is running."""
        if not self.is_active:
            return False
        self._transition(MigrationStatus.CANCELLED)
        # Wake a paused loop so it can observe the cancellation
        self._resumed.set()
        return True

    def complete(self) -> None:
        """Mark a run that was not cancelled as completed."""
        if self.is_active:
            self._transition(MigrationStatus.COMPLETED)

    def abort(self) -> None:
        """Return to idle after a run stopped with an error."""
        if self.is_active:
            self._resumed.set()
            self._transition(MigrationStatus.IDLE)

    async def checkpoint(self) -> bool:
        """Wait while paused; return False once cancelled."""
        while self._status is MigrationStatus.PAUSED:
            await self._resumed.wait()
        return self._status is not MigrationStatus.CANCELLED
