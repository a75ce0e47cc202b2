"""Progress tracking for migration runs.

This module renders the snapshots emitted by the migration service as tqdm
progress bars: one overall bar driven by the weighted percentage and one
bar for the phase currently running.
"""

from tqdm import tqdm

from edu_migration.migration.models import (
    PHASE_LABELS,
    MigrationPhase,
    MigrationProgress,
    MigrationStatus,
)
from edu_migration.utils.logging import get_logger

logger = get_logger(__name__)


def _phase_counts(progress: MigrationProgress) -> tuple[int, int]:
    """(processed, total) for the phase in ``progress``."""
    phase = progress.phase
    if phase is MigrationPhase.REGISTRATION:
        return progress.processed_registrations, progress.total_users
    if phase is MigrationPhase.LOGIN:
        return progress.processed_logins, progress.total_users
    if phase is MigrationPhase.INITIALIZATION:
        return progress.processed_inits, progress.total_users
    if phase is MigrationPhase.CLASSES:
        return progress.processed_classes, len(progress.classes)
    return 0, 0


class ProgressTracker:
    """Displays migration progress in real-time.

    Pass :meth:`update` as the service's progress callback.
    """

    def __init__(self, enable: bool = True):
        """Initialize progress tracker.

        Args:
            enable: Whether to enable progress bars (False for CI/automation)
        """
        self.enable = enable
        self.overall_bar: tqdm | None = None
        self.phase_bar: tqdm | None = None
        self.current_phase: MigrationPhase | None = None
        self.last: MigrationProgress | None = None

        if self.enable:
            self.overall_bar = tqdm(
                total=100,
                desc="Migration Progress",
                unit="%",
                position=0,
                leave=True,
                bar_format="{desc}: {percentage:3.0f}%|{bar}| [{elapsed}<{remaining}]",
            )

    def _start_phase(self, phase: MigrationPhase, total: int) -> None:
        if self.phase_bar:
            self.phase_bar.close()
            self.phase_bar = None

        self.current_phase = phase
        if self.enable and total > 0:
            self.phase_bar = tqdm(
                total=total,
                desc=f"  {PHASE_LABELS[phase]}",
                unit="item",
                position=1,
                leave=False,
                bar_format="  {desc}: {percentage:3.0f}%|{bar}| {n_fmt}/{total_fmt} [{elapsed}<{remaining}]",
            )
        logger.info("phase_started", phase=phase.value, total=total)

    def update(self, progress: MigrationProgress) -> None:
        """Render one progress snapshot."""
        self.last = progress
        processed, total = _phase_counts(progress)
        if progress.phase is not self.current_phase:
            self._start_phase(progress.phase, total)

        if self.phase_bar:
            self.phase_bar.n = min(processed, self.phase_bar.total)
            self.phase_bar.set_postfix(failed=len(progress.failed_users), refresh=False)
            self.phase_bar.refresh()

        if self.overall_bar:
            self.overall_bar.n = progress.percentage
            self.overall_bar.set_description(progress.message)
            self.overall_bar.refresh()

        if progress.status in (MigrationStatus.COMPLETED, MigrationStatus.CANCELLED):
            logger.info(
                "migration_progress_final",
                status=progress.status.value,
                percentage=progress.percentage,
            )

    def close(self) -> None:
        """Close all progress bars."""
        if self.phase_bar:
            self.phase_bar.close()
            self.phase_bar = None
        if self.overall_bar:
            self.overall_bar.close()
            self.overall_bar = None

    def __enter__(self) -> "ProgressTracker":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
