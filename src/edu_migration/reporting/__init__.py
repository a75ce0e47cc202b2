"""Reporting and progress tracking for edu-bridge."""

from edu_migration.reporting.progress import ProgressTracker
from edu_migration.reporting.snapshot import load_snapshot, write_snapshot

__all__ = [
    "ProgressTracker",
    "load_snapshot",
    "write_snapshot",
]
