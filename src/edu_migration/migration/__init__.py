"""
Migration module for edu-bridge.

This module provides the record models, the pause/resume/cancel controller
and the service that drives accounts through the migration phases.
"""

from edu_migration.migration.control import MigrationController
from edu_migration.migration.coordinator import MigrationService
from edu_migration.migration.models import (
    ClassRecord,
    MigrationPhase,
    MigrationProgress,
    MigrationResult,
    MigrationStatus,
    RetryResult,
    UserRecord,
    UserRole,
    UserState,
)

__all__ = [
    # Models
    "ClassRecord",
    "MigrationPhase",
    "MigrationProgress",
    "MigrationResult",
    "MigrationStatus",
    "RetryResult",
    "UserRecord",
    "UserRole",
    "UserState",
    # Orchestration
    "MigrationController",
    "MigrationService",
]
