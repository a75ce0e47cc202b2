"""JSON audit snapshot of a finished migration.

The snapshot is an audit trail, not a checkpoint: access tokens are left
out, and resuming is driven by the caller passing failed records back to
the retry engine.
"""

import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from edu_migration.migration.models import ClassRecord, MigrationResult, MigrationStatus, UserRecord
from edu_migration.utils.logging import get_logger

logger = get_logger(__name__)

SNAPSHOT_PREFIX = "migration-results-"
_USER_EXCLUDE = {"access_token"}


def dump_users(users: list[UserRecord]) -> list[dict[str, Any]]:
    """Serialize user records with camelCase keys and no access token."""
    return [u.model_dump(mode="json", by_alias=True, exclude=_USER_EXCLUDE) for u in users]


def dump_classes(classes: list[ClassRecord]) -> list[dict[str, Any]]:
    return [c.model_dump(mode="json", by_alias=True) for c in classes]


def build_snapshot(result: MigrationResult, timestamp: datetime) -> dict[str, Any]:
    """Snapshot document for ``result``."""
    return {
        "migrationTimestamp": timestamp.isoformat(),
        "status": result.status.value,
        "summary": {
            "totalStudents": len(result.students),
            "totalTeachers": len(result.teachers),
            "totalClasses": len(result.classes),
            "successfulUsers": result.successful_users,
            "failedUsers": len(result.failed_users),
            "failedClasses": len(result.failed_classes),
            "skippedTeachers": len(result.skipped_teachers),
        },
        "students": dump_users(result.students),
        "teachers": dump_users(result.teachers),
        "classes": dump_classes(result.classes),
        "skippedTeachers": dump_users(result.skipped_teachers),
        "errors": {
            "failedUsers": dump_users(result.failed_users),
            "failedClasses": dump_classes(result.failed_classes),
            "roleAssignmentError": result.role_assignment_error,
        },
    }


def write_snapshot(
    result: MigrationResult,
    results_dir: str | Path,
    timestamp: datetime | None = None,
) -> Path:
    """Write ``result`` to ``<results_dir>/migration-results-<timestamp>.json``.

    Returns:
        Path of the written file
    """
    timestamp = timestamp or datetime.now(UTC)
    output_dir = Path(results_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    stamp = timestamp.strftime("%Y-%m-%dT%H-%M-%S-%f")
    path = output_dir / f"{SNAPSHOT_PREFIX}{stamp}.json"
    with open(path, "w", encoding="utf-8") as f:
        json.dump(build_snapshot(result, timestamp), f, indent=2, ensure_ascii=False)

    logger.info("snapshot_written", path=str(path))
    return path


def load_snapshot(path: str | Path) -> MigrationResult:
    """Read a snapshot back into a :class:`MigrationResult`."""
    with open(path, encoding="utf-8") as f:
        data = json.load(f)

    errors = data.get("errors", {})
    return MigrationResult(
        status=MigrationStatus(data.get("status", MigrationStatus.COMPLETED.value)),
        students=[UserRecord.model_validate(u) for u in data.get("students", [])],
        teachers=[UserRecord.model_validate(u) for u in data.get("teachers", [])],
        classes=[ClassRecord.model_validate(c) for c in data.get("classes", [])],
        skipped_teachers=[UserRecord.model_validate(u) for u in data.get("skippedTeachers", [])],
        failed_users=[UserRecord.model_validate(u) for u in errors.get("failedUsers", [])],
        failed_classes=[ClassRecord.model_validate(c) for c in errors.get("failedClasses", [])],
        role_assignment_error=errors.get("roleAssignmentError"),
        snapshot_path=str(path),
    )
