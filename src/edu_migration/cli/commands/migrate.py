"""
Migration execution commands.

This module provides the commands that run a migration, retry failed
records, and retry teacher role assignment on its own.
"""

import asyncio
import signal
import time
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import TypeVar

import click

from edu_migration.cli.context import MigrationContext
from edu_migration.cli.decorators import handle_errors, pass_context, requires_config
from edu_migration.cli.utils import (
    confirm_overwrite,
    echo_error,
    echo_info,
    echo_success,
    echo_warning,
    ensure_unique_keys,
    format_duration,
    load_classes,
    load_failed_users,
    load_migration_input,
    load_roster,
    load_teacher_ids,
    print_stats,
    print_table,
    write_failed_users,
)
from edu_migration.migration.coordinator import MigrationService
from edu_migration.migration.models import (
    MigrationResult,
    MigrationStatus,
    RetryResult,
    UserRecord,
)
from edu_migration.reporting.progress import ProgressTracker
from edu_migration.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def _run_with_service(
    ctx: MigrationContext,
    operation: Callable[[MigrationService], Awaitable[T]],
) -> T:
    """Run ``operation`` with a service whose run Ctrl+C cancels cooperatively."""

    async def run() -> T:
        with ProgressTracker(enable=not ctx.config.logging.disable_progress) as tracker:
            async with ctx.create_service(tracker.update) as service:
                loop = asyncio.get_running_loop()
                handles_sigint = True
                try:
                    loop.add_signal_handler(signal.SIGINT, service.cancel)
                except NotImplementedError:
                    # Windows event loops do not support signal handlers
                    handles_sigint = False
                    logger.debug("sigint_handler_unavailable")
                try:
                    return await operation(service)
                finally:
                    if handles_sigint:
                        loop.remove_signal_handler(signal.SIGINT)

    return asyncio.run(run())


def _print_failures(records: list[UserRecord]) -> None:
    if not records:
        return
    rows = [
        [
            r.label,
            r.role.value,
            r.class_name,
            r.failed_phase.value if r.failed_phase else "",
            r.failure_reason or "",
        ]
        for r in records
    ]
    print_table("Failed Users", ["Username", "Role", "Class", "Phase", "Reason"], rows)


def _save_failed(path: Path | None, records: list[UserRecord], force: bool) -> None:
    if path is None or not records:
        return
    if not confirm_overwrite(path, force):
        echo_warning(f"Failed users not written: {path}")
        return
    write_failed_users(path, records)
    echo_info(f"Failed users written to {path} (use 'edu-bridge retry --input {path}')")


def _print_migration_result(result: MigrationResult, elapsed: float) -> None:
    click.echo()
    print_stats(
        {
            "status": result.status.value,
            "students": len(result.students),
            "teachers_created": len(result.teachers),
            "teachers_skipped": len(result.skipped_teachers),
            "classes": len(result.classes),
            "successful_users": result.successful_users,
            "failed_users": len(result.failed_users),
            "failed_classes": len(result.failed_classes),
            "duration": format_duration(elapsed),
        },
        title="Migration Summary",
    )
    _print_failures(result.failed_users)
    if result.failed_classes:
        print_table(
            "Failed Classes",
            ["Class", "Reason"],
            [[c.name, c.failure_reason or ""] for c in result.failed_classes],
        )
    if result.role_assignment_error:
        echo_error(f"Teacher role assignment failed: {result.role_assignment_error}")
        echo_info("Retry with 'edu-bridge assign-roles'")
    if result.snapshot_path:
        echo_info(f"Results saved to {result.snapshot_path}")


@click.command(name="migrate")
@click.option(
    "--input",
    "-i",
    "input_path",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Records file (JSON or YAML) with students, teachers and classes",
)
@click.option(
    "--school-prefix",
    help="School prefix (default: text before the first '_' of the first class)",
)
@click.option(
    "--failed-out",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Write failed users here for a later 'retry'",
)
@click.option("--no-snapshot", is_flag=True, help="Do not write the JSON results snapshot")
@click.option("--yes", "-y", is_flag=True, help="Overwrite --failed-out without asking")
@pass_context
@requires_config
@handle_errors
def migrate(
    ctx: MigrationContext,
    input_path: Path,
    school_prefix: str | None,
    failed_out: Path | None,
    no_snapshot: bool,
    yes: bool,
) -> None:
    """Register, initialize and assign students and teachers.

    Press Ctrl+C once to cancel after the users already in flight; accounts
    created so far are kept.

    Examples:

        edu-bridge --config config.yaml migrate --input school.json

        edu-bridge -c config.yaml migrate -i school.yaml --failed-out failed.json
    """
    students, teachers, classes = load_migration_input(input_path)
    if no_snapshot:
        ctx.config.write_snapshot = False

    echo_info(
        f"Migrating {len(students)} students and {len(teachers)} teachers "
        f"into {len(classes)} classes"
    )
    started = time.monotonic()
    result = _run_with_service(
        ctx, lambda service: service.migrate(students, teachers, classes, school_prefix)
    )
    _print_migration_result(result, time.monotonic() - started)
    _save_failed(failed_out, result.failed_users, yes)

    if result.status is MigrationStatus.CANCELLED:
        echo_warning("Migration cancelled")
        raise click.exceptions.Exit(130)
    if result.failed_users or result.failed_classes:
        echo_warning("Migration finished with failures")
    else:
        echo_success("Migration completed")


def _print_retry_result(result: RetryResult) -> None:
    click.echo()
    print_stats(
        {
            "successful": len(result.successful),
            "still_failed": len(result.still_failed),
            "failed_classes": len(result.failed_classes),
        },
        title="Retry Summary",
    )
    _print_failures(result.still_failed)
    if result.role_assignment_error:
        echo_error(f"Teacher role assignment failed: {result.role_assignment_error}")


@click.command(name="retry")
@click.option(
    "--input",
    "-i",
    "input_paths",
    required=True,
    multiple=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Failed users (a --failed-out file or a results snapshot; repeatable)",
)
@click.option(
    "--classes",
    "classes_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help=(
        "Class list; enables class assignment for retried students. A results "
        "snapshot also supplies the earlier run's students and teachers"
    ),
)
@click.option("--school-prefix", help="School prefix (default: from the first class)")
@click.option(
    "--failed-out",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Write users that still failed here",
)
@click.option("--yes", "-y", is_flag=True, help="Overwrite --failed-out without asking")
@pass_context
@requires_config
@handle_errors
def retry(
    ctx: MigrationContext,
    input_paths: tuple[Path, ...],
    classes_path: Path | None,
    school_prefix: str | None,
    failed_out: Path | None,
    yes: bool,
) -> None:
    """Resume failed users at the first phase they did not complete.

    Examples:

        edu-bridge --config config.yaml retry --input failed.json --classes school.json

        edu-bridge -c config.yaml retry -i failed.json --classes "output data/migration-results-2025.json"
    """
    records = ensure_unique_keys(
        [record for path in input_paths for record in load_failed_users(path)],
        ", ".join(str(path) for path in input_paths),
    )
    classes = load_classes(classes_path) if classes_path else None
    all_students, all_teachers = load_roster(classes_path) if classes_path else ([], [])
    if not records:
        echo_info("No failed users to retry")
        return

    echo_info(f"Retrying {len(records)} users")
    result = _run_with_service(
        ctx,
        lambda service: service.retry_users(
            records, classes, school_prefix, all_students=all_students, all_teachers=all_teachers
        ),
    )
    _print_retry_result(result)
    _save_failed(failed_out, result.still_failed, yes)

    if result.still_failed:
        echo_warning(f"{len(result.still_failed)} users still failed")
    else:
        echo_success("All users completed")


@click.command(name="assign-roles")
@click.option(
    "--input",
    "-i",
    "input_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Teacher records with user ids (a snapshot or a teachers list)",
)
@click.option("--teacher-id", "teacher_ids", multiple=True, help="Teacher user id (repeatable)")
@pass_context
@requires_config
@handle_errors
def assign_roles(
    ctx: MigrationContext,
    input_path: Path | None,
    teacher_ids: tuple[str, ...],
) -> None:
    """Add teachers to the teacher role without running a migration.

    Examples:

        edu-bridge --config config.yaml assign-roles --input output/migration-results.json
    """
    ids = list(teacher_ids)
    if input_path:
        ids.extend(load_teacher_ids(input_path))
    ids = list(dict.fromkeys(ids))
    if not ids:
        raise click.UsageError("No teacher ids given (use --input or --teacher-id)")

    echo_info(f"Assigning the teacher role to {len(ids)} users")

    async def run() -> None:
        async with ctx.create_service() as service:
            await service.assign_teacher_role(ids)

    asyncio.run(run())
    echo_success("Teacher role assigned")
