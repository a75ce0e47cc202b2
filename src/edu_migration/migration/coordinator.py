"""Migration service orchestrating the account pipeline.

This module provides the service that drives student and teacher records
through registration, login, character initialization, class assignment
and teacher role assignment, plus the retry engine that resumes failed
records at the first phase they have not completed.
"""

import asyncio
from collections.abc import Callable, Sequence
from pathlib import Path

import httpx

from edu_migration.client.exceptions import (
    EduMigrationError,
    MigrationError,
    describe_error,
)
from edu_migration.client.platform_client import LearningPlatformClient
from edu_migration.config import MigrationConfig
from edu_migration.migration import roles
from edu_migration.migration.classes import (
    ClassPlan,
    fetch_existing_groups,
    find_admin_teacher_id,
    run_class_assignment,
    waiting_students,
)
from edu_migration.migration.control import MigrationController
from edu_migration.migration.initialization import run_initialization
from edu_migration.migration.models import (
    ClassRecord,
    MigrationPhase,
    MigrationProgress,
    MigrationResult,
    MigrationStatus,
    RetryResult,
    UserRecord,
    UserRole,
    extract_school_prefix,
)
from edu_migration.migration.registration import run_login, run_registration
from edu_migration.migration.runtime import MigrationRun, PhaseContext
from edu_migration.reporting.snapshot import write_snapshot
from edu_migration.utils.logging import get_logger, run_log_context
from edu_migration.utils.retry import (
    SleepFunc,
    generic_policy,
    retry_with_backoff,
    service_unavailable_policy,
)
from edu_migration.utils.throttle import ThrottledDispatcher

logger = get_logger(__name__)

ProgressCallback = Callable[[MigrationProgress], None]


def _as_role(records: Sequence[UserRecord], role: UserRole) -> list[UserRecord]:
    return [r if r.role is role else r.model_copy(update={"role": role}) for r in records]


def pending_phase(record: UserRecord, require_class: bool) -> MigrationPhase | None:
    """First phase ``record`` has not completed, or None when it is done."""
    state = record.state
    if record.needs_registration:
        return MigrationPhase.REGISTRATION
    if not state.logged_in or not record.user_id:
        return MigrationPhase.LOGIN
    if record.needs_initialization:
        return MigrationPhase.INITIALIZATION
    if require_class and not state.added_to_class:
        return MigrationPhase.CLASSES
    if record.is_teacher and not state.role_assigned:
        return MigrationPhase.ROLES
    return None


class MigrationService:
    """Runs migrations against one learning platform backend.

    The service owns one HTTP connection pool and a lazily created admin
    client that is reused by every run. Only one run may be active at a
    time; :meth:`pause`, :meth:`resume` and :meth:`cancel` act on it.
    """

    def __init__(
        self,
        config: MigrationConfig,
        progress_callback: ProgressCallback | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: SleepFunc = asyncio.sleep,
    ):
        """Initialize migration service.

        Args:
            config: Migration configuration
            progress_callback: Receives a progress snapshot after every unit of work
            transport: Optional httpx transport (used by tests)
            sleep: Sleep used between retry attempts
        """
        self.config = config
        self.controller = MigrationController(on_change=lambda _status: self._emit())
        self._progress_callback = progress_callback
        self._sleep = sleep
        self._client = LearningPlatformClient.from_config(
            config.backend, config.performance, config.logging, transport=transport
        )
        self._admin: LearningPlatformClient | None = None
        self._admin_lock = asyncio.Lock()
        self._run: MigrationRun | None = None

    # Control surface
    def pause(self) -> bool:
        return self.controller.pause()

    def resume(self) -> bool:
        return self.controller.resume()

    def cancel(self) -> bool:
        return self.controller.cancel()

    @property
    def status(self) -> MigrationStatus:
        return self.controller.status

    def progress(self) -> MigrationProgress | None:
        """Snapshot of the current (or last) run."""
        if self._run is None:
            return None
        return self._run.snapshot(self.controller.status)

    def _emit(self) -> None:
        if self._progress_callback is None or self._run is None:
            return
        try:
            self._progress_callback(self._run.snapshot(self.controller.status))
        except Exception as e:
            logger.warning("progress_callback_failed", error=str(e))

    # Clients
    async def admin_client(self) -> LearningPlatformClient:
        """Privileged client, logged in on first use and cached.

        Raises:
            MigrationError: If the admin login fails
        """
        async with self._admin_lock:
            if self._admin is None:
                backend = self.config.backend
                credentials = None
                if backend.admin_username and backend.admin_password:
                    credentials = (backend.admin_username, backend.admin_password)
                admin = self._client.session(backend.admin_token, credentials=credentials)

                if not admin.token and credentials:
                    try:
                        result = await retry_with_backoff(
                            lambda: admin.login(*credentials),
                            service_unavailable_policy(
                                self.config.performance.max_503_retries,
                                self.config.performance.retry_delay,
                            ),
                            context="admin login",
                            sleep=self._sleep,
                        )
                    except EduMigrationError as e:
                        raise MigrationError(f"Admin login failed: {describe_error(e)}") from e
                    admin.token = result.access_token
                    logger.info("admin_logged_in", username=credentials[0])

                self._admin = admin
        return self._admin

    def _context(self, run: MigrationRun) -> PhaseContext:
        performance = self.config.performance
        return PhaseContext(
            run=run,
            config=self.config,
            controller=self.controller,
            anonymous=self._client,
            admin=self.admin_client,
            register_dispatcher=ThrottledDispatcher(performance.register_rate, name="register"),
            login_dispatcher=ThrottledDispatcher(performance.login_rate, name="login"),
            sleep=self._sleep,
            notify=self._emit,
        )

    async def close(self) -> None:
        await self._client.close()

    async def __aenter__(self) -> "MigrationService":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # Migration
    async def migrate(
        self,
        students: Sequence[UserRecord],
        teachers: Sequence[UserRecord],
        classes: Sequence[ClassRecord],
        school_prefix: str | None = None,
    ) -> MigrationResult:
        """Run every phase over the given records.

        Per-user and per-class failures are collected in the result; only a
        failure that affects the whole run (admin login, listing existing
        classes) raises.

        Args:
            students: Student records in spreadsheet order
            teachers: Teacher records in spreadsheet order
            classes: Target classes
            school_prefix: Defaults to the text before the first underscore
                of the first class name

        Returns:
            Aggregated result (also written as a JSON snapshot when enabled)

        Raises:
            MigrationError: Another run is active, or a run-wide step failed
        """
        self.controller.start()
        try:
            with run_log_context("migrate"):
                return await self._migrate(students, teachers, list(classes), school_prefix)
        except BaseException:
            self.controller.abort()
            raise

    async def _migrate(
        self,
        students: Sequence[UserRecord],
        teachers: Sequence[UserRecord],
        classes: list[ClassRecord],
        school_prefix: str | None,
    ) -> MigrationResult:
        prefix = school_prefix or extract_school_prefix(classes)
        ctx = self._context(MigrationRun([], classes, prefix))
        self._run = ctx.run

        logger.info(
            "migration_started",
            students=len(students),
            teachers=len(teachers),
            classes=len(classes),
            school_prefix=prefix,
        )

        plan = ClassPlan(existing_groups={})
        if prefix:
            try:
                plan.existing_groups = await fetch_existing_groups(ctx, prefix)
            except MigrationError:
                raise
            except EduMigrationError as e:
                raise MigrationError(f"Could not list existing classes: {describe_error(e)}") from e

        teachers_to_create: list[UserRecord] = []
        skipped_teachers: list[UserRecord] = []
        for teacher in _as_role(teachers, UserRole.TEACHER):
            if teacher.is_admin_teacher(prefix) or teacher.class_name.lower() not in plan.existing_groups:
                teachers_to_create.append(teacher)
            else:
                logger.info(
                    "teacher_skipped_existing_class",
                    username=teacher.username,
                    class_name=teacher.class_name,
                )
                skipped_teachers.append(teacher)

        if prefix and not any(t.is_admin_teacher(prefix) for t in teachers_to_create):
            plan.existing_admin_teacher_id = await find_admin_teacher_id(ctx, prefix)

        run = MigrationRun(
            _as_role(students, UserRole.STUDENT) + teachers_to_create, classes, prefix
        )
        ctx.run = run
        self._run = run

        await run_registration(ctx, list(run.users.values()))

        if await self.controller.checkpoint():
            await run_login(
                ctx, [r for r in run.users.values() if r.state.registered and r.needs_login]
            )

        if await self.controller.checkpoint():
            await run_initialization(
                ctx,
                [
                    r
                    for r in run.users.values()
                    if r.state.logged_in and r.access_token and r.needs_initialization
                ],
            )

        if await self.controller.checkpoint():
            await run_class_assignment(ctx, list(run.classes.values()), plan)

        role_error = None
        if await self.controller.checkpoint():
            role_error = await self._assign_roles(ctx)

        if await self.controller.checkpoint():
            run.phase = MigrationPhase.COMPLETED
            self.controller.complete()
        self._mark_incomplete(run, role_error)

        result = MigrationResult(
            status=self.controller.status,
            students=run.students,
            teachers=run.teachers,
            classes=list(run.classes.values()),
            skipped_teachers=skipped_teachers,
            failed_users=run.failed_users,
            failed_classes=run.failed_classes,
            role_assignment_error=role_error,
        )
        if self.config.write_snapshot:
            result.snapshot_path = self._write_snapshot(result)

        logger.info(
            "migration_finished",
            status=result.status.value,
            successful_users=result.successful_users,
            failed_users=len(result.failed_users),
            failed_classes=len(result.failed_classes),
            skipped_teachers=len(skipped_teachers),
        )
        self._emit()
        return result

    def _write_snapshot(self, result: MigrationResult) -> str | None:
        try:
            return str(write_snapshot(result, Path(self.config.paths.results_dir)))
        except OSError as e:
            logger.error("snapshot_write_failed", error=str(e))
            return None

    async def _assign_roles(self, ctx: PhaseContext) -> str | None:
        """Give every teacher with a user id the teacher role.

        Returns:
            Failure reason, or None on success (or nothing to do)
        """
        run = ctx.run
        run.phase = MigrationPhase.ROLES
        ctx.notify()

        pending = [t for t in run.teachers if t.user_id and not t.state.role_assigned]
        if not pending:
            return None

        try:
            await roles.assign_teacher_role(
                await ctx.admin(),
                [t.user_id for t in pending if t.user_id],
                ctx.generic_policy(self.config.performance.role_max_retries),
                ctx.sleep,
            )
        except Exception as e:
            reason = describe_error(e)
            logger.error("teacher_role_assignment_failed", teachers=len(pending), error=reason)
            return reason

        for teacher in pending:
            run.update(run.get(teacher.key).advance(role_assigned=True))
        ctx.notify()
        return None

    async def assign_teacher_role(self, teacher_ids: Sequence[str]) -> None:
        """Add teachers to the teacher role outside a migration run.

        Raises:
            MigrationError: If the admin login fails
            APIError: If the role could not be read or saved
        """
        admin = await self.admin_client()
        await roles.assign_teacher_role(
            admin,
            list(teacher_ids),
            generic_policy(
                self.config.performance.role_max_retries, self.config.performance.retry_delay
            ),
            self._sleep,
        )

    # Retry engine
    async def retry_users(
        self,
        records: Sequence[UserRecord],
        classes: Sequence[ClassRecord] | None = None,
        school_prefix: str | None = None,
        all_students: Sequence[UserRecord] = (),
        all_teachers: Sequence[UserRecord] = (),
    ) -> RetryResult:
        """Resume previously failed records at their first incomplete phase.

        Completed phases are never repeated: a registered record is not
        registered again, and a record whose character is initialized is
        not logged in again unless its user id is missing.

        Args:
            records: Failed records carrying their last known state
            classes: Class list; when given, class assignment is retried for
                classes that still have students waiting
            school_prefix: Defaults to the prefix of the first class
            all_students: Students of the earlier run; those with a user id
                that are still outside their class are added when it is filled
            all_teachers: Teachers of the earlier run, attached to classes this
                retry creates

        Returns:
            Records that are now complete and records that still are not
        """
        self.controller.start()
        try:
            with run_log_context("retry"):
                return await self._retry(
                    list(records),
                    list(classes) if classes is not None else None,
                    school_prefix,
                    ClassPlan(
                        existing_groups={},
                        roster_students=_as_role(all_students, UserRole.STUDENT),
                        roster_teachers=_as_role(all_teachers, UserRole.TEACHER),
                    ),
                )
        except BaseException:
            self.controller.abort()
            raise

    async def _retry(
        self,
        records: list[UserRecord],
        classes: list[ClassRecord] | None,
        school_prefix: str | None,
        plan: ClassPlan,
    ) -> RetryResult:
        prefix = school_prefix or extract_school_prefix(classes or [])
        prepared = [r.cleared().model_copy(update={"retry_count": r.retry_count + 1}) for r in records]
        classes = [c.model_copy(update={"failure_reason": None}) for c in classes or []]
        run = MigrationRun(prepared, classes, prefix)
        ctx = self._context(run)
        self._run = run
        logger.info(
            "retry_started",
            users=len(prepared),
            classes=len(classes),
            roster=len(plan.roster_students) + len(plan.roster_teachers),
        )

        await run_registration(ctx, [r for r in prepared if r.needs_registration])

        if await self.controller.checkpoint():
            await run_login(
                ctx,
                [
                    r
                    for r in run.users.values()
                    if not r.needs_registration
                    and r.needs_login
                    and (r.needs_initialization or not r.user_id)
                ],
            )

        if await self.controller.checkpoint():
            await run_initialization(
                ctx,
                [
                    r
                    for r in run.users.values()
                    if r.state.logged_in and r.access_token and r.needs_initialization
                ],
            )

        if classes and await self.controller.checkpoint():
            await self._retry_classes(ctx, prefix, plan)

        role_error = None
        if await self.controller.checkpoint():
            role_error = await self._assign_roles(ctx)

        if await self.controller.checkpoint():
            run.phase = MigrationPhase.COMPLETED
            self.controller.complete()
        self._mark_incomplete(run, role_error)

        result = RetryResult(
            failed_classes=run.failed_classes, role_assignment_error=role_error
        )
        for record in run.users.values():
            if record.failure_reason:
                result.still_failed.append(record)
            else:
                result.successful.append(record)

        logger.info(
            "retry_finished",
            status=self.controller.status.value,
            successful=len(result.successful),
            still_failed=len(result.still_failed),
        )
        self._emit()
        return result

    async def _retry_classes(self, ctx: PhaseContext, prefix: str, plan: ClassPlan) -> None:
        run = ctx.run
        waiting = {s.class_name.lower() for s in waiting_students(run, plan)}
        targets = [c for c in run.classes.values() if c.name.lower() in waiting]
        if not targets:
            return

        try:
            plan.existing_groups = await fetch_existing_groups(ctx, prefix)
        except EduMigrationError as e:
            reason = f"Could not list existing classes: {describe_error(e)}"
            logger.warning("class_retry_skipped", error=reason)
            for class_record in targets:
                run.update_class(class_record.model_copy(update={"failure_reason": reason}))
            return

        teachers = run.teachers + plan.outside(plan.roster_teachers, run)
        if prefix and not any(t.is_admin_teacher(prefix) for t in teachers):
            plan.existing_admin_teacher_id = await find_admin_teacher_id(ctx, prefix)
        await run_class_assignment(ctx, targets, plan)

    def _mark_incomplete(self, run: MigrationRun, role_error: str | None) -> None:
        """Record why each unfinished record stopped, so a retry can resume it."""
        for record in list(run.users.values()):
            if record.failure_reason:
                continue
            require_class = not record.is_teacher and record.class_name.lower() in run.classes
            phase = pending_phase(record, require_class)
            if phase is not None:
                reason = self._incomplete_reason(run, record, phase, role_error)
                logger.info("user_incomplete", username=record.label, phase=phase.value, reason=reason)
                run.update(record.with_failure(phase, reason))

    def _incomplete_reason(
        self,
        run: MigrationRun,
        record: UserRecord,
        phase: MigrationPhase,
        role_error: str | None,
    ) -> str:
        if self.controller.is_cancelled:
            return f"Cancelled before {phase.value}"
        if phase is MigrationPhase.CLASSES:
            class_record = run.classes.get(record.class_name.lower())
            if class_record and class_record.failure_reason:
                return f"Class assignment failed: {class_record.failure_reason}"
            return "Not added to class"
        if phase is MigrationPhase.ROLES and role_error:
            return f"Teacher role assignment failed: {role_error}"
        return f"{phase.value.capitalize()} incomplete"
