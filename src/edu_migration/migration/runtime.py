"""Shared bookkeeping for one migration or retry run.

Records are immutable, so the run keeps the latest version of each record
by key. Phase code reads a record, computes the next version and stores it
back with :meth:`MigrationRun.update`.
"""

from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass

from edu_migration.client.platform_client import LearningPlatformClient
from edu_migration.config import MigrationConfig
from edu_migration.migration.control import MigrationController
from edu_migration.migration.models import (
    ClassRecord,
    MigrationPhase,
    MigrationProgress,
    MigrationStatus,
    UserRecord,
)
from edu_migration.utils.retry import (
    RetryPolicy,
    SleepFunc,
    generic_policy,
    service_unavailable_policy,
)
from edu_migration.utils.throttle import ThrottledDispatcher


class MigrationRun:
    """Latest user and class records plus per-phase counters."""

    def __init__(
        self,
        users: Iterable[UserRecord],
        classes: Iterable[ClassRecord] = (),
        school_prefix: str = "",
    ):
        self.users: dict[str, UserRecord] = {}
        for user in users:
            if user.key in self.users:
                raise ValueError(f"Duplicate record key: {user.key}")
            self.users[user.key] = user
        self.classes: dict[str, ClassRecord] = {c.name.lower(): c for c in classes}
        self.school_prefix = school_prefix
        self.phase = MigrationPhase.REGISTRATION
        self.processed_registrations = 0
        self.processed_logins = 0
        self.processed_inits = 0
        self.processed_classes = 0

    def get(self, key: str) -> UserRecord:
        return self.users[key]

    def update(self, record: UserRecord) -> UserRecord:
        if record.key not in self.users:
            raise KeyError(f"Unknown record key: {record.key}")
        self.users[record.key] = record
        return record

    def update_class(self, record: ClassRecord) -> ClassRecord:
        self.classes[record.name.lower()] = record
        return record

    @property
    def students(self) -> list[UserRecord]:
        return [u for u in self.users.values() if not u.is_teacher]

    @property
    def teachers(self) -> list[UserRecord]:
        return [u for u in self.users.values() if u.is_teacher]

    @property
    def failed_users(self) -> list[UserRecord]:
        return [u for u in self.users.values() if u.failure_reason]

    @property
    def failed_classes(self) -> list[ClassRecord]:
        return [c for c in self.classes.values() if c.failure_reason]

    def snapshot(self, status: MigrationStatus) -> MigrationProgress:
        return MigrationProgress(
            status=status,
            phase=self.phase,
            total_users=len(self.users),
            processed_registrations=self.processed_registrations,
            processed_logins=self.processed_logins,
            processed_inits=self.processed_inits,
            processed_classes=self.processed_classes,
            students=self.students,
            teachers=self.teachers,
            classes=list(self.classes.values()),
            failed_users=self.failed_users,
            failed_classes=self.failed_classes,
        )


@dataclass
class PhaseContext:
    """Collaborators every phase needs.

    Attributes:
        run: Records and counters of the current run
        config: Migration configuration
        controller: Pause/resume/cancel state machine
        anonymous: Unauthenticated client for register and login
        admin: Returns the cached privileged client, logging in on first use
        register_dispatcher: Throttle for registration sends
        login_dispatcher: Throttle for login sends
        sleep: Sleep used between retry attempts
        notify: Emits a progress snapshot
    """

    run: MigrationRun
    config: MigrationConfig
    controller: MigrationController
    anonymous: LearningPlatformClient
    admin: Callable[[], Awaitable[LearningPlatformClient]]
    register_dispatcher: ThrottledDispatcher
    login_dispatcher: ThrottledDispatcher
    sleep: SleepFunc
    notify: Callable[[], None]

    @property
    def unavailable_policy(self) -> RetryPolicy:
        performance = self.config.performance
        return service_unavailable_policy(
            max_attempts=performance.max_503_retries, delay=performance.retry_delay
        )

    def generic_policy(self, max_attempts: int | None = None) -> RetryPolicy:
        performance = self.config.performance
        return generic_policy(
            max_attempts=max_attempts or performance.default_max_retries,
            initial_delay=performance.retry_delay,
        )

    def user_session(self, record: UserRecord) -> LearningPlatformClient:
        """Client acting as ``record``, able to log in again on 401."""
        return self.anonymous.session(
            record.access_token, credentials=(record.label, record.password)
        )
