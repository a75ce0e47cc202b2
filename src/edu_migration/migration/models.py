"""Records, results and progress snapshots for a migration run.

User and class records are immutable: every phase step returns a new
record instead of mutating a shared one, so a half-updated record can never
leak into a result list while other groups are still running.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

_GRADE_PATTERN = re.compile(r"_(\d+)[A-Za-z]_")


class UserRole(str, Enum):
    STUDENT = "student"
    TEACHER = "teacher"


class MigrationStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class MigrationPhase(str, Enum):
    REGISTRATION = "registration"
    LOGIN = "login"
    INITIALIZATION = "initialization"
    CLASSES = "classes"
    ROLES = "roles"
    COMPLETED = "completed"


# Share of overall progress attributed to each phase
PHASE_WEIGHTS = {
    MigrationPhase.REGISTRATION: 0.30,
    MigrationPhase.LOGIN: 0.20,
    MigrationPhase.INITIALIZATION: 0.30,
    MigrationPhase.CLASSES: 0.15,
    MigrationPhase.ROLES: 0.05,
}

PHASE_LABELS = {
    MigrationPhase.REGISTRATION: "Registering accounts",
    MigrationPhase.LOGIN: "Logging in",
    MigrationPhase.INITIALIZATION: "Initializing characters",
    MigrationPhase.CLASSES: "Creating classes",
    MigrationPhase.ROLES: "Assigning teacher role",
    MigrationPhase.COMPLETED: "Completed",
}


class _Record(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
        use_enum_values=False,
    )


class UserState(_Record):
    """Per-user phase completion flags.

    Flags only ever move from False to True within one record's lifecycle.
    """

    registered: bool = False
    logged_in: bool = False
    equipment_set: bool = False
    phone_updated: bool = False
    added_to_class: bool = False
    role_assigned: bool = False

    def advance(self, **flags: bool) -> "UserState":
        """Return a state with the given flags set.

        Raises:
            ValueError: If a flag that is already True would be reset
        """
        for name, value in flags.items():
            if name not in UserState.model_fields:
                raise ValueError(f"Unknown state flag: {name}")
            if getattr(self, name) and not value:
                raise ValueError(f"State flag '{name}' cannot be reset")
        return self.model_copy(update=flags)


class UserRecord(_Record):
    """One student or teacher account moving through the pipeline."""

    key: str = Field(default_factory=lambda: uuid4().hex)
    role: UserRole = UserRole.STUDENT
    username: str
    actual_username: str | None = None
    display_name: str
    actual_display_name: str | None = None
    login_display_name: str | None = None
    password: str
    class_name: str = ""
    phone_number: str = ""
    grade: str | None = None
    age: int | None = None
    user_id: str | None = None
    access_token: str | None = None
    failure_reason: str | None = None
    failed_phase: MigrationPhase | None = None
    retry_count: int = 0
    state: UserState = Field(default_factory=UserState)

    @property
    def is_teacher(self) -> bool:
        return self.role is UserRole.TEACHER

    @property
    def label(self) -> str:
        return self.actual_username or self.username

    @property
    def needs_registration(self) -> bool:
        return not (self.state.registered and self.actual_username)

    @property
    def needs_login(self) -> bool:
        return not (self.state.logged_in and self.access_token)

    @property
    def needs_initialization(self) -> bool:
        return not (self.state.equipment_set and self.state.phone_updated)

    def is_admin_teacher(self, school_prefix: str) -> bool:
        """The school-wide teacher carries the bare school prefix as class name."""
        return (
            self.is_teacher
            and bool(school_prefix)
            and self.class_name.upper() == school_prefix.upper()
        )

    def advance(self, **flags: bool) -> "UserRecord":
        """Return a copy with state flags set."""
        return self.model_copy(update={"state": self.state.advance(**flags)})

    def assign_username(self, username: str) -> "UserRecord":
        """Return a copy with the registered username.

        Raises:
            ValueError: If a different username was already assigned
        """
        if self.actual_username and self.actual_username != username:
            raise ValueError(
                f"Username already assigned for {self.key}: {self.actual_username}"
            )
        return self.model_copy(update={"actual_username": username})

    def assign_display_name(self, display_name: str) -> "UserRecord":
        """Return a copy with the accepted display name.

        Raises:
            ValueError: If a different display name was already assigned
        """
        if self.actual_display_name and self.actual_display_name != display_name:
            raise ValueError(
                f"Display name already assigned for {self.key}: {self.actual_display_name}"
            )
        return self.model_copy(update={"actual_display_name": display_name})

    def with_failure(self, phase: MigrationPhase, reason: str) -> "UserRecord":
        return self.model_copy(update={"failure_reason": reason, "failed_phase": phase})

    def cleared(self) -> "UserRecord":
        """Copy without a recorded failure."""
        return self.model_copy(update={"failure_reason": None, "failed_phase": None})

    def is_complete(self, require_class: bool = False) -> bool:
        """Whether every phase that applies to this record has completed."""
        state = self.state
        if not (state.registered and state.logged_in and state.equipment_set and state.phone_updated):
            return False
        if require_class and not self.is_teacher and not state.added_to_class:
            return False
        if self.is_teacher and not state.role_assigned:
            return False
        return True


class ClassRecord(_Record):
    """A target class and the group backing it.

    ``group_id`` set while ``class_created`` is False means the group was
    created but the class object was not.
    """

    name: str
    grade: int | None = None
    group_id: str | None = None
    existing: bool = False
    class_created: bool = False
    student_ids: tuple[str, ...] = ()
    teacher_ids: tuple[str, ...] = ()
    failure_reason: str | None = None

    @model_validator(mode="after")
    def derive_grade(self) -> "ClassRecord":
        """Derive the grade from names shaped like PREFIX_1A_2025."""
        if self.grade is None:
            match = _GRADE_PATTERN.search(self.name)
            if match:
                object.__setattr__(self, "grade", int(match.group(1)))
        return self


def extract_school_prefix(classes: list[ClassRecord]) -> str:
    """School prefix is the text before the first underscore of the first class."""
    if not classes:
        return ""
    return classes[0].name.split("_")[0]


class MigrationResult(BaseModel):
    """Aggregate outcome of a migration run."""

    status: MigrationStatus = MigrationStatus.COMPLETED
    students: list[UserRecord] = Field(default_factory=list)
    teachers: list[UserRecord] = Field(default_factory=list)
    classes: list[ClassRecord] = Field(default_factory=list)
    skipped_teachers: list[UserRecord] = Field(default_factory=list)
    failed_users: list[UserRecord] = Field(default_factory=list)
    failed_classes: list[ClassRecord] = Field(default_factory=list)
    role_assignment_error: str | None = None
    snapshot_path: str | None = None

    @property
    def successful_users(self) -> int:
        """Users that finished every phase without a recorded failure."""
        return sum(
            1
            for user in (*self.students, *self.teachers)
            if not user.failure_reason and user.is_complete()
        )


class RetryResult(BaseModel):
    """Outcome of a retry pass over previously failed records."""

    successful: list[UserRecord] = Field(default_factory=list)
    still_failed: list[UserRecord] = Field(default_factory=list)
    failed_classes: list[ClassRecord] = Field(default_factory=list)
    role_assignment_error: str | None = None


@dataclass
class MigrationProgress:
    """Point-in-time view of a running migration.

    Lists hold the current records; consumers read totals, not deltas.
    """

    status: MigrationStatus
    phase: MigrationPhase
    total_users: int = 0
    processed_registrations: int = 0
    processed_logins: int = 0
    processed_inits: int = 0
    processed_classes: int = 0
    students: list[UserRecord] = field(default_factory=list)
    teachers: list[UserRecord] = field(default_factory=list)
    classes: list[ClassRecord] = field(default_factory=list)
    failed_users: list[UserRecord] = field(default_factory=list)
    failed_classes: list[ClassRecord] = field(default_factory=list)

    @property
    def percentage(self) -> int:
        """Weighted completion percentage (0-100)."""
        if self.total_users == 0:
            return 100 if self.phase is MigrationPhase.COMPLETED else 0

        progress = 0.0
        progress += (
            self.processed_registrations / self.total_users
        ) * PHASE_WEIGHTS[MigrationPhase.REGISTRATION]
        progress += (self.processed_logins / self.total_users) * PHASE_WEIGHTS[MigrationPhase.LOGIN]
        progress += (
            self.processed_inits / self.total_users
        ) * PHASE_WEIGHTS[MigrationPhase.INITIALIZATION]
        if self.classes:
            progress += (
                self.processed_classes / len(self.classes)
            ) * PHASE_WEIGHTS[MigrationPhase.CLASSES]
        elif self.phase in (MigrationPhase.ROLES, MigrationPhase.COMPLETED):
            progress += PHASE_WEIGHTS[MigrationPhase.CLASSES]
        if self.phase is MigrationPhase.COMPLETED:
            progress += PHASE_WEIGHTS[MigrationPhase.ROLES]
        return min(100, round(progress * 100))

    @property
    def message(self) -> str:
        label = PHASE_LABELS[self.phase]
        if self.status is MigrationStatus.PAUSED:
            return f"Paused during {label.lower()} ({self.percentage}%)"
        if self.status is MigrationStatus.CANCELLED:
            return f"Cancelled during {label.lower()}"
        if self.status is MigrationStatus.COMPLETED:
            return "Migration completed"
        return f"{label}..."

