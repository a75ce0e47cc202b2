"""
Unit tests for migration records and progress snapshots.

Tests cover:
- Monotonic user state flags
- Single assignment of username and display name
- Grade derivation from class names
- School prefix extraction
- Weighted progress percentage
- MigrationRun bookkeeping
"""

import pytest

from edu_migration.migration.equipment import EQUIPMENT_ITEMS, EquipmentSlot, random_equipment_set
from edu_migration.migration.models import (
    ClassRecord,
    MigrationPhase,
    MigrationProgress,
    MigrationResult,
    MigrationStatus,
    UserRecord,
    UserState,
    extract_school_prefix,
)
from edu_migration.migration.runtime import MigrationRun
from tests.fakes import make_classes, make_student, make_teacher


class TestUserState:
    def test_advance_sets_flags(self):
        state = UserState().advance(registered=True, logged_in=True)

        assert state.registered and state.logged_in
        assert not state.equipment_set

    def test_flags_cannot_be_reset(self):
        """A completed phase never becomes incomplete again."""
        state = UserState(registered=True)

        with pytest.raises(ValueError, match="cannot be reset"):
            state.advance(registered=False)

    def test_unknown_flag(self):
        with pytest.raises(ValueError, match="Unknown state flag"):
            UserState().advance(graduated=True)


class TestUserRecord:
    """Tests for immutable record updates."""

    @pytest.fixture
    def student(self) -> UserRecord:
        return make_student("schan", "An Nguyen", "SCH_1A_2025")

    def test_records_are_frozen(self, student):
        with pytest.raises(ValueError):
            student.username = "other"

    def test_keys_are_unique(self):
        first = make_student("schan", "An", "SCH_1A_2025")
        second = make_student("schan", "An", "SCH_1A_2025")
        assert first.key != second.key

    def test_assign_username_once(self, student):
        assigned = student.assign_username("schan1")

        assert assigned.label == "schan1"
        assert assigned.assign_username("schan1").actual_username == "schan1"
        with pytest.raises(ValueError, match="already assigned"):
            assigned.assign_username("schan2")

    def test_assign_display_name_once(self, student):
        assigned = student.assign_display_name("An Nguyen1")

        with pytest.raises(ValueError):
            assigned.assign_display_name("Nguyen")

    def test_failure_round_trip(self, student):
        failed = student.with_failure(MigrationPhase.LOGIN, "[401] nope")

        assert failed.failed_phase is MigrationPhase.LOGIN
        assert failed.cleared().failure_reason is None
        assert student.failure_reason is None

    def test_camel_case_input(self):
        """Records accept the camelCase keys used by input files and snapshots."""
        record = UserRecord.model_validate(
            {
                "username": "schan",
                "displayName": "An Nguyen",
                "password": "pw",
                "className": "SCH_1A_2025",
                "phoneNumber": "0901",
                "actualUsername": "schan1",
                "state": {"registered": True, "loggedIn": True},
            }
        )

        assert record.class_name == "SCH_1A_2025"
        assert record.state.logged_in
        assert not record.needs_registration

    def test_admin_teacher_detection(self):
        admin = make_teacher("schgv", "Thay Minh", "sch")
        class_teacher = make_teacher("schgv1a", "Co Lan", "SCH_1A_2025")

        assert admin.is_admin_teacher("SCH")
        assert not class_teacher.is_admin_teacher("SCH")
        assert not make_student("x", "X", "SCH").is_admin_teacher("SCH")

    def test_is_complete(self, student):
        done = student.advance(
            registered=True, logged_in=True, equipment_set=True, phone_updated=True
        )

        assert done.is_complete()
        assert not done.is_complete(require_class=True)
        assert done.advance(added_to_class=True).is_complete(require_class=True)

    def test_teacher_needs_role(self):
        teacher = make_teacher("schgv1a", "Co Lan", "SCH_1A_2025").advance(
            registered=True, logged_in=True, equipment_set=True, phone_updated=True
        )

        assert not teacher.is_complete()
        assert teacher.advance(role_assigned=True).is_complete()


class TestClassRecord:
    @pytest.mark.parametrize(
        ("name", "grade"),
        [("SCH_1A_2025", 1), ("SCH_12B_2025", 12), ("SCH_special", None)],
    )
    def test_grade_derivation(self, name, grade):
        assert ClassRecord(name=name).grade == grade

    def test_explicit_grade_wins(self):
        assert ClassRecord(name="SCH_1A_2025", grade=3).grade == 3

    def test_extract_school_prefix(self):
        assert extract_school_prefix(make_classes("SCH_1A_2025", "ABC_2B_2025")) == "SCH"
        assert extract_school_prefix([]) == ""


class TestMigrationProgress:
    """Tests for the weighted percentage."""

    def test_registration_and_login_weights(self):
        progress = MigrationProgress(
            status=MigrationStatus.RUNNING,
            phase=MigrationPhase.LOGIN,
            total_users=4,
            processed_registrations=4,
            processed_logins=2,
        )

        assert progress.percentage == 40

    def test_completed_is_full(self):
        progress = MigrationProgress(
            status=MigrationStatus.COMPLETED,
            phase=MigrationPhase.COMPLETED,
            total_users=2,
            processed_registrations=2,
            processed_logins=2,
            processed_inits=2,
            processed_classes=1,
            classes=make_classes("SCH_1A_2025"),
        )

        assert progress.percentage == 100
        assert progress.message == "Migration completed"

    def test_empty_run(self):
        running = MigrationProgress(status=MigrationStatus.RUNNING, phase=MigrationPhase.REGISTRATION)
        assert running.percentage == 0

    def test_paused_message(self):
        progress = MigrationProgress(
            status=MigrationStatus.PAUSED,
            phase=MigrationPhase.REGISTRATION,
            total_users=10,
            processed_registrations=5,
        )

        assert progress.message == "Paused during registering accounts (15%)"


class TestMigrationRun:
    def test_duplicate_keys_rejected(self):
        student = make_student("schan", "An", "SCH_1A_2025")

        with pytest.raises(ValueError, match="Duplicate"):
            MigrationRun([student, student])

    def test_update_keeps_latest_version(self):
        student = make_student("schan", "An", "SCH_1A_2025")
        run = MigrationRun([student])

        run.update(student.with_failure(MigrationPhase.REGISTRATION, "boom"))

        assert [u.failure_reason for u in run.failed_users] == ["boom"]
        with pytest.raises(KeyError):
            run.update(make_student("other", "O", "SCH_1A_2025"))

    def test_students_and_teachers(self):
        run = MigrationRun(
            [make_student("a", "A", "SCH_1A_2025"), make_teacher("t", "T", "SCH_1A_2025")],
            make_classes("SCH_1A_2025"),
        )
        snapshot = run.snapshot(MigrationStatus.RUNNING)

        assert len(snapshot.students) == 1
        assert len(snapshot.teachers) == 1
        assert snapshot.total_users == 2
        assert list(run.classes) == ["sch_1a_2025"]


def test_successful_users_counts_completed_records():
    done = UserState(registered=True, logged_in=True, equipment_set=True, phone_updated=True)
    failed = make_student("b", "B", "SCH_1A_2025", state=done).with_failure(
        MigrationPhase.CLASSES, "Class assignment failed: [400] nope"
    )
    unfinished = make_student("c", "C", "SCH_1A_2025", state=UserState(registered=True))
    result = MigrationResult(
        students=[make_student("a", "A", "SCH_1A_2025", state=done), failed, unfinished],
        teachers=[
            make_teacher("t", "T", "SCH_1A_2025", state=done.advance(role_assigned=True)),
            make_teacher("u", "U", "SCH_1A_2025", state=done),
        ],
        failed_users=[failed],
    )

    assert result.successful_users == 2


def test_random_equipment_set_has_one_item_per_slot():
    items = random_equipment_set()

    assert len(items) == len(EquipmentSlot)
    for slot, item in zip(EquipmentSlot, items):
        assert item in EQUIPMENT_ITEMS[slot]
