"""
Unit tests for the JSON results snapshot.

Tests cover:
- Snapshot layout and summary counts
- Access tokens never being written
- Reading a snapshot back
"""

import json
from datetime import UTC, datetime

import pytest

from edu_migration.migration.models import (
    ClassRecord,
    MigrationPhase,
    MigrationResult,
    MigrationStatus,
    UserState,
)
from edu_migration.reporting.snapshot import (
    SNAPSHOT_PREFIX,
    build_snapshot,
    load_snapshot,
    write_snapshot,
)
from tests.fakes import make_student, make_teacher


DONE = UserState(registered=True, logged_in=True, equipment_set=True, phone_updated=True)


@pytest.fixture
def result() -> MigrationResult:
    ok = make_student(
        "schan", "An Nguyen", "SCH_1A_2025", user_id="u1", access_token="secret-token", state=DONE
    )
    failed = make_student("schbinh", "Binh", "SCH_1A_2025").with_failure(
        MigrationPhase.REGISTRATION, "[417] rejected"
    )
    teacher = make_teacher(
        "schgv1a", "Co Lan", "SCH_1A_2025", user_id="u2", state=DONE.advance(role_assigned=True)
    )
    skipped = make_teacher("schgv1b", "Co Hoa", "SCH_1B_2025")
    broken = ClassRecord(name="SCH_2A_2025", failure_reason="[500] boom")
    return MigrationResult(
        status=MigrationStatus.COMPLETED,
        students=[ok, failed],
        teachers=[teacher],
        classes=[ClassRecord(name="SCH_1A_2025", group_id="g1", student_ids=("u1",)), broken],
        skipped_teachers=[skipped],
        failed_users=[failed],
        failed_classes=[broken],
        role_assignment_error="Teacher role not found",
    )


class TestBuildSnapshot:
    def test_summary(self, result):
        document = build_snapshot(result, datetime(2025, 9, 1, tzinfo=UTC))

        assert document["migrationTimestamp"] == "2025-09-01T00:00:00+00:00"
        assert document["summary"] == {
            "totalStudents": 2,
            "totalTeachers": 1,
            "totalClasses": 2,
            "successfulUsers": 2,
            "failedUsers": 1,
            "failedClasses": 1,
            "skippedTeachers": 1,
        }
        assert document["errors"]["roleAssignmentError"] == "Teacher role not found"

    def test_records_use_camel_case_without_tokens(self, result):
        document = build_snapshot(result, datetime.now(UTC))
        student = document["students"][0]

        assert student["actualUsername"] is None
        assert student["className"] == "SCH_1A_2025"
        assert "accessToken" not in student
        assert student["state"]["loggedIn"] is True
        assert student["state"]["addedToClass"] is False


class TestWriteAndLoad:
    def test_write_creates_directory(self, result, tmp_path):
        results_dir = tmp_path / "output data"

        path = write_snapshot(result, results_dir, datetime(2025, 9, 1, 8, 30, tzinfo=UTC))

        assert path.parent == results_dir
        assert path.name.startswith(SNAPSHOT_PREFIX)
        assert path.suffix == ".json"
        assert "secret-token" not in path.read_text(encoding="utf-8")

    def test_round_trip(self, result, tmp_path):
        path = write_snapshot(result, tmp_path)

        loaded = load_snapshot(path)

        assert loaded.status is MigrationStatus.COMPLETED
        assert [s.username for s in loaded.students] == ["schan", "schbinh"]
        assert loaded.failed_users[0].failed_phase is MigrationPhase.REGISTRATION
        assert loaded.failed_classes[0].failure_reason == "[500] boom"
        assert loaded.skipped_teachers[0].username == "schgv1b"
        assert loaded.students[0].access_token is None
        assert loaded.snapshot_path == str(path)

    def test_snapshot_is_valid_json(self, result, tmp_path):
        path = write_snapshot(result, tmp_path)

        data = json.loads(path.read_text(encoding="utf-8"))

        assert set(data) == {
            "migrationTimestamp",
            "status",
            "summary",
            "students",
            "teachers",
            "classes",
            "skippedTeachers",
            "errors",
        }
