"""
Unit tests for the logging helpers.

Tests cover:
- Redaction of passwords and tokens in payloads
- Payload truncation
- Run id binding for everything logged during a run
- Phase progress events
"""

import structlog
from structlog.testing import capture_logs

from edu_migration.utils.logging import (
    log_phase_progress,
    run_log_context,
    sanitize_payload,
    truncate_payload,
)


class TestSanitizePayload:
    def test_redacts_credentials_at_any_depth(self):
        payload = {
            "username": "schan",
            "password": "pw",
            "data": {"accessToken": "tok", "userId": "u1"},
            "items": [{"Authorization": "Bearer x"}],
        }

        assert sanitize_payload(payload) == {
            "username": "schan",
            "password": "[REDACTED]",
            "data": {"accessToken": "[REDACTED]", "userId": "u1"},
            "items": [{"Authorization": "[REDACTED]"}],
        }

    def test_leaves_input_untouched(self):
        payload = {"password": "pw"}

        sanitize_payload(payload)

        assert payload == {"password": "pw"}

    def test_depth_limit(self):
        assert sanitize_payload({"a": {"b": 1}}, max_depth=1) == {"a": "[MAX_DEPTH_EXCEEDED]"}


def test_truncate_payload():
    text = truncate_payload({"displayName": "x" * 500}, max_size=100)

    assert len(text.splitlines()[0]) <= 100
    assert "[TRUNCATED" in text


class TestRunLogContext:
    def test_binds_and_releases_run_id(self):
        with run_log_context("retry", school_prefix="SCH") as run_id:
            bound = structlog.contextvars.get_contextvars()
            assert bound["run_id"] == run_id
            assert bound["run_kind"] == "retry"
            assert bound["school_prefix"] == "SCH"

        assert "run_id" not in structlog.contextvars.get_contextvars()

    def test_each_run_gets_its_own_id(self):
        with run_log_context("migrate") as first:
            pass
        with run_log_context("migrate") as second:
            pass

        assert first != second


def test_log_phase_progress():
    with capture_logs() as logs:
        log_phase_progress(
            structlog.get_logger("progress-test"), "registration", 1, 3, username="schan"
        )

    [entry] = logs
    assert entry["event"] == "phase_progress"
    assert entry["percentage"] == 33
    assert entry["username"] == "schan"
