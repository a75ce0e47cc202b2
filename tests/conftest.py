"""
Shared pytest fixtures for the edu-bridge tests.

This module provides:
- A fresh FakeBackend per test
- Configuration tuned for fast tests (high throttle rates, results under tmp_path)
- A recording sleep so tests can count retry waits
- A MigrationService wired to the fake backend
"""

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio

from edu_migration.config import (
    BackendConfig,
    LoggingConfig,
    MigrationConfig,
    PathConfig,
    PerformanceConfig,
)
from edu_migration.migration.coordinator import MigrationService
from tests.fakes import ADMIN_PASSWORD, ADMIN_USERNAME, BASE_URL, FakeBackend, SleepRecorder


@pytest.fixture
def backend() -> FakeBackend:
    """Fresh fake backend for each test."""
    return FakeBackend()


@pytest.fixture
def sleeps() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def config(tmp_path) -> MigrationConfig:
    """Configuration with fast throttles and results under tmp_path."""
    return MigrationConfig(
        backend=BackendConfig(
            url=BASE_URL, admin_username=ADMIN_USERNAME, admin_password=ADMIN_PASSWORD
        ),
        performance=PerformanceConfig(register_rate=50, login_rate=50, retry_delay_ms=500),
        paths=PathConfig(results_dir=str(tmp_path / "output data")),
        logging=LoggingConfig(file=None, disable_progress=True),
    )


@pytest_asyncio.fixture
async def service(
    config: MigrationConfig, backend: FakeBackend, sleeps: SleepRecorder
) -> AsyncGenerator[MigrationService, None]:
    """Migration service wired to the fake backend."""
    svc = MigrationService(config, transport=backend.transport(), sleep=sleeps)
    yield svc
    await svc.close()
