"""Test configuration and fixtures."""

from __future__ import annotations

import pytest

from deskgate.config import Settings
from deskgate.managers.session import SessionOrchestrator, SessionRegistry
from tests.fakes import FakeDriver, FakeSupervisor


@pytest.fixture
def test_settings() -> Settings:
    """Settings with no warm-up delay and a fixed public URL."""
    return Settings(
        server={"public_url": "http://desk.test"},
        sessions={"warmup_seconds": 0, "stop_grace_seconds": 1},
        security={"session_secret": "test-secret", "admin_users": ["admin@example.com"]},
    )


@pytest.fixture
def driver() -> FakeDriver:
    return FakeDriver()


@pytest.fixture
def supervisor() -> FakeSupervisor:
    return FakeSupervisor()


@pytest.fixture
def registry() -> SessionRegistry:
    return SessionRegistry()


@pytest.fixture
def orchestrator(
    driver: FakeDriver,
    registry: SessionRegistry,
    supervisor: FakeSupervisor,
    test_settings: Settings,
) -> SessionOrchestrator:
    return SessionOrchestrator(
        driver=driver,
        registry=registry,
        supervisor=supervisor,
        settings=test_settings,
    )
