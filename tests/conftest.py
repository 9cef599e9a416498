"""Shared fixtures: a fresh SQLite store per test with a controllable clock."""

from __future__ import annotations

from pathlib import Path

import pytest

from tagcaption.config import DatabaseSettings, MaintenanceSettings, Settings, SubmissionSettings
from tagcaption.store import Store


OPERATOR_EMAIL = "organizers@tagcaption.org"
UPLOAD_DELAY_MS = 60_000
RETENTION_MS = 3_600_000
START_SECONDS = 1_700_000_000.0


class FakeClock:
    def __init__(self, seconds: float = START_SECONDS) -> None:
        self.seconds = seconds

    def __call__(self) -> float:
        return self.seconds

    def advance(self, milliseconds: int) -> None:
        self.seconds += milliseconds / 1000


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        database=DatabaseSettings(url=f"sqlite:///{tmp_path / 'store.db'}"),
        submissions=SubmissionSettings(upload_delay_ms=UPLOAD_DELAY_MS),
        maintenance=MaintenanceSettings(interval_ms=50, retention_ms=RETENTION_MS),
        operator_email=OPERATOR_EMAIL,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(settings: Settings, clock: FakeClock):
    instance = Store(settings, clock=clock)
    instance.init_db()
    yield instance
    instance.close()


@pytest.fixture
def token(store: Store) -> str:
    return store.add_user("alice", "alice@example.com")
