from __future__ import annotations

import pytest
from pydantic import ValidationError

from tagcaption.config import ROOT, Settings, get_settings


@pytest.fixture(autouse=True)
def _clean_environment(monkeypatch):
    for name in (
        "TAGCAPTION_OPERATOR_EMAIL",
        "TAGCAPTION_LOG_LEVEL",
        "TAGCAPTION_DATABASE__URL",
        "TAGCAPTION_SUBMISSIONS__UPLOAD_DELAY_MS",
        "TAGCAPTION_MAINTENANCE__INTERVAL_MS",
        "TAGCAPTION_MAINTENANCE__RETENTION_MS",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setitem(Settings.model_config, "env_file", None)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_settings_defaults() -> None:
    settings = get_settings()

    assert settings.database.url == f"sqlite:///{ROOT / 'data' / 'tagcaption.db'}"
    assert settings.database.echo is False
    assert settings.submissions.upload_delay_ms == 600_000
    assert settings.maintenance.interval_ms == 3_600_000
    assert settings.maintenance.retention_ms == 86_400_000
    assert settings.operator_email is None
    assert settings.log_level == "INFO"


def test_nested_values_from_environment(monkeypatch) -> None:
    monkeypatch.setenv("TAGCAPTION_DATABASE__URL", "sqlite:////tmp/elsewhere.db")
    monkeypatch.setenv("TAGCAPTION_SUBMISSIONS__UPLOAD_DELAY_MS", "5000")
    monkeypatch.setenv("TAGCAPTION_MAINTENANCE__RETENTION_MS", "120000")

    settings = get_settings()

    assert settings.database.url == "sqlite:////tmp/elsewhere.db"
    assert settings.submissions.upload_delay_ms == 5000
    assert settings.maintenance.retention_ms == 120_000


def test_operator_email_trimmed(monkeypatch) -> None:
    monkeypatch.setenv("TAGCAPTION_OPERATOR_EMAIL", "  organizers@tagcaption.org  ")

    assert get_settings().operator_email == "organizers@tagcaption.org"


def test_blank_operator_email_becomes_none(monkeypatch) -> None:
    monkeypatch.setenv("TAGCAPTION_OPERATOR_EMAIL", "   ")

    assert get_settings().operator_email is None


def test_log_level_normalized(monkeypatch) -> None:
    monkeypatch.setenv("TAGCAPTION_LOG_LEVEL", "debug")

    assert get_settings().log_level == "DEBUG"


def test_unknown_log_level_rejected() -> None:
    with pytest.raises(ValidationError):
        Settings(log_level="chatty")


def test_interval_must_be_positive(monkeypatch) -> None:
    monkeypatch.setenv("TAGCAPTION_MAINTENANCE__INTERVAL_MS", "0")

    with pytest.raises(ValidationError):
        get_settings()
