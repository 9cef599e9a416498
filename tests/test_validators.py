from __future__ import annotations

import pytest
from pydantic import ValidationError

from tagcaption.validators import (
    LeaderboardQuery,
    RunSubmission,
    UserRegistration,
    UserUpdate,
    first_error_message,
)


@pytest.mark.parametrize("name", ["abc", "A-b_9", "x" * 24])
def test_registration_accepts_names(name: str) -> None:
    assert UserRegistration(name=name, email="a@example.com").name == name


@pytest.mark.parametrize("name", ["ab", "x" * 25, "bad name", "naïve", "trailing\n"])
def test_registration_rejects_names(name: str) -> None:
    with pytest.raises(ValidationError) as excinfo:
        UserRegistration(name=name, email="a@example.com")

    assert first_error_message(excinfo.value) == "Name has an invalid format."


def test_update_allows_short_names() -> None:
    assert UserUpdate(name="a", email="a@example.com").name == "a"

    with pytest.raises(ValidationError):
        UserUpdate(name="", email="a@example.com")


@pytest.mark.parametrize(
    "email",
    [
        "first.last@example.com",
        "under_score-dash@sub.example.org",
        "UPPER@EXAMPLE.COM",
        "someone@example.co.uk",
        "x@host.museum",
    ],
)
def test_accepts_emails(email: str) -> None:
    assert UserRegistration(name="valid", email=email).email == email


@pytest.mark.parametrize(
    "email",
    ["", "no-at-sign", "two@@example.com", "dot.@example.com", "a@example.toolongtld", "ü@example.com"],
)
def test_rejects_emails(email: str) -> None:
    with pytest.raises(ValidationError) as excinfo:
        UserUpdate(name="valid", email=email)

    assert first_error_message(excinfo.value) == "Email address has an invalid format."


def test_run_submission_subtasks() -> None:
    assert RunSubmission(subtask="caption").comment == ""

    with pytest.raises(ValidationError):
        RunSubmission(subtask="Tag")


def test_leaderboard_query_accepts_valid_values() -> None:
    query = LeaderboardQuery(subtask="tag", sort="DESC", limit=3)

    assert (query.subtask, query.sort, query.limit) == ("tag", "DESC", 3)


def test_non_value_errors_report_location() -> None:
    with pytest.raises(ValidationError) as excinfo:
        LeaderboardQuery(subtask="tag", sort="ASC", limit="many")

    assert first_error_message(excinfo.value).startswith("limit: ")
