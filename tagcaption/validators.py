"""Input validation models for store operations."""

from __future__ import annotations

import re

from pydantic import BaseModel, ValidationError as PydanticValidationError, field_validator


SUBTASKS = ("tag", "caption")
SORT_ORDERS = ("ASC", "DESC")

# registration is stricter than a later rename: 3..24 versus 1..24 characters
NAME_PATTERN = re.compile(r"[A-Za-z0-9_-]{3,24}")
UPDATED_NAME_PATTERN = re.compile(r"[A-Za-z0-9_-]{1,24}")
EMAIL_PATTERN = re.compile(
    r"([\w-]+(?:\.[\w-]+)*)@((?:[\w-]+\.)*\w[\w-]{0,66})\.([a-z]{2,6}(?:\.[a-z]{2})?)",
    re.IGNORECASE | re.ASCII,
)


def _check_email(email: str) -> str:
    if not EMAIL_PATTERN.fullmatch(email):
        raise ValueError("Email address has an invalid format.")
    return email


class UserRegistration(BaseModel):
    name: str
    email: str

    @field_validator("name", mode="after")
    @classmethod
    def validate_name(cls, name: str) -> str:
        if not NAME_PATTERN.fullmatch(name):
            raise ValueError("Name has an invalid format.")
        return name

    @field_validator("email", mode="after")
    @classmethod
    def validate_email(cls, email: str) -> str:
        return _check_email(email)


class UserUpdate(BaseModel):
    name: str
    email: str

    @field_validator("name", mode="after")
    @classmethod
    def validate_name(cls, name: str) -> str:
        if not UPDATED_NAME_PATTERN.fullmatch(name):
            raise ValueError("Name has an invalid format.")
        return name

    @field_validator("email", mode="after")
    @classmethod
    def validate_email(cls, email: str) -> str:
        return _check_email(email)


class RunSubmission(BaseModel):
    subtask: str
    comment: str = ""

    @field_validator("subtask", mode="after")
    @classmethod
    def validate_subtask(cls, subtask: str) -> str:
        if subtask not in SUBTASKS:
            raise ValueError('Invalid subtask requested (supported are "tag" and "caption").')
        return subtask


class LeaderboardQuery(BaseModel):
    subtask: str
    limit: int
    sort: str

    @field_validator("subtask", mode="after")
    @classmethod
    def validate_subtask(cls, subtask: str) -> str:
        if subtask not in SUBTASKS:
            raise ValueError('Invalid subtask requested (supported are "tag" and "caption").')
        return subtask

    @field_validator("limit", mode="after")
    @classmethod
    def validate_limit(cls, limit: int) -> int:
        if limit <= 0:
            raise ValueError("Invalid limit requested (supported are values larger than zero).")
        return limit

    @field_validator("sort", mode="after")
    @classmethod
    def validate_sort(cls, sort: str) -> str:
        if sort not in SORT_ORDERS:
            raise ValueError('Invalid sort requested (supported are "ASC" and "DESC").')
        return sort


def first_error_message(exc: PydanticValidationError) -> str:
    """Return the user-facing message of the first failed field."""

    errors = exc.errors()
    if not errors:
        return str(exc)
    error = errors[0]
    ctx = error.get("ctx") or {}
    if "error" in ctx:
        return str(ctx["error"])
    location = ".".join(str(part) for part in error.get("loc", ()))
    return f"{location}: {error['msg']}" if location else str(error["msg"])


__all__ = [
    "EMAIL_PATTERN",
    "LeaderboardQuery",
    "NAME_PATTERN",
    "RunSubmission",
    "SORT_ORDERS",
    "SUBTASKS",
    "UPDATED_NAME_PATTERN",
    "UserRegistration",
    "UserUpdate",
    "first_error_message",
]
