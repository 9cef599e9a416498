"""Typed failures raised by store operations.

Each error carries a short ``title`` naming the operation that failed and a
user-facing ``message``. The request layer decides how to turn them into
transport responses.
"""

from __future__ import annotations


class StoreError(RuntimeError):
    """Base class for every failure a store operation reports."""

    def __init__(self, title: str, message: str):
        super().__init__(f"{title}: {message}")
        self.title = title
        self.message = message

    def to_dict(self) -> dict[str, object]:
        return {"title": self.title, "message": self.message}


class ValidationError(StoreError):
    """Malformed input, detected before touching the database."""


class ConflictError(StoreError):
    """A uniqueness rule would be violated."""


class NotFoundError(StoreError):
    """No row matched the supplied details."""


class RateLimitError(StoreError):
    """A submission arrived too soon after the previous live one."""

    def __init__(self, title: str, message: str, *, retry_after_ms: int):
        super().__init__(title, message)
        self.retry_after_ms = retry_after_ms

    def to_dict(self) -> dict[str, object]:
        payload = super().to_dict()
        payload["retry_after_ms"] = self.retry_after_ms
        return payload


class StorageError(StoreError):
    """The database engine failed underneath an operation."""
