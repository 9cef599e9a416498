"""tagcaption package exports."""

from tagcaption.config import Settings, get_settings
from tagcaption.database import Base, RunRecord, UserRecord
from tagcaption.exceptions import (
    ConflictError,
    NotFoundError,
    RateLimitError,
    StorageError,
    StoreError,
    ValidationError,
)
from tagcaption.lifecycle import ShutdownRegistry, StoreRuntime, lifespan, start_runtime
from tagcaption.store import Store

__all__ = [
    "Base",
    "ConflictError",
    "NotFoundError",
    "RateLimitError",
    "RunRecord",
    "Settings",
    "ShutdownRegistry",
    "StorageError",
    "Store",
    "StoreError",
    "StoreRuntime",
    "UserRecord",
    "ValidationError",
    "get_settings",
    "lifespan",
    "start_runtime",
]
