"""Shared database utilities."""

from __future__ import annotations

import datetime as dt
import secrets
import string
from typing import Callable


TOKEN_LENGTH = 24
TOKEN_ALPHABET = string.ascii_letters + string.digits
DISPLAY_FORMAT = "%Y-%m-%d %H:%M:%S"


def now_ms(clock: Callable[[], float]) -> int:
    """Return ``clock()`` (seconds since the epoch) as whole milliseconds."""
    return int(clock() * 1000)


def format_timestamp(timestamp_ms: int | None) -> str | None:
    """Render a millisecond epoch timestamp in local time for leaderboards.

    Returns None when the timestamp is missing or outside the range the
    platform can represent.
    """
    if timestamp_ms is None:
        return None
    try:
        moment = dt.datetime.fromtimestamp(timestamp_ms / 1000)
    except (OverflowError, OSError, ValueError):
        return None
    return moment.strftime(DISPLAY_FORMAT)


def random_token(length: int = TOKEN_LENGTH) -> str:
    return "".join(secrets.choice(TOKEN_ALPHABET) for _ in range(length))


__all__ = [
    "DISPLAY_FORMAT",
    "TOKEN_ALPHABET",
    "TOKEN_LENGTH",
    "format_timestamp",
    "now_ms",
    "random_token",
]
