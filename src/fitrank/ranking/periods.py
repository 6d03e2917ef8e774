"""Monthly period keys for leaderboard snapshots.

Keys are ``YYYY-MM`` strings, which sort chronologically as plain strings.
They are computed at the API boundary and passed into the engine.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone

from fitrank.errors import ValidationError

_PERIOD_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


def get_period_key(dt: datetime) -> str:
    """Period key for the month containing dt, e.g. '2026-03'."""
    return dt.strftime("%Y-%m")


def get_current_period_key(now: datetime | None = None) -> str:
    if now is None:
        now = datetime.now(timezone.utc)
    return get_period_key(now)


def get_previous_period_key(period_key: str) -> str:
    """The month before period_key ('2026-01' -> '2025-12')."""
    validate_period_key(period_key)
    year, month = (int(part) for part in period_key.split("-"))
    if month == 1:
        return f"{year - 1:04d}-12"
    return f"{year:04d}-{month - 1:02d}"


def is_valid_period_key(period_key: str) -> bool:
    return bool(_PERIOD_RE.match(period_key))


def validate_period_key(period_key: str) -> None:
    """Raise ValidationError unless period_key looks like YYYY-MM."""
    if not is_valid_period_key(period_key):
        raise ValidationError(f"Invalid period key: {period_key!r} (expected YYYY-MM)")
