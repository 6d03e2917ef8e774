"""Contest lifecycle shared by duels and group competitions.

State progression: pending -> active -> completed
A pending contest may also end as declined or cancelled.
Transitions are validated; terminal states have no way out.
"""

from __future__ import annotations

from enum import Enum

from fitrank.errors import InvalidStateError


class ContestStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    DECLINED = "declined"
    CANCELLED = "cancelled"


VALID_TRANSITIONS: dict[ContestStatus, list[ContestStatus]] = {
    ContestStatus.PENDING: [ContestStatus.ACTIVE, ContestStatus.DECLINED, ContestStatus.CANCELLED],
    ContestStatus.ACTIVE: [ContestStatus.COMPLETED],
    ContestStatus.COMPLETED: [],
    ContestStatus.DECLINED: [],
    ContestStatus.CANCELLED: [],
}

OPEN_STATUSES: tuple[str, ...] = (ContestStatus.PENDING.value, ContestStatus.ACTIVE.value)
TERMINAL_STATUSES: tuple[str, ...] = (
    ContestStatus.COMPLETED.value,
    ContestStatus.DECLINED.value,
    ContestStatus.CANCELLED.value,
)


def can_transition(current_status: str, target_status: str) -> bool:
    try:
        current = ContestStatus(current_status)
        target = ContestStatus(target_status)
    except ValueError:
        return False
    return target in VALID_TRANSITIONS[current]


def validate_transition(current_status: str, target_status: str) -> None:
    """Validate a state transition. Raises InvalidStateError if invalid."""
    if not can_transition(current_status, target_status):
        try:
            valid = [s.value for s in VALID_TRANSITIONS[ContestStatus(current_status)]]
        except ValueError:
            valid = []
        raise InvalidStateError(
            f"Invalid transition: {current_status} -> {target_status}. "
            f"Valid transitions: {valid}"
        )


def is_open(status: str) -> bool:
    return status in OPEN_STATUSES
