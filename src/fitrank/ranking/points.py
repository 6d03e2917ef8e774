"""Points calculator.

points = workouts * 10 + streak * 5 + groups * 15 + friends * 5

Pure and total: negative counters count as zero and the result saturates at
POINTS_CEILING, the largest value a snapshot row can store.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

WORKOUT_WEIGHT = 10
STREAK_WEIGHT = 5
GROUP_WEIGHT = 15
FRIEND_WEIGHT = 5

POINTS_CEILING = 2**31 - 1


@dataclass(frozen=True)
class ActivitySnapshot:
    """Activity counters for one user, as read from the activity source."""

    workouts_count: int = 0
    streak: int = 0
    groups_count: int = 0
    friends_count: int = 0


def calculate_points(
    workouts_count: int,
    streak: int,
    groups_count: int,
    friends_count: int,
) -> int:
    """Weighted sum of activity counters, clamped to [0, POINTS_CEILING]."""
    total = (
        max(workouts_count, 0) * WORKOUT_WEIGHT
        + max(streak, 0) * STREAK_WEIGHT
        + max(groups_count, 0) * GROUP_WEIGHT
        + max(friends_count, 0) * FRIEND_WEIGHT
    )
    return min(total, POINTS_CEILING)


def points_for(activity: ActivitySnapshot) -> int:
    return calculate_points(
        activity.workouts_count,
        activity.streak,
        activity.groups_count,
        activity.friends_count,
    )


def points_formula() -> dict[str, Any]:
    """Weights and a readable formula for the "How points work" panel."""
    return {
        "weights": {
            "workouts": WORKOUT_WEIGHT,
            "streak": STREAK_WEIGHT,
            "groups": GROUP_WEIGHT,
            "friends": FRIEND_WEIGHT,
        },
        "ceiling": POINTS_CEILING,
        "formula": (
            f"workouts × {WORKOUT_WEIGHT} + streak × {STREAK_WEIGHT}"
            f" + groups × {GROUP_WEIGHT} + friends × {FRIEND_WEIGHT}"
        ),
    }
