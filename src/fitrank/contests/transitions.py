"""Conditional status updates shared by the duel and competition engines.

Every transition is ``UPDATE ... SET status = :to WHERE id = :id AND
status = :from``. Exactly one of any number of racing callers sees
rowcount 1; the rest observe a no-op.
"""

from __future__ import annotations

import functools
import uuid
from collections.abc import Awaitable, Callable
from typing import Any, ParamSpec, TypeVar

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from fitrank.contests.state_machine import validate_transition
from fitrank.errors import FitRankError
from fitrank.timeutils import utcnow

P = ParamSpec("P")
T = TypeVar("T")


async def conditional_transition(
    db: AsyncSession,
    model: Any,
    entity_id: uuid.UUID,
    from_status: str,
    to_status: str,
    *extra_where: Any,
    **values: Any,
) -> bool:
    """Move one row from ``from_status`` to ``to_status``.

    Returns True when this caller performed the transition. Does not commit.
    """
    validate_transition(from_status, to_status)
    result = await db.execute(
        update(model)
        .where(model.id == entity_id, model.status == from_status, *extra_where)
        .values(status=to_status, updated_at=utcnow(), **values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def rollback_on_error(
    func: Callable[P, Awaitable[T]],
) -> Callable[P, Awaitable[T]]:
    """Roll back the session (first positional argument) before re-raising."""

    @functools.wraps(func)
    async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
        try:
            return await func(*args, **kwargs)
        except FitRankError:
            db = args[0] if args else kwargs.get("db")
            if isinstance(db, AsyncSession):
                await db.rollback()
            raise

    return wrapper
