"""Shared FastAPI dependencies."""

import uuid

from fastapi import Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from fitrank.activity.sources import SqlActivitySource, SqlMembershipSource
from fitrank.database import get_session as _get_session

get_db = _get_session


def _parse_user_id(value: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="X-User-Id must be a UUID") from exc


async def get_acting_user_id(
    x_user_id: str | None = Header(default=None, alias="X-User-Id"),
) -> uuid.UUID:
    """The authenticated user, as forwarded by the gateway."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return _parse_user_id(x_user_id)


async def get_optional_user_id(
    x_user_id: str | None = Header(default=None, alias="X-User-Id"),
) -> uuid.UUID | None:
    if not x_user_id:
        return None
    return _parse_user_id(x_user_id)


def get_activity_source(db: AsyncSession = Depends(get_db)) -> SqlActivitySource:
    return SqlActivitySource(db)


def get_membership_source(db: AsyncSession = Depends(get_db)) -> SqlMembershipSource:
    return SqlMembershipSource(db)
