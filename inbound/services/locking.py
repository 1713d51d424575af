"""
Aggregate loading with row locks and optimistic version checks.

Every mutation of a purchase order, ASN or receipt session goes through
``lock_aggregate`` (SELECT ... FOR UPDATE, ignored on SQLite) and, when
the caller supplied one, ``check_version``. The header row is always
touched so its ``version_id_col`` increments even when only lines change.
"""
from datetime import datetime, timezone
from typing import Any, Optional, Type, TypeVar
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from inbound.core.exceptions import ConcurrencyConflictError, NotFoundError


T = TypeVar("T")


async def get_aggregate(db: AsyncSession, model: Type[T], entity_id: uuid.UUID, entity: str) -> T:
    result = await db.execute(select(model).where(model.id == entity_id))
    obj = result.scalar_one_or_none()
    if obj is None:
        raise NotFoundError(entity, entity_id)
    return obj


async def lock_aggregate(db: AsyncSession, model: Type[T], entity_id: uuid.UUID, entity: str) -> T:
    """Load ``model`` by id with a row lock and fresh column values."""
    result = await db.execute(
        select(model)
        .where(model.id == entity_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    obj = result.scalar_one_or_none()
    if obj is None:
        raise NotFoundError(entity, entity_id)
    return obj


def check_version(entity: str, obj: Any, expected_version: Optional[int]) -> None:
    if expected_version is not None and obj.version != expected_version:
        raise ConcurrencyConflictError(
            f"{entity} was modified by another request; reload and retry",
            {"entity": entity, "id": str(obj.id), "expectedVersion": expected_version, "currentVersion": obj.version},
        )


def touch(obj: Any) -> None:
    obj.updated_at = datetime.now(timezone.utc)


async def flush_or_conflict(db: AsyncSession, entity: str = "Aggregate") -> None:
    """Flush pending changes, mapping an optimistic version mismatch to ConcurrencyConflict."""
    try:
        await db.flush()
    except StaleDataError as e:
        raise ConcurrencyConflictError(
            f"{entity} was modified by another request; reload and retry",
            {"entity": entity},
        ) from e


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
