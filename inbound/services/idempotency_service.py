"""
Idempotency-Key handling for retryable mutations.

A key is bound to the scope it was first used for (operation + aggregate
id) and to a hash of the request body. The stored response is written in
the same transaction as the mutation, so a rolled back request leaves no
record and may be retried with the same key.
"""
import hashlib
import json
import logging
from datetime import timedelta, timezone
from typing import Any, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from inbound.config import settings
from inbound.core.exceptions import ConcurrencyConflictError, IdempotencyKeyReusedError
from inbound.models.idempotency import IdempotencyRecord
from inbound.services.locking import utcnow


logger = logging.getLogger(__name__)


def request_fingerprint(scope: str, payload: Any) -> str:
    body = json.dumps(payload, sort_keys=True, default=str)
    return hashlib.sha256(f"{scope}|{body}".encode("utf-8")).hexdigest()


class IdempotencyService:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def lookup(self, key: str, scope: str, payload: Any) -> Optional[Tuple[int, Any]]:
        """
        Return ``(status_code, body)`` of the stored response for ``key``, or
        None when the key is new or its record has expired.

        Raises:
            IdempotencyKeyReusedError: key was used for a different request
        """
        result = await self.db.execute(select(IdempotencyRecord).where(IdempotencyRecord.key == key))
        record = result.scalar_one_or_none()
        if record is None:
            return None

        created_at = record.created_at
        if created_at.tzinfo is None:
            # SQLite hands back naive datetimes
            created_at = created_at.replace(tzinfo=timezone.utc)
        if created_at < utcnow() - timedelta(hours=settings.IDEMPOTENCY_TTL_HOURS):
            await self.db.delete(record)
            await self.db.flush()
            return None

        if record.scope != scope or record.request_hash != request_fingerprint(scope, payload):
            raise IdempotencyKeyReusedError(
                "Idempotency-Key was already used for a different request",
                {"idempotencyKey": key, "originalScope": record.scope},
            )

        logger.info(f"Replaying stored response for Idempotency-Key {key} ({scope})")
        return record.status_code, record.response_body

    async def store(self, key: str, scope: str, payload: Any, status_code: int, body: Any) -> None:
        self.db.add(IdempotencyRecord(
            key=key,
            scope=scope,
            request_hash=request_fingerprint(scope, payload),
            status_code=status_code,
            response_body=body,
        ))
        try:
            await self.db.flush()
        except IntegrityError:
            # A concurrent first try with the same key committed ahead of this one
            logger.warning(f"Idempotency-Key {key} was stored by a concurrent request ({scope})")
            raise ConcurrencyConflictError(
                "A request with this Idempotency-Key is already in flight; retry to get its response",
                {"idempotencyKey": key},
            )
