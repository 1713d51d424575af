"""Stored responses for requests sent with an ``Idempotency-Key`` header."""
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import String, Integer, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from inbound.database import Base
from inbound.db_types import JSONType, UUIDType


class IdempotencyRecord(Base):
    __tablename__ = "idempotency_records"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    key: Mapped[str] = mapped_column(String(200), unique=True, nullable=False, index=True)
    scope: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
        comment="Operation and aggregate the key was first used for"
    )
    request_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    status_code: Mapped[int] = mapped_column(Integer, default=200, nullable=False)
    response_body: Mapped[Optional[Any]] = mapped_column(JSONType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
