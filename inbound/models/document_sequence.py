"""
Counters behind human-readable document numbers.

    PO   PO-2026-000001   restarts every calendar year
    ASN  ASN-00000001     never restarts (period "ALL")
    RCV  RCV-2026-000001  restarts every calendar year
"""
import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import DateTime, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from inbound.database import Base
from inbound.db_types import UUIDType


class DocumentType(str, Enum):
    PURCHASE_ORDER = "PO"
    ASN = "ASN"
    RECEIPT = "RCV"


class DocumentSequence(Base):
    __tablename__ = "document_sequences"
    __table_args__ = (
        UniqueConstraint("document_type", "period", name="uq_document_sequence_period"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), primary_key=True, default=uuid.uuid4)
    document_type: Mapped[str] = mapped_column(String(10), nullable=False)
    # Four-digit year, or ALL for a counter that never restarts
    period: Mapped[str] = mapped_column(String(10), nullable=False)
    last_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    width: Mapped[int] = mapped_column(Integer, nullable=False, default=6)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def advance(self) -> str:
        """Consume the next value and return it formatted. The row must be locked."""
        self.last_value += 1
        parts = [self.document_type]
        if self.period != "ALL":
            parts.append(self.period)
        parts.append(str(self.last_value).zfill(self.width))
        return "-".join(parts)
