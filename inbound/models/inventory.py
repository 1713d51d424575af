"""Inventory ledger model.

The ledger is append-only. A balance for (product, location, lot) is the
sum of ``quantity_delta`` over its entries; there is no balance row to
update. Corrections are new REVERSAL entries pointing at the entry they
negate.
"""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import String, DateTime, ForeignKey, Integer, Index, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column

from inbound.database import Base
from inbound.db_types import UUIDType


class LedgerReason(str, Enum):
    RECEIPT = "RECEIPT"      # Receipt session commit into the receiving location
    PUTAWAY = "PUTAWAY"      # Move from receiving location to storage (paired +/-)
    REVERSAL = "REVERSAL"    # Negation of an earlier entry


class InventoryLedgerEntry(Base):
    """One signed quantity change. Never updated, never deleted."""
    __tablename__ = "inventory_ledger"
    __table_args__ = (
        Index("ix_ledger_balance_key", "product_id", "location_id", "lot_number"),
        CheckConstraint("quantity_delta <> 0", name="ck_ledger_delta_non_zero"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    product_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=False
    )
    warehouse_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("warehouses.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    location_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("locations.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    lot_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    quantity_delta: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="RECEIPT, PUTAWAY, REVERSAL"
    )

    # Provenance
    receipt_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("receipts.id", ondelete="RESTRICT"),
        nullable=True,
        index=True
    )
    receipt_line_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("receipt_lines.id", ondelete="RESTRICT"),
        nullable=True,
        index=True
    )
    reverses_entry_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("inventory_ledger.id", ondelete="RESTRICT"),
        nullable=True,
        unique=True
    )
    reference: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
        comment="Receipt number or other document the entry was posted for"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True
    )

    def __repr__(self) -> str:
        return f"<InventoryLedgerEntry(reason='{self.reason}', delta={self.quantity_delta})>"
