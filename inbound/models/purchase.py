"""Purchase order models.

Supports:
- Purchase Order header and lines
- Ordered / received / open quantities per line
- Approval and vendor-confirmation lifecycle

Only ``qty_ordered`` and ``qty_received`` are stored per line. Open
quantity, line status and every header total are derived.
"""
import uuid
from datetime import datetime, date, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, List

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Integer, Text, Numeric, Date
from sqlalchemy import UniqueConstraint, Index, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from inbound.core.lifecycle import Transition, Workflow, states
from inbound.core.reconciliation import LineStatus, reconcile
from inbound.database import Base
from inbound.db_types import UUIDType


class POStatus(str, Enum):
    """Purchase order status enumeration."""
    DRAFT = "DRAFT"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    SUBMITTED = "SUBMITTED"  # Sent to vendor
    CONFIRMED = "CONFIRMED"  # Vendor acknowledged
    OPEN = "OPEN"            # Released for receiving
    PARTIAL = "PARTIAL"
    RECEIVED = "RECEIVED"
    CLOSED = "CLOSED"
    ON_HOLD = "ON_HOLD"
    CANCELLED = "CANCELLED"


S = POStatus

PRE_RECEIVED = states(
    S.DRAFT, S.PENDING_APPROVAL, S.APPROVED, S.SUBMITTED, S.CONFIRMED, S.OPEN, S.PARTIAL,
)
RECEIVABLE = states(S.SUBMITTED, S.CONFIRMED, S.OPEN, S.PARTIAL)
EDITABLE = states(S.DRAFT, S.PENDING_APPROVAL)

PO_WORKFLOW = Workflow(
    name="PurchaseOrder",
    initial_state=S.DRAFT.value,
    states=states(*POStatus),
    transitions=(
        Transition("submit", states(S.DRAFT), S.PENDING_APPROVAL.value),
        Transition("approve", states(S.PENDING_APPROVAL), S.APPROVED.value),
        Transition("send", states(S.APPROVED), S.SUBMITTED.value),
        Transition("confirm", states(S.SUBMITTED), S.CONFIRMED.value),
        Transition("release", states(S.CONFIRMED), S.OPEN.value),
        Transition("hold", PRE_RECEIVED, S.ON_HOLD.value),
        Transition("cancel", PRE_RECEIVED + states(S.ON_HOLD), S.CANCELLED.value),
        Transition("receive_partial", RECEIVABLE, S.PARTIAL.value),
        Transition("receive_full", RECEIVABLE + states(S.RECEIVED), S.RECEIVED.value),
        Transition("close", states(S.RECEIVED), S.CLOSED.value),
        Transition(
            "force_close",
            states(
                S.PENDING_APPROVAL, S.APPROVED, S.SUBMITTED, S.CONFIRMED,
                S.OPEN, S.PARTIAL, S.ON_HOLD,
            ),
            S.CLOSED.value,
        ),
    ),
    terminal_states=states(S.CLOSED, S.CANCELLED),
)


class PurchaseOrder(Base):
    """
    Purchase Order model.
    Official order placed with vendor; the commercial source of expected lines.
    """
    __tablename__ = "purchase_orders"
    __table_args__ = (
        Index("ix_po_vendor_status", "vendor_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )

    # Identification (immutable once created)
    po_number: Mapped[str] = mapped_column(
        String(30),
        unique=True,
        nullable=False,
        index=True,
        comment="PO-YYYY-NNNNNN"
    )

    # Status
    status: Mapped[str] = mapped_column(
        String(50),
        default=POStatus.DRAFT.value,
        nullable=False,
        index=True,
        comment="DRAFT, PENDING_APPROVAL, APPROVED, SUBMITTED, CONFIRMED, OPEN, PARTIAL, RECEIVED, CLOSED, ON_HOLD, CANCELLED"
    )
    held_from_status: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
        comment="Status to restore when released from ON_HOLD"
    )

    vendor_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("vendors.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    warehouse_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("warehouses.id", ondelete="RESTRICT"),
        nullable=False
    )

    order_date: Mapped[date] = mapped_column(Date, nullable=False)
    expected_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Closing
    close_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    variance_accepted: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
        comment="Set when closed short/over with an explicit reason or when a receipt accepted over-receipt"
    )

    # Lifecycle timestamps
    submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_received_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Optimistic lock
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    # Relationships
    lines: Mapped[List["PurchaseOrderLine"]] = relationship(
        "PurchaseOrderLine",
        back_populates="purchase_order",
        cascade="all, delete-orphan",
        order_by="PurchaseOrderLine.line_number",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    # ---- derived totals ----

    @property
    def total_qty_ordered(self) -> int:
        return sum(line.qty_ordered for line in self.lines)

    @property
    def total_qty_received(self) -> int:
        return sum(line.qty_received for line in self.lines)

    @property
    def total_qty_open(self) -> int:
        return sum(line.qty_open for line in self.lines)

    @property
    def total_value(self) -> Decimal:
        return sum((line.extended_cost for line in self.lines), Decimal("0"))

    @property
    def fully_received(self) -> bool:
        return bool(self.lines) and all(line.qty_open == 0 for line in self.lines)

    def line_by_number(self, line_number: int) -> Optional["PurchaseOrderLine"]:
        for line in self.lines:
            if line.line_number == line_number:
                return line
        return None

    def __repr__(self) -> str:
        return f"<PurchaseOrder(number='{self.po_number}', status='{self.status}')>"


class PurchaseOrderLine(Base):
    """Purchase order line item."""
    __tablename__ = "purchase_order_lines"
    __table_args__ = (
        UniqueConstraint("purchase_order_id", "line_number", name="uq_po_line_number"),
        CheckConstraint("qty_ordered > 0", name="ck_po_line_qty_ordered_positive"),
        CheckConstraint("qty_received >= 0", name="ck_po_line_qty_received_non_negative"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    purchase_order_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("purchase_orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    product_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=False
    )
    uom: Mapped[str] = mapped_column(String(10), default="EA", nullable=False)

    qty_ordered: Mapped[int] = mapped_column(Integer, nullable=False)
    qty_received: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
        comment="Incremented only by receipt commits"
    )
    unit_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    purchase_order: Mapped["PurchaseOrder"] = relationship("PurchaseOrder", back_populates="lines")

    @property
    def qty_open(self) -> int:
        return max(self.qty_ordered - self.qty_received, 0)

    @property
    def qty_over(self) -> int:
        return max(self.qty_received - self.qty_ordered, 0)

    @property
    def variance(self) -> int:
        return self.qty_received - self.qty_ordered

    @property
    def status(self) -> str:
        return reconcile(self.qty_ordered, self.qty_received).status.value

    @property
    def extended_cost(self) -> Decimal:
        return Decimal(self.qty_ordered) * (self.unit_cost or Decimal("0"))

    def __repr__(self) -> str:
        return f"<PurchaseOrderLine(line={self.line_number}, ordered={self.qty_ordered}, received={self.qty_received})>"


__all__ = [
    "POStatus",
    "PO_WORKFLOW",
    "RECEIVABLE",
    "EDITABLE",
    "PurchaseOrder",
    "PurchaseOrderLine",
    "LineStatus",
]
