"""Receipt session models.

A receipt is the unit of work for one physical receiving event. Its
lines collect scanned quantities provisionally; nothing reaches the
inventory ledger, the ASN or the PO until the session completes.
"""
import uuid
from datetime import datetime, date, timezone
from enum import Enum
from typing import Optional, List

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Integer, Text, Date
from sqlalchemy import UniqueConstraint, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from inbound.core.lifecycle import Transition, Workflow, states
from inbound.core.reconciliation import reconcile
from inbound.database import Base
from inbound.db_types import UUIDType


class ReceiptStatus(str, Enum):
    """Receipt session status enumeration."""
    SCHEDULED = "SCHEDULED"
    ARRIVED = "ARRIVED"
    RECEIVING = "RECEIVING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class ReceiptType(str, Enum):
    ASN = "ASN"            # Created from an advance ship notice
    PURCHASE_ORDER = "PO"  # Blind receipt against a PO's open lines


S = ReceiptStatus

ACTIVE = states(S.SCHEDULED, S.ARRIVED, S.RECEIVING)

RECEIPT_WORKFLOW = Workflow(
    name="Receipt",
    initial_state=S.SCHEDULED.value,
    states=states(*ReceiptStatus),
    transitions=(
        Transition("arrive", states(S.SCHEDULED), S.ARRIVED.value),
        Transition("start", states(S.SCHEDULED, S.ARRIVED), S.RECEIVING.value),
        Transition("complete", ACTIVE, S.COMPLETED.value),
        Transition("cancel", ACTIVE, S.CANCELLED.value),
    ),
    terminal_states=states(S.COMPLETED, S.CANCELLED),
)


class Receipt(Base):
    """
    Receipt session header.

    ``active_asn_id`` mirrors ``asn_id`` while the session is active and is
    cleared when it completes or is cancelled. Its unique constraint is what
    makes "at most one active session per ASN" hold across concurrent
    requests.
    """
    __tablename__ = "receipts"
    __table_args__ = (
        UniqueConstraint("active_asn_id", name="uq_receipt_active_asn"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    receipt_number: Mapped[str] = mapped_column(
        String(30),
        unique=True,
        nullable=False,
        index=True,
        comment="RCV-YYYY-NNNNNN"
    )
    receipt_type: Mapped[str] = mapped_column(String(20), nullable=False, comment="ASN, PO")
    status: Mapped[str] = mapped_column(
        String(50),
        default=ReceiptStatus.SCHEDULED.value,
        nullable=False,
        index=True,
        comment="SCHEDULED, ARRIVED, RECEIVING, COMPLETED, CANCELLED"
    )

    warehouse_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("warehouses.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    vendor_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("vendors.id", ondelete="RESTRICT"),
        nullable=True
    )

    # Source document
    asn_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("asns.id", ondelete="RESTRICT"),
        nullable=True,
        index=True
    )
    active_asn_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType(as_uuid=True), nullable=True)
    purchase_order_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("purchase_orders.id", ondelete="RESTRICT"),
        nullable=True,
        index=True
    )
    po_number: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)

    dock_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("docks.id", ondelete="SET NULL"),
        nullable=True
    )
    receiving_location_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("locations.id", ondelete="RESTRICT"),
        nullable=True,
        comment="Staging location the commit posts into"
    )

    scheduled_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    arrived_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    sla_breached_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    variance_accepted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

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

    lines: Mapped[List["ReceiptLine"]] = relationship(
        "ReceiptLine",
        back_populates="receipt",
        cascade="all, delete-orphan",
        order_by="ReceiptLine.line_number",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE

    @property
    def total_expected(self) -> int:
        return sum(line.expected_qty for line in self.lines)

    @property
    def total_received(self) -> int:
        return sum(line.received_qty for line in self.lines)

    def line_by_id(self, line_id: uuid.UUID) -> Optional["ReceiptLine"]:
        for line in self.lines:
            if line.id == line_id:
                return line
        return None

    def line_by_asn_line(self, asn_line_id: uuid.UUID) -> Optional["ReceiptLine"]:
        for line in self.lines:
            if line.asn_line_id == asn_line_id:
                return line
        return None

    def __repr__(self) -> str:
        return f"<Receipt(number='{self.receipt_number}', status='{self.status}')>"


class ReceiptLine(Base):
    """
    Receipt line.

    ``expected_qty`` is copied from the source line when the session starts
    and never changes. ``received_qty`` only grows.
    """
    __tablename__ = "receipt_lines"
    __table_args__ = (
        UniqueConstraint("receipt_id", "line_number", name="uq_receipt_line_number"),
        CheckConstraint("expected_qty > 0", name="ck_receipt_line_expected_positive"),
        CheckConstraint("received_qty >= 0", name="ck_receipt_line_received_non_negative"),
        CheckConstraint("damaged_qty >= 0 AND damaged_qty <= received_qty", name="ck_receipt_line_damaged_range"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    receipt_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("receipts.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    product_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=False
    )
    asn_line_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("asn_lines.id", ondelete="RESTRICT"),
        nullable=True
    )
    po_line_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("purchase_order_lines.id", ondelete="RESTRICT"),
        nullable=True
    )
    uom: Mapped[str] = mapped_column(String(10), default="EA", nullable=False)

    expected_qty: Mapped[int] = mapped_column(Integer, nullable=False)
    received_qty: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    damaged_qty: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    # Scanned quantity thrown away when the session was cancelled
    discarded_qty: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    lot_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    expiration_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    putaway_location_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("locations.id", ondelete="SET NULL"),
        nullable=True,
        comment="Last storage location this line was put away to"
    )
    last_scanned_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    receipt: Mapped["Receipt"] = relationship("Receipt", back_populates="lines")

    @property
    def reconciliation(self):
        return reconcile(self.expected_qty, self.received_qty, self.damaged_qty)

    @property
    def status(self) -> str:
        return self.reconciliation.status.value

    @property
    def variance(self) -> int:
        return self.received_qty - self.expected_qty

    @property
    def open_qty(self) -> int:
        return max(self.expected_qty - self.received_qty, 0)

    def __repr__(self) -> str:
        return f"<ReceiptLine(line={self.line_number}, expected={self.expected_qty}, received={self.received_qty})>"
