"""Advance Ship Notice (ASN) models.

An ASN is the vendor's pre-arrival manifest. It may point at a purchase
order (lookup only, the ASN never owns or mutates PO lines itself); its
``quantity_received`` counters are incremented only when a receipt
session commits.
"""
import uuid
from datetime import datetime, date, timezone
from enum import Enum
from typing import Optional, List

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Integer, Text, Date
from sqlalchemy import UniqueConstraint, Index, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from inbound.core.lifecycle import Transition, Workflow, states
from inbound.core.reconciliation import reconcile
from inbound.database import Base
from inbound.db_types import UUIDType


class ASNStatus(str, Enum):
    """ASN status enumeration."""
    PENDING = "PENDING"
    VALIDATED = "VALIDATED"
    SCHEDULED = "SCHEDULED"    # Dock appointment booked
    IN_TRANSIT = "IN_TRANSIT"
    ARRIVED = "ARRIVED"        # Checked in at the yard / dock
    RECEIVING = "RECEIVING"    # A receipt session is (or was) working it
    RECEIVED = "RECEIVED"
    CLOSED = "CLOSED"
    CANCELLED = "CANCELLED"


S = ASNStatus

# Header fields and lines may be edited only before receiving starts
EDITABLE = states(S.PENDING, S.VALIDATED, S.SCHEDULED, S.IN_TRANSIT, S.ARRIVED)
OPEN_STATUSES = states(S.PENDING, S.VALIDATED, S.SCHEDULED, S.IN_TRANSIT)

ASN_WORKFLOW = Workflow(
    name="ASN",
    initial_state=S.PENDING.value,
    states=states(*ASNStatus),
    transitions=(
        Transition("validate", states(S.PENDING), S.VALIDATED.value),
        Transition("schedule", states(S.VALIDATED), S.SCHEDULED.value),
        Transition("ship", states(S.VALIDATED, S.SCHEDULED), S.IN_TRANSIT.value),
        Transition("arrive", states(S.VALIDATED, S.SCHEDULED, S.IN_TRANSIT), S.ARRIVED.value),
        Transition("start_receiving", states(S.ARRIVED, S.SCHEDULED), S.RECEIVING.value),
        Transition("abort_receiving", states(S.RECEIVING), S.ARRIVED.value),
        Transition("finish_receiving", states(S.RECEIVING), S.RECEIVED.value),
        Transition("close", states(S.RECEIVING, S.RECEIVED), S.CLOSED.value),
        Transition("cancel", EDITABLE + states(S.RECEIVING), S.CANCELLED.value),
    ),
    terminal_states=states(S.CLOSED, S.CANCELLED),
)


class AdvanceShipNotice(Base):
    """
    ASN header.
    """
    __tablename__ = "asns"
    __table_args__ = (
        Index("ix_asn_warehouse_arrival", "warehouse_id", "expected_arrival"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    asn_number: Mapped[str] = mapped_column(
        String(30),
        unique=True,
        nullable=False,
        index=True,
        comment="ASN-NNNNNNNN"
    )
    status: Mapped[str] = mapped_column(
        String(50),
        default=ASNStatus.PENDING.value,
        nullable=False,
        index=True,
        comment="PENDING, VALIDATED, SCHEDULED, IN_TRANSIT, ARRIVED, RECEIVING, RECEIVED, CLOSED, CANCELLED"
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
    # Weak reference: lookup only
    purchase_order_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("purchase_orders.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    carrier_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("carriers.id", ondelete="SET NULL"),
        nullable=True
    )

    # Shipment details
    expected_arrival: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    bol_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    tracking_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Dock appointment
    dock_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("docks.id", ondelete="SET NULL"),
        nullable=True
    )
    appointment_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    variance_accepted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Lifecycle timestamps
    validated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    shipped_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    arrived_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    receiving_started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    received_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    sla_breached_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Set by the SLA monitor when RECEIVING outlives RECEIVING_SLA_MINUTES"
    )

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

    lines: Mapped[List["ASNLine"]] = relationship(
        "ASNLine",
        back_populates="asn",
        cascade="all, delete-orphan",
        order_by="ASNLine.line_number",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def total_expected(self) -> int:
        return sum(line.quantity_expected for line in self.lines)

    @property
    def total_received(self) -> int:
        return sum(line.quantity_received for line in self.lines)

    @property
    def percent_complete(self) -> int:
        total = self.total_expected
        return round(self.total_received * 100 / total) if total > 0 else 0

    @property
    def has_variance(self) -> bool:
        return any(line.variance != 0 for line in self.lines)

    def line_by_id(self, line_id: uuid.UUID) -> Optional["ASNLine"]:
        for line in self.lines:
            if line.id == line_id:
                return line
        return None

    def __repr__(self) -> str:
        return f"<AdvanceShipNotice(number='{self.asn_number}', status='{self.status}')>"


class ASNLine(Base):
    """ASN line item."""
    __tablename__ = "asn_lines"
    __table_args__ = (
        UniqueConstraint("asn_id", "line_number", name="uq_asn_line_number"),
        CheckConstraint("quantity_received >= 0", name="ck_asn_line_received_non_negative"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    asn_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("asns.id", ondelete="CASCADE"),
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

    quantity_expected: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity_received: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
        comment="Sum of committed receipt quantities"
    )

    lot_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    expiration_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    po_line_number: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        comment="Cross-reference to the PO line this shipment fulfils"
    )

    asn: Mapped["AdvanceShipNotice"] = relationship("AdvanceShipNotice", back_populates="lines")

    @property
    def variance(self) -> int:
        return self.quantity_received - self.quantity_expected

    @property
    def status(self) -> Optional[str]:
        if self.quantity_expected <= 0:
            return None
        return reconcile(self.quantity_expected, self.quantity_received).status.value

    def __repr__(self) -> str:
        return f"<ASNLine(line={self.line_number}, expected={self.quantity_expected})>"
