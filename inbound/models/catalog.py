"""Catalog reference models: products, vendors, warehouses, locations, carriers, docks.

The receiving engine only reads these rows; they are maintained through the
catalog endpoints.
"""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Integer
from sqlalchemy import UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from inbound.database import Base
from inbound.db_types import UUIDType


class LocationType(str, Enum):
    """Storage location type enumeration."""
    RECEIVING = "RECEIVING"    # Inbound dock / receiving area
    STAGING = "STAGING"        # Temporary holding before putaway
    STORAGE = "STORAGE"        # Main storage
    QUARANTINE = "QUARANTINE"  # Quality hold


class LocationStatus(str, Enum):
    """Location status. Only ACTIVE and FREE locations accept stock."""
    ACTIVE = "ACTIVE"
    FREE = "FREE"
    OCCUPIED = "OCCUPIED"
    BLOCKED = "BLOCKED"
    INACTIVE = "INACTIVE"


PUTAWAY_STATUSES = (LocationStatus.ACTIVE.value, LocationStatus.FREE.value)


class DockStatus(str, Enum):
    AVAILABLE = "AVAILABLE"
    OCCUPIED = "OCCUPIED"
    OUT_OF_SERVICE = "OUT_OF_SERVICE"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Product(Base):
    """Product master (read-only for receiving)."""
    __tablename__ = "products"

    id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), primary_key=True, default=uuid.uuid4)
    sku: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    uom: Mapped[str] = mapped_column(String(10), default="EA", nullable=False)
    shelf_life_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<Product(sku='{self.sku}')>"


class Vendor(Base):
    __tablename__ = "vendors"

    id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), primary_key=True, default=uuid.uuid4)
    code: Mapped[str] = mapped_column(String(30), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)


class Warehouse(Base):
    __tablename__ = "warehouses"

    id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), primary_key=True, default=uuid.uuid4)
    code: Mapped[str] = mapped_column(String(20), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)


class Location(Base):
    """
    Storage location inside a warehouse.

    ``capacity`` is in units; it is only enforced when ``enforce_capacity``
    is set. Current occupancy is never stored here - it is the sum of the
    inventory ledger deltas posted to the location.
    """
    __tablename__ = "locations"
    __table_args__ = (
        UniqueConstraint("warehouse_id", "code", name="uq_location_warehouse_code"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), primary_key=True, default=uuid.uuid4)
    warehouse_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("warehouses.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    code: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="Location code e.g., RCV-01, A1-B2-C3"
    )
    location_type: Mapped[str] = mapped_column(
        String(50),
        default=LocationType.STORAGE.value,
        nullable=False,
        comment="RECEIVING, STAGING, STORAGE, QUARANTINE"
    )
    status: Mapped[str] = mapped_column(
        String(50),
        default=LocationStatus.ACTIVE.value,
        nullable=False,
        comment="ACTIVE, FREE, OCCUPIED, BLOCKED, INACTIVE"
    )
    capacity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    enforce_capacity: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
        nullable=False
    )

    @property
    def accepts_stock(self) -> bool:
        return self.status in PUTAWAY_STATUSES

    def __repr__(self) -> str:
        return f"<Location(code='{self.code}', status='{self.status}')>"


class Carrier(Base):
    __tablename__ = "carriers"

    id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), primary_key=True, default=uuid.uuid4)
    code: Mapped[str] = mapped_column(String(30), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)


class Dock(Base):
    __tablename__ = "docks"
    __table_args__ = (
        UniqueConstraint("warehouse_id", "code", name="uq_dock_warehouse_code"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUIDType(as_uuid=True), primary_key=True, default=uuid.uuid4)
    warehouse_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("warehouses.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    code: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(50), default=DockStatus.AVAILABLE.value, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
