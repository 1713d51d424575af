"""Pydantic schemas for advance ship notices."""
from datetime import datetime, date
from typing import Optional, List, Dict
from uuid import UUID

from pydantic import Field

from inbound.schemas.base import BaseResponseSchema, BaseCreateSchema, BaseUpdateSchema
from inbound.schemas.common import IssueResponse, PaginationMeta


# ==================== ASN Line ====================

class ASNLineCreate(BaseCreateSchema):
    line_number: Optional[int] = Field(None, gt=0)
    product_id: UUID
    uom: str = Field("EA", max_length=10)
    quantity_expected: int = Field(..., ge=0)
    lot_number: Optional[str] = Field(None, max_length=50)
    expiration_date: Optional[date] = None
    po_line_number: Optional[int] = Field(None, gt=0)


class ASNLineUpdate(BaseUpdateSchema):
    product_id: Optional[UUID] = None
    uom: Optional[str] = Field(None, max_length=10)
    quantity_expected: Optional[int] = Field(None, ge=0)
    lot_number: Optional[str] = Field(None, max_length=50)
    expiration_date: Optional[date] = None
    po_line_number: Optional[int] = Field(None, gt=0)


class ASNLineResponse(BaseResponseSchema):
    id: UUID
    line_number: int
    product_id: UUID
    uom: str
    quantity_expected: int
    quantity_received: int
    variance: int
    status: Optional[str] = None
    lot_number: Optional[str] = None
    expiration_date: Optional[date] = None
    po_line_number: Optional[int] = None


# ==================== ASN ====================

class ASNCreate(BaseCreateSchema):
    """
    Create an ASN.

    When a purchase order is referenced and ``lines`` is empty, one line
    per open PO line is derived with the open quantity as expected.
    """
    vendor_id: Optional[UUID] = None
    warehouse_id: Optional[UUID] = None
    purchase_order_id: Optional[UUID] = None
    po_number: Optional[str] = None
    carrier_id: Optional[UUID] = None
    expected_arrival: Optional[datetime] = None
    bol_number: Optional[str] = Field(None, max_length=50)
    tracking_number: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None
    lines: List[ASNLineCreate] = []


class ASNUpdate(BaseUpdateSchema):
    carrier_id: Optional[UUID] = None
    expected_arrival: Optional[datetime] = None
    bol_number: Optional[str] = Field(None, max_length=50)
    tracking_number: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None
    expected_version: Optional[int] = None


class ASNResponse(BaseResponseSchema):
    id: UUID
    asn_number: str
    status: str
    vendor_id: UUID
    warehouse_id: UUID
    purchase_order_id: Optional[UUID] = None
    carrier_id: Optional[UUID] = None
    expected_arrival: Optional[datetime] = None
    bol_number: Optional[str] = None
    tracking_number: Optional[str] = None
    notes: Optional[str] = None
    dock_id: Optional[UUID] = None
    appointment_at: Optional[datetime] = None
    variance_accepted: bool
    total_expected: int
    total_received: int
    percent_complete: int
    validated_at: Optional[datetime] = None
    shipped_at: Optional[datetime] = None
    arrived_at: Optional[datetime] = None
    receiving_started_at: Optional[datetime] = None
    received_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    sla_breached_at: Optional[datetime] = None
    version: int
    created_at: datetime
    updated_at: datetime
    lines: List[ASNLineResponse] = []


class ASNListResponse(BaseResponseSchema):
    data: List[ASNResponse]
    pagination: PaginationMeta


# ==================== Actions ====================

class ASNScheduleRequest(BaseCreateSchema):
    dock_id: Optional[UUID] = None
    appointment_at: Optional[datetime] = None
    expected_version: Optional[int] = None


class ASNStatusRequest(BaseCreateSchema):
    """Optional body for in-transit / arrived."""
    tracking_number: Optional[str] = Field(None, max_length=100)
    dock_id: Optional[UUID] = None
    expected_version: Optional[int] = None


class ASNStartReceivingRequest(BaseCreateSchema):
    receiving_location_id: Optional[UUID] = None
    dock_id: Optional[UUID] = None


class ScanLine(BaseCreateSchema):
    """
    One scan event. ``quantity_received`` is added to the line;
    ``damaged_qty`` is part of it.
    """
    line_id: UUID
    quantity_received: int = Field(..., ge=0)
    damaged_qty: int = Field(0, ge=0)
    lot_number: Optional[str] = Field(None, max_length=50)
    expiration_date: Optional[date] = None


class ASNReceiveRequest(BaseCreateSchema):
    lines: List[ScanLine] = Field(..., min_length=1)
    receiving_location_id: Optional[UUID] = None
    expected_version: Optional[int] = None


class ASNCloseRequest(BaseCreateSchema):
    close_notes: Optional[str] = None
    accept_variance: bool = False
    receiving_location_id: Optional[UUID] = None


class ASNReceiveResponse(BaseResponseSchema):
    asn: ASNResponse
    receipt_id: UUID
    receipt_number: str
    receipt_version: int
    warnings: List[IssueResponse] = []


# ==================== Stats / Calendar ====================

class ASNStatsResponse(BaseResponseSchema):
    total: int
    by_status: Dict[str, int]
    expected_today: int
    overdue: int
    in_receiving: int
    sla_breached: int
    avg_receiving_minutes: Optional[float] = None


class ASNCalendarEntry(BaseResponseSchema):
    id: UUID
    asn_number: str
    status: str
    vendor_id: UUID
    expected_arrival: Optional[datetime] = None
    dock_id: Optional[UUID] = None
    total_expected: int


class ASNCalendarDay(BaseResponseSchema):
    day: date
    count: int
    asns: List[ASNCalendarEntry]
