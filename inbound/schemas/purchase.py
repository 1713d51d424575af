"""Pydantic schemas for the purchase order ledger."""
from datetime import datetime, date
from decimal import Decimal
from typing import Optional, List
from uuid import UUID

from pydantic import AliasChoices, Field

from inbound.schemas.base import BaseResponseSchema, BaseCreateSchema, BaseUpdateSchema
from inbound.schemas.common import PaginationMeta


# ==================== PO Line ====================

class POLineCreate(BaseCreateSchema):
    """Line number is assigned when omitted."""
    line_number: Optional[int] = Field(None, gt=0)
    product_id: UUID
    uom: str = Field("EA", max_length=10)
    qty_ordered: int = Field(..., gt=0)
    unit_cost: Decimal = Field(Decimal("0"), ge=0)
    notes: Optional[str] = None


class POLineUpdate(BaseUpdateSchema):
    product_id: Optional[UUID] = None
    uom: Optional[str] = Field(None, max_length=10)
    qty_ordered: Optional[int] = Field(None, gt=0)
    unit_cost: Optional[Decimal] = Field(None, ge=0)
    notes: Optional[str] = None


class POLineResponse(BaseResponseSchema):
    id: UUID
    line_number: int
    product_id: UUID
    uom: str
    qty_ordered: int
    qty_received: int
    qty_open: int
    qty_over: int
    variance: int
    status: str
    unit_cost: Decimal
    extended_cost: Decimal
    notes: Optional[str] = None


# ==================== Purchase Order ====================

class PurchaseOrderCreate(BaseCreateSchema):
    po_number: Optional[str] = Field(None, max_length=30, description="Generated when omitted")
    vendor_id: UUID
    warehouse_id: UUID
    order_date: Optional[date] = None
    expected_date: Optional[date] = None
    notes: Optional[str] = None
    lines: List[POLineCreate] = Field(..., min_length=1)


class PurchaseOrderUpdate(BaseUpdateSchema):
    """Header fields; ``lines`` replaces the whole line set (DRAFT only)."""
    vendor_id: Optional[UUID] = None
    warehouse_id: Optional[UUID] = None
    expected_date: Optional[date] = None
    notes: Optional[str] = None
    lines: Optional[List[POLineCreate]] = Field(None, min_length=1)
    expected_version: Optional[int] = None


class PurchaseOrderResponse(BaseResponseSchema):
    id: UUID
    po_number: str
    status: str
    held_from_status: Optional[str] = None
    vendor_id: UUID
    warehouse_id: UUID
    order_date: date
    expected_date: Optional[date] = None
    notes: Optional[str] = None
    close_reason: Optional[str] = None
    variance_accepted: bool
    total_qty_ordered: int
    total_qty_received: int
    total_qty_open: int
    total_value: Decimal
    submitted_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    last_received_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    version: int
    created_at: datetime
    updated_at: datetime
    lines: List[POLineResponse] = []


class PurchaseOrderListResponse(BaseResponseSchema):
    data: List[PurchaseOrderResponse]
    pagination: PaginationMeta


# ==================== Actions ====================

class POActionRequest(BaseCreateSchema):
    """Optional body for submit/approve/send/confirm/release/unhold."""
    notes: Optional[str] = None
    expected_version: Optional[int] = None


class POHoldRequest(BaseCreateSchema):
    reason: Optional[str] = None
    expected_version: Optional[int] = None


class POCloseRequest(BaseCreateSchema):
    close_reason: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("closeReason", "close_reason", "reason"),
    )
    force: bool = False
    expected_version: Optional[int] = None


# ==================== Analysis ====================

class POLineAnalysis(BaseResponseSchema):
    line_number: int
    product_id: UUID
    qty_ordered: int
    qty_received: int
    qty_open: int
    variance: int
    status: str


class POReceiptHistory(BaseResponseSchema):
    receipt_id: UUID
    receipt_number: str
    asn_id: Optional[UUID] = None
    completed_date: Optional[datetime] = None
    total_received: int
    variance_accepted: bool


class POAnalysisResponse(BaseResponseSchema):
    id: UUID
    po_number: str
    status: str
    total_qty_ordered: int
    total_qty_received: int
    total_qty_open: int
    percent_received: int
    lines: List[POLineAnalysis]
    receipts: List[POReceiptHistory]
