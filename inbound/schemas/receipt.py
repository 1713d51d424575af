"""Pydantic schemas for receipt sessions and putaway."""
from datetime import datetime, date
from typing import Optional, List, Dict
from uuid import UUID

from pydantic import Field, model_validator

from inbound.schemas.asn import ASNResponse, ScanLine
from inbound.schemas.base import BaseResponseSchema, BaseCreateSchema
from inbound.schemas.common import IssueResponse, PaginationMeta


class ReceiptCreate(BaseCreateSchema):
    """Exactly one of ``asn_id`` / ``po_number`` is required."""
    asn_id: Optional[UUID] = None
    po_number: Optional[str] = None
    receiving_location_id: Optional[UUID] = None
    dock_id: Optional[UUID] = None
    scheduled_date: Optional[date] = None
    notes: Optional[str] = None

    @model_validator(mode="after")
    def one_source(self):
        if (self.asn_id is None) == (self.po_number is None):
            raise ValueError("Exactly one of asnId or poNumber is required")
        return self


class ReceiptLineResponse(BaseResponseSchema):
    id: UUID
    line_number: int
    product_id: UUID
    asn_line_id: Optional[UUID] = None
    po_line_id: Optional[UUID] = None
    uom: str
    expected_qty: int
    received_qty: int
    damaged_qty: int
    discarded_qty: int = 0
    open_qty: int
    variance: int
    status: str
    lot_number: Optional[str] = None
    expiration_date: Optional[date] = None
    putaway_location_id: Optional[UUID] = None
    last_scanned_at: Optional[datetime] = None


class ReceiptResponse(BaseResponseSchema):
    id: UUID
    receipt_number: str
    receipt_type: str
    status: str
    warehouse_id: UUID
    vendor_id: Optional[UUID] = None
    asn_id: Optional[UUID] = None
    purchase_order_id: Optional[UUID] = None
    po_number: Optional[str] = None
    dock_id: Optional[UUID] = None
    receiving_location_id: Optional[UUID] = None
    scheduled_date: Optional[date] = None
    arrived_date: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_date: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    sla_breached_at: Optional[datetime] = None
    variance_accepted: bool
    total_expected: int
    total_received: int
    notes: Optional[str] = None
    version: int
    created_at: datetime
    updated_at: datetime
    lines: List[ReceiptLineResponse] = []


class ReceiptListResponse(BaseResponseSchema):
    data: List[ReceiptResponse]
    pagination: PaginationMeta


# ==================== Actions ====================

class ReceiptArriveRequest(BaseCreateSchema):
    dock_id: Optional[UUID] = None
    expected_version: Optional[int] = None


class ReceiveRequest(BaseCreateSchema):
    """Batch of scan events; ``line_id`` is a receipt line id."""
    lines: List[ScanLine] = Field(..., min_length=1)
    receiving_location_id: Optional[UUID] = None
    expected_version: Optional[int] = None


class ReceiveLineRequest(BaseCreateSchema):
    quantity_received: int = Field(..., ge=0)
    damaged_qty: int = Field(0, ge=0)
    lot_number: Optional[str] = Field(None, max_length=50)
    expiration_date: Optional[date] = None
    expected_version: Optional[int] = None


class ReceiveResponse(BaseResponseSchema):
    receipt: ReceiptResponse
    warnings: List[IssueResponse] = []


class CompleteRequest(BaseCreateSchema):
    accept_variance: bool = False
    receiving_location_id: Optional[UUID] = None
    expected_version: Optional[int] = None


class CompleteResponse(BaseResponseSchema):
    receipt: ReceiptResponse
    ledger_entry_ids: List[UUID] = []
    variances: List[Dict] = []


class CancelRequest(BaseCreateSchema):
    reason: Optional[str] = None
    expected_version: Optional[int] = None


class ReconciliationLine(BaseResponseSchema):
    line_id: UUID
    line_number: int
    product_id: UUID
    expected_qty: int
    received_qty: int
    damaged_qty: int
    open_qty: int
    variance: int
    status: str


class ReconciliationResponse(BaseResponseSchema):
    receipt_id: UUID
    receipt_number: str
    status: str
    can_complete: bool
    requires_accept_variance: bool
    summary: Dict
    lines: List[ReconciliationLine]
    warnings: List[IssueResponse] = []
    errors: List[IssueResponse] = []


# ==================== Putaway ====================

class PutawayRequest(BaseCreateSchema):
    location_id: UUID
    quantity: int = Field(..., gt=0)


class StartReceivingResponse(BaseResponseSchema):
    """ASN moved to RECEIVING together with the session opened for it."""
    asn: ASNResponse
    receipt: ReceiptResponse
