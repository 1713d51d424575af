"""Pydantic schemas for the inventory ledger."""
from datetime import datetime
from typing import Optional, List
from uuid import UUID

from inbound.schemas.base import BaseResponseSchema, BaseCreateSchema
from inbound.schemas.common import PaginationMeta
from inbound.schemas.receipt import ReceiptLineResponse


class LedgerEntryResponse(BaseResponseSchema):
    id: UUID
    product_id: UUID
    warehouse_id: UUID
    location_id: UUID
    lot_number: Optional[str] = None
    quantity_delta: int
    reason: str
    receipt_id: Optional[UUID] = None
    receipt_line_id: Optional[UUID] = None
    reverses_entry_id: Optional[UUID] = None
    reference: Optional[str] = None
    created_at: datetime


class LedgerListResponse(BaseResponseSchema):
    data: List[LedgerEntryResponse]
    pagination: PaginationMeta


class BalanceResponse(BaseResponseSchema):
    product_id: UUID
    location_id: UUID
    lot_number: Optional[str] = None
    quantity: int


class BalanceListResponse(BaseResponseSchema):
    data: List[BalanceResponse]
    total_quantity: int


class PutawayResponse(BaseResponseSchema):
    entry: LedgerEntryResponse
    relief_entry_id: UUID
    receipt_line: ReceiptLineResponse
    putaway_qty: int
    remaining_qty: int


class ReverseRequest(BaseCreateSchema):
    reason: Optional[str] = None
