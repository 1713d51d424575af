"""Inventory ledger API endpoints."""
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Body, Query, status

from inbound.api.deps import DB, Pagination
from inbound.schemas.common import PaginationMeta
from inbound.schemas.inventory import (
    BalanceListResponse,
    BalanceResponse,
    LedgerEntryResponse,
    LedgerListResponse,
    ReverseRequest,
)
from inbound.services.inventory_ledger_service import InventoryLedgerService

router = APIRouter()


@router.get("/balances", response_model=BalanceListResponse)
async def get_balances(
    db: DB,
    product_id: Optional[UUID] = Query(None, alias="productId"),
    location_id: Optional[UUID] = Query(None, alias="locationId"),
    lot_number: Optional[str] = Query(None, alias="lotNumber"),
    warehouse_id: Optional[UUID] = Query(None, alias="warehouseId"),
    include_zero: bool = Query(False, alias="includeZero"),
):
    """On-hand quantity per (product, location, lot), summed from the ledger."""
    rows = await InventoryLedgerService(db).balances(
        product_id=product_id, location_id=location_id, lot_number=lot_number,
        warehouse_id=warehouse_id, include_zero=include_zero,
    )
    data = [
        BalanceResponse(product_id=p, location_id=loc, lot_number=lot, quantity=qty)
        for p, loc, lot, qty in rows
    ]
    return BalanceListResponse(data=data, total_quantity=sum(b.quantity for b in data))


@router.get("/ledger", response_model=LedgerListResponse)
async def list_ledger_entries(
    db: DB,
    paging: Pagination,
    product_id: Optional[UUID] = Query(None, alias="productId"),
    location_id: Optional[UUID] = Query(None, alias="locationId"),
    lot_number: Optional[str] = Query(None, alias="lotNumber"),
    receipt_id: Optional[UUID] = Query(None, alias="receiptId"),
    receipt_line_id: Optional[UUID] = Query(None, alias="receiptLineId"),
    reason: Optional[str] = None,
):
    items, total = await InventoryLedgerService(db).list_entries(
        paging.page, paging.limit,
        product_id=product_id, location_id=location_id, lot_number=lot_number,
        receipt_id=receipt_id, receipt_line_id=receipt_line_id, reason=reason,
    )
    return LedgerListResponse(
        data=[LedgerEntryResponse.model_validate(e) for e in items],
        pagination=PaginationMeta.build(paging.page, paging.limit, total),
    )


@router.get("/ledger/{entry_id}", response_model=LedgerEntryResponse)
async def get_ledger_entry(entry_id: UUID, db: DB):
    return await InventoryLedgerService(db).get_entry(entry_id)


@router.post("/ledger/{entry_id}/reverse", response_model=LedgerEntryResponse, status_code=status.HTTP_201_CREATED)
async def reverse_ledger_entry(entry_id: UUID, db: DB, body: Optional[ReverseRequest] = Body(None)):
    """Append the negation of an entry. Ledger rows are never edited."""
    body = body or ReverseRequest()
    return await InventoryLedgerService(db).reverse(entry_id, reason=body.reason)
