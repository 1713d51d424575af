"""Purchase order ledger API endpoints."""
from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Body, Query, status

from inbound.api.deps import DB, Pagination
from inbound.schemas.common import PaginationMeta
from inbound.schemas.purchase import (
    POActionRequest,
    POAnalysisResponse,
    POCloseRequest,
    POHoldRequest,
    POLineCreate,
    POLineUpdate,
    PurchaseOrderCreate,
    PurchaseOrderListResponse,
    PurchaseOrderResponse,
    PurchaseOrderUpdate,
)
from inbound.services.purchase_order_service import PurchaseOrderService

router = APIRouter()


# ==================== Queries ====================

@router.get("", response_model=PurchaseOrderListResponse)
async def list_purchase_orders(
    db: DB,
    paging: Pagination,
    status: Optional[str] = None,
    vendor_id: Optional[UUID] = Query(None, alias="vendorId"),
    warehouse_id: Optional[UUID] = Query(None, alias="warehouseId"),
    search: Optional[str] = None,
    expected_from: Optional[date] = Query(None, alias="expectedFrom"),
    expected_to: Optional[date] = Query(None, alias="expectedTo"),
):
    """List purchase orders. ``status`` accepts a comma separated list."""
    items, total = await PurchaseOrderService(db).list(
        paging.page, paging.limit,
        status=status, vendor_id=vendor_id, warehouse_id=warehouse_id,
        search=search, expected_from=expected_from, expected_to=expected_to,
    )
    return PurchaseOrderListResponse(
        data=[PurchaseOrderResponse.model_validate(po) for po in items],
        pagination=PaginationMeta.build(paging.page, paging.limit, total),
    )


@router.get("/{po_id}", response_model=PurchaseOrderResponse)
async def get_purchase_order(po_id: UUID, db: DB):
    return await PurchaseOrderService(db).get(po_id)


@router.get("/{po_id}/analysis", response_model=POAnalysisResponse)
async def get_purchase_order_analysis(po_id: UUID, db: DB):
    """Per-line ordered / received / open quantities and the receipt history."""
    return await PurchaseOrderService(db).analysis(po_id)


# ==================== Create / Edit ====================

@router.post("", response_model=PurchaseOrderResponse, status_code=status.HTTP_201_CREATED)
async def create_purchase_order(data: PurchaseOrderCreate, db: DB):
    return await PurchaseOrderService(db).create(data)


@router.put("/{po_id}", response_model=PurchaseOrderResponse)
async def update_purchase_order(po_id: UUID, data: PurchaseOrderUpdate, db: DB):
    return await PurchaseOrderService(db).update(po_id, data)


@router.delete("/{po_id}", response_model=PurchaseOrderResponse)
async def cancel_purchase_order(po_id: UUID, db: DB,
                                expected_version: Optional[int] = Query(None, alias="expectedVersion")):
    """Cancel a purchase order that has not received anything."""
    return await PurchaseOrderService(db).cancel(po_id, expected_version=expected_version)


@router.post("/{po_id}/lines", response_model=PurchaseOrderResponse, status_code=status.HTTP_201_CREATED)
async def add_purchase_order_line(po_id: UUID, data: POLineCreate, db: DB):
    return await PurchaseOrderService(db).add_line(po_id, data)


@router.put("/{po_id}/lines/{line_number}", response_model=PurchaseOrderResponse)
async def update_purchase_order_line(po_id: UUID, line_number: int, data: POLineUpdate, db: DB):
    return await PurchaseOrderService(db).update_line(po_id, line_number, data)


@router.delete("/{po_id}/lines/{line_number}", response_model=PurchaseOrderResponse)
async def delete_purchase_order_line(po_id: UUID, line_number: int, db: DB):
    return await PurchaseOrderService(db).delete_line(po_id, line_number)


# ==================== Lifecycle ====================

async def _transition(db, po_id: UUID, action: str, body: Optional[POActionRequest]):
    body = body or POActionRequest()
    return await PurchaseOrderService(db).transition(
        po_id, action, expected_version=body.expected_version, notes=body.notes,
    )


@router.post("/{po_id}/submit", response_model=PurchaseOrderResponse)
async def submit_purchase_order(po_id: UUID, db: DB, body: Optional[POActionRequest] = Body(None)):
    """DRAFT -> PENDING_APPROVAL."""
    return await _transition(db, po_id, "submit", body)


@router.post("/{po_id}/approve", response_model=PurchaseOrderResponse)
async def approve_purchase_order(po_id: UUID, db: DB, body: Optional[POActionRequest] = Body(None)):
    """PENDING_APPROVAL -> APPROVED."""
    return await _transition(db, po_id, "approve", body)


@router.post("/{po_id}/send", response_model=PurchaseOrderResponse)
async def send_purchase_order(po_id: UUID, db: DB, body: Optional[POActionRequest] = Body(None)):
    """APPROVED -> SUBMITTED (sent to the vendor)."""
    return await _transition(db, po_id, "send", body)


@router.post("/{po_id}/confirm", response_model=PurchaseOrderResponse)
async def confirm_purchase_order(po_id: UUID, db: DB, body: Optional[POActionRequest] = Body(None)):
    return await _transition(db, po_id, "confirm", body)


@router.post("/{po_id}/release", response_model=PurchaseOrderResponse)
async def release_purchase_order(po_id: UUID, db: DB, body: Optional[POActionRequest] = Body(None)):
    return await _transition(db, po_id, "release", body)


@router.post("/{po_id}/hold", response_model=PurchaseOrderResponse)
async def hold_purchase_order(po_id: UUID, db: DB, body: Optional[POHoldRequest] = Body(None)):
    body = body or POHoldRequest()
    return await PurchaseOrderService(db).hold(po_id, reason=body.reason, expected_version=body.expected_version)


@router.post("/{po_id}/unhold", response_model=PurchaseOrderResponse)
async def unhold_purchase_order(po_id: UUID, db: DB, body: Optional[POActionRequest] = Body(None)):
    body = body or POActionRequest()
    return await PurchaseOrderService(db).unhold(po_id, expected_version=body.expected_version)


@router.post("/{po_id}/close", response_model=PurchaseOrderResponse)
async def close_purchase_order(po_id: UUID, db: DB, body: Optional[POCloseRequest] = Body(None)):
    """
    Close a purchase order.

    A RECEIVED order closes normally. Any other open state needs
    ``force=true`` and a ``closeReason``; otherwise ``OpenLinesRemain``.
    """
    body = body or POCloseRequest()
    return await PurchaseOrderService(db).close(
        po_id, reason=body.close_reason, force=body.force, expected_version=body.expected_version,
    )
