"""Advance Ship Notice (ASN) API endpoints."""
from datetime import date
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Body, Query, status

from inbound.api.deps import DB, Idempotency, Pagination
from inbound.schemas.asn import (
    ASNCalendarDay,
    ASNCloseRequest,
    ASNCreate,
    ASNLineCreate,
    ASNLineUpdate,
    ASNListResponse,
    ASNReceiveRequest,
    ASNReceiveResponse,
    ASNResponse,
    ASNScheduleRequest,
    ASNStartReceivingRequest,
    ASNStatsResponse,
    ASNStatusRequest,
    ASNUpdate,
)
from inbound.schemas.common import PaginationMeta, ValidationResultResponse
from inbound.schemas.receipt import ReceiptResponse, StartReceivingResponse
from inbound.services.asn_service import ASNService

router = APIRouter()


# ==================== Dashboards ====================
# Static paths are declared before /{asn_id}

@router.get("/stats/summary", response_model=ASNStatsResponse)
async def get_asn_stats(db: DB, warehouse_id: Optional[UUID] = Query(None, alias="warehouseId")):
    """Counts by status, arrivals expected today, overdue and receiving times."""
    return await ASNService(db).stats(warehouse_id=warehouse_id)


@router.get("/calendar", response_model=List[ASNCalendarDay])
async def get_asn_calendar(
    db: DB,
    start_date: date = Query(..., alias="startDate"),
    end_date: date = Query(..., alias="endDate"),
    warehouse_id: Optional[UUID] = Query(None, alias="warehouseId"),
):
    """Open ASNs grouped by expected arrival date."""
    return await ASNService(db).calendar(start_date, end_date, warehouse_id=warehouse_id)


# ==================== Queries ====================

@router.get("", response_model=ASNListResponse)
async def list_asns(
    db: DB,
    paging: Pagination,
    status: Optional[str] = None,
    vendor_id: Optional[UUID] = Query(None, alias="vendorId"),
    warehouse_id: Optional[UUID] = Query(None, alias="warehouseId"),
    purchase_order_id: Optional[UUID] = Query(None, alias="purchaseOrderId"),
    search: Optional[str] = None,
    expected_from: Optional[date] = Query(None, alias="expectedFrom"),
    expected_to: Optional[date] = Query(None, alias="expectedTo"),
    sla_breached: Optional[bool] = Query(None, alias="slaBreached"),
):
    items, total = await ASNService(db).list(
        paging.page, paging.limit,
        status=status, vendor_id=vendor_id, warehouse_id=warehouse_id,
        purchase_order_id=purchase_order_id, search=search,
        expected_from=expected_from, expected_to=expected_to, sla_breached=sla_breached,
    )
    return ASNListResponse(
        data=[ASNResponse.model_validate(asn) for asn in items],
        pagination=PaginationMeta.build(paging.page, paging.limit, total),
    )


@router.get("/{asn_id}", response_model=ASNResponse)
async def get_asn(asn_id: UUID, db: DB):
    return await ASNService(db).get(asn_id)


# ==================== Create / Edit ====================

@router.post("", response_model=ASNResponse, status_code=status.HTTP_201_CREATED)
async def create_asn(data: ASNCreate, db: DB):
    """
    Create an ASN, optionally against a purchase order.

    With a purchase order and no lines, one line per open PO line is derived.
    """
    return await ASNService(db).create(data)


@router.patch("/{asn_id}", response_model=ASNResponse)
async def update_asn(asn_id: UUID, data: ASNUpdate, db: DB):
    return await ASNService(db).update(asn_id, data)


@router.delete("/{asn_id}", response_model=ASNResponse)
async def cancel_asn(asn_id: UUID, db: DB):
    """Cancel an ASN with no committed receipts; an active session is cancelled too."""
    return await ASNService(db).cancel(asn_id)


@router.post("/{asn_id}/lines", response_model=ASNResponse, status_code=status.HTTP_201_CREATED)
async def add_asn_line(asn_id: UUID, data: ASNLineCreate, db: DB):
    return await ASNService(db).add_line(asn_id, data)


@router.patch("/{asn_id}/lines/{line_id}", response_model=ASNResponse)
async def update_asn_line(asn_id: UUID, line_id: UUID, data: ASNLineUpdate, db: DB):
    return await ASNService(db).update_line(asn_id, line_id, data)


@router.delete("/{asn_id}/lines/{line_id}", response_model=ASNResponse)
async def delete_asn_line(asn_id: UUID, line_id: UUID, db: DB):
    return await ASNService(db).delete_line(asn_id, line_id)


# ==================== Lifecycle ====================

@router.post("/{asn_id}/validate", response_model=ValidationResultResponse)
async def validate_asn(asn_id: UUID, db: DB):
    """Dry-run reconciliation; a clean PENDING ASN becomes VALIDATED."""
    asn, result = await ASNService(db).validate(asn_id)
    return ValidationResultResponse(**result.to_dict(), status=asn.status)


@router.post("/{asn_id}/schedule", response_model=ASNResponse)
async def schedule_asn(asn_id: UUID, db: DB, body: Optional[ASNScheduleRequest] = Body(None)):
    body = body or ASNScheduleRequest()
    return await ASNService(db).schedule(
        asn_id, dock_id=body.dock_id, appointment_at=body.appointment_at, expected_version=body.expected_version,
    )


@router.patch("/{asn_id}/in-transit", response_model=ASNResponse)
async def mark_asn_in_transit(asn_id: UUID, db: DB, body: Optional[ASNStatusRequest] = Body(None)):
    body = body or ASNStatusRequest()
    return await ASNService(db).mark_in_transit(
        asn_id, tracking_number=body.tracking_number, expected_version=body.expected_version,
    )


@router.patch("/{asn_id}/arrived", response_model=ASNResponse)
async def mark_asn_arrived(asn_id: UUID, db: DB, body: Optional[ASNStatusRequest] = Body(None)):
    body = body or ASNStatusRequest()
    return await ASNService(db).mark_arrived(asn_id, dock_id=body.dock_id, expected_version=body.expected_version)


@router.patch("/{asn_id}/start-receiving", response_model=StartReceivingResponse)
async def start_receiving(asn_id: UUID, db: DB, body: Optional[ASNStartReceivingRequest] = Body(None)):
    """Open the ASN's receipt session and move it to RECEIVING."""
    body = body or ASNStartReceivingRequest()
    asn, receipt = await ASNService(db).start_receiving(
        asn_id, receiving_location_id=body.receiving_location_id, dock_id=body.dock_id,
    )
    return StartReceivingResponse(
        asn=ASNResponse.model_validate(asn),
        receipt=ReceiptResponse.model_validate(receipt),
    )


@router.post("/{asn_id}/receive", response_model=ASNReceiveResponse)
async def receive_asn(asn_id: UUID, data: ASNReceiveRequest, db: DB, idempotency: Idempotency):
    """
    Record scans against the ASN's active session.

    ``lines[].lineId`` are ASN line ids. Nothing is committed to the ledger
    until the session completes.
    """
    scope = f"asn:{asn_id}:receive"
    payload = data.model_dump(mode="json")
    replay = await idempotency.replay(scope, payload)
    if replay is not None:
        return replay

    asn, receipt, warnings = await ASNService(db).receive(
        asn_id, data.lines, receiving_location_id=data.receiving_location_id,
        expected_version=data.expected_version,
    )
    response = ASNReceiveResponse(
        asn=ASNResponse.model_validate(asn),
        receipt_id=receipt.id,
        receipt_number=receipt.receipt_number,
        receipt_version=receipt.version,
        warnings=warnings.to_dict()["warnings"],
    )
    return await idempotency.remember(scope, payload, response)


@router.patch("/{asn_id}/close", response_model=ASNResponse)
async def close_asn(asn_id: UUID, db: DB, body: Optional[ASNCloseRequest] = Body(None)):
    """
    Close the ASN, completing its active session first.

    Any difference between expected and received needs ``acceptVariance``.
    """
    body = body or ASNCloseRequest()
    return await ASNService(db).close(
        asn_id,
        close_notes=body.close_notes,
        accept_variance=body.accept_variance,
        receiving_location_id=body.receiving_location_id,
    )
