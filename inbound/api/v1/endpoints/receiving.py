"""Receipt session and putaway API endpoints."""
from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Body, Query, status

from inbound.api.deps import DB, Idempotency, Pagination
from inbound.schemas.common import PaginationMeta
from inbound.schemas.inventory import PutawayResponse
from inbound.schemas.receipt import (
    CancelRequest,
    CompleteRequest,
    CompleteResponse,
    PutawayRequest,
    ReceiptArriveRequest,
    ReceiptCreate,
    ReceiptListResponse,
    ReceiptResponse,
    ReceiveLineRequest,
    ReceiveRequest,
    ReceiveResponse,
    ReconciliationResponse,
)
from inbound.services.putaway_service import PutawayService
from inbound.services.receipt_service import ReceiptService

router = APIRouter()


def _receive_response(receipt, warnings) -> ReceiveResponse:
    return ReceiveResponse(
        receipt=ReceiptResponse.model_validate(receipt),
        warnings=warnings.to_dict()["warnings"],
    )


# ==================== Queries ====================

@router.get("/receipts", response_model=ReceiptListResponse)
async def list_receipts(
    db: DB,
    paging: Pagination,
    status: Optional[str] = None,
    asn_id: Optional[UUID] = Query(None, alias="asnId"),
    po_number: Optional[str] = Query(None, alias="poNumber"),
    warehouse_id: Optional[UUID] = Query(None, alias="warehouseId"),
    search: Optional[str] = None,
    sla_breached: Optional[bool] = Query(None, alias="slaBreached"),
    date_from: Optional[date] = Query(None, alias="dateFrom"),
    date_to: Optional[date] = Query(None, alias="dateTo"),
):
    items, total = await ReceiptService(db).list(
        paging.page, paging.limit,
        status=status, asn_id=asn_id, po_number=po_number, warehouse_id=warehouse_id,
        search=search, sla_breached=sla_breached, date_from=date_from, date_to=date_to,
    )
    return ReceiptListResponse(
        data=[ReceiptResponse.model_validate(r) for r in items],
        pagination=PaginationMeta.build(paging.page, paging.limit, total),
    )


@router.get("/receipts/{receipt_id}", response_model=ReceiptResponse)
async def get_receipt(receipt_id: UUID, db: DB):
    return await ReceiptService(db).get(receipt_id)


@router.get("/receipts/{receipt_id}/reconciliation", response_model=ReconciliationResponse)
async def get_receipt_reconciliation(receipt_id: UUID, db: DB):
    """Dry-run reconciliation of the session's scanned quantities."""
    return await ReceiptService(db).reconciliation_report(receipt_id)


# ==================== Session ====================

@router.post("/receipts", response_model=ReceiptResponse, status_code=status.HTTP_201_CREATED)
async def create_receipt(data: ReceiptCreate, db: DB):
    """Open a session from an ASN (``asnId``) or blind against a PO (``poNumber``)."""
    return await ReceiptService(db).create(data)


@router.patch("/receipts/{receipt_id}/arrive", response_model=ReceiptResponse)
async def arrive_receipt(receipt_id: UUID, db: DB, body: Optional[ReceiptArriveRequest] = Body(None)):
    body = body or ReceiptArriveRequest()
    return await ReceiptService(db).arrive(receipt_id, dock_id=body.dock_id, expected_version=body.expected_version)


@router.post("/receipts/{receipt_id}/receive", response_model=ReceiveResponse)
async def receive_batch(receipt_id: UUID, data: ReceiveRequest, db: DB, idempotency: Idempotency):
    scope = f"receipt:{receipt_id}:receive"
    payload = data.model_dump(mode="json")
    replay = await idempotency.replay(scope, payload)
    if replay is not None:
        return replay

    receipt, warnings = await ReceiptService(db).receive(
        receipt_id, data.lines,
        receiving_location_id=data.receiving_location_id,
        expected_version=data.expected_version,
    )
    return await idempotency.remember(scope, payload, _receive_response(receipt, warnings))


@router.post("/receipts/{receipt_id}/lines/{line_id}/receive", response_model=ReceiveResponse)
async def receive_line(receipt_id: UUID, line_id: UUID, data: ReceiveLineRequest, db: DB,
                       idempotency: Idempotency):
    """Add one scan to a single receipt line."""
    scope = f"receipt:{receipt_id}:line:{line_id}:receive"
    payload = data.model_dump(mode="json")
    replay = await idempotency.replay(scope, payload)
    if replay is not None:
        return replay

    receipt, warnings = await ReceiptService(db).receive_line(receipt_id, line_id, data)
    return await idempotency.remember(scope, payload, _receive_response(receipt, warnings))


@router.post("/receipts/{receipt_id}/complete", response_model=CompleteResponse)
async def complete_receipt(receipt_id: UUID, db: DB, idempotency: Idempotency,
                           body: Optional[CompleteRequest] = Body(None)):
    """
    Commit the session: post RECEIPT ledger entries into the receiving
    location and increment ASN / PO received quantities.

    Short or over-received lines need ``acceptVariance``.
    """
    body = body or CompleteRequest()
    scope = f"receipt:{receipt_id}:complete"
    payload = body.model_dump(mode="json")
    replay = await idempotency.replay(scope, payload)
    if replay is not None:
        return replay

    receipt, entry_ids, variances = await ReceiptService(db).complete(
        receipt_id,
        accept_variance=body.accept_variance,
        receiving_location_id=body.receiving_location_id,
        expected_version=body.expected_version,
    )
    response = CompleteResponse(
        receipt=ReceiptResponse.model_validate(receipt),
        ledger_entry_ids=entry_ids,
        variances=variances,
    )
    return await idempotency.remember(scope, payload, response)


@router.post("/receipts/{receipt_id}/cancel", response_model=ReceiptResponse)
async def cancel_receipt(receipt_id: UUID, db: DB, body: Optional[CancelRequest] = Body(None)):
    """Cancel an active session. Nothing scanned reaches the ledger."""
    body = body or CancelRequest()
    return await ReceiptService(db).cancel(receipt_id, reason=body.reason, expected_version=body.expected_version)


# ==================== Putaway ====================

@router.post("/receipts/{receipt_id}/lines/{line_id}/putaway", response_model=PutawayResponse)
async def putaway_line(receipt_id: UUID, line_id: UUID, data: PutawayRequest, db: DB,
                       idempotency: Idempotency):
    """Move received stock of one line from the receiving location into storage."""
    scope = f"receipt:{receipt_id}:line:{line_id}:putaway"
    payload = data.model_dump(mode="json")
    replay = await idempotency.replay(scope, payload)
    if replay is not None:
        return replay

    result = await PutawayService(db).putaway(receipt_id, line_id, data.location_id, data.quantity)
    return await idempotency.remember(scope, payload, PutawayResponse.model_validate(result))
