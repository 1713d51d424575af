"""
Receipt session service.

A session collects scans provisionally. ``complete`` is the single commit
point: it posts RECEIPT ledger entries and increments ASN and PO received
quantities inside the request transaction, so either all of it lands or
none of it does.

Row locks are taken in the order receipt -> ASN -> PO -> location. Opening
a session locks only the ASN, since no receipt row exists yet.
"""
import logging
import uuid
from collections import defaultdict
from datetime import date
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from inbound.core.exceptions import (
    CapacityExceededError,
    InvalidStateError,
    LocationBlockedError,
    NotFoundError,
    OpenLinesRemainError,
    SessionAlreadyActiveError,
    ValidationError,
    VarianceNotAcceptedError,
)
from inbound.core.lifecycle import ensure_state
from inbound.core.reconciliation import (
    ExpectedLine,
    OrderLineRef,
    ValidationResult,
    match_order_line,
    plan_commit,
    variance_report,
)
from inbound.models.asn import ASN_WORKFLOW, AdvanceShipNotice, ASNStatus
from inbound.models.catalog import Dock, Location
from inbound.models.document_sequence import DocumentType
from inbound.models.inventory import LedgerReason
from inbound.models.purchase import RECEIVABLE, POStatus, PurchaseOrder
from inbound.models.receipt import (
    ACTIVE,
    RECEIPT_WORKFLOW,
    Receipt,
    ReceiptLine,
    ReceiptStatus,
    ReceiptType,
)
from inbound.schemas.asn import ScanLine
from inbound.services.catalog_service import CatalogService
from inbound.services.document_sequence_service import DocumentSequenceService
from inbound.services.inventory_ledger_service import InventoryLedgerService
from inbound.services.locking import (
    check_version,
    flush_or_conflict,
    get_aggregate,
    lock_aggregate,
    touch,
    utcnow,
)
from inbound.services.purchase_order_service import PurchaseOrderService
from inbound.services.reconciliation_service import ReconciliationService


logger = logging.getLogger(__name__)

ENTITY = "Receipt"

# A PO may take receipts while open for receiving, and over-receipts once RECEIVED
PO_ACCEPTS_RECEIPTS = RECEIVABLE + (POStatus.RECEIVED.value,)


class ReceiptService:
    """Receipt session lifecycle: open, scan, complete, cancel."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.catalog = CatalogService(db)
        self.ledger = InventoryLedgerService(db)
        self.reconciliation = ReconciliationService(db)

    # ==================== Queries ====================

    async def get(self, receipt_id: uuid.UUID) -> Receipt:
        return await get_aggregate(self.db, Receipt, receipt_id, ENTITY)

    async def list(
        self,
        page: int,
        limit: int,
        status: Optional[str] = None,
        asn_id: Optional[uuid.UUID] = None,
        po_number: Optional[str] = None,
        warehouse_id: Optional[uuid.UUID] = None,
        search: Optional[str] = None,
        sla_breached: Optional[bool] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> Tuple[List[Receipt], int]:
        query = select(Receipt)
        if status:
            statuses = [s.strip().upper() for s in status.split(",") if s.strip()]
            query = query.where(Receipt.status.in_(statuses))
        if asn_id:
            query = query.where(Receipt.asn_id == asn_id)
        if po_number:
            query = query.where(Receipt.po_number == po_number)
        if warehouse_id:
            query = query.where(Receipt.warehouse_id == warehouse_id)
        if search:
            query = query.where(or_(
                Receipt.receipt_number.ilike(f"%{search}%"),
                Receipt.po_number.ilike(f"%{search}%"),
            ))
        if sla_breached is True:
            query = query.where(Receipt.sla_breached_at.is_not(None))
        elif sla_breached is False:
            query = query.where(Receipt.sla_breached_at.is_(None))
        if date_from:
            query = query.where(Receipt.scheduled_date >= date_from)
        if date_to:
            query = query.where(Receipt.scheduled_date <= date_to)

        total = (await self.db.execute(select(func.count()).select_from(query.subquery()))).scalar() or 0
        result = await self.db.execute(
            query.order_by(Receipt.created_at.desc()).offset((page - 1) * limit).limit(limit)
        )
        return list(result.scalars().all()), total

    async def active_session_for_asn(self, asn_id: uuid.UUID) -> Optional[Receipt]:
        return await self.reconciliation.active_session_for_asn(asn_id)

    async def reconciliation_report(self, receipt_id: uuid.UUID) -> Dict[str, Any]:
        return await self.reconciliation.reconcile_receipt(await self.get(receipt_id))

    # ==================== References ====================

    async def _receiving_location(self, location_id: uuid.UUID, warehouse_id: uuid.UUID) -> Location:
        location = await self.catalog.require_reference(Location, location_id, "Location")
        if location.warehouse_id != warehouse_id:
            raise ValidationError(
                "Receiving location belongs to another warehouse",
                {"locationId": str(location_id), "warehouseId": str(warehouse_id)},
            )
        return location

    async def _dock(self, dock_id: uuid.UUID, warehouse_id: uuid.UUID) -> Dock:
        dock = await self.catalog.require_reference(Dock, dock_id, "Dock")
        if dock.warehouse_id != warehouse_id:
            raise ValidationError("Dock belongs to another warehouse", {"dockId": str(dock_id)})
        return dock

    # ==================== Open a session ====================

    async def create(self, data) -> Receipt:
        """POST /receipts: exactly one of asn_id / po_number."""
        if data.asn_id is not None:
            asn = await lock_aggregate(self.db, AdvanceShipNotice, data.asn_id, "ASN")
            return await self.open_for_asn(
                asn,
                receiving_location_id=data.receiving_location_id,
                dock_id=data.dock_id,
                scheduled_date=data.scheduled_date,
                notes=data.notes,
            )
        return await self.open_for_po(
            data.po_number,
            receiving_location_id=data.receiving_location_id,
            dock_id=data.dock_id,
            scheduled_date=data.scheduled_date,
            notes=data.notes,
        )

    async def open_for_asn(
        self,
        asn: AdvanceShipNotice,
        receiving_location_id: Optional[uuid.UUID] = None,
        dock_id: Optional[uuid.UUID] = None,
        scheduled_date: Optional[date] = None,
        notes: Optional[str] = None,
    ) -> Receipt:
        """
        Start receiving an ASN: create its one active session and move the
        ASN to RECEIVING. ``asn`` must already be row-locked by the caller.

        Raises:
            SessionAlreadyActiveError: the ASN already has an active session
            InvalidStateError: the ASN is not ARRIVED or SCHEDULED
        """
        existing = await self.active_session_for_asn(asn.id)
        if existing is not None:
            logger.warning(f"ASN {asn.asn_number} already has active session {existing.receipt_number}")
            raise SessionAlreadyActiveError(
                f"ASN {asn.asn_number} already has an active receipt session",
                {"asnId": str(asn.id), "receiptId": str(existing.id), "receiptNumber": existing.receipt_number},
            )
        asn_status = ASN_WORKFLOW.target(asn.status, "start_receiving")

        po = None
        order_lines: List[OrderLineRef] = []
        po_line_ids: Dict[int, uuid.UUID] = {}
        if asn.purchase_order_id is not None:
            po = await self.db.get(PurchaseOrder, asn.purchase_order_id)
            if po is not None:
                if po.status not in PO_ACCEPTS_RECEIPTS:
                    raise InvalidStateError("PurchaseOrder", po.status, "receive",
                                            f"Purchase order {po.po_number} is not open for receiving")
                order_lines = [OrderLineRef(line.line_number, line.product_id, line.qty_open) for line in po.lines]
                po_line_ids = {line.line_number: line.id for line in po.lines}

        lines = []
        for asn_line in asn.lines:
            remaining = asn_line.quantity_expected - asn_line.quantity_received
            if remaining <= 0:
                continue
            po_line_id = None
            if po is not None:
                match = match_order_line(
                    ExpectedLine(asn_line.line_number, asn_line.product_id, remaining,
                                 po_line_number=asn_line.po_line_number),
                    order_lines,
                )
                po_line_id = po_line_ids.get(match.line_number) if match else None
            lines.append(ReceiptLine(
                line_number=len(lines) + 1,
                product_id=asn_line.product_id,
                asn_line_id=asn_line.id,
                po_line_id=po_line_id,
                uom=asn_line.uom,
                expected_qty=remaining,
                received_qty=0,
                damaged_qty=0,
                discarded_qty=0,
                lot_number=asn_line.lot_number,
                expiration_date=asn_line.expiration_date,
            ))
        if not lines:
            raise ValidationError(f"ASN {asn.asn_number} has no quantity left to receive")

        if receiving_location_id is not None:
            await self._receiving_location(receiving_location_id, asn.warehouse_id)
        dock_id = dock_id or asn.dock_id
        if dock_id is not None:
            await self._dock(dock_id, asn.warehouse_id)

        initial = ReceiptStatus.ARRIVED.value if asn.status == ASNStatus.ARRIVED.value else ReceiptStatus.SCHEDULED.value
        receipt = Receipt(
            receipt_number=await DocumentSequenceService(self.db).get_next_number(DocumentType.RECEIPT.value),
            receipt_type=ReceiptType.ASN.value,
            status=initial,
            warehouse_id=asn.warehouse_id,
            vendor_id=asn.vendor_id,
            asn_id=asn.id,
            active_asn_id=asn.id,
            purchase_order_id=po.id if po else None,
            po_number=po.po_number if po else None,
            dock_id=dock_id,
            receiving_location_id=receiving_location_id,
            scheduled_date=scheduled_date or (asn.expected_arrival.date() if asn.expected_arrival else None),
            arrived_date=asn.arrived_at if initial == ReceiptStatus.ARRIVED.value else None,
            variance_accepted=False,
            notes=notes,
            lines=lines,
        )
        self.db.add(receipt)

        asn.status = asn_status
        asn.receiving_started_at = utcnow()
        touch(asn)
        try:
            await flush_or_conflict(self.db, "ASN")
        except IntegrityError as e:
            raise SessionAlreadyActiveError(
                f"ASN {asn.asn_number} already has an active receipt session", {"asnId": str(asn.id)}
            ) from e

        logger.info(f"Receipt {receipt.receipt_number} opened for ASN {asn.asn_number} ({len(lines)} line(s))")
        return receipt

    async def open_for_po(
        self,
        po_number: str,
        receiving_location_id: Optional[uuid.UUID] = None,
        dock_id: Optional[uuid.UUID] = None,
        scheduled_date: Optional[date] = None,
        notes: Optional[str] = None,
    ) -> Receipt:
        """Blind receipt against a purchase order: one line per open PO line."""
        result = await self.db.execute(select(PurchaseOrder).where(PurchaseOrder.po_number == po_number))
        po = result.scalar_one_or_none()
        if po is None:
            raise ValidationError(f"Purchase order {po_number} does not exist", {"poNumber": po_number})
        ensure_state("PurchaseOrder", po.status, RECEIVABLE, "receive",
                     f"Purchase order {po.po_number} is not open for receiving")

        lines = [
            ReceiptLine(
                line_number=index,
                product_id=line.product_id,
                po_line_id=line.id,
                uom=line.uom,
                expected_qty=line.qty_open,
                received_qty=0,
                damaged_qty=0,
                discarded_qty=0,
            )
            for index, line in enumerate((pl for pl in po.lines if pl.qty_open > 0), start=1)
        ]
        if not lines:
            raise ValidationError(f"Purchase order {po.po_number} has no open quantity")

        if receiving_location_id is not None:
            await self._receiving_location(receiving_location_id, po.warehouse_id)
        if dock_id is not None:
            await self._dock(dock_id, po.warehouse_id)

        receipt = Receipt(
            receipt_number=await DocumentSequenceService(self.db).get_next_number(DocumentType.RECEIPT.value),
            receipt_type=ReceiptType.PURCHASE_ORDER.value,
            status=RECEIPT_WORKFLOW.initial_state,
            warehouse_id=po.warehouse_id,
            vendor_id=po.vendor_id,
            purchase_order_id=po.id,
            po_number=po.po_number,
            dock_id=dock_id,
            receiving_location_id=receiving_location_id,
            scheduled_date=scheduled_date or po.expected_date,
            variance_accepted=False,
            notes=notes,
            lines=lines,
        )
        self.db.add(receipt)
        await self.db.flush()
        logger.info(f"Receipt {receipt.receipt_number} opened for PO {po.po_number} ({len(lines)} line(s))")
        return receipt

    # ==================== Session actions ====================

    async def arrive(
        self,
        receipt_id: uuid.UUID,
        dock_id: Optional[uuid.UUID] = None,
        expected_version: Optional[int] = None,
    ) -> Receipt:
        receipt = await lock_aggregate(self.db, Receipt, receipt_id, ENTITY)
        check_version(ENTITY, receipt, expected_version)
        receipt.status = RECEIPT_WORKFLOW.target(receipt.status, "arrive")
        receipt.arrived_date = utcnow()
        if dock_id is not None:
            await self._dock(dock_id, receipt.warehouse_id)
            receipt.dock_id = dock_id
        touch(receipt)
        await flush_or_conflict(self.db, ENTITY)
        logger.info(f"Receipt {receipt.receipt_number} checked in at dock {receipt.dock_id}")
        return receipt

    async def receive(
        self,
        receipt_id: uuid.UUID,
        events: Sequence[Any],
        receiving_location_id: Optional[uuid.UUID] = None,
        expected_version: Optional[int] = None,
    ) -> Tuple[Receipt, ValidationResult]:
        """
        Apply a batch of scan events atomically.

        Each event adds ``quantity_received`` (of which ``damaged_qty`` is
        damaged) to one receipt line. The whole batch is checked before any
        line changes.

        Raises:
            InvalidStateError: session is not active
            NotFoundError: a line id is not on this session
            ValidationError: damaged exceeds received, or the lot differs
                from the lot already received on the line
        """
        receipt = await lock_aggregate(self.db, Receipt, receipt_id, ENTITY)
        check_version(ENTITY, receipt, expected_version)
        ensure_state(ENTITY, receipt.status, ACTIVE, "receive")

        # Dry run over the whole batch
        planned: Dict[uuid.UUID, Dict[str, Any]] = {}
        for event in events:
            line = receipt.line_by_id(event.line_id)
            if line is None:
                raise NotFoundError("ReceiptLine", event.line_id)
            if event.quantity_received < 0 or event.damaged_qty < 0:
                raise ValidationError("Quantities cannot be negative", {"lineId": str(line.id)})
            if event.damaged_qty > event.quantity_received:
                raise ValidationError(
                    "damagedQty cannot exceed quantityReceived",
                    {"lineId": str(line.id), "damagedQty": event.damaged_qty,
                     "quantityReceived": event.quantity_received},
                )
            state = planned.setdefault(line.id, {
                "received": line.received_qty,
                "damaged": line.damaged_qty,
                "lot": line.lot_number,
            })
            if event.lot_number and state["lot"] and event.lot_number != state["lot"] and state["received"] > 0:
                raise ValidationError(
                    f"Line {line.line_number} already holds lot {state['lot']}",
                    {"lineId": str(line.id), "lotNumber": event.lot_number, "recordedLot": state["lot"]},
                )
            state["received"] += event.quantity_received
            state["damaged"] += event.damaged_qty
            if event.lot_number:
                state["lot"] = event.lot_number

        if receiving_location_id is not None:
            await self._receiving_location(receiving_location_id, receipt.warehouse_id)
            receipt.receiving_location_id = receiving_location_id

        now = utcnow()
        touched = []
        for event in events:
            line = receipt.line_by_id(event.line_id)
            line.received_qty += event.quantity_received
            line.damaged_qty += event.damaged_qty
            if event.lot_number:
                line.lot_number = event.lot_number
            if event.expiration_date:
                line.expiration_date = event.expiration_date
            line.last_scanned_at = now
            if line not in touched:
                touched.append(line)

        if receipt.status != ReceiptStatus.RECEIVING.value and any(line.received_qty > 0 for line in receipt.lines):
            receipt.status = RECEIPT_WORKFLOW.target(receipt.status, "start")
            receipt.started_at = now
            logger.info(f"Receipt {receipt.receipt_number} -> RECEIVING")

        touch(receipt)
        await flush_or_conflict(self.db, ENTITY)

        warnings = self.reconciliation.scan_warnings(touched)
        logger.info(
            f"Receipt {receipt.receipt_number}: {len(events)} scan(s) applied, "
            f"{len(warnings.warnings)} warning(s)"
        )
        return receipt, warnings

    async def receive_line(self, receipt_id: uuid.UUID, line_id: uuid.UUID, event) -> Tuple[Receipt, ValidationResult]:
        scan = ScanLine(
            line_id=line_id,
            quantity_received=event.quantity_received,
            damaged_qty=event.damaged_qty,
            lot_number=event.lot_number,
            expiration_date=event.expiration_date,
        )
        return await self.receive(receipt_id, [scan], expected_version=event.expected_version)

    async def complete(
        self,
        receipt_id: uuid.UUID,
        accept_variance: bool = False,
        receiving_location_id: Optional[uuid.UUID] = None,
        expected_version: Optional[int] = None,
    ) -> Tuple[Receipt, List[uuid.UUID], List[Dict[str, Any]]]:
        """
        Commit the session.

        Returns ``(receipt, ledger entry ids, variances)``.

        Raises:
            InvalidStateError: session is COMPLETED or CANCELLED
            OpenLinesRemainError: short lines without ``accept_variance``
            VarianceNotAcceptedError: over-received lines without ``accept_variance``
            ValidationError: quantity received but no receiving location
            LocationBlockedError / CapacityExceededError: receiving location
                cannot take the stock
        """
        receipt = await lock_aggregate(self.db, Receipt, receipt_id, ENTITY)
        check_version(ENTITY, receipt, expected_version)
        new_status = RECEIPT_WORKFLOW.target(receipt.status, "complete")

        try:
            commit_lines = plan_commit(receipt.lines, accept_variance)
        except (OpenLinesRemainError, VarianceNotAcceptedError):
            logger.warning(f"Receipt {receipt.receipt_number} completion rejected: variance not accepted")
            raise
        variances = variance_report(receipt.lines)

        if receiving_location_id is not None:
            await self._receiving_location(receiving_location_id, receipt.warehouse_id)
            receipt.receiving_location_id = receiving_location_id
        if commit_lines and receipt.receiving_location_id is None:
            raise ValidationError("receivingLocationId is required to complete a receipt with received quantity")

        if receipt.asn_id is not None:
            asn = await lock_aggregate(self.db, AdvanceShipNotice, receipt.asn_id, "ASN")
            for c in commit_lines:
                if c.asn_line_id is not None:
                    asn_line = asn.line_by_id(c.asn_line_id)
                    asn_line.quantity_received += c.quantity
            if asn.status == ASNStatus.RECEIVING.value:
                asn.status = ASN_WORKFLOW.target(asn.status, "finish_receiving")
                asn.received_at = utcnow()
            if variances and accept_variance:
                asn.variance_accepted = True
            touch(asn)
            logger.info(f"ASN {asn.asn_number} received via {receipt.receipt_number}")

        if receipt.purchase_order_id is not None:
            by_po_line: Dict[uuid.UUID, int] = defaultdict(int)
            for c in commit_lines:
                if c.po_line_id is not None:
                    by_po_line[c.po_line_id] += c.quantity
            if by_po_line:
                # Rejects receipts that push a PO line past its ordered quantity
                await PurchaseOrderService(self.db).apply_receipt(
                    receipt.purchase_order_id, dict(by_po_line), accept_variance
                )

        entry_ids: List[uuid.UUID] = []
        if commit_lines:
            location = await lock_aggregate(self.db, Location, receipt.receiving_location_id, "Location")
            if not location.accepts_stock:
                raise LocationBlockedError(
                    f"Receiving location {location.code} is {location.status}",
                    {"locationId": str(location.id), "status": location.status},
                )
            incoming = sum(c.quantity for c in commit_lines)
            if location.enforce_capacity and location.capacity is not None:
                current = await self.ledger.location_total(location.id)
                if current + incoming > location.capacity:
                    raise CapacityExceededError(
                        f"Receiving location {location.code} cannot take {incoming} more unit(s)",
                        {"locationId": str(location.id), "currentQty": current,
                         "quantity": incoming, "capacity": location.capacity},
                    )

            for c in commit_lines:
                entry = await self.ledger.post(
                    product_id=c.product_id,
                    warehouse_id=receipt.warehouse_id,
                    location_id=location.id,
                    lot_number=c.lot_number,
                    quantity_delta=c.quantity,
                    reason=LedgerReason.RECEIPT,
                    receipt_id=receipt.id,
                    receipt_line_id=c.receipt_line_id,
                    reference=receipt.receipt_number,
                )
                entry_ids.append(entry.id)

        receipt.status = new_status
        receipt.completed_date = utcnow()
        receipt.variance_accepted = bool(variances) and accept_variance
        receipt.active_asn_id = None
        touch(receipt)
        await flush_or_conflict(self.db, ENTITY)

        logger.info(
            f"Receipt {receipt.receipt_number} COMPLETED: {len(entry_ids)} ledger entr(ies), "
            f"{sum(c.quantity for c in commit_lines)} unit(s), {len(variances)} variance line(s)"
        )
        return receipt, entry_ids, variances

    async def cancel(
        self,
        receipt_id: uuid.UUID,
        reason: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> Receipt:
        """
        Cancel an active session. Provisional quantities are discarded and
        never reach the ledger, the ASN or the PO; what had been scanned is
        kept in ``discarded_qty`` for the record.
        """
        receipt = await lock_aggregate(self.db, Receipt, receipt_id, ENTITY)
        check_version(ENTITY, receipt, expected_version)
        receipt.status = RECEIPT_WORKFLOW.target(receipt.status, "cancel")
        receipt.cancelled_at = utcnow()
        for line in receipt.lines:
            line.discarded_qty = line.received_qty
            line.received_qty = 0
            line.damaged_qty = 0
        receipt.active_asn_id = None
        if reason:
            receipt.notes = f"{receipt.notes}\nCANCELLED: {reason}" if receipt.notes else f"CANCELLED: {reason}"
        touch(receipt)

        if receipt.asn_id is not None:
            asn = await lock_aggregate(self.db, AdvanceShipNotice, receipt.asn_id, "ASN")
            if asn.status == ASNStatus.RECEIVING.value:
                asn.status = ASN_WORKFLOW.target(asn.status, "abort_receiving")
                touch(asn)

        await flush_or_conflict(self.db, ENTITY)
        logger.info(f"Receipt {receipt.receipt_number} CANCELLED")
        return receipt
