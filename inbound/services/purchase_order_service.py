"""
Purchase order ledger service.

All status changes go through ``PO_WORKFLOW``. Received quantities move
only through ``apply_receipt``, which the receipt session calls inside its
commit transaction; the PO then moves to PARTIAL or RECEIVED on its own.
"""
import logging
import uuid
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from inbound.core.exceptions import (
    DuplicateNumberError,
    InvalidStateError,
    NotFoundError,
    OpenLinesRemainError,
    ValidationError,
    VarianceNotAcceptedError,
)
from inbound.core.lifecycle import ensure_state
from inbound.models.catalog import Vendor, Warehouse
from inbound.models.document_sequence import DocumentType
from inbound.models.purchase import (
    EDITABLE,
    PO_WORKFLOW,
    POStatus,
    PRE_RECEIVED,
    PurchaseOrder,
    PurchaseOrderLine,
)
from inbound.models.receipt import ACTIVE as ACTIVE_RECEIPT_STATUSES, Receipt, ReceiptStatus
from inbound.services.catalog_service import CatalogService
from inbound.services.document_sequence_service import DocumentSequenceService
from inbound.services.locking import (
    check_version,
    flush_or_conflict,
    get_aggregate,
    lock_aggregate,
    touch,
    utcnow,
)


logger = logging.getLogger(__name__)

ENTITY = "PurchaseOrder"

# Timestamp stamped by each action
_ACTION_STAMPS = {
    "submit": "submitted_at",
    "approve": "approved_at",
    "force_close": "closed_at",
    "close": "closed_at",
    "cancel": "cancelled_at",
}


class PurchaseOrderService:
    """Purchase order CRUD, lifecycle actions and receipt application."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.catalog = CatalogService(db)

    # ==================== Queries ====================

    async def get(self, po_id: uuid.UUID) -> PurchaseOrder:
        return await get_aggregate(self.db, PurchaseOrder, po_id, ENTITY)

    async def get_by_number(self, po_number: str) -> Optional[PurchaseOrder]:
        result = await self.db.execute(select(PurchaseOrder).where(PurchaseOrder.po_number == po_number))
        return result.scalar_one_or_none()

    async def list(
        self,
        page: int,
        limit: int,
        status: Optional[str] = None,
        vendor_id: Optional[uuid.UUID] = None,
        warehouse_id: Optional[uuid.UUID] = None,
        search: Optional[str] = None,
        expected_from: Optional[date] = None,
        expected_to: Optional[date] = None,
    ) -> Tuple[List[PurchaseOrder], int]:
        query = select(PurchaseOrder)
        if status:
            statuses = [s.strip().upper() for s in status.split(",") if s.strip()]
            query = query.where(PurchaseOrder.status.in_(statuses))
        if vendor_id:
            query = query.where(PurchaseOrder.vendor_id == vendor_id)
        if warehouse_id:
            query = query.where(PurchaseOrder.warehouse_id == warehouse_id)
        if search:
            query = query.where(or_(
                PurchaseOrder.po_number.ilike(f"%{search}%"),
                PurchaseOrder.notes.ilike(f"%{search}%"),
            ))
        if expected_from:
            query = query.where(PurchaseOrder.expected_date >= expected_from)
        if expected_to:
            query = query.where(PurchaseOrder.expected_date <= expected_to)

        total = (await self.db.execute(select(func.count()).select_from(query.subquery()))).scalar() or 0
        result = await self.db.execute(
            query.order_by(PurchaseOrder.created_at.desc()).offset((page - 1) * limit).limit(limit)
        )
        return list(result.scalars().all()), total

    async def has_active_session(self, po_id: uuid.UUID) -> bool:
        result = await self.db.execute(
            select(func.count(Receipt.id)).where(
                Receipt.purchase_order_id == po_id,
                Receipt.status.in_(ACTIVE_RECEIPT_STATUSES),
            )
        )
        return (result.scalar() or 0) > 0

    # ==================== Create / Edit ====================

    async def _check_products(self, product_ids) -> None:
        known, _ = await self.catalog.product_sets(set(product_ids))
        missing = [str(p) for p in product_ids if p not in known]
        if missing:
            raise ValidationError("Unknown product(s) on purchase order lines", {"productIds": missing})

    def _build_lines(self, lines_in, start: int = 1) -> List[PurchaseOrderLine]:
        lines = []
        used = set()
        next_number = start
        for line_in in lines_in:
            number = line_in.line_number
            if number is None:
                while next_number in used:
                    next_number += 1
                number = next_number
            if number in used:
                raise ValidationError(f"Duplicate line number {number}", {"lineNumber": number})
            used.add(number)
            next_number = max(next_number, number + 1)
            lines.append(PurchaseOrderLine(
                line_number=number,
                product_id=line_in.product_id,
                uom=line_in.uom,
                qty_ordered=line_in.qty_ordered,
                qty_received=0,
                unit_cost=line_in.unit_cost,
                notes=line_in.notes,
            ))
        return lines

    async def create(self, data) -> PurchaseOrder:
        await self.catalog.require_reference(Vendor, data.vendor_id, "Vendor")
        await self.catalog.require_reference(Warehouse, data.warehouse_id, "Warehouse")
        await self._check_products([line.product_id for line in data.lines])

        if data.po_number:
            if await self.get_by_number(data.po_number):
                raise DuplicateNumberError(
                    f"PO number {data.po_number} already exists", {"poNumber": data.po_number}
                )
            po_number = data.po_number
        else:
            po_number = await DocumentSequenceService(self.db).get_next_number(DocumentType.PURCHASE_ORDER.value)

        po = PurchaseOrder(
            po_number=po_number,
            status=PO_WORKFLOW.initial_state,
            vendor_id=data.vendor_id,
            warehouse_id=data.warehouse_id,
            order_date=data.order_date or date.today(),
            expected_date=data.expected_date,
            notes=data.notes,
            variance_accepted=False,
            lines=self._build_lines(data.lines),
        )
        self.db.add(po)
        await self.db.flush()
        logger.info(f"Created purchase order {po.po_number} with {len(po.lines)} line(s)")
        return po

    async def update(self, po_id: uuid.UUID, data) -> PurchaseOrder:
        po = await lock_aggregate(self.db, PurchaseOrder, po_id, ENTITY)
        check_version(ENTITY, po, data.expected_version)
        ensure_state(ENTITY, po.status, PRE_RECEIVED + (POStatus.ON_HOLD.value,), "update")

        values = data.model_dump(exclude_unset=True, exclude={"lines", "expected_version"})
        if ("vendor_id" in values or "warehouse_id" in values) and po.status not in EDITABLE:
            raise InvalidStateError(ENTITY, po.status, "update",
                                    "Vendor and warehouse can only change before approval")
        if values.get("vendor_id"):
            await self.catalog.require_reference(Vendor, values["vendor_id"], "Vendor")
        if values.get("warehouse_id"):
            await self.catalog.require_reference(Warehouse, values["warehouse_id"], "Warehouse")
        for field, value in values.items():
            if value is not None or field in ("notes", "expected_date"):
                setattr(po, field, value)

        if data.lines is not None:
            ensure_state(ENTITY, po.status, (POStatus.DRAFT.value,), "replace lines",
                         "Lines can only be replaced while the purchase order is DRAFT")
            await self._check_products([line.product_id for line in data.lines])
            po.lines.clear()
            await self.db.flush()
            po.lines.extend(self._build_lines(data.lines))

        touch(po)
        await flush_or_conflict(self.db, ENTITY)
        logger.info(f"Updated purchase order {po.po_number}")
        return po

    async def add_line(self, po_id: uuid.UUID, line_in) -> PurchaseOrder:
        po = await lock_aggregate(self.db, PurchaseOrder, po_id, ENTITY)
        ensure_state(ENTITY, po.status, EDITABLE, "add line")
        await self._check_products([line_in.product_id])

        existing = {line.line_number for line in po.lines}
        number = line_in.line_number or (max(existing, default=0) + 1)
        if number in existing:
            raise ValidationError(f"Duplicate line number {number}", {"lineNumber": number})
        line = self._build_lines([line_in.model_copy(update={"line_number": number})])[0]
        po.lines.append(line)

        touch(po)
        await flush_or_conflict(self.db, ENTITY)
        return po

    async def update_line(self, po_id: uuid.UUID, line_number: int, data) -> PurchaseOrder:
        po = await lock_aggregate(self.db, PurchaseOrder, po_id, ENTITY)
        ensure_state(ENTITY, po.status, EDITABLE, "update line")
        line = po.line_by_number(line_number)
        if line is None:
            raise NotFoundError("PurchaseOrderLine", line_number)

        values = data.model_dump(exclude_unset=True)
        if values.get("product_id"):
            await self._check_products([values["product_id"]])
        for field, value in values.items():
            if value is not None or field == "notes":
                setattr(line, field, value)

        touch(po)
        await flush_or_conflict(self.db, ENTITY)
        return po

    async def delete_line(self, po_id: uuid.UUID, line_number: int) -> PurchaseOrder:
        po = await lock_aggregate(self.db, PurchaseOrder, po_id, ENTITY)
        ensure_state(ENTITY, po.status, EDITABLE, "delete line")
        line = po.line_by_number(line_number)
        if line is None:
            raise NotFoundError("PurchaseOrderLine", line_number)
        if len(po.lines) == 1:
            raise ValidationError("A purchase order must keep at least one line")

        po.lines.remove(line)
        touch(po)
        await flush_or_conflict(self.db, ENTITY)
        return po

    # ==================== Lifecycle ====================

    def _apply(self, po: PurchaseOrder, action: str) -> str:
        previous = po.status
        po.status = PO_WORKFLOW.target(po.status, action)
        stamp = _ACTION_STAMPS.get(action)
        if stamp:
            setattr(po, stamp, utcnow())
        touch(po)
        logger.info(f"PO {po.po_number}: {previous} -> {po.status} ({action})")
        return previous

    async def transition(
        self,
        po_id: uuid.UUID,
        action: str,
        expected_version: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> PurchaseOrder:
        """submit / approve / send / confirm / release."""
        po = await lock_aggregate(self.db, PurchaseOrder, po_id, ENTITY)
        check_version(ENTITY, po, expected_version)
        if action == "submit" and not po.lines:
            raise ValidationError("Cannot submit a purchase order without lines")
        self._apply(po, action)
        if notes:
            po.notes = f"{po.notes}\n{notes}" if po.notes else notes
        await flush_or_conflict(self.db, ENTITY)
        return po

    async def hold(self, po_id: uuid.UUID, reason: Optional[str] = None,
                   expected_version: Optional[int] = None) -> PurchaseOrder:
        po = await lock_aggregate(self.db, PurchaseOrder, po_id, ENTITY)
        check_version(ENTITY, po, expected_version)
        previous = self._apply(po, "hold")
        po.held_from_status = previous
        if reason:
            po.notes = f"{po.notes}\nHOLD: {reason}" if po.notes else f"HOLD: {reason}"
        await flush_or_conflict(self.db, ENTITY)
        return po

    async def unhold(self, po_id: uuid.UUID, expected_version: Optional[int] = None) -> PurchaseOrder:
        po = await lock_aggregate(self.db, PurchaseOrder, po_id, ENTITY)
        check_version(ENTITY, po, expected_version)
        ensure_state(ENTITY, po.status, (POStatus.ON_HOLD.value,), "unhold")

        po.status = po.held_from_status or POStatus.DRAFT.value
        po.held_from_status = None
        touch(po)
        await flush_or_conflict(self.db, ENTITY)
        logger.info(f"PO {po.po_number}: ON_HOLD -> {po.status} (unhold)")
        return po

    async def cancel(self, po_id: uuid.UUID, expected_version: Optional[int] = None) -> PurchaseOrder:
        po = await lock_aggregate(self.db, PurchaseOrder, po_id, ENTITY)
        check_version(ENTITY, po, expected_version)
        if po.total_qty_received > 0:
            raise InvalidStateError(ENTITY, po.status, "cancel",
                                    "Cannot cancel a purchase order that has received quantity; close it instead")
        if await self.has_active_session(po.id):
            raise InvalidStateError(ENTITY, po.status, "cancel",
                                    "A receipt session is active against this purchase order")
        self._apply(po, "cancel")
        await flush_or_conflict(self.db, ENTITY)
        return po

    async def close(
        self,
        po_id: uuid.UUID,
        reason: Optional[str] = None,
        force: bool = False,
        expected_version: Optional[int] = None,
    ) -> PurchaseOrder:
        """
        Close a purchase order.

        Raises:
            InvalidStateError: DRAFT, CANCELLED or already CLOSED, or a
                receipt session is active against the PO
            OpenLinesRemainError: not RECEIVED and ``force`` is false
            ValidationError: forced close without a reason
        """
        po = await lock_aggregate(self.db, PurchaseOrder, po_id, ENTITY)
        check_version(ENTITY, po, expected_version)

        if po.status in (POStatus.DRAFT.value, POStatus.CANCELLED.value, POStatus.CLOSED.value):
            raise InvalidStateError(ENTITY, po.status, "close")
        if await self.has_active_session(po.id):
            raise InvalidStateError(ENTITY, po.status, "close",
                                    "Cannot close while a receipt session is active against this purchase order")

        if po.status == POStatus.RECEIVED.value:
            self._apply(po, "close")
            if reason:
                po.close_reason = reason
        elif not force:
            raise OpenLinesRemainError(
                f"Purchase order {po.po_number} has {po.total_qty_open} unit(s) open; use force with a reason",
                {
                    "status": po.status,
                    "openLines": [
                        {"lineNumber": line.line_number, "qtyOpen": line.qty_open}
                        for line in po.lines if line.qty_open > 0
                    ],
                },
            )
        else:
            if not reason or not reason.strip():
                raise ValidationError("closeReason is required to force-close a purchase order")
            self._apply(po, "force_close")
            po.close_reason = reason
            po.variance_accepted = True
            logger.warning(f"PO {po.po_number} force-closed with {po.total_qty_open} unit(s) open: {reason}")

        await flush_or_conflict(self.db, ENTITY)
        return po

    # ==================== Receiving ====================

    async def apply_receipt(
        self,
        po_id: uuid.UUID,
        quantities: Dict[uuid.UUID, int],
        variance_accepted: bool,
    ) -> PurchaseOrder:
        """
        Increment received quantities by PO line id and derive the new status.

        Runs inside the receipt commit; any error rolls the whole commit back.

        Raises:
            VarianceNotAcceptedError: a line would end up above its ordered
                quantity and ``variance_accepted`` is False
        """
        po = await lock_aggregate(self.db, PurchaseOrder, po_id, ENTITY)
        lines = {line.id: line for line in po.lines}
        over = []
        for line_id, qty in quantities.items():
            line = lines.get(line_id)
            if line is None:
                raise ValidationError("Receipt line refers to a line of another purchase order",
                                      {"poLineId": str(line_id)})
            excess = line.qty_received + qty - line.qty_ordered
            if excess > 0:
                over.append({
                    "poLineId": str(line.id),
                    "lineNumber": line.line_number,
                    "ordered": line.qty_ordered,
                    "alreadyReceived": line.qty_received,
                    "incoming": qty,
                    "over": excess,
                })

        if over and not variance_accepted:
            logger.warning(f"PO {po.po_number} receipt rejected: {len(over)} line(s) over the ordered quantity")
            raise VarianceNotAcceptedError(
                f"Receipt would exceed the ordered quantity on {len(over)} line(s) of PO {po.po_number}; "
                "acceptVariance is required",
                {"poNumber": po.po_number, "overReceived": over},
            )

        for line_id, qty in quantities.items():
            lines[line_id].qty_received += qty

        if any(line.qty_over > 0 for line in po.lines) and variance_accepted:
            po.variance_accepted = True

        if po.fully_received:
            self._apply(po, "receive_full")
        elif po.total_qty_received > 0:
            self._apply(po, "receive_partial")
        po.last_received_at = utcnow()
        touch(po)
        await flush_or_conflict(self.db, ENTITY)
        return po

    async def analysis(self, po_id: uuid.UUID) -> Dict[str, Any]:
        po = await self.get(po_id)
        result = await self.db.execute(
            select(Receipt)
            .where(Receipt.purchase_order_id == po.id, Receipt.status == ReceiptStatus.COMPLETED.value)
            .order_by(Receipt.completed_date)
        )
        receipts = result.scalars().all()
        total = po.total_qty_ordered
        return {
            "id": po.id,
            "po_number": po.po_number,
            "status": po.status,
            "total_qty_ordered": total,
            "total_qty_received": po.total_qty_received,
            "total_qty_open": po.total_qty_open,
            "percent_received": round(po.total_qty_received * 100 / total) if total else 0,
            "lines": [
                {
                    "line_number": line.line_number,
                    "product_id": line.product_id,
                    "qty_ordered": line.qty_ordered,
                    "qty_received": line.qty_received,
                    "qty_open": line.qty_open,
                    "variance": line.variance,
                    "status": line.status,
                }
                for line in po.lines
            ],
            "receipts": [
                {
                    "receipt_id": r.id,
                    "receipt_number": r.receipt_number,
                    "asn_id": r.asn_id,
                    "completed_date": r.completed_date,
                    "total_received": r.total_received,
                    "variance_accepted": r.variance_accepted,
                }
                for r in receipts
            ],
        }
