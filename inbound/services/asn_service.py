"""
ASN tracker service.

An ASN never owns PO lines; it only looks them up. Its received counters
move when a receipt session against it completes.
"""
import logging
import uuid
from collections import defaultdict
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from inbound.core.exceptions import (
    InvalidStateError,
    NotFoundError,
    ValidationError,
    VarianceNotAcceptedError,
)
from inbound.core.lifecycle import ensure_state
from inbound.core.reconciliation import ValidationResult
from inbound.models.asn import (
    ASN_WORKFLOW,
    EDITABLE,
    OPEN_STATUSES,
    AdvanceShipNotice,
    ASNLine,
    ASNStatus,
)
from inbound.models.catalog import Carrier, Dock, Vendor, Warehouse
from inbound.models.document_sequence import DocumentType
from inbound.models.purchase import POStatus, PurchaseOrder
from inbound.models.receipt import Receipt
from inbound.schemas.asn import ScanLine
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
from inbound.services.receipt_service import ReceiptService
from inbound.services.reconciliation_service import ReconciliationService


logger = logging.getLogger(__name__)

ENTITY = "ASN"

_CLOSED_PO = (POStatus.CANCELLED.value, POStatus.CLOSED.value)

# Line fields that may be changed but never cleared
_REQUIRED_LINE_FIELDS = {"product_id": "productId", "uom": "uom", "quantity_expected": "quantityExpected"}


class ASNService:
    """ASN CRUD, validation and the receiving hand-off."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.catalog = CatalogService(db)
        self.receipts = ReceiptService(db)
        self.reconciliation = ReconciliationService(db)

    # ==================== Queries ====================

    async def get(self, asn_id: uuid.UUID) -> AdvanceShipNotice:
        return await get_aggregate(self.db, AdvanceShipNotice, asn_id, ENTITY)

    async def reload(self, asn_id: uuid.UUID) -> AdvanceShipNotice:
        result = await self.db.execute(
            select(AdvanceShipNotice)
            .where(AdvanceShipNotice.id == asn_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    async def list(
        self,
        page: int,
        limit: int,
        status: Optional[str] = None,
        vendor_id: Optional[uuid.UUID] = None,
        warehouse_id: Optional[uuid.UUID] = None,
        purchase_order_id: Optional[uuid.UUID] = None,
        search: Optional[str] = None,
        expected_from: Optional[date] = None,
        expected_to: Optional[date] = None,
        sla_breached: Optional[bool] = None,
    ) -> Tuple[List[AdvanceShipNotice], int]:
        query = select(AdvanceShipNotice)
        if status:
            statuses = [s.strip().upper() for s in status.split(",") if s.strip()]
            query = query.where(AdvanceShipNotice.status.in_(statuses))
        if vendor_id:
            query = query.where(AdvanceShipNotice.vendor_id == vendor_id)
        if warehouse_id:
            query = query.where(AdvanceShipNotice.warehouse_id == warehouse_id)
        if purchase_order_id:
            query = query.where(AdvanceShipNotice.purchase_order_id == purchase_order_id)
        if search:
            query = query.where(or_(
                AdvanceShipNotice.asn_number.ilike(f"%{search}%"),
                AdvanceShipNotice.bol_number.ilike(f"%{search}%"),
                AdvanceShipNotice.tracking_number.ilike(f"%{search}%"),
            ))
        if expected_from:
            query = query.where(AdvanceShipNotice.expected_arrival >= _day_start(expected_from))
        if expected_to:
            query = query.where(AdvanceShipNotice.expected_arrival < _day_start(expected_to + timedelta(days=1)))
        if sla_breached is True:
            query = query.where(AdvanceShipNotice.sla_breached_at.is_not(None))
        elif sla_breached is False:
            query = query.where(AdvanceShipNotice.sla_breached_at.is_(None))

        total = (await self.db.execute(select(func.count()).select_from(query.subquery()))).scalar() or 0
        result = await self.db.execute(
            query.order_by(AdvanceShipNotice.created_at.desc()).offset((page - 1) * limit).limit(limit)
        )
        return list(result.scalars().all()), total

    # ==================== Create / Edit ====================

    async def _resolve_po(self, data) -> Optional[PurchaseOrder]:
        po = None
        if data.purchase_order_id is not None:
            po = await self.db.get(PurchaseOrder, data.purchase_order_id)
            if po is None:
                raise ValidationError("Purchase order does not exist", {"purchaseOrderId": str(data.purchase_order_id)})
        elif data.po_number:
            result = await self.db.execute(select(PurchaseOrder).where(PurchaseOrder.po_number == data.po_number))
            po = result.scalar_one_or_none()
            if po is None:
                raise ValidationError(f"Purchase order {data.po_number} does not exist", {"poNumber": data.po_number})
        if po is not None and po.status in _CLOSED_PO:
            raise InvalidStateError("PurchaseOrder", po.status, "ship against")
        return po

    async def _check_line_products(self, product_ids) -> None:
        known, _ = await self.catalog.product_sets(set(product_ids))
        missing = [str(p) for p in product_ids if p not in known]
        if missing:
            raise ValidationError("Unknown product(s) on ASN lines", {"productIds": missing})

    def _build_lines(self, lines_in) -> List[ASNLine]:
        lines = []
        used = set()
        for line_in in lines_in:
            number = line_in.line_number or (max(used, default=0) + 1)
            if number in used:
                raise ValidationError(f"Duplicate line number {number}", {"lineNumber": number})
            used.add(number)
            lines.append(ASNLine(
                line_number=number,
                product_id=line_in.product_id,
                uom=line_in.uom,
                quantity_expected=line_in.quantity_expected,
                quantity_received=0,
                lot_number=line_in.lot_number,
                expiration_date=line_in.expiration_date,
                po_line_number=line_in.po_line_number,
            ))
        return lines

    async def create(self, data) -> AdvanceShipNotice:
        po = await self._resolve_po(data)

        vendor_id = data.vendor_id or (po.vendor_id if po else None)
        warehouse_id = data.warehouse_id or (po.warehouse_id if po else None)
        if vendor_id is None or warehouse_id is None:
            raise ValidationError("vendorId and warehouseId are required when no purchase order is referenced")
        if po is not None and (vendor_id != po.vendor_id or warehouse_id != po.warehouse_id):
            raise ValidationError(
                "ASN vendor and warehouse must match the purchase order",
                {"poNumber": po.po_number},
            )
        await self.catalog.require_reference(Vendor, vendor_id, "Vendor")
        await self.catalog.require_reference(Warehouse, warehouse_id, "Warehouse")
        if data.carrier_id is not None:
            await self.catalog.require_reference(Carrier, data.carrier_id, "Carrier")

        if data.lines:
            await self._check_line_products([line.product_id for line in data.lines])
            lines = self._build_lines(data.lines)
        elif po is not None:
            # Derived from the PO's open lines
            lines = [
                ASNLine(
                    line_number=index,
                    product_id=pl.product_id,
                    uom=pl.uom,
                    quantity_expected=pl.qty_open,
                    quantity_received=0,
                    po_line_number=pl.line_number,
                )
                for index, pl in enumerate((pl for pl in po.lines if pl.qty_open > 0), start=1)
            ]
        else:
            lines = []

        asn = AdvanceShipNotice(
            asn_number=await DocumentSequenceService(self.db).get_next_number(DocumentType.ASN.value),
            status=ASN_WORKFLOW.initial_state,
            vendor_id=vendor_id,
            warehouse_id=warehouse_id,
            purchase_order_id=po.id if po else None,
            carrier_id=data.carrier_id,
            expected_arrival=data.expected_arrival,
            bol_number=data.bol_number,
            tracking_number=data.tracking_number,
            notes=data.notes,
            variance_accepted=False,
            lines=lines,
        )
        self.db.add(asn)
        await self.db.flush()
        logger.info(
            f"Created ASN {asn.asn_number} with {len(lines)} line(s)"
            + (f" against PO {po.po_number}" if po else "")
        )
        return asn

    async def update(self, asn_id: uuid.UUID, data) -> AdvanceShipNotice:
        asn = await lock_aggregate(self.db, AdvanceShipNotice, asn_id, ENTITY)
        check_version(ENTITY, asn, data.expected_version)
        ensure_state(ENTITY, asn.status, EDITABLE, "update")

        values = data.model_dump(exclude_unset=True, exclude={"expected_version"})
        if values.get("carrier_id"):
            await self.catalog.require_reference(Carrier, values["carrier_id"], "Carrier")
        for field, value in values.items():
            setattr(asn, field, value)
        touch(asn)
        await flush_or_conflict(self.db, ENTITY)
        return asn

    async def add_line(self, asn_id: uuid.UUID, line_in) -> AdvanceShipNotice:
        asn = await lock_aggregate(self.db, AdvanceShipNotice, asn_id, ENTITY)
        ensure_state(ENTITY, asn.status, EDITABLE, "add line")
        await self._check_line_products([line_in.product_id])

        existing = {line.line_number for line in asn.lines}
        number = line_in.line_number or (max(existing, default=0) + 1)
        if number in existing:
            raise ValidationError(f"Duplicate line number {number}", {"lineNumber": number})
        asn.lines.extend(self._build_lines([line_in.model_copy(update={"line_number": number})]))
        touch(asn)
        await flush_or_conflict(self.db, ENTITY)
        return asn

    async def update_line(self, asn_id: uuid.UUID, line_id: uuid.UUID, data) -> AdvanceShipNotice:
        asn = await lock_aggregate(self.db, AdvanceShipNotice, asn_id, ENTITY)
        ensure_state(ENTITY, asn.status, EDITABLE, "update line")
        line = asn.line_by_id(line_id)
        if line is None:
            raise NotFoundError("ASNLine", line_id)

        values = data.model_dump(exclude_unset=True)
        cleared = [_REQUIRED_LINE_FIELDS[f] for f in _REQUIRED_LINE_FIELDS if f in values and values[f] is None]
        if cleared:
            raise ValidationError(f"ASN line field(s) cannot be null: {', '.join(cleared)}", {"fields": cleared})
        if values.get("product_id"):
            await self._check_line_products([values["product_id"]])
        for field, value in values.items():
            setattr(line, field, value)
        touch(asn)
        await flush_or_conflict(self.db, ENTITY)
        return asn

    async def delete_line(self, asn_id: uuid.UUID, line_id: uuid.UUID) -> AdvanceShipNotice:
        asn = await lock_aggregate(self.db, AdvanceShipNotice, asn_id, ENTITY)
        ensure_state(ENTITY, asn.status, EDITABLE, "delete line")
        line = asn.line_by_id(line_id)
        if line is None:
            raise NotFoundError("ASNLine", line_id)
        asn.lines.remove(line)
        touch(asn)
        await flush_or_conflict(self.db, ENTITY)
        return asn

    # ==================== Lifecycle ====================

    def _apply(self, asn: AdvanceShipNotice, action: str, stamp: Optional[str] = None) -> None:
        previous = asn.status
        asn.status = ASN_WORKFLOW.target(asn.status, action)
        if stamp:
            setattr(asn, stamp, utcnow())
        touch(asn)
        logger.info(f"ASN {asn.asn_number}: {previous} -> {asn.status} ({action})")

    async def validate(self, asn_id: uuid.UUID) -> Tuple[AdvanceShipNotice, ValidationResult]:
        """
        Dry-run reconciliation. A PENDING ASN with zero errors becomes
        VALIDATED; in any other state the result is only reported.
        """
        asn = await lock_aggregate(self.db, AdvanceShipNotice, asn_id, ENTITY)
        result = await self.reconciliation.validate_asn(asn)
        if result.valid and asn.status == ASNStatus.PENDING.value:
            self._apply(asn, "validate", "validated_at")
            await flush_or_conflict(self.db, ENTITY)
        elif not result.valid:
            logger.warning(f"ASN {asn.asn_number} failed validation with {len(result.errors)} error(s)")
        return asn, result

    async def schedule(self, asn_id: uuid.UUID, dock_id: Optional[uuid.UUID] = None,
                       appointment_at: Optional[datetime] = None,
                       expected_version: Optional[int] = None) -> AdvanceShipNotice:
        asn = await lock_aggregate(self.db, AdvanceShipNotice, asn_id, ENTITY)
        check_version(ENTITY, asn, expected_version)
        if dock_id is not None:
            dock = await self.catalog.require_reference(Dock, dock_id, "Dock")
            if dock.warehouse_id != asn.warehouse_id:
                raise ValidationError("Dock belongs to another warehouse", {"dockId": str(dock_id)})
        self._apply(asn, "schedule")
        asn.dock_id = dock_id or asn.dock_id
        asn.appointment_at = appointment_at or asn.appointment_at
        await flush_or_conflict(self.db, ENTITY)
        return asn

    async def mark_in_transit(self, asn_id: uuid.UUID, tracking_number: Optional[str] = None,
                              expected_version: Optional[int] = None) -> AdvanceShipNotice:
        asn = await lock_aggregate(self.db, AdvanceShipNotice, asn_id, ENTITY)
        check_version(ENTITY, asn, expected_version)
        self._apply(asn, "ship", "shipped_at")
        if tracking_number:
            asn.tracking_number = tracking_number
        await flush_or_conflict(self.db, ENTITY)
        return asn

    async def mark_arrived(self, asn_id: uuid.UUID, dock_id: Optional[uuid.UUID] = None,
                           expected_version: Optional[int] = None) -> AdvanceShipNotice:
        asn = await lock_aggregate(self.db, AdvanceShipNotice, asn_id, ENTITY)
        check_version(ENTITY, asn, expected_version)
        if dock_id is not None:
            dock = await self.catalog.require_reference(Dock, dock_id, "Dock")
            if dock.warehouse_id != asn.warehouse_id:
                raise ValidationError("Dock belongs to another warehouse", {"dockId": str(dock_id)})
            asn.dock_id = dock_id
        self._apply(asn, "arrive", "arrived_at")
        await flush_or_conflict(self.db, ENTITY)
        return asn

    async def start_receiving(self, asn_id: uuid.UUID, receiving_location_id: Optional[uuid.UUID] = None,
                              dock_id: Optional[uuid.UUID] = None) -> Tuple[AdvanceShipNotice, Receipt]:
        asn = await lock_aggregate(self.db, AdvanceShipNotice, asn_id, ENTITY)
        receipt = await self.receipts.open_for_asn(asn, receiving_location_id=receiving_location_id, dock_id=dock_id)
        return asn, receipt

    async def receive(
        self,
        asn_id: uuid.UUID,
        events: Sequence[ScanLine],
        receiving_location_id: Optional[uuid.UUID] = None,
        expected_version: Optional[int] = None,
    ) -> Tuple[AdvanceShipNotice, Receipt, ValidationResult]:
        """Route a scan batch keyed by ASN line ids to the ASN's active session."""
        asn = await self.get(asn_id)
        session = await self.receipts.active_session_for_asn(asn.id)
        if session is None:
            raise InvalidStateError(ENTITY, asn.status, "receive", f"ASN {asn.asn_number} has no active receipt session")

        translated = []
        for event in events:
            if asn.line_by_id(event.line_id) is None:
                raise NotFoundError("ASNLine", event.line_id)
            receipt_line = session.line_by_asn_line(event.line_id)
            if receipt_line is None:
                raise ValidationError("ASN line has nothing left to receive in this session",
                                      {"lineId": str(event.line_id)})
            translated.append(event.model_copy(update={"line_id": receipt_line.id}))

        receipt, warnings = await self.receipts.receive(
            session.id, translated, receiving_location_id=receiving_location_id, expected_version=expected_version,
        )
        return await self.reload(asn.id), receipt, warnings

    async def close(
        self,
        asn_id: uuid.UUID,
        close_notes: Optional[str] = None,
        accept_variance: bool = False,
        receiving_location_id: Optional[uuid.UUID] = None,
    ) -> AdvanceShipNotice:
        """
        Close an ASN from RECEIVING or RECEIVED.

        An active session is completed first. Any difference between
        expected and received (committed plus the session's scans) needs
        ``accept_variance`` unless it was already accepted.
        """
        asn = await self.get(asn_id)
        if not ASN_WORKFLOW.can(asn.status, "close"):
            raise InvalidStateError(ENTITY, asn.status, "close")

        session = await self.receipts.active_session_for_asn(asn.id)
        scanned: Dict[uuid.UUID, int] = defaultdict(int)
        if session is not None:
            for line in session.lines:
                if line.asn_line_id is not None:
                    scanned[line.asn_line_id] += line.received_qty

        variances = []
        for line in asn.lines:
            received = line.quantity_received + scanned[line.id]
            if received != line.quantity_expected:
                variances.append({
                    "lineId": str(line.id),
                    "lineNumber": line.line_number,
                    "expected": line.quantity_expected,
                    "received": received,
                    "variance": received - line.quantity_expected,
                })
        if variances and not (accept_variance or asn.variance_accepted):
            logger.warning(f"ASN {asn.asn_number} close rejected: {len(variances)} variance line(s)")
            raise VarianceNotAcceptedError(
                f"ASN {asn.asn_number} has {len(variances)} line(s) with variance; acceptVariance is required",
                {"variances": variances},
            )

        if session is not None:
            await self.receipts.complete(
                session.id,
                accept_variance=bool(variances),
                receiving_location_id=receiving_location_id,
            )

        asn = await lock_aggregate(self.db, AdvanceShipNotice, asn_id, ENTITY)
        self._apply(asn, "close", "closed_at")
        if variances:
            asn.variance_accepted = True
        if close_notes:
            asn.notes = f"{asn.notes}\n{close_notes}" if asn.notes else close_notes
        await flush_or_conflict(self.db, ENTITY)
        return asn

    async def cancel(self, asn_id: uuid.UUID) -> AdvanceShipNotice:
        """
        Cancel before anything was committed. An active session is
        cancelled with it.
        """
        asn = await self.get(asn_id)
        if not ASN_WORKFLOW.can(asn.status, "cancel"):
            raise InvalidStateError(ENTITY, asn.status, "cancel")
        if asn.total_received > 0:
            raise InvalidStateError(ENTITY, asn.status, "cancel",
                                    "Cannot cancel an ASN with committed receipts; close it instead")

        session = await self.receipts.active_session_for_asn(asn.id)
        if session is not None:
            await self.receipts.cancel(session.id, reason=f"ASN {asn.asn_number} cancelled")

        asn = await lock_aggregate(self.db, AdvanceShipNotice, asn_id, ENTITY)
        self._apply(asn, "cancel", "cancelled_at")
        await flush_or_conflict(self.db, ENTITY)
        return asn

    # ==================== Stats / Calendar ====================

    async def stats(self, warehouse_id: Optional[uuid.UUID] = None) -> Dict[str, Any]:
        base = select(AdvanceShipNotice.status, func.count(AdvanceShipNotice.id))
        if warehouse_id:
            base = base.where(AdvanceShipNotice.warehouse_id == warehouse_id)
        rows = (await self.db.execute(base.group_by(AdvanceShipNotice.status))).all()
        by_status = {s.value: 0 for s in ASNStatus}
        for status, count in rows:
            by_status[status] = count

        now = utcnow()
        today_start = _day_start(now.date())

        def scoped(query):
            return query.where(AdvanceShipNotice.warehouse_id == warehouse_id) if warehouse_id else query

        expected_today = (await self.db.execute(scoped(
            select(func.count(AdvanceShipNotice.id)).where(
                AdvanceShipNotice.expected_arrival >= today_start,
                AdvanceShipNotice.expected_arrival < today_start + timedelta(days=1),
            )
        ))).scalar() or 0
        overdue = (await self.db.execute(scoped(
            select(func.count(AdvanceShipNotice.id)).where(
                AdvanceShipNotice.status.in_(OPEN_STATUSES),
                AdvanceShipNotice.expected_arrival < now,
            )
        ))).scalar() or 0
        sla_breached = (await self.db.execute(scoped(
            select(func.count(AdvanceShipNotice.id)).where(AdvanceShipNotice.sla_breached_at.is_not(None))
        ))).scalar() or 0

        timed = (await self.db.execute(scoped(
            select(AdvanceShipNotice.receiving_started_at, AdvanceShipNotice.received_at).where(
                AdvanceShipNotice.receiving_started_at.is_not(None),
                AdvanceShipNotice.received_at.is_not(None),
            )
        ))).all()
        durations = [(received - started).total_seconds() / 60 for started, received in timed]

        return {
            "total": sum(by_status.values()),
            "by_status": by_status,
            "expected_today": expected_today,
            "overdue": overdue,
            "in_receiving": by_status[ASNStatus.RECEIVING.value],
            "sla_breached": sla_breached,
            "avg_receiving_minutes": round(sum(durations) / len(durations), 1) if durations else None,
        }

    async def calendar(self, start_date: date, end_date: date,
                       warehouse_id: Optional[uuid.UUID] = None) -> List[Dict[str, Any]]:
        if end_date < start_date:
            raise ValidationError("endDate must not be before startDate")
        query = select(AdvanceShipNotice).where(
            AdvanceShipNotice.expected_arrival >= _day_start(start_date),
            AdvanceShipNotice.expected_arrival < _day_start(end_date + timedelta(days=1)),
            AdvanceShipNotice.status.not_in((ASNStatus.CLOSED.value, ASNStatus.CANCELLED.value)),
        )
        if warehouse_id:
            query = query.where(AdvanceShipNotice.warehouse_id == warehouse_id)
        asns = (await self.db.execute(query.order_by(AdvanceShipNotice.expected_arrival))).scalars().all()

        days: Dict[date, List[AdvanceShipNotice]] = defaultdict(list)
        for asn in asns:
            days[asn.expected_arrival.date()].append(asn)
        return [
            {
                "day": day,
                "count": len(items),
                "asns": [
                    {
                        "id": a.id,
                        "asn_number": a.asn_number,
                        "status": a.status,
                        "vendor_id": a.vendor_id,
                        "expected_arrival": a.expected_arrival,
                        "dock_id": a.dock_id,
                        "total_expected": a.total_expected,
                    }
                    for a in items
                ],
            }
            for day, items in sorted(days.items())
        ]


def _day_start(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)
