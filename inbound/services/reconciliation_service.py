"""
Database-facing side of the reconciliation engine.

Reads ASN, PO and receipt rows, hands plain values to
``inbound.core.reconciliation`` and returns its verdicts. Never mutates.
"""
import logging
import uuid
from collections import defaultdict
from datetime import date
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from inbound.config import settings
from inbound.core.reconciliation import (
    ExpectedLine,
    IssueCode,
    OrderLineRef,
    ValidationResult,
    match_order_line,
    reconcile,
    summarize,
    validate,
    variance_report,
)
from inbound.models.asn import AdvanceShipNotice, ASNStatus
from inbound.models.purchase import PurchaseOrder
from inbound.models.receipt import ACTIVE as ACTIVE_RECEIPT_STATUSES, Receipt, ReceiptLine
from inbound.services.catalog_service import CatalogService


logger = logging.getLogger(__name__)

RECEIVING_STARTED = (ASNStatus.RECEIVING.value, ASNStatus.RECEIVED.value, ASNStatus.CLOSED.value)


class ReconciliationService:

    def __init__(self, db: AsyncSession):
        self.db = db
        self.catalog = CatalogService(db)

    async def active_session_for_asn(self, asn_id: uuid.UUID) -> Optional[Receipt]:
        result = await self.db.execute(
            select(Receipt).where(
                Receipt.asn_id == asn_id,
                Receipt.status.in_(ACTIVE_RECEIPT_STATUSES),
            )
        )
        return result.scalar_one_or_none()

    async def _order_lines_for(self, asn: AdvanceShipNotice, lines: List[ExpectedLine]) -> Optional[List[OrderLineRef]]:
        """
        PO lines as they stood before this ASN was received against them, so
        re-validating after a commit does not report the ASN's own receipts
        as an order variance.
        """
        if asn.purchase_order_id is None:
            return None
        po = await self.db.get(PurchaseOrder, asn.purchase_order_id)
        if po is None:
            return None

        raw = [OrderLineRef(line.line_number, line.product_id, line.qty_open) for line in po.lines]
        committed: Dict[int, int] = defaultdict(int)
        for expected_line, asn_line in zip(lines, asn.lines):
            match = match_order_line(expected_line, raw)
            if match is not None:
                committed[match.line_number] += asn_line.quantity_received

        return [
            OrderLineRef(
                line.line_number,
                line.product_id,
                max(line.qty_ordered - (line.qty_received - committed[line.line_number]), 0),
            )
            for line in po.lines
        ]

    async def validate_asn(self, asn: AdvanceShipNotice, today: Optional[date] = None) -> ValidationResult:
        """
        Dry-run validation of an ASN against the catalog and its linked PO.

        Once receiving has started, received quantities include the active
        session's provisional scans.
        """
        check_received = asn.status in RECEIVING_STARTED
        provisional: Dict[uuid.UUID, ReceiptLine] = {}
        if check_received:
            session = await self.active_session_for_asn(asn.id)
            if session is not None:
                provisional = {line.asn_line_id: line for line in session.lines if line.asn_line_id}

        lines = []
        for asn_line in asn.lines:
            scanned = provisional.get(asn_line.id)
            lines.append(ExpectedLine(
                line_number=asn_line.line_number,
                product_id=asn_line.product_id,
                expected_qty=asn_line.quantity_expected,
                received_qty=asn_line.quantity_received + (scanned.received_qty if scanned else 0),
                damaged_qty=scanned.damaged_qty if scanned else 0,
                expiration_date=(scanned.expiration_date if scanned and scanned.expiration_date
                                 else asn_line.expiration_date),
                po_line_number=asn_line.po_line_number,
            ))

        known, inactive = await self.catalog.product_sets({line.product_id for line in lines})
        result = validate(
            lines,
            known_product_ids=known,
            inactive_product_ids=inactive,
            order_lines=await self._order_lines_for(asn, lines),
            check_received=check_received,
            today=today,
            near_expiry_days=settings.NEAR_EXPIRY_DAYS,
        )
        logger.info(
            f"Validated ASN {asn.asn_number}: {len(result.errors)} error(s), {len(result.warnings)} warning(s)"
        )
        return result

    def scan_warnings(self, lines: Iterable[ReceiptLine], today: Optional[date] = None) -> ValidationResult:
        """Variance and expiry warnings for receipt lines touched by a scan batch."""
        lines = list(lines)
        expected = [
            ExpectedLine(
                line_number=line.line_number,
                product_id=line.product_id,
                expected_qty=line.expected_qty,
                received_qty=line.received_qty,
                damaged_qty=line.damaged_qty,
                expiration_date=line.expiration_date,
            )
            for line in lines
        ]
        return validate(
            expected,
            known_product_ids={line.product_id for line in lines},
            check_received=True,
            today=today,
            near_expiry_days=settings.NEAR_EXPIRY_DAYS,
        )

    async def reconcile_receipt(self, receipt: Receipt, today: Optional[date] = None) -> Dict[str, Any]:
        recons = [(line, reconcile(line.expected_qty, line.received_qty, line.damaged_qty)) for line in receipt.lines]
        checks = self.scan_warnings(receipt.lines, today)
        _, inactive = await self.catalog.product_sets({line.product_id for line in receipt.lines})
        for line in receipt.lines:
            if line.product_id in inactive:
                checks.warn(IssueCode.INACTIVE_PRODUCT, f"Product {line.product_id} is inactive", line.line_number)

        variances = variance_report(receipt.lines)
        return {
            "receipt_id": receipt.id,
            "receipt_number": receipt.receipt_number,
            "status": receipt.status,
            "can_complete": receipt.is_active and not variances and checks.valid,
            "requires_accept_variance": bool(variances),
            "summary": summarize(r for _, r in recons),
            "lines": [
                {
                    "line_id": line.id,
                    "line_number": line.line_number,
                    "product_id": line.product_id,
                    "expected_qty": r.expected_qty,
                    "received_qty": r.received_qty,
                    "damaged_qty": r.damaged_qty,
                    "open_qty": r.open_qty,
                    "variance": r.variance,
                    "status": r.status.value,
                }
                for line, r in recons
            ],
            "warnings": [w.to_dict() for w in checks.warnings],
            "errors": [e.to_dict() for e in checks.errors],
        }
