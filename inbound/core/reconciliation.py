"""
Reconciliation engine.

Pure computation over expected and received quantities. Nothing here
touches the database: callers hand in plain values (or ORM rows read as
plain values) and get back line statuses, signed variances, validation
issues and the quantities to commit.

Line status is a function of ``(expected, received)`` only:

    received == 0               -> PENDING
    0 < received < expected     -> PARTIAL
    received == expected        -> COMPLETE
    received > expected         -> OVER_RECEIVED

Over-receipt is never clamped. It is surfaced as a warning and, at commit
time, requires an explicit ``accept_variance``.
"""
from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set
import uuid

from inbound.core.exceptions import (
    OpenLinesRemainError,
    ValidationError,
    VarianceNotAcceptedError,
)


class LineStatus(str, Enum):
    """Derived receiving status of a single line."""
    PENDING = "PENDING"
    PARTIAL = "PARTIAL"
    COMPLETE = "COMPLETE"
    OVER_RECEIVED = "OVER_RECEIVED"


class IssueSeverity(str, Enum):
    WARNING = "WARNING"
    ERROR = "ERROR"


class IssueCode(str, Enum):
    # errors
    NEGATIVE_QUANTITY = "NEGATIVE_QUANTITY"
    ZERO_EXPECTED = "ZERO_EXPECTED"
    UNKNOWN_PRODUCT = "UNKNOWN_PRODUCT"
    NOT_ON_ORDER = "NOT_ON_ORDER"
    EMPTY_SHIPMENT = "EMPTY_SHIPMENT"
    # warnings
    QUANTITY_VARIANCE = "QUANTITY_VARIANCE"
    ORDER_VARIANCE = "ORDER_VARIANCE"
    INACTIVE_PRODUCT = "INACTIVE_PRODUCT"
    NEAR_EXPIRY = "NEAR_EXPIRY"
    EXPIRED = "EXPIRED"


@dataclass(frozen=True)
class LineReconciliation:
    expected_qty: int
    received_qty: int
    damaged_qty: int
    status: LineStatus
    variance: int

    @property
    def open_qty(self) -> int:
        return max(self.expected_qty - self.received_qty, 0)

    @property
    def over_qty(self) -> int:
        return max(self.received_qty - self.expected_qty, 0)

    @property
    def has_variance(self) -> bool:
        return self.variance != 0


def reconcile(expected_qty: int, received_qty: int, damaged_qty: int = 0) -> LineReconciliation:
    """Reconcile one line.

    ``damaged_qty`` is part of ``received_qty`` (damaged units were
    physically received) and is reported separately.

    Raises:
        ValidationError: expected is not positive, received or damaged is
            negative, or damaged exceeds received.
    """
    if expected_qty <= 0:
        raise ValidationError(
            "Expected quantity must be positive",
            {"expectedQty": expected_qty},
        )
    if received_qty < 0:
        raise ValidationError(
            "Received quantity cannot be negative",
            {"receivedQty": received_qty},
        )
    if damaged_qty < 0 or damaged_qty > received_qty:
        raise ValidationError(
            "Damaged quantity must be between 0 and the received quantity",
            {"damagedQty": damaged_qty, "receivedQty": received_qty},
        )

    if received_qty == 0:
        status = LineStatus.PENDING
    elif received_qty < expected_qty:
        status = LineStatus.PARTIAL
    elif received_qty == expected_qty:
        status = LineStatus.COMPLETE
    else:
        status = LineStatus.OVER_RECEIVED

    return LineReconciliation(
        expected_qty=expected_qty,
        received_qty=received_qty,
        damaged_qty=damaged_qty,
        status=status,
        variance=received_qty - expected_qty,
    )


# ==================== Validation (dry run) ====================

@dataclass(frozen=True)
class ReconciliationIssue:
    severity: IssueSeverity
    code: IssueCode
    message: str
    line_number: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lineNumber": self.line_number,
            "code": self.code.value,
            "severity": self.severity.value,
            "message": self.message,
        }


@dataclass
class ValidationResult:
    warnings: List[ReconciliationIssue] = field(default_factory=list)
    errors: List[ReconciliationIssue] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    def warn(self, code: IssueCode, message: str, line_number: Optional[int] = None) -> None:
        self.warnings.append(ReconciliationIssue(IssueSeverity.WARNING, code, message, line_number))

    def error(self, code: IssueCode, message: str, line_number: Optional[int] = None) -> None:
        self.errors.append(ReconciliationIssue(IssueSeverity.ERROR, code, message, line_number))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "warnings": [w.to_dict() for w in self.warnings],
            "errors": [e.to_dict() for e in self.errors],
        }


@dataclass(frozen=True)
class ExpectedLine:
    """One line as seen by validation: what is expected and what has been scanned."""
    line_number: int
    product_id: uuid.UUID
    expected_qty: int
    received_qty: int = 0
    damaged_qty: int = 0
    expiration_date: Optional[date] = None
    po_line_number: Optional[int] = None


@dataclass(frozen=True)
class OrderLineRef:
    """The purchase order line an expected line is checked against."""
    line_number: int
    product_id: uuid.UUID
    qty_open: int


def expiry_warning(
    expiration_date: Optional[date],
    today: date,
    near_expiry_days: int,
) -> Optional[IssueCode]:
    if expiration_date is None:
        return None
    if expiration_date < today:
        return IssueCode.EXPIRED
    if expiration_date <= today + timedelta(days=near_expiry_days):
        return IssueCode.NEAR_EXPIRY
    return None


def match_order_line(
    line: ExpectedLine,
    order_lines: Sequence[OrderLineRef],
) -> Optional[OrderLineRef]:
    if line.po_line_number is not None:
        for order_line in order_lines:
            if order_line.line_number == line.po_line_number:
                return order_line
        return None
    for order_line in order_lines:
        if order_line.product_id == line.product_id:
            return order_line
    return None


def validate(
    lines: Sequence[ExpectedLine],
    *,
    known_product_ids: Set[uuid.UUID],
    inactive_product_ids: Optional[Set[uuid.UUID]] = None,
    order_lines: Optional[Sequence[OrderLineRef]] = None,
    check_received: bool = False,
    today: Optional[date] = None,
    near_expiry_days: int = 30,
) -> ValidationResult:
    """Dry-run validation of a set of lines. Never mutates anything.

    Errors block (negative quantities, zero expected, unknown products,
    products absent from the linked order, an empty shipment). Warnings do
    not (variance against the order's open quantity, received vs expected
    variance when ``check_received`` is set, inactive products, expiry).
    """
    result = ValidationResult()
    today = today or date.today()
    inactive_product_ids = inactive_product_ids or set()

    total_expected = sum(max(line.expected_qty, 0) for line in lines)
    if total_expected == 0:
        result.error(IssueCode.EMPTY_SHIPMENT, "Total expected quantity is zero")

    for line in lines:
        n = line.line_number

        if line.product_id not in known_product_ids:
            result.error(IssueCode.UNKNOWN_PRODUCT, f"Product {line.product_id} does not exist", n)
        elif line.product_id in inactive_product_ids:
            result.warn(IssueCode.INACTIVE_PRODUCT, f"Product {line.product_id} is inactive", n)

        if line.expected_qty < 0 or line.received_qty < 0 or line.damaged_qty < 0:
            result.error(IssueCode.NEGATIVE_QUANTITY, "Quantities cannot be negative", n)
            continue
        if line.expected_qty == 0:
            result.error(IssueCode.ZERO_EXPECTED, "Line expects zero units", n)
            continue

        if order_lines is not None:
            order_line = match_order_line(line, order_lines)
            if order_line is None:
                result.error(IssueCode.NOT_ON_ORDER, "Line is not on the linked purchase order", n)
            elif line.expected_qty != order_line.qty_open:
                diff = line.expected_qty - order_line.qty_open
                result.warn(
                    IssueCode.ORDER_VARIANCE,
                    f"Expected {line.expected_qty} vs {order_line.qty_open} open on PO line "
                    f"{order_line.line_number} (variance {diff:+d})",
                    n,
                )

        if check_received:
            recon = reconcile(line.expected_qty, line.received_qty, min(line.damaged_qty, line.received_qty))
            if recon.has_variance:
                result.warn(
                    IssueCode.QUANTITY_VARIANCE,
                    f"Received {recon.received_qty} of {recon.expected_qty} "
                    f"(variance {recon.variance:+d}, {recon.status.value})",
                    n,
                )

        expiry = expiry_warning(line.expiration_date, today, near_expiry_days)
        if expiry is IssueCode.EXPIRED:
            result.warn(expiry, f"Lot expired on {line.expiration_date.isoformat()}", n)
        elif expiry is IssueCode.NEAR_EXPIRY:
            result.warn(expiry, f"Lot expires on {line.expiration_date.isoformat()}", n)

    return result


# ==================== Commit planning ====================

@dataclass(frozen=True)
class CommitLine:
    """Quantity one receipt line posts to the ledger and to its ASN/PO lines."""
    receipt_line_id: uuid.UUID
    product_id: uuid.UUID
    lot_number: Optional[str]
    quantity: int
    asn_line_id: Optional[uuid.UUID]
    po_line_id: Optional[uuid.UUID]


def variance_report(lines: Iterable[Any]) -> List[Dict[str, Any]]:
    """Per-line variances of lines that do not reconcile exactly."""
    report = []
    for line in lines:
        recon = reconcile(line.expected_qty, line.received_qty, line.damaged_qty)
        if recon.has_variance:
            report.append({
                "lineId": str(line.id),
                "lineNumber": line.line_number,
                "expected": recon.expected_qty,
                "received": recon.received_qty,
                "variance": recon.variance,
                "status": recon.status.value,
            })
    return report


def plan_commit(lines: Sequence[Any], accept_variance: bool = False) -> List[CommitLine]:
    """Decide what a receipt session commits.

    ``lines`` are receipt-line shaped objects (``id``, ``line_number``,
    ``product_id``, ``lot_number``, ``expected_qty``, ``received_qty``,
    ``damaged_qty``, ``asn_line_id``, ``po_line_id``).

    Raises:
        OpenLinesRemainError: a line is short and variance was not accepted.
        VarianceNotAcceptedError: a line is over-received and variance was
            not accepted.
    """
    recons = [(line, reconcile(line.expected_qty, line.received_qty, line.damaged_qty)) for line in lines]

    if not accept_variance:
        short = [line for line, r in recons if r.open_qty > 0]
        if short:
            raise OpenLinesRemainError(
                f"{len(short)} line(s) still have open quantity",
                {"variances": variance_report(short)},
            )
        over = [line for line, r in recons if r.over_qty > 0]
        if over:
            raise VarianceNotAcceptedError(
                f"{len(over)} line(s) are over-received; acceptVariance is required",
                {"variances": variance_report(over)},
            )

    return [
        CommitLine(
            receipt_line_id=line.id,
            product_id=line.product_id,
            lot_number=line.lot_number,
            quantity=r.received_qty,
            asn_line_id=line.asn_line_id,
            po_line_id=line.po_line_id,
        )
        for line, r in recons
        if r.received_qty > 0
    ]


def summarize(recons: Iterable[LineReconciliation]) -> Dict[str, Any]:
    """Totals for a set of reconciled lines."""
    recons = list(recons)
    total_expected = sum(r.expected_qty for r in recons)
    total_received = sum(r.received_qty for r in recons)
    by_status: Dict[str, int] = {s.value: 0 for s in LineStatus}
    for r in recons:
        by_status[r.status.value] += 1
    return {
        "totalExpected": total_expected,
        "totalReceived": total_received,
        "totalDamaged": sum(r.damaged_qty for r in recons),
        "totalVariance": total_received - total_expected,
        "percentComplete": round(total_received * 100 / total_expected) if total_expected > 0 else 0,
        "linesByStatus": by_status,
    }
