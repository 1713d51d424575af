"""
Typed exception hierarchy for the inbound receiving engine.

Every error carries a machine-readable ``code``, the taxonomy ``kind`` it
belongs to and the HTTP status the API answers with. Services raise these;
``inbound.main`` renders them into one JSON envelope.

    InboundError
    |
    +-- ValidationError          400  bad input, missing reference
    |   +-- DuplicateNumberError
    |   +-- IdempotencyKeyReusedError
    |
    +-- NotFoundError            404  aggregate id does not exist
    |
    +-- StateError               422  illegal transition, aggregate unchanged
    |   +-- InvalidStateError
    |   +-- OpenLinesRemainError
    |   +-- VarianceNotAcceptedError
    |   +-- SessionAlreadyActiveError   409
    |
    +-- ConcurrencyConflictError 409  stale version, retry with fresh state
    |
    +-- CapacityError            422  location full or blocked
    |   +-- LocationBlockedError
    |   +-- CapacityExceededError
    |
    +-- LedgerImmutableError     500  attempted UPDATE/DELETE of a ledger entry
"""
from typing import Any, Dict, Optional


class InboundError(Exception):
    """Base class for all receiving engine errors."""

    code: str = "InboundError"
    kind: str = "InboundError"
    http_status: int = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.message,
            "kind": self.kind,
            "code": self.code,
            "details": self.details,
        }


# ==================== Validation ====================

class ValidationError(InboundError):
    """Bad input shape or a missing required reference. Raised before any mutation."""
    code = "ValidationError"
    kind = "ValidationError"
    http_status = 400


class DuplicateNumberError(ValidationError):
    code = "DuplicateNumber"


class IdempotencyKeyReusedError(ValidationError):
    code = "IdempotencyKeyReused"


class NotFoundError(InboundError):
    code = "NotFound"
    kind = "NotFoundError"
    http_status = 404

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(
            f"{entity} not found",
            {"entity": entity, "id": str(entity_id)},
        )


# ==================== State ====================

class StateError(InboundError):
    """Illegal lifecycle transition; the aggregate is left unchanged."""
    code = "StateError"
    kind = "StateError"
    http_status = 422


class InvalidStateError(StateError):
    code = "InvalidState"

    def __init__(
        self,
        entity: str,
        current: str,
        action: str,
        message: Optional[str] = None,
    ):
        super().__init__(
            message or f"Cannot {action} {entity} in status {current}",
            {"entity": entity, "status": current, "action": action},
        )
        self.current = current
        self.action = action


class OpenLinesRemainError(StateError):
    code = "OpenLinesRemain"


class VarianceNotAcceptedError(StateError):
    code = "VarianceNotAccepted"


class SessionAlreadyActiveError(StateError):
    code = "SessionAlreadyActive"
    http_status = 409


# ==================== Concurrency ====================

class ConcurrencyConflictError(InboundError):
    """Optimistic version mismatch. The caller must reload and retry."""
    code = "ConcurrencyConflict"
    kind = "ConcurrencyConflict"
    http_status = 409


# ==================== Capacity ====================

class CapacityError(InboundError):
    """Location cannot take the stock. No ledger entry is written."""
    code = "CapacityError"
    kind = "CapacityError"
    http_status = 422


class LocationBlockedError(CapacityError):
    code = "LocationBlocked"


class CapacityExceededError(CapacityError):
    code = "CapacityExceeded"


# ==================== Ledger ====================

class LedgerImmutableError(InboundError):
    code = "LedgerImmutable"
    kind = "LedgerImmutable"
    http_status = 500
