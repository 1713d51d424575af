"""
ORM-level append-only enforcement for the inventory ledger.

SQLAlchemy fires ``before_update`` / ``before_delete`` before any SQL for
a flushed object is emitted. Listeners registered here raise
``LedgerImmutableError`` for any ledger entry, so the flush aborts and
the database is never modified. Corrections are REVERSAL entries.

Registered once from ``init_db()``; registration is idempotent.
"""
import logging

from sqlalchemy import event

from inbound.core.exceptions import LedgerImmutableError


logger = logging.getLogger(__name__)


def _block_ledger_update(mapper, connection, target):
    logger.error(f"Blocked UPDATE of ledger entry {target.id}")
    raise LedgerImmutableError(
        "Inventory ledger entries cannot be modified; post a reversal instead",
        {"entryId": str(target.id), "operation": "UPDATE"},
    )


def _block_ledger_delete(mapper, connection, target):
    logger.error(f"Blocked DELETE of ledger entry {target.id}")
    raise LedgerImmutableError(
        "Inventory ledger entries cannot be deleted; post a reversal instead",
        {"entryId": str(target.id), "operation": "DELETE"},
    )


_LISTENERS = (
    ("before_update", _block_ledger_update),
    ("before_delete", _block_ledger_delete),
)


def register_immutability_listeners() -> None:
    from inbound.models.inventory import InventoryLedgerEntry

    for identifier, fn in _LISTENERS:
        if not event.contains(InventoryLedgerEntry, identifier, fn):
            event.listen(InventoryLedgerEntry, identifier, fn)
