"""
Putaway resolver.

Moves received stock out of the receiving location. Each putaway writes
a pair of PUTAWAY entries in one transaction: +quantity at the target and
-quantity at the receiving location. The quantity a receipt line has put
away is always read back from the ledger.
"""
import logging
import uuid
from typing import Any, Dict

from sqlalchemy.ext.asyncio import AsyncSession

from inbound.core.exceptions import (
    CapacityExceededError,
    InvalidStateError,
    LocationBlockedError,
    NotFoundError,
    ValidationError,
)
from inbound.models.catalog import Location
from inbound.models.inventory import LedgerReason
from inbound.models.receipt import Receipt, ReceiptStatus
from inbound.services.inventory_ledger_service import InventoryLedgerService
from inbound.services.locking import flush_or_conflict, lock_aggregate, touch


logger = logging.getLogger(__name__)


class PutawayService:

    def __init__(self, db: AsyncSession):
        self.db = db
        self.ledger = InventoryLedgerService(db)

    async def putaway(
        self,
        receipt_id: uuid.UUID,
        line_id: uuid.UUID,
        location_id: uuid.UUID,
        quantity: int,
    ) -> Dict[str, Any]:
        """
        Put ``quantity`` of a receipt line away into ``location_id``.

        Nothing is written unless every check passes.

        Raises:
            InvalidStateError: the session is not COMPLETED
            NotFoundError: receipt, line or location does not exist
            ValidationError: bad quantity, wrong warehouse, target is the
                receiving location, or more than was received
            LocationBlockedError: target status is not ACTIVE/FREE
            CapacityExceededError: target enforces capacity and would overflow
        """
        if quantity <= 0:
            raise ValidationError("Putaway quantity must be positive", {"quantity": quantity})

        receipt = await lock_aggregate(self.db, Receipt, receipt_id, "Receipt")
        if receipt.status != ReceiptStatus.COMPLETED.value:
            raise InvalidStateError("Receipt", receipt.status, "putaway",
                                    "Putaway is only possible once the receipt is COMPLETED")
        line = receipt.line_by_id(line_id)
        if line is None:
            raise NotFoundError("ReceiptLine", line_id)
        receiving_id = receipt.receiving_location_id
        if line.received_qty == 0 or receiving_id is None:
            raise ValidationError("Receipt line has nothing to put away", {"lineId": str(line_id)})

        # Row lock serializes capacity checks on the target
        target = await lock_aggregate(self.db, Location, location_id, "Location")
        if target.warehouse_id != receipt.warehouse_id:
            raise ValidationError(
                "Target location belongs to another warehouse",
                {"locationId": str(location_id), "warehouseId": str(receipt.warehouse_id)},
            )
        if target.id == receiving_id:
            raise ValidationError("Target location is the receiving location", {"locationId": str(location_id)})
        if not target.accepts_stock:
            logger.warning(f"Putaway into {target.code} rejected: location is {target.status}")
            raise LocationBlockedError(
                f"Location {target.code} is {target.status}",
                {"locationId": str(target.id), "status": target.status},
            )
        if target.enforce_capacity and target.capacity is not None:
            current = await self.ledger.location_total(target.id)
            if current + quantity > target.capacity:
                logger.warning(
                    f"Putaway into {target.code} rejected: {current} + {quantity} > capacity {target.capacity}"
                )
                raise CapacityExceededError(
                    f"Location {target.code} cannot take {quantity} more unit(s)",
                    {"locationId": str(target.id), "currentQty": current,
                     "quantity": quantity, "capacity": target.capacity},
                )

        put_away = await self.ledger.put_away_quantity(line.id, receiving_id)
        if put_away + quantity > line.received_qty:
            raise ValidationError(
                "Putaway would exceed the received quantity",
                {"lineId": str(line.id), "receivedQty": line.received_qty,
                 "putAwayQty": put_away, "quantity": quantity},
            )
        at_receiving = await self.ledger.line_quantity_at(line.id, receiving_id)
        if at_receiving < quantity:
            raise ValidationError(
                "Not enough of this line left at the receiving location",
                {"lineId": str(line.id), "available": at_receiving, "quantity": quantity},
            )

        entry = await self.ledger.post(
            product_id=line.product_id,
            warehouse_id=receipt.warehouse_id,
            location_id=target.id,
            lot_number=line.lot_number,
            quantity_delta=quantity,
            reason=LedgerReason.PUTAWAY,
            receipt_id=receipt.id,
            receipt_line_id=line.id,
            reference=receipt.receipt_number,
        )
        relief = await self.ledger.post(
            product_id=line.product_id,
            warehouse_id=receipt.warehouse_id,
            location_id=receiving_id,
            lot_number=line.lot_number,
            quantity_delta=-quantity,
            reason=LedgerReason.PUTAWAY,
            receipt_id=receipt.id,
            receipt_line_id=line.id,
            reference=receipt.receipt_number,
        )
        line.putaway_location_id = target.id
        touch(receipt)
        await flush_or_conflict(self.db, "Receipt")

        total = put_away + quantity
        logger.info(
            f"Put away {quantity} of {receipt.receipt_number} line {line.line_number} into {target.code} "
            f"({total}/{line.received_qty})"
        )
        return {
            "entry": entry,
            "relief_entry_id": relief.id,
            "receipt_line": line,
            "putaway_qty": total,
            "remaining_qty": line.received_qty - total,
        }
