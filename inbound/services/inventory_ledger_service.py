"""
Inventory ledger service.

Appends signed entries and derives balances from them. Nothing here ever
updates or deletes a ledger row; the ORM listeners in
``inbound.core.immutability`` refuse it anyway.
"""
import logging
import uuid
from typing import List, Optional, Tuple

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from inbound.core.exceptions import NotFoundError, ValidationError
from inbound.models.catalog import Location
from inbound.models.inventory import InventoryLedgerEntry, LedgerReason


logger = logging.getLogger(__name__)


def _lot_clause(lot_number: Optional[str]):
    if lot_number is None:
        return InventoryLedgerEntry.lot_number.is_(None)
    return InventoryLedgerEntry.lot_number == lot_number


class InventoryLedgerService:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def post(
        self,
        *,
        product_id: uuid.UUID,
        warehouse_id: uuid.UUID,
        location_id: uuid.UUID,
        lot_number: Optional[str],
        quantity_delta: int,
        reason: LedgerReason,
        receipt_id: Optional[uuid.UUID] = None,
        receipt_line_id: Optional[uuid.UUID] = None,
        reverses_entry_id: Optional[uuid.UUID] = None,
        reference: Optional[str] = None,
    ) -> InventoryLedgerEntry:
        """Append one entry. The caller owns the transaction."""
        if quantity_delta == 0:
            raise ValidationError("Ledger entries must carry a non-zero quantity")

        entry = InventoryLedgerEntry(
            product_id=product_id,
            warehouse_id=warehouse_id,
            location_id=location_id,
            lot_number=lot_number,
            quantity_delta=quantity_delta,
            reason=reason.value,
            receipt_id=receipt_id,
            receipt_line_id=receipt_line_id,
            reverses_entry_id=reverses_entry_id,
            reference=reference,
        )
        self.db.add(entry)
        await self.db.flush()
        logger.info(
            f"Ledger {reason.value} {quantity_delta:+d} product={product_id} "
            f"location={location_id} lot={lot_number} ref={reference}"
        )
        return entry

    # ==================== Balances ====================

    async def balance(self, product_id: uuid.UUID, location_id: uuid.UUID, lot_number: Optional[str]) -> int:
        """Quantity on hand for one (product, location, lot) key."""
        result = await self.db.execute(
            select(func.coalesce(func.sum(InventoryLedgerEntry.quantity_delta), 0)).where(
                InventoryLedgerEntry.product_id == product_id,
                InventoryLedgerEntry.location_id == location_id,
                _lot_clause(lot_number),
            )
        )
        return int(result.scalar() or 0)

    async def location_total(self, location_id: uuid.UUID) -> int:
        result = await self.db.execute(
            select(func.coalesce(func.sum(InventoryLedgerEntry.quantity_delta), 0))
            .where(InventoryLedgerEntry.location_id == location_id)
        )
        return int(result.scalar() or 0)

    async def line_quantity_at(self, receipt_line_id: uuid.UUID, location_id: uuid.UUID) -> int:
        """Net quantity a receipt line has at ``location_id``."""
        result = await self.db.execute(
            select(func.coalesce(func.sum(InventoryLedgerEntry.quantity_delta), 0)).where(
                InventoryLedgerEntry.receipt_line_id == receipt_line_id,
                InventoryLedgerEntry.location_id == location_id,
            )
        )
        return int(result.scalar() or 0)

    async def put_away_quantity(self, receipt_line_id: uuid.UUID, receiving_location_id: uuid.UUID) -> int:
        """Net quantity of a receipt line that has left the receiving location."""
        result = await self.db.execute(
            select(func.coalesce(func.sum(InventoryLedgerEntry.quantity_delta), 0)).where(
                InventoryLedgerEntry.receipt_line_id == receipt_line_id,
                InventoryLedgerEntry.location_id != receiving_location_id,
            )
        )
        return int(result.scalar() or 0)

    async def balances(
        self,
        product_id: Optional[uuid.UUID] = None,
        location_id: Optional[uuid.UUID] = None,
        lot_number: Optional[str] = None,
        warehouse_id: Optional[uuid.UUID] = None,
        include_zero: bool = False,
    ) -> List[Tuple[uuid.UUID, uuid.UUID, Optional[str], int]]:
        qty = func.sum(InventoryLedgerEntry.quantity_delta).label("quantity")
        query = select(
            InventoryLedgerEntry.product_id,
            InventoryLedgerEntry.location_id,
            InventoryLedgerEntry.lot_number,
            qty,
        ).group_by(
            InventoryLedgerEntry.product_id,
            InventoryLedgerEntry.location_id,
            InventoryLedgerEntry.lot_number,
        )
        if product_id is not None:
            query = query.where(InventoryLedgerEntry.product_id == product_id)
        if location_id is not None:
            query = query.where(InventoryLedgerEntry.location_id == location_id)
        if lot_number is not None:
            query = query.where(InventoryLedgerEntry.lot_number == lot_number)
        if warehouse_id is not None:
            query = query.where(InventoryLedgerEntry.warehouse_id == warehouse_id)
        if not include_zero:
            query = query.having(func.sum(InventoryLedgerEntry.quantity_delta) != 0)

        result = await self.db.execute(query)
        return [(r.product_id, r.location_id, r.lot_number, int(r.quantity)) for r in result.all()]

    # ==================== Entries ====================

    async def get_entry(self, entry_id: uuid.UUID) -> InventoryLedgerEntry:
        entry = await self.db.get(InventoryLedgerEntry, entry_id)
        if entry is None:
            raise NotFoundError("InventoryLedgerEntry", entry_id)
        return entry

    async def list_entries(
        self,
        page: int,
        limit: int,
        product_id: Optional[uuid.UUID] = None,
        location_id: Optional[uuid.UUID] = None,
        lot_number: Optional[str] = None,
        receipt_id: Optional[uuid.UUID] = None,
        receipt_line_id: Optional[uuid.UUID] = None,
        reason: Optional[str] = None,
    ) -> Tuple[List[InventoryLedgerEntry], int]:
        query = select(InventoryLedgerEntry)
        if product_id is not None:
            query = query.where(InventoryLedgerEntry.product_id == product_id)
        if location_id is not None:
            query = query.where(InventoryLedgerEntry.location_id == location_id)
        if lot_number is not None:
            query = query.where(InventoryLedgerEntry.lot_number == lot_number)
        if receipt_id is not None:
            query = query.where(InventoryLedgerEntry.receipt_id == receipt_id)
        if receipt_line_id is not None:
            query = query.where(InventoryLedgerEntry.receipt_line_id == receipt_line_id)
        if reason:
            query = query.where(InventoryLedgerEntry.reason == reason.upper())

        total = (await self.db.execute(select(func.count()).select_from(query.subquery()))).scalar() or 0
        result = await self.db.execute(
            query.order_by(InventoryLedgerEntry.created_at.desc(), InventoryLedgerEntry.id)
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    async def reverse(self, entry_id: uuid.UUID, reason: Optional[str] = None) -> InventoryLedgerEntry:
        """
        Append the negation of ``entry_id``.

        Raises:
            NotFoundError: entry does not exist
            ValidationError: entry is itself a reversal, was already
                reversed, or the reversal would leave a negative balance
        """
        entry = await self.get_entry(entry_id)
        if entry.reason == LedgerReason.REVERSAL.value:
            raise ValidationError("A reversal entry cannot itself be reversed", {"entryId": str(entry_id)})

        # Serialize postings to this location while the balance is checked
        await self.db.execute(select(Location.id).where(Location.id == entry.location_id).with_for_update())

        already = await self.db.execute(
            select(InventoryLedgerEntry.id).where(InventoryLedgerEntry.reverses_entry_id == entry.id)
        )
        if already.scalar_one_or_none() is not None:
            raise ValidationError("Entry has already been reversed", {"entryId": str(entry_id)})

        current = await self.balance(entry.product_id, entry.location_id, entry.lot_number)
        if current - entry.quantity_delta < 0:
            raise ValidationError(
                "Reversal would drive the balance negative",
                {"entryId": str(entry_id), "balance": current, "delta": -entry.quantity_delta},
            )

        reversal = await self.post(
            product_id=entry.product_id,
            warehouse_id=entry.warehouse_id,
            location_id=entry.location_id,
            lot_number=entry.lot_number,
            quantity_delta=-entry.quantity_delta,
            reason=LedgerReason.REVERSAL,
            receipt_id=entry.receipt_id,
            receipt_line_id=entry.receipt_line_id,
            reverses_entry_id=entry.id,
            reference=reason[:50] if reason else entry.reference,
        )
        logger.info(f"Reversed ledger entry {entry.id} with {reversal.id}")
        return reversal
