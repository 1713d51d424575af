"""
Receiving SLA monitor.

Flags ASNs and receipt sessions that have sat in RECEIVING longer than
RECEIVING_SLA_MINUTES. Flagging only stamps ``sla_breached_at``; nothing
is cancelled or completed.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from inbound.config import settings
from inbound.database import get_db_session
from inbound.models.asn import AdvanceShipNotice, ASNStatus
from inbound.models.receipt import Receipt, ReceiptStatus

logger = logging.getLogger(__name__)


async def _flag(session: AsyncSession, model, number_column, started_column, status: str,
                cutoff: datetime, now: datetime, label: str) -> int:
    result = await session.execute(
        select(model.id, number_column, started_column).where(
            model.status == status,
            started_column.is_not(None),
            started_column < cutoff,
            model.sla_breached_at.is_(None),
        )
    )
    rows = result.all()
    if not rows:
        return 0

    # Core UPDATE: flagging must not bump the optimistic version clients hold
    await session.execute(
        update(model)
        .where(model.id.in_([row[0] for row in rows]))
        .values(sla_breached_at=now)
        .execution_options(synchronize_session=False)
    )
    for _, number, started in rows:
        logger.warning(f"{label} {number} has been RECEIVING since {started} (SLA {settings.RECEIVING_SLA_MINUTES} min)")
    return len(rows)


async def flag_stale_receiving(
    session: Optional[AsyncSession] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Stamp ``sla_breached_at`` on ASNs and receipts stuck in RECEIVING.

    Runs in its own session unless one is passed in.
    """
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(minutes=settings.RECEIVING_SLA_MINUTES)

    async def run(db: AsyncSession) -> Dict[str, Any]:
        asns = await _flag(
            db, AdvanceShipNotice, AdvanceShipNotice.asn_number, AdvanceShipNotice.receiving_started_at,
            ASNStatus.RECEIVING.value, cutoff, now, "ASN",
        )
        receipts = await _flag(
            db, Receipt, Receipt.receipt_number, Receipt.started_at,
            ReceiptStatus.RECEIVING.value, cutoff, now, "Receipt",
        )
        return {"asns_flagged": asns, "receipts_flagged": receipts, "cutoff": cutoff.isoformat()}

    if session is not None:
        return await run(session)
    async with get_db_session() as db:
        return await run(db)
