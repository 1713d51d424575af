"""
Issues PO, ASN and receipt numbers.

Numbers come from a locked counter row in the caller's transaction, so two
concurrent creates never share a number and a rolled back create hands its
number back.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from inbound.models.document_sequence import DocumentSequence, DocumentType


logger = logging.getLogger(__name__)


# (digits, restarts yearly)
NUMBER_FORMATS = {
    DocumentType.PURCHASE_ORDER.value: (6, True),
    DocumentType.ASN.value: (8, False),
    DocumentType.RECEIPT.value: (6, True),
}


class DocumentSequenceService:

    def __init__(self, db: AsyncSession):
        self.db = db

    @staticmethod
    def period_for(document_type: str, now: Optional[datetime] = None) -> str:
        _, yearly = NUMBER_FORMATS[document_type]
        if not yearly:
            return "ALL"
        return str((now or datetime.now(timezone.utc)).year)

    async def get_next_number(self, document_type: str) -> str:
        doc_type = document_type.upper()
        if doc_type not in NUMBER_FORMATS:
            raise ValueError(
                f"Unknown document type '{doc_type}', expected one of {', '.join(NUMBER_FORMATS)}"
            )

        counter = await self._locked_counter(doc_type, self.period_for(doc_type))
        number = counter.advance()
        await self.db.flush()

        logger.debug(f"Issued {number}")
        return number

    async def _locked_counter(self, document_type: str, period: str) -> DocumentSequence:
        query = (
            select(DocumentSequence)
            .where(DocumentSequence.document_type == document_type, DocumentSequence.period == period)
            .with_for_update()
        )
        counter = (await self.db.execute(query)).scalar_one_or_none()
        if counter is not None:
            return counter

        # First number of the period: insert the row, then take the lock on it
        self.db.add(DocumentSequence(
            document_type=document_type,
            period=period,
            last_value=0,
            width=NUMBER_FORMATS[document_type][0],
        ))
        await self.db.flush()
        return (await self.db.execute(query)).scalar_one()
