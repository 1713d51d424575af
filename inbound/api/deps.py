from typing import Annotated, Any, Optional

from fastapi import Depends, Header, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from inbound.config import settings
from inbound.database import get_db
from inbound.services.idempotency_service import IdempotencyService


DB = Annotated[AsyncSession, Depends(get_db)]


class PageParams:
    """``page`` / ``limit`` query parameters shared by every list endpoint."""

    def __init__(
        self,
        page: int = Query(1, ge=1),
        limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    ):
        self.page = page
        self.limit = limit


Pagination = Annotated[PageParams, Depends(PageParams)]


class IdempotentRequest:
    """
    Replays the stored response of a retried mutation.

    Endpoints call ``replay`` before doing any work and ``remember`` with
    the response they are about to return. Both are no-ops when the client
    sent no ``Idempotency-Key`` header.
    """

    def __init__(
        self,
        db: DB,
        key: Optional[str] = Header(None, alias="Idempotency-Key", max_length=200),
    ):
        self.key = key
        self.service = IdempotencyService(db)

    async def replay(self, scope: str, payload: Any) -> Optional[JSONResponse]:
        if not self.key:
            return None
        stored = await self.service.lookup(self.key, scope, payload)
        if stored is None:
            return None
        status_code, body = stored
        return JSONResponse(status_code=status_code, content=body, headers={"Idempotent-Replay": "true"})

    async def remember(self, scope: str, payload: Any, response: BaseModel, status_code: int = 200) -> BaseModel:
        if self.key:
            body = response.model_dump(mode="json", by_alias=True)
            await self.service.store(self.key, scope, payload, status_code, body)
        return response


Idempotency = Annotated[IdempotentRequest, Depends(IdempotentRequest)]
