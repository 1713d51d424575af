"""Schemas shared by every resource: pagination envelope and reconciliation issues."""
import math
from typing import List, Optional

from inbound.schemas.base import BaseResponseSchema


class PaginationMeta(BaseResponseSchema):
    page: int
    limit: int
    total: int
    pages: int

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "PaginationMeta":
        return cls(page=page, limit=limit, total=total, pages=math.ceil(total / limit) if limit else 0)


class IssueResponse(BaseResponseSchema):
    """One reconciliation warning or error."""
    line_number: Optional[int] = None
    code: str
    severity: str
    message: str


class ValidationResultResponse(BaseResponseSchema):
    """Result of a dry-run validation; never implies a state change."""
    valid: bool
    warnings: List[IssueResponse] = []
    errors: List[IssueResponse] = []
    status: Optional[str] = None