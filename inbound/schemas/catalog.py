"""Pydantic schemas for catalog reference data."""
from datetime import datetime
from typing import Optional, List
from uuid import UUID

from pydantic import Field, field_validator

from inbound.core.enum_utils import normalize_to_uppercase
from inbound.models.catalog import LocationType, LocationStatus, DockStatus
from inbound.schemas.base import BaseResponseSchema, BaseCreateSchema, BaseUpdateSchema
from inbound.schemas.common import PaginationMeta


# ==================== Product ====================

class ProductCreate(BaseCreateSchema):
    sku: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=200)
    uom: str = Field("EA", max_length=10)
    shelf_life_days: Optional[int] = Field(None, ge=0)
    is_active: bool = True

    @field_validator("sku")
    @classmethod
    def upper_sku(cls, v: str) -> str:
        return normalize_to_uppercase(v)


class ProductResponse(BaseResponseSchema):
    id: UUID
    sku: str
    name: str
    uom: str
    shelf_life_days: Optional[int] = None
    is_active: bool
    created_at: datetime


# ==================== Vendor / Warehouse / Carrier ====================

class CodeNameCreate(BaseCreateSchema):
    code: str = Field(..., min_length=1, max_length=30)
    name: str = Field(..., min_length=1, max_length=200)

    @field_validator("code")
    @classmethod
    def upper_code(cls, v: str) -> str:
        return normalize_to_uppercase(v)


class VendorCreate(CodeNameCreate):
    is_active: bool = True


class WarehouseCreate(CodeNameCreate):
    code: str = Field(..., min_length=1, max_length=20)
    is_active: bool = True


class CarrierCreate(CodeNameCreate):
    pass


class VendorResponse(BaseResponseSchema):
    id: UUID
    code: str
    name: str
    is_active: bool
    created_at: datetime


class WarehouseResponse(VendorResponse):
    pass


class CarrierResponse(BaseResponseSchema):
    id: UUID
    code: str
    name: str
    created_at: datetime


# ==================== Location ====================

class LocationCreate(BaseCreateSchema):
    warehouse_id: UUID
    code: str = Field(..., min_length=1, max_length=50)
    location_type: LocationType = LocationType.STORAGE
    status: LocationStatus = LocationStatus.ACTIVE
    capacity: Optional[int] = Field(None, ge=0)
    enforce_capacity: bool = False

    @field_validator("code")
    @classmethod
    def upper_code(cls, v: str) -> str:
        return normalize_to_uppercase(v)


class LocationUpdate(BaseUpdateSchema):
    status: Optional[LocationStatus] = None
    capacity: Optional[int] = Field(None, ge=0)
    enforce_capacity: Optional[bool] = None


class LocationResponse(BaseResponseSchema):
    id: UUID
    warehouse_id: UUID
    code: str
    location_type: str
    status: str
    capacity: Optional[int] = None
    enforce_capacity: bool
    current_qty: Optional[int] = None
    created_at: datetime
    updated_at: datetime


# ==================== Dock ====================

class DockCreate(BaseCreateSchema):
    warehouse_id: UUID
    code: str = Field(..., min_length=1, max_length=20)
    status: DockStatus = DockStatus.AVAILABLE


class DockResponse(BaseResponseSchema):
    id: UUID
    warehouse_id: UUID
    code: str
    status: str
    created_at: datetime


class CatalogListResponse(BaseResponseSchema):
    """Paginated list of any catalog kind."""
    data: List[dict]
    pagination: PaginationMeta
