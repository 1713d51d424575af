"""Catalog reference data: lookups used by every other service, plus simple maintenance."""
import logging
import uuid
from typing import Any, Dict, List, Optional, Set, Tuple, Type

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from inbound.core.enum_utils import get_enum_value
from inbound.core.exceptions import NotFoundError, ValidationError
from inbound.models.catalog import Product, Vendor, Warehouse, Location, Carrier, Dock
from inbound.schemas.catalog import (
    ProductCreate, ProductResponse,
    VendorCreate, VendorResponse,
    WarehouseCreate, WarehouseResponse,
    LocationCreate, LocationResponse,
    CarrierCreate, CarrierResponse,
    DockCreate, DockResponse,
)


logger = logging.getLogger(__name__)


# kind -> (model, entity name, create schema, response schema)
CATALOG_KINDS: Dict[str, Tuple[Type, str, Type, Type]] = {
    "products": (Product, "Product", ProductCreate, ProductResponse),
    "vendors": (Vendor, "Vendor", VendorCreate, VendorResponse),
    "warehouses": (Warehouse, "Warehouse", WarehouseCreate, WarehouseResponse),
    "locations": (Location, "Location", LocationCreate, LocationResponse),
    "carriers": (Carrier, "Carrier", CarrierCreate, CarrierResponse),
    "docks": (Dock, "Dock", DockCreate, DockResponse),
}


class CatalogService:
    """Read-mostly access to products, vendors, warehouses, locations, carriers and docks."""

    def __init__(self, db: AsyncSession):
        self.db = db

    @staticmethod
    def resolve_kind(kind: str) -> Tuple[Type, str, Type, Type]:
        try:
            return CATALOG_KINDS[kind]
        except KeyError:
            raise NotFoundError("CatalogKind", kind)

    # ==================== Generic ====================

    async def get(self, model: Type, entity_id: uuid.UUID, entity: str):
        obj = await self.db.get(model, entity_id)
        if obj is None:
            raise NotFoundError(entity, entity_id)
        return obj

    async def list(
        self,
        kind: str,
        page: int,
        limit: int,
        search: Optional[str] = None,
        warehouse_id: Optional[uuid.UUID] = None,
    ) -> Tuple[List[Any], int]:
        model, _, _, _ = self.resolve_kind(kind)
        query = select(model)
        if search:
            column = model.sku if model is Product else model.code
            query = query.where(column.ilike(f"%{search}%"))
        if warehouse_id is not None and hasattr(model, "warehouse_id"):
            query = query.where(model.warehouse_id == warehouse_id)

        total = (await self.db.execute(select(func.count()).select_from(query.subquery()))).scalar() or 0
        order = model.sku if model is Product else model.code
        result = await self.db.execute(query.order_by(order).offset((page - 1) * limit).limit(limit))
        return list(result.scalars().all()), total

    async def create(self, kind: str, data) -> Any:
        model, entity, _, _ = self.resolve_kind(kind)
        values = {k: get_enum_value(v) if k in ("status", "location_type") else v
                  for k, v in data.model_dump().items()}
        if "warehouse_id" in values:
            await self.require_reference(Warehouse, values["warehouse_id"], "Warehouse")

        obj = model(**values)
        self.db.add(obj)
        try:
            await self.db.flush()
        except IntegrityError as e:
            raise ValidationError(f"{entity} with this code already exists", {"entity": entity}) from e
        logger.info(f"Created {entity} {getattr(obj, 'sku', None) or obj.code}")
        return obj

    # ==================== Typed lookups ====================

    async def get_location(self, location_id: uuid.UUID) -> Location:
        return await self.get(Location, location_id, "Location")

    async def require_reference(self, model: Type, entity_id: uuid.UUID, entity: str):
        """Like ``get`` but a missing reference is bad input, not a missing aggregate."""
        obj = await self.db.get(model, entity_id)
        if obj is None:
            raise ValidationError(f"{entity} {entity_id} does not exist", {"entity": entity, "id": str(entity_id)})
        return obj

    async def product_sets(self, product_ids: Set[uuid.UUID]) -> Tuple[Set[uuid.UUID], Set[uuid.UUID]]:
        """Return (known ids, inactive ids) among ``product_ids``."""
        if not product_ids:
            return set(), set()
        result = await self.db.execute(
            select(Product.id, Product.is_active).where(Product.id.in_(product_ids))
        )
        rows = result.all()
        return {r.id for r in rows}, {r.id for r in rows if not r.is_active}

    async def update_location(self, location_id: uuid.UUID, data) -> Location:
        location = await self.get_location(location_id)
        for field, value in data.model_dump(exclude_unset=True).items():
            setattr(location, field, get_enum_value(value) if field == "status" else value)
        await self.db.flush()
        logger.info(f"Location {location.code} updated: status={location.status} capacity={location.capacity}")
        return location
