"""Catalog reference data API endpoints."""
from uuid import UUID
from typing import Any, Optional

from fastapi import APIRouter, Body, Query, status
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError as PydanticValidationError

from inbound.api.deps import DB, Pagination
from inbound.models.catalog import Location
from inbound.schemas.catalog import CatalogListResponse, LocationResponse, LocationUpdate
from inbound.schemas.common import PaginationMeta
from inbound.services.catalog_service import CatalogService
from inbound.services.inventory_ledger_service import InventoryLedgerService

router = APIRouter()


async def _render(db, kind: str, obj) -> dict:
    _, _, _, response_schema = CatalogService.resolve_kind(kind)
    data = response_schema.model_validate(obj)
    if isinstance(obj, Location):
        data.current_qty = await InventoryLedgerService(db).location_total(obj.id)
    return data.model_dump(mode="json", by_alias=True)


@router.get("/{kind}", response_model=CatalogListResponse)
async def list_catalog(
    kind: str,
    db: DB,
    paging: Pagination,
    search: Optional[str] = None,
    warehouse_id: Optional[UUID] = Query(None, alias="warehouseId"),
):
    """List products, vendors, warehouses, locations, carriers or docks."""
    service = CatalogService(db)
    items, total = await service.list(kind, paging.page, paging.limit, search=search, warehouse_id=warehouse_id)
    return CatalogListResponse(
        data=[await _render(db, kind, item) for item in items],
        pagination=PaginationMeta.build(paging.page, paging.limit, total),
    )


@router.post("/{kind}", status_code=status.HTTP_201_CREATED)
async def create_catalog_item(kind: str, db: DB, payload: dict[str, Any] = Body(...)):
    """Create a catalog row. The body is validated against the kind's create schema."""
    _, _, create_schema, _ = CatalogService.resolve_kind(kind)
    try:
        data = create_schema.model_validate(payload)
    except PydanticValidationError as e:
        raise RequestValidationError(e.errors()) from e
    obj = await CatalogService(db).create(kind, data)
    return await _render(db, kind, obj)


@router.get("/{kind}/{item_id}")
async def get_catalog_item(kind: str, item_id: UUID, db: DB):
    model, entity, _, _ = CatalogService.resolve_kind(kind)
    obj = await CatalogService(db).get(model, item_id, entity)
    return await _render(db, kind, obj)


@router.patch("/locations/{location_id}", response_model=LocationResponse)
async def update_location(location_id: UUID, data: LocationUpdate, db: DB):
    """Change a location's status or capacity."""
    location = await CatalogService(db).update_location(location_id, data)
    return await _render(db, "locations", location)
