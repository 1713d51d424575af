from fastapi import APIRouter

from inbound.api.v1.endpoints import (
    catalog,
    purchase_orders,
    asn,
    receiving,
    inventory,
)


# Create main API router
api_router = APIRouter(prefix="/api")

# ==================== Catalog ====================
api_router.include_router(
    catalog.router,
    prefix="/catalog",
    tags=["Catalog"]
)

# ==================== Procurement ====================
api_router.include_router(
    purchase_orders.router,
    prefix="/purchase-orders",
    tags=["Purchase Orders"]
)

# ==================== Inbound ====================
api_router.include_router(
    asn.router,
    prefix="/asn",
    tags=["ASN"]
)
api_router.include_router(
    receiving.router,
    prefix="/receiving",
    tags=["Receiving"]
)

# ==================== Inventory ====================
api_router.include_router(
    inventory.router,
    prefix="/inventory",
    tags=["Inventory Ledger"]
)
