"""Seed data and API shortcuts shared by the test modules."""
from types import SimpleNamespace
from typing import Iterable, Optional, Tuple
import uuid

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from inbound.models.catalog import (
    Dock,
    Location,
    LocationStatus,
    LocationType,
    Product,
    Vendor,
    Warehouse,
)


async def seed_world(session: AsyncSession) -> SimpleNamespace:
    warehouse = Warehouse(code="WH1", name="Main Warehouse")
    other_warehouse = Warehouse(code="WH2", name="Overflow Warehouse")
    vendor = Vendor(code="ACME", name="Acme Supplies")
    widget = Product(sku="WIDGET", name="Widget", uom="EA")
    gadget = Product(sku="GADGET", name="Gadget", uom="EA")
    retired = Product(sku="RETIRED", name="Retired part", uom="EA", is_active=False)
    session.add_all([warehouse, other_warehouse, vendor, widget, gadget, retired])
    await session.flush()

    def location(code, location_type=LocationType.STORAGE, status=LocationStatus.ACTIVE,
                 capacity=None, enforce=False, warehouse_id=None):
        return Location(
            warehouse_id=warehouse_id or warehouse.id,
            code=code,
            location_type=location_type.value,
            status=status.value,
            capacity=capacity,
            enforce_capacity=enforce,
        )

    receiving = location("RCV-01", LocationType.RECEIVING)
    storage = location("A-01-01", capacity=500, enforce=True)
    small_bin = location("A-01-02", capacity=50, enforce=True)
    unlimited = location("B-01-01")
    blocked = location("C-01-01", status=LocationStatus.BLOCKED)
    remote = location("Z-01-01", warehouse_id=other_warehouse.id)
    dock = Dock(warehouse_id=warehouse.id, code="D1")
    session.add_all([receiving, storage, small_bin, unlimited, blocked, remote, dock])
    await session.flush()

    return SimpleNamespace(
        warehouse_id=warehouse.id,
        other_warehouse_id=other_warehouse.id,
        vendor_id=vendor.id,
        widget_id=widget.id,
        gadget_id=gadget.id,
        retired_id=retired.id,
        receiving_id=receiving.id,
        storage_id=storage.id,
        small_bin_id=small_bin.id,
        unlimited_id=unlimited.id,
        blocked_id=blocked.id,
        remote_id=remote.id,
        dock_id=dock.id,
    )


# ==================== API shortcuts ====================

async def create_po(client: httpx.AsyncClient, world, lines: Iterable[Tuple[uuid.UUID, int]]) -> dict:
    payload = {
        "vendorId": str(world.vendor_id),
        "warehouseId": str(world.warehouse_id),
        "lines": [{"productId": str(p), "qtyOrdered": q, "unitCost": "2.50"} for p, q in lines],
    }
    resp = await client.post("/api/purchase-orders", json=payload)
    assert resp.status_code == 201, resp.text
    return resp.json()


async def open_po(client: httpx.AsyncClient, world, lines: Iterable[Tuple[uuid.UUID, int]]) -> dict:
    """Create a purchase order and walk it to OPEN."""
    po = await create_po(client, world, lines)
    for action in ("submit", "approve", "send", "confirm", "release"):
        resp = await client.post(f"/api/purchase-orders/{po['id']}/{action}")
        assert resp.status_code == 200, resp.text
        po = resp.json()
    assert po["status"] == "OPEN"
    return po


async def arrived_asn(client: httpx.AsyncClient, po: dict, lines: Optional[list] = None) -> dict:
    """ASN against ``po`` (lines derived from the PO unless given), validated and checked in."""
    payload = {"purchaseOrderId": po["id"], "lines": lines or []}
    resp = await client.post("/api/asn", json=payload)
    assert resp.status_code == 201, resp.text
    asn = resp.json()

    resp = await client.post(f"/api/asn/{asn['id']}/validate")
    assert resp.status_code == 200, resp.text
    assert resp.json()["valid"] is True, resp.text

    resp = await client.patch(f"/api/asn/{asn['id']}/arrived")
    assert resp.status_code == 200, resp.text
    return resp.json()


async def start_receiving(client: httpx.AsyncClient, asn: dict, receiving_id: uuid.UUID) -> dict:
    resp = await client.patch(
        f"/api/asn/{asn['id']}/start-receiving",
        json={"receivingLocationId": str(receiving_id)},
    )
    assert resp.status_code == 200, resp.text
    return resp.json()["receipt"]


async def receive(client: httpx.AsyncClient, receipt: dict, quantities, **extra) -> httpx.Response:
    """Scan ``quantities`` (one per receipt line, in line order) against a session."""
    lines = [
        {"lineId": line["id"], "quantityReceived": qty, **extra}
        for line, qty in zip(receipt["lines"], quantities)
    ]
    return await client.post(f"/api/receiving/receipts/{receipt['id']}/receive", json={"lines": lines})


async def received_session(client: httpx.AsyncClient, world, ordered: int, received: int,
                           accept_variance: bool = False) -> Tuple[dict, dict]:
    """PO + ASN for one widget line, scanned and completed. Returns (po, completed receipt)."""
    po = await open_po(client, world, [(world.widget_id, ordered)])
    asn = await arrived_asn(client, po)
    receipt = await start_receiving(client, asn, world.receiving_id)
    resp = await receive(client, receipt, [received])
    assert resp.status_code == 200, resp.text
    resp = await client.post(
        f"/api/receiving/receipts/{receipt['id']}/complete",
        json={"acceptVariance": accept_variance},
    )
    assert resp.status_code == 200, resp.text
    return po, resp.json()["receipt"]
