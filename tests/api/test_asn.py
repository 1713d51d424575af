from datetime import datetime, timedelta, timezone

from tests.factories import arrived_asn, open_po, start_receiving


async def _create(client, payload):
    resp = await client.post("/api/asn", json=payload)
    assert resp.status_code == 201, resp.text
    return resp.json()


async def test_lines_derived_from_purchase_order(client, world):
    po = await open_po(client, world, [(world.widget_id, 10), (world.gadget_id, 4)])
    asn = await _create(client, {"purchaseOrderId": po["id"]})

    assert asn["status"] == "PENDING"
    assert asn["vendorId"] == str(world.vendor_id)
    assert asn["warehouseId"] == str(world.warehouse_id)
    assert [(line["quantityExpected"], line["poLineNumber"]) for line in asn["lines"]] == [(10, 1), (4, 2)]
    assert asn["totalExpected"] == 14


async def test_validation_errors_keep_asn_pending(client, world):
    po = await open_po(client, world, [(world.widget_id, 10)])
    asn = await _create(client, {
        "purchaseOrderId": po["id"],
        "lines": [
            {"productId": str(world.widget_id), "quantityExpected": 0},
            {"productId": str(world.gadget_id), "quantityExpected": 5},
        ],
    })

    resp = await client.post(f"/api/asn/{asn['id']}/validate")
    assert resp.status_code == 200
    result = resp.json()
    assert result["valid"] is False
    assert result["status"] == "PENDING"
    codes = {(e["lineNumber"], e["code"]) for e in result["errors"]}
    assert (1, "ZERO_EXPECTED") in codes
    assert (2, "NOT_ON_ORDER") in codes


async def test_quantity_differing_from_order_is_a_warning(client, world):
    po = await open_po(client, world, [(world.widget_id, 10)])
    asn = await _create(client, {
        "purchaseOrderId": po["id"],
        "lines": [{"productId": str(world.widget_id), "quantityExpected": 12}],
    })
    result = (await client.post(f"/api/asn/{asn['id']}/validate")).json()
    assert result["valid"] is True
    assert result["status"] == "VALIDATED"
    assert [w["code"] for w in result["warnings"]] == ["ORDER_VARIANCE"]


async def test_mismatched_vendor_rejected(client, world):
    po = await open_po(client, world, [(world.widget_id, 10)])
    resp = await client.post("/api/asn", json={
        "purchaseOrderId": po["id"],
        "warehouseId": str(world.other_warehouse_id),
    })
    assert resp.status_code == 400


async def test_editing_stops_once_receiving(client, world):
    po = await open_po(client, world, [(world.widget_id, 10)])
    asn = await arrived_asn(client, po)

    resp = await client.patch(f"/api/asn/{asn['id']}", json={"notes": "dock 4"})
    assert resp.status_code == 200
    assert resp.json()["notes"] == "dock 4"

    await start_receiving(client, asn, world.receiving_id)
    resp = await client.patch(f"/api/asn/{asn['id']}", json={"notes": "late"})
    assert resp.status_code == 422
    resp = await client.post(f"/api/asn/{asn['id']}/lines", json={
        "productId": str(world.gadget_id), "quantityExpected": 1,
    })
    assert resp.status_code == 422


async def test_schedule_and_transit(client, world):
    po = await open_po(client, world, [(world.widget_id, 10)])
    asn = await _create(client, {"purchaseOrderId": po["id"]})
    await client.post(f"/api/asn/{asn['id']}/validate")

    appointment = datetime.now(timezone.utc) + timedelta(hours=3)
    resp = await client.post(f"/api/asn/{asn['id']}/schedule", json={
        "dockId": str(world.dock_id), "appointmentAt": appointment.isoformat(),
    })
    assert resp.status_code == 200, resp.text
    assert resp.json()["status"] == "SCHEDULED"
    assert resp.json()["dockId"] == str(world.dock_id)

    resp = await client.patch(f"/api/asn/{asn['id']}/in-transit", json={"trackingNumber": "1Z999"})
    assert resp.json()["status"] == "IN_TRANSIT"
    assert resp.json()["trackingNumber"] == "1Z999"

    resp = await client.patch(f"/api/asn/{asn['id']}/start-receiving")
    assert resp.status_code == 422

    resp = await client.patch(f"/api/asn/{asn['id']}/arrived")
    assert resp.json()["status"] == "ARRIVED"
    assert resp.json()["arrivedAt"] is not None


async def test_receive_through_asn_and_close_with_variance(client, world):
    po = await open_po(client, world, [(world.widget_id, 10)])
    asn = await arrived_asn(client, po)
    await start_receiving(client, asn, world.receiving_id)

    resp = await client.post(f"/api/asn/{asn['id']}/receive", json={
        "lines": [{"lineId": asn["lines"][0]["id"], "quantityReceived": 7}],
    })
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["asn"]["status"] == "RECEIVING"
    assert body["asn"]["totalReceived"] == 0
    assert [w["code"] for w in body["warnings"]] == ["QUANTITY_VARIANCE"]

    resp = await client.patch(f"/api/asn/{asn['id']}/close")
    assert resp.status_code == 422
    assert resp.json()["code"] == "VarianceNotAccepted"
    assert resp.json()["details"]["variances"][0]["variance"] == -3

    resp = await client.patch(f"/api/asn/{asn['id']}/close", json={
        "acceptVariance": True, "closeNotes": "3 short, vendor notified",
    })
    assert resp.status_code == 200, resp.text
    closed = resp.json()
    assert closed["status"] == "CLOSED"
    assert closed["varianceAccepted"] is True
    assert closed["totalReceived"] == 7
    assert "vendor notified" in closed["notes"]

    receipts = (await client.get("/api/receiving/receipts", params={"asnId": asn["id"]})).json()
    assert receipts["data"][0]["status"] == "COMPLETED"
    po = (await client.get(f"/api/purchase-orders/{po['id']}")).json()
    assert po["totalQtyReceived"] == 7


async def test_receive_without_session_rejected(client, world):
    po = await open_po(client, world, [(world.widget_id, 10)])
    asn = await arrived_asn(client, po)
    resp = await client.post(f"/api/asn/{asn['id']}/receive", json={
        "lines": [{"lineId": asn["lines"][0]["id"], "quantityReceived": 1}],
    })
    assert resp.status_code == 422
    assert resp.json()["code"] == "InvalidState"


async def test_cancel_with_active_session(client, world):
    po = await open_po(client, world, [(world.widget_id, 10)])
    asn = await arrived_asn(client, po)
    receipt = await start_receiving(client, asn, world.receiving_id)

    resp = await client.delete(f"/api/asn/{asn['id']}")
    assert resp.status_code == 200, resp.text
    assert resp.json()["status"] == "CANCELLED"

    stored = (await client.get(f"/api/receiving/receipts/{receipt['id']}")).json()
    assert stored["status"] == "CANCELLED"


async def test_cancel_after_commit_rejected(client, world):
    po = await open_po(client, world, [(world.widget_id, 10)])
    asn = await arrived_asn(client, po)
    receipt = await start_receiving(client, asn, world.receiving_id)
    await client.post(f"/api/receiving/receipts/{receipt['id']}/receive", json={
        "lines": [{"lineId": receipt["lines"][0]["id"], "quantityReceived": 10}],
    })
    await client.post(f"/api/receiving/receipts/{receipt['id']}/complete")

    resp = await client.delete(f"/api/asn/{asn['id']}")
    assert resp.status_code == 422


async def test_list_filters_and_dashboards(client, world):
    po = await open_po(client, world, [(world.widget_id, 10)])
    tomorrow = datetime.now(timezone.utc).replace(hour=12, minute=0, second=0, microsecond=0) + timedelta(days=1)
    await _create(client, {"purchaseOrderId": po["id"], "expectedArrival": tomorrow.isoformat()})
    await arrived_asn(client, po)

    listed = (await client.get("/api/asn", params={"status": "ARRIVED"})).json()
    assert listed["pagination"]["total"] == 1
    listed = (await client.get("/api/asn", params={"purchaseOrderId": po["id"]})).json()
    assert listed["pagination"]["total"] == 2

    stats = (await client.get("/api/asn/stats/summary")).json()
    assert stats["total"] == 2
    assert stats["byStatus"]["PENDING"] == 1
    assert stats["byStatus"]["ARRIVED"] == 1

    start = datetime.now(timezone.utc).date()
    calendar = (await client.get("/api/asn/calendar", params={
        "startDate": start.isoformat(), "endDate": (start + timedelta(days=3)).isoformat(),
    })).json()
    days = {entry["day"]: entry["count"] for entry in calendar}
    assert days.get(tomorrow.date().isoformat()) == 1

    resp = await client.get("/api/asn/calendar", params={
        "startDate": start.isoformat(), "endDate": (start - timedelta(days=1)).isoformat(),
    })
    assert resp.status_code == 400


async def test_required_line_field_cannot_be_cleared(client, world):
    po = await open_po(client, world, [(world.widget_id, 10)])
    asn = await _create(client, {"purchaseOrderId": po["id"]})
    line = asn["lines"][0]

    resp = await client.patch(f"/api/asn/{asn['id']}/lines/{line['id']}", json={"quantityExpected": None})
    assert resp.status_code == 400
    body = resp.json()
    assert body["kind"] == "ValidationError"
    assert body["details"]["fields"] == ["quantityExpected"]

    stored = (await client.get(f"/api/asn/{asn['id']}")).json()
    assert stored["lines"][0]["quantityExpected"] == 10
    assert stored["version"] == asn["version"]

    # Optional fields may still be cleared
    resp = await client.patch(f"/api/asn/{asn['id']}/lines/{line['id']}", json={"lotNumber": None})
    assert resp.status_code == 200, resp.text
