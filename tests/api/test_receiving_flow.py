"""End-to-end receiving through the HTTP API: PO -> ASN -> session -> ledger -> putaway."""
from tests.factories import (
    arrived_asn,
    create_po,
    open_po,
    receive,
    received_session,
    start_receiving,
)


async def _balance(client, location_id, product_id):
    resp = await client.get(
        "/api/inventory/balances",
        params={"locationId": str(location_id), "productId": str(product_id)},
    )
    assert resp.status_code == 200, resp.text
    return resp.json()["totalQuantity"]


async def _session(client, world, ordered):
    po = await open_po(client, world, [(world.widget_id, ordered)])
    asn = await arrived_asn(client, po)
    receipt = await start_receiving(client, asn, world.receiving_id)
    return po, asn, receipt


class TestScenarios:

    async def test_exact_receipt_completes_without_accept(self, client, world):
        po, asn, receipt = await _session(client, world, 100)

        resp = await receive(client, receipt, [100])
        assert resp.status_code == 200, resp.text
        line = resp.json()["receipt"]["lines"][0]
        assert line["status"] == "COMPLETE"
        assert line["variance"] == 0
        assert resp.json()["receipt"]["status"] == "RECEIVING"

        resp = await client.post(f"/api/receiving/receipts/{receipt['id']}/complete")
        assert resp.status_code == 200, resp.text
        body = resp.json()
        assert body["receipt"]["status"] == "COMPLETED"
        assert len(body["ledgerEntryIds"]) == 1
        assert body["variances"] == []

        assert await _balance(client, world.receiving_id, world.widget_id) == 100
        po = (await client.get(f"/api/purchase-orders/{po['id']}")).json()
        assert po["status"] == "RECEIVED"
        assert po["lines"][0]["qtyReceived"] == 100
        asn = (await client.get(f"/api/asn/{asn['id']}")).json()
        assert asn["status"] == "RECEIVED"
        assert asn["totalReceived"] == 100

    async def test_short_receipt_needs_accept_variance(self, client, world):
        po, asn, receipt = await _session(client, world, 100)

        resp = await receive(client, receipt, [85])
        line = resp.json()["receipt"]["lines"][0]
        assert line["status"] == "PARTIAL"
        assert line["variance"] == -15
        assert line["openQty"] == 15

        resp = await client.post(f"/api/receiving/receipts/{receipt['id']}/complete")
        assert resp.status_code == 422
        assert resp.json()["code"] == "OpenLinesRemain"
        assert await _balance(client, world.receiving_id, world.widget_id) == 0

        resp = await client.post(
            f"/api/receiving/receipts/{receipt['id']}/complete", json={"acceptVariance": True}
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["receipt"]["varianceAccepted"] is True
        assert resp.json()["variances"][0]["variance"] == -15

        assert await _balance(client, world.receiving_id, world.widget_id) == 85
        po = (await client.get(f"/api/purchase-orders/{po['id']}")).json()
        assert po["status"] == "PARTIAL"
        assert po["totalQtyOpen"] == 15

    async def test_over_receipt_warns_and_needs_accept(self, client, world):
        _, _, receipt = await _session(client, world, 100)

        resp = await receive(client, receipt, [110])
        assert resp.status_code == 200, resp.text
        body = resp.json()
        line = body["receipt"]["lines"][0]
        assert line["status"] == "OVER_RECEIVED"
        assert line["variance"] == 10
        assert [w["code"] for w in body["warnings"]] == ["QUANTITY_VARIANCE"]
        assert body["warnings"][0]["severity"] == "WARNING"

        report = (await client.get(f"/api/receiving/receipts/{receipt['id']}/reconciliation")).json()
        assert report["errors"] == []
        assert report["requiresAcceptVariance"] is True
        assert report["canComplete"] is False

        resp = await client.post(f"/api/receiving/receipts/{receipt['id']}/complete")
        assert resp.status_code == 422
        assert resp.json()["code"] == "VarianceNotAccepted"

        resp = await client.post(
            f"/api/receiving/receipts/{receipt['id']}/complete", json={"acceptVariance": True}
        )
        assert resp.status_code == 200, resp.text
        assert await _balance(client, world.receiving_id, world.widget_id) == 110

    async def test_putaway_over_capacity_writes_nothing(self, client, world):
        _, receipt = await received_session(client, world, 60, 60)
        line = receipt["lines"][0]
        url = f"/api/receiving/receipts/{receipt['id']}/lines/{line['id']}/putaway"

        resp = await client.post(url, json={"locationId": str(world.small_bin_id), "quantity": 60})
        assert resp.status_code == 422
        assert resp.json()["code"] == "CapacityExceeded"
        assert resp.json()["details"]["capacity"] == 50

        ledger = (await client.get("/api/inventory/ledger", params={"reason": "PUTAWAY"})).json()
        assert ledger["pagination"]["total"] == 0
        stored = (await client.get(f"/api/receiving/receipts/{receipt['id']}")).json()
        assert stored["lines"][0]["putawayLocationId"] is None

    async def test_close_purchase_order_by_status(self, client, world):
        draft = await create_po(client, world, [(world.widget_id, 10)])
        resp = await client.post(f"/api/purchase-orders/{draft['id']}/close")
        assert resp.status_code == 422
        assert resp.json()["code"] == "InvalidState"

        po, _ = await received_session(client, world, 10, 10)
        resp = await client.post(f"/api/purchase-orders/{po['id']}/close", json={"force": False})
        assert resp.status_code == 200, resp.text
        assert resp.json()["status"] == "CLOSED"


class TestPutaway:

    async def test_partial_putaway_moves_stock(self, client, world):
        _, receipt = await received_session(client, world, 60, 60)
        line = receipt["lines"][0]
        url = f"/api/receiving/receipts/{receipt['id']}/lines/{line['id']}/putaway"

        resp = await client.post(url, json={"locationId": str(world.small_bin_id), "quantity": 50})
        assert resp.status_code == 200, resp.text
        body = resp.json()
        assert body["putawayQty"] == 50
        assert body["remainingQty"] == 10
        assert body["entry"]["quantityDelta"] == 50
        assert body["receiptLine"]["putawayLocationId"] == str(world.small_bin_id)

        assert await _balance(client, world.small_bin_id, world.widget_id) == 50
        assert await _balance(client, world.receiving_id, world.widget_id) == 10

        resp = await client.post(url, json={"locationId": str(world.unlimited_id), "quantity": 11})
        assert resp.status_code == 400
        assert resp.json()["kind"] == "ValidationError"

        resp = await client.post(url, json={"locationId": str(world.unlimited_id), "quantity": 10})
        assert resp.status_code == 200, resp.text
        assert resp.json()["remainingQty"] == 0
        assert await _balance(client, world.receiving_id, world.widget_id) == 0

    async def test_blocked_location_rejected(self, client, world):
        _, receipt = await received_session(client, world, 5, 5)
        line = receipt["lines"][0]
        resp = await client.post(
            f"/api/receiving/receipts/{receipt['id']}/lines/{line['id']}/putaway",
            json={"locationId": str(world.blocked_id), "quantity": 5},
        )
        assert resp.status_code == 422
        assert resp.json()["code"] == "LocationBlocked"

    async def test_other_warehouse_rejected(self, client, world):
        _, receipt = await received_session(client, world, 5, 5)
        line = receipt["lines"][0]
        resp = await client.post(
            f"/api/receiving/receipts/{receipt['id']}/lines/{line['id']}/putaway",
            json={"locationId": str(world.remote_id), "quantity": 5},
        )
        assert resp.status_code == 400

    async def test_putaway_requires_completed_session(self, client, world):
        _, _, receipt = await _session(client, world, 5)
        await receive(client, receipt, [5])
        line = receipt["lines"][0]
        resp = await client.post(
            f"/api/receiving/receipts/{receipt['id']}/lines/{line['id']}/putaway",
            json={"locationId": str(world.unlimited_id), "quantity": 5},
        )
        assert resp.status_code == 422
        assert resp.json()["code"] == "InvalidState"


class TestSessions:

    async def test_one_active_session_per_asn(self, client, world):
        _, asn, _ = await _session(client, world, 10)
        resp = await client.post(
            "/api/receiving/receipts",
            json={"asnId": asn["id"], "receivingLocationId": str(world.receiving_id)},
        )
        assert resp.status_code in (409, 422)
        assert resp.json()["kind"] == "StateError"

    async def test_cancelled_session_posts_nothing(self, client, world):
        po, asn, receipt = await _session(client, world, 10)
        await receive(client, receipt, [10])

        resp = await client.post(f"/api/receiving/receipts/{receipt['id']}/cancel", json={"reason": "wrong truck"})
        assert resp.status_code == 200, resp.text
        cancelled = resp.json()
        assert cancelled["status"] == "CANCELLED"
        line = cancelled["lines"][0]
        assert line["receivedQty"] == 0
        assert line["discardedQty"] == 10
        assert line["status"] == "PENDING"

        assert await _balance(client, world.receiving_id, world.widget_id) == 0
        asn = (await client.get(f"/api/asn/{asn['id']}")).json()
        assert asn["status"] == "ARRIVED"
        assert asn["totalReceived"] == 0
        po = (await client.get(f"/api/purchase-orders/{po['id']}")).json()
        assert po["totalQtyReceived"] == 0

        # A fresh session may be opened after cancel
        again = await start_receiving(client, asn, world.receiving_id)
        assert again["id"] != receipt["id"]

    async def test_completed_session_is_terminal(self, client, world):
        _, receipt = await received_session(client, world, 10, 10)
        resp = await receive(client, receipt, [1])
        assert resp.status_code == 422
        resp = await client.post(f"/api/receiving/receipts/{receipt['id']}/cancel")
        assert resp.status_code == 422

    async def test_scan_batch_is_atomic(self, client, world):
        po = await open_po(client, world, [(world.widget_id, 10), (world.gadget_id, 10)])
        asn = await arrived_asn(client, po)
        receipt = await start_receiving(client, asn, world.receiving_id)

        lines = [
            {"lineId": receipt["lines"][0]["id"], "quantityReceived": 4},
            {"lineId": receipt["lines"][1]["id"], "quantityReceived": 2, "damagedQty": 3},
        ]
        resp = await client.post(f"/api/receiving/receipts/{receipt['id']}/receive", json={"lines": lines})
        assert resp.status_code == 400

        stored = (await client.get(f"/api/receiving/receipts/{receipt['id']}")).json()
        assert [line["receivedQty"] for line in stored["lines"]] == [0, 0]

    async def test_stale_version_conflicts(self, client, world):
        _, _, receipt = await _session(client, world, 10)
        resp = await receive(client, receipt, [3])
        assert resp.json()["receipt"]["version"] > receipt["version"]

        line = receipt["lines"][0]
        resp = await client.post(
            f"/api/receiving/receipts/{receipt['id']}/receive",
            json={"lines": [{"lineId": line["id"], "quantityReceived": 1}], "expectedVersion": receipt["version"]},
        )
        assert resp.status_code == 409
        assert resp.json()["code"] == "ConcurrencyConflict"

    async def test_blind_receipt_against_po(self, client, world):
        po = await open_po(client, world, [(world.widget_id, 8)])
        resp = await client.post(
            "/api/receiving/receipts",
            json={"poNumber": po["poNumber"], "receivingLocationId": str(world.receiving_id)},
        )
        assert resp.status_code == 201, resp.text
        receipt = resp.json()
        assert receipt["receiptType"] == "PO"
        assert receipt["status"] == "SCHEDULED"

        resp = await client.patch(f"/api/receiving/receipts/{receipt['id']}/arrive")
        assert resp.json()["status"] == "ARRIVED"

        resp = await client.post(
            f"/api/receiving/receipts/{receipt['id']}/lines/{receipt['lines'][0]['id']}/receive",
            json={"quantityReceived": 8, "lotNumber": "LOT-7"},
        )
        assert resp.status_code == 200, resp.text

        resp = await client.post(f"/api/receiving/receipts/{receipt['id']}/complete")
        assert resp.status_code == 200, resp.text
        po = (await client.get(f"/api/purchase-orders/{po['id']}")).json()
        assert po["status"] == "RECEIVED"

        balances = (await client.get("/api/inventory/balances", params={"lotNumber": "LOT-7"})).json()
        assert balances["totalQuantity"] == 8


class TestOrderOverReceipt:

    async def _blind_session(self, client, world, po):
        resp = await client.post(
            "/api/receiving/receipts",
            json={"poNumber": po["poNumber"], "receivingLocationId": str(world.receiving_id)},
        )
        assert resp.status_code == 201, resp.text
        receipt = resp.json()
        resp = await client.patch(f"/api/receiving/receipts/{receipt['id']}/arrive")
        assert resp.status_code == 200, resp.text
        return resp.json()

    async def test_asn_expecting_more_than_ordered_needs_accept(self, client, world):
        po = await open_po(client, world, [(world.widget_id, 10)])
        asn = await arrived_asn(client, po, [{"productId": str(world.widget_id), "quantityExpected": 12}])
        receipt = await start_receiving(client, asn, world.receiving_id)

        resp = await receive(client, receipt, [12])
        assert resp.json()["receipt"]["lines"][0]["status"] == "COMPLETE"

        resp = await client.post(f"/api/receiving/receipts/{receipt['id']}/complete")
        assert resp.status_code == 422
        body = resp.json()
        assert body["code"] == "VarianceNotAccepted"
        assert body["details"]["overReceived"][0]["over"] == 2

        assert await _balance(client, world.receiving_id, world.widget_id) == 0
        stored_po = (await client.get(f"/api/purchase-orders/{po['id']}")).json()
        assert stored_po["totalQtyReceived"] == 0
        assert (await client.get(f"/api/asn/{asn['id']}")).json()["status"] == "RECEIVING"

        resp = await client.post(
            f"/api/receiving/receipts/{receipt['id']}/complete", json={"acceptVariance": True}
        )
        assert resp.status_code == 200, resp.text
        stored_po = (await client.get(f"/api/purchase-orders/{po['id']}")).json()
        assert stored_po["status"] == "RECEIVED"
        assert stored_po["lines"][0]["qtyReceived"] == 12
        assert stored_po["lines"][0]["qtyOver"] == 2
        assert stored_po["varianceAccepted"] is True

    async def test_second_blind_session_cannot_silently_exceed_order(self, client, world):
        po = await open_po(client, world, [(world.widget_id, 8)])
        first = await self._blind_session(client, world, po)
        second = await self._blind_session(client, world, po)

        for receipt in (first, second):
            resp = await receive(client, receipt, [8])
            assert resp.status_code == 200, resp.text

        resp = await client.post(f"/api/receiving/receipts/{first['id']}/complete")
        assert resp.status_code == 200, resp.text

        resp = await client.post(f"/api/receiving/receipts/{second['id']}/complete")
        assert resp.status_code == 422
        assert resp.json()["code"] == "VarianceNotAccepted"
        stored_po = (await client.get(f"/api/purchase-orders/{po['id']}")).json()
        assert stored_po["totalQtyReceived"] == 8
        assert stored_po["varianceAccepted"] is False
        assert await _balance(client, world.receiving_id, world.widget_id) == 8

        resp = await client.post(
            f"/api/receiving/receipts/{second['id']}/complete", json={"acceptVariance": True}
        )
        assert resp.status_code == 200, resp.text
        stored_po = (await client.get(f"/api/purchase-orders/{po['id']}")).json()
        assert stored_po["totalQtyReceived"] == 16
        assert stored_po["varianceAccepted"] is True


async def test_blocked_receiving_location_leaves_asn_and_order_untouched(client, world):
    po, asn, receipt = await _session(client, world, 10)
    await receive(client, receipt, [10])

    resp = await client.patch(f"/api/catalog/locations/{world.receiving_id}", json={"status": "BLOCKED"})
    assert resp.status_code == 200, resp.text

    resp = await client.post(f"/api/receiving/receipts/{receipt['id']}/complete")
    assert resp.status_code == 422
    assert resp.json()["code"] == "LocationBlocked"

    stored_asn = (await client.get(f"/api/asn/{asn['id']}")).json()
    assert stored_asn["status"] == "RECEIVING"
    assert stored_asn["totalReceived"] == 0
    stored_po = (await client.get(f"/api/purchase-orders/{po['id']}")).json()
    assert stored_po["totalQtyReceived"] == 0
    stored = (await client.get(f"/api/receiving/receipts/{receipt['id']}")).json()
    assert stored["status"] == "RECEIVING"
