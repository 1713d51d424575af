import uuid

from tests.factories import arrived_asn, open_po, received_session, start_receiving


class TestErrorEnvelope:

    async def test_not_found(self, client, world):
        missing = uuid.uuid4()
        resp = await client.get(f"/api/purchase-orders/{missing}")
        assert resp.status_code == 404
        body = resp.json()
        assert body["kind"] == "NotFoundError"
        assert body["code"] == "NotFound"
        assert body["path"] == f"/api/purchase-orders/{missing}"
        assert body["method"] == "GET"
        assert set(body) == {"error", "kind", "code", "details", "path", "method"}

    async def test_invalid_transition_leaves_state(self, client, world):
        po = await open_po(client, world, [(world.widget_id, 5)])
        resp = await client.post(f"/api/purchase-orders/{po['id']}/approve")
        assert resp.status_code == 422
        body = resp.json()
        assert body["kind"] == "StateError"
        assert body["details"]["status"] == "OPEN"

        stored = (await client.get(f"/api/purchase-orders/{po['id']}")).json()
        assert stored["status"] == "OPEN"
        assert stored["version"] == po["version"]

    async def test_bad_reference_is_validation_error(self, client, world):
        resp = await client.post("/api/purchase-orders", json={
            "vendorId": str(uuid.uuid4()),
            "warehouseId": str(world.warehouse_id),
            "lines": [{"productId": str(world.widget_id), "qtyOrdered": 1}],
        })
        assert resp.status_code == 400
        assert resp.json()["kind"] == "ValidationError"

    async def test_malformed_body_keeps_framework_shape(self, client, world):
        resp = await client.post("/api/purchase-orders", json={"lines": []})
        assert resp.status_code == 422
        assert "detail" in resp.json()

    async def test_ledger_reversal_rules(self, client, world):
        _, receipt = await received_session(client, world, 10, 10)
        ledger = (await client.get("/api/inventory/ledger", params={"receiptId": receipt["id"]})).json()
        entry_id = ledger["data"][0]["id"]

        resp = await client.post(f"/api/inventory/ledger/{entry_id}/reverse", json={"reason": "miscount"})
        assert resp.status_code == 201, resp.text
        reversal = resp.json()
        assert reversal["quantityDelta"] == -10
        assert reversal["reversesEntryId"] == entry_id

        resp = await client.post(f"/api/inventory/ledger/{entry_id}/reverse")
        assert resp.status_code == 400
        resp = await client.post(f"/api/inventory/ledger/{reversal['id']}/reverse")
        assert resp.status_code == 400


class TestIdempotency:

    async def _session(self, client, world):
        po = await open_po(client, world, [(world.widget_id, 10)])
        asn = await arrived_asn(client, po)
        return await start_receiving(client, asn, world.receiving_id)

    async def test_retried_scan_is_applied_once(self, client, world):
        receipt = await self._session(client, world)
        url = f"/api/receiving/receipts/{receipt['id']}/receive"
        payload = {"lines": [{"lineId": receipt["lines"][0]["id"], "quantityReceived": 4}]}
        headers = {"Idempotency-Key": "scan-0001"}

        first = await client.post(url, json=payload, headers=headers)
        assert first.status_code == 200, first.text
        second = await client.post(url, json=payload, headers=headers)
        assert second.status_code == 200
        assert second.headers["Idempotent-Replay"] == "true"
        assert second.json() == first.json()

        stored = (await client.get(f"/api/receiving/receipts/{receipt['id']}")).json()
        assert stored["lines"][0]["receivedQty"] == 4

    async def test_key_reuse_with_other_body_rejected(self, client, world):
        receipt = await self._session(client, world)
        url = f"/api/receiving/receipts/{receipt['id']}/receive"
        line_id = receipt["lines"][0]["id"]
        headers = {"Idempotency-Key": "scan-0002"}

        resp = await client.post(url, json={"lines": [{"lineId": line_id, "quantityReceived": 1}]}, headers=headers)
        assert resp.status_code == 200
        resp = await client.post(url, json={"lines": [{"lineId": line_id, "quantityReceived": 2}]}, headers=headers)
        assert resp.status_code == 400
        assert resp.json()["code"] == "IdempotencyKeyReused"

    async def test_retried_complete_posts_once(self, client, world):
        receipt = await self._session(client, world)
        await client.post(
            f"/api/receiving/receipts/{receipt['id']}/receive",
            json={"lines": [{"lineId": receipt["lines"][0]["id"], "quantityReceived": 10}]},
        )
        url = f"/api/receiving/receipts/{receipt['id']}/complete"
        headers = {"Idempotency-Key": "complete-0001"}

        first = await client.post(url, json={}, headers=headers)
        assert first.status_code == 200, first.text
        second = await client.post(url, json={}, headers=headers)
        assert second.status_code == 200
        assert second.json()["ledgerEntryIds"] == first.json()["ledgerEntryIds"]

        ledger = (await client.get("/api/inventory/ledger", params={"receiptId": receipt["id"]})).json()
        assert ledger["pagination"]["total"] == 1

    async def test_failed_request_does_not_burn_key(self, client, world):
        receipt = await self._session(client, world)
        url = f"/api/receiving/receipts/{receipt['id']}/complete"
        headers = {"Idempotency-Key": "complete-0002"}

        # Nothing scanned: short on every line
        resp = await client.post(url, json={}, headers=headers)
        assert resp.status_code == 422
        resp = await client.post(url, json={}, headers=headers)
        assert resp.status_code == 422
        assert "Idempotent-Replay" not in resp.headers


class TestHealth:

    async def test_health(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["checks"]["database"] == "connected"

    async def test_root(self, client):
        resp = await client.get("/")
        assert resp.status_code == 200
        assert resp.json()["docs"] == "/docs"
