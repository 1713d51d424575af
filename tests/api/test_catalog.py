from tests.factories import received_session


async def test_create_and_list_products(client, world):
    resp = await client.post("/api/catalog/products", json={"sku": "bolt-10", "name": "Bolt M10"})
    assert resp.status_code == 201, resp.text
    product = resp.json()
    assert product["sku"] == "BOLT-10"
    assert product["isActive"] is True

    listed = (await client.get("/api/catalog/products", params={"search": "bolt"})).json()
    assert [p["sku"] for p in listed["data"]] == ["BOLT-10"]

    resp = await client.get(f"/api/catalog/products/{product['id']}")
    assert resp.status_code == 200
    assert resp.json()["name"] == "Bolt M10"


async def test_duplicate_code_rejected(client, world):
    resp = await client.post("/api/catalog/vendors", json={"code": "acme", "name": "Another Acme"})
    assert resp.status_code == 400
    assert resp.json()["kind"] == "ValidationError"


async def test_invalid_body_uses_framework_shape(client, world):
    resp = await client.post("/api/catalog/locations", json={"code": "X-01"})
    assert resp.status_code == 422


async def test_unknown_kind(client, world):
    resp = await client.get("/api/catalog/forklifts")
    assert resp.status_code == 404


async def test_locations_report_current_quantity(client, world):
    await received_session(client, world, 12, 12)

    listed = (await client.get("/api/catalog/locations", params={"warehouseId": str(world.warehouse_id)})).json()
    by_code = {loc["code"]: loc for loc in listed["data"]}
    assert "Z-01-01" not in by_code
    assert by_code["RCV-01"]["currentQty"] == 12
    assert by_code["A-01-01"]["currentQty"] == 0


async def test_blocking_a_location_stops_putaway(client, world):
    _, receipt = await received_session(client, world, 5, 5)

    resp = await client.patch(f"/api/catalog/locations/{world.unlimited_id}", json={"status": "BLOCKED"})
    assert resp.status_code == 200, resp.text
    assert resp.json()["status"] == "BLOCKED"

    line = receipt["lines"][0]
    resp = await client.post(
        f"/api/receiving/receipts/{receipt['id']}/lines/{line['id']}/putaway",
        json={"locationId": str(world.unlimited_id), "quantity": 5},
    )
    assert resp.status_code == 422
    assert resp.json()["code"] == "LocationBlocked"

    await client.patch(f"/api/catalog/locations/{world.unlimited_id}", json={"status": "FREE"})
    resp = await client.post(
        f"/api/receiving/receipts/{receipt['id']}/lines/{line['id']}/putaway",
        json={"locationId": str(world.unlimited_id), "quantity": 5},
    )
    assert resp.status_code == 200, resp.text
