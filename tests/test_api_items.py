import asyncio
import datetime as dt

from fastapi.testclient import TestClient

import factories
from conftest import AUTH_HEADERS
from pantry_api.pagination import Cursor


def test_stock_intake_is_audited_with_the_campaign_name(client: TestClient) -> None:
    async def seed() -> str:
        await factories.product("B1")
        return await factories.campaign("Natal 2030")

    campaign_id = asyncio.run(seed())

    response = client.post(
        "/api/items/stock",
        json={"product_barcode": "B1", "quantity": 12, "expiry_date": "2030-03-01", "campaign_id": campaign_id},
        headers=AUTH_HEADERS,
    )

    assert response.status_code == 201
    batch = response.json()
    assert (batch["quantity"], batch["reserved_quantity"], batch["available"]) == (12, 0, 12)
    assert batch["campaign_id"] == campaign_id
    details = asyncio.run(factories.audit_details("add_item"))
    assert details == [{"itemId": batch["id"], "barcode": "B1", "quantity": 12, "campaignId": "Natal 2030"}]

    receipts = client.get(f"/api/audit/campaign/{campaign_id}/products", headers=AUTH_HEADERS).json()
    assert receipts["count"] == 1


def test_stock_intake_for_unknown_product_is_not_found(client: TestClient) -> None:
    response = client.post("/api/items/stock", json={"product_barcode": "nope", "quantity": 1}, headers=AUTH_HEADERS)

    assert response.status_code == 404
    assert asyncio.run(factories.audit_actions()) == []


def test_removing_stock_only_touches_free_units(client: TestClient) -> None:
    async def seed() -> str:
        await factories.product("B1")
        return await factories.batch("B1", 10, reserved=7)

    batch_id = asyncio.run(seed())

    too_many = client.post(f"/api/items/stock/{batch_id}/remove", json={"quantity": 4}, headers=AUTH_HEADERS)
    removed = client.post(
        f"/api/items/stock/{batch_id}/remove", json={"quantity": 3, "reason": "danificado"}, headers=AUTH_HEADERS
    )

    assert too_many.status_code == 409
    assert too_many.json()["code"] == "stock.insufficient"
    assert removed.json()["quantity"] == 7
    assert removed.json()["available"] == 0
    assert asyncio.run(factories.audit_details("remove_item")) == [
        {"itemId": batch_id, "barcode": "B1", "quantity": 3, "reason": "danificado"}
    ]


def test_items_listing_pages_through_products(client: TestClient) -> None:
    async def seed() -> None:
        for barcode, name in (("B1", "Arroz"), ("B2", "Feijão"), ("B3", "Massa")):
            await factories.product(barcode, name=name, category=1)
            await factories.batch(barcode, 2, expiry=factories.day(3))
            await factories.batch(barcode, 1)

    asyncio.run(seed())

    first = client.get("/api/items", params={"page_size": 2}, headers=AUTH_HEADERS).json()
    second = client.get(
        "/api/items", params={"page_size": 2, "cursor": first["next_cursor"]}, headers=AUTH_HEADERS
    ).json()

    assert [item["name"] for item in first["items"]] == ["Arroz", "Feijão"]
    assert [item["name"] for item in second["items"]] == ["Massa"]
    assert first["has_more"] is True and second["has_more"] is False
    assert first["items"][0]["total_available"] == 3
    assert first["items"][0]["nearest_expiry"] == factories.day(3).isoformat()
    assert len(first["items"][0]["batches"]) == 2


def test_product_import_upserts(client: TestClient) -> None:
    first = client.post(
        "/api/products/import",
        json={"items": [{"barcode": "B1", "name": "Arroz"}, {"barcode": "B2", "name": "Massa", "category": 1}]},
        headers=AUTH_HEADERS,
    )
    second = client.post(
        "/api/products/import",
        json={"items": [{"barcode": "B1", "name": "Arroz Agulha", "brand": "Cigala"}]},
        headers=AUTH_HEADERS,
    )
    asyncio.run(factories.batch("B1", 1))
    listing = client.get("/api/items", headers=AUTH_HEADERS).json()

    assert first.json() == {"imported": 2}
    assert second.json() == {"imported": 1}
    assert [(item["name"], item["brand"]) for item in listing["items"]] == [("Arroz Agulha", "Cigala")]


def test_product_import_needs_items(client: TestClient) -> None:
    response = client.post("/api/products/import", json={"items": []}, headers=AUTH_HEADERS)

    assert response.status_code == 400
    assert response.json()["code"] == "import.empty"



def test_product_import_keeps_the_last_entry_per_barcode(client: TestClient) -> None:
    response = client.post(
        "/api/products/import",
        json={"items": [{"barcode": "B1", "name": "Arroz"}, {"barcode": "B1", "name": "Arroz Carolino"}]},
        headers=AUTH_HEADERS,
    )
    asyncio.run(factories.batch("B1", 1))
    listing = client.get("/api/items", headers=AUTH_HEADERS).json()

    assert response.json() == {"imported": 1}
    assert [item["name"] for item in listing["items"]] == ["Arroz Carolino"]


def test_items_listing_rejects_a_requests_cursor(client: TestClient) -> None:
    asyncio.run(factories.product("B1"))
    requests_cursor = Cursor((dt.datetime(2030, 1, 1, 9, 0), "req-1")).encode()

    response = client.get("/api/items", params={"cursor": requests_cursor}, headers=AUTH_HEADERS)

    assert response.status_code == 400
    assert response.json()["code"] == "pagination.invalid_cursor"
