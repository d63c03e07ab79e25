import asyncio
import datetime as dt

import pytest
from fastapi.testclient import TestClient

import factories
from conftest import AUTH_HEADERS
from pantry_api.routers import common

WINDOW = {"startDate": "2030-01-01T00:00:00Z", "endDate": "2030-01-31T23:59:59Z"}


def test_log_requires_the_api_password(client: TestClient) -> None:
    response = client.post("/api/audit/log", json={"action": "add_item", "userId": "u1"})

    assert response.status_code == 401
    assert response.json()["code"] == "auth.unauthorized"
    assert response.headers["www-authenticate"] == "Bearer"


def test_log_rejects_a_wrong_password(client: TestClient) -> None:
    response = client.post(
        "/api/audit/log",
        json={"action": "add_item", "userId": "u1"},
        headers={"Authorization": "Bearer nope"},
    )

    assert response.status_code == 401


def test_log_creates_an_entry(client: TestClient) -> None:
    response = client.post(
        "/api/audit/log",
        json={"action": "add_item", "userId": "u1", "userName": "Ana", "details": {"barcode": "B1"}},
        headers=AUTH_HEADERS,
    )

    assert response.status_code == 201
    assert response.json() == {"success": True, "message": "Audit log created successfully"}
    assert asyncio.run(factories.audit_details("add_item")) == [{"barcode": "B1"}]


def test_log_rejects_unknown_or_missing_actions(client: TestClient) -> None:
    unknown = client.post("/api/audit/log", json={"action": "explode", "userId": "u1"}, headers=AUTH_HEADERS)
    missing = client.post("/api/audit/log", json={"userId": "u1"}, headers=AUTH_HEADERS)

    assert unknown.status_code == 400
    assert unknown.json()["code"] == "audit.invalid_action"
    assert "add_item" in unknown.json()["detail"]
    assert missing.status_code == 400


def test_log_accepts_an_anonymous_user(client: TestClient) -> None:
    response = client.post("/api/audit/log", json={"action": "add_item", "userId": None}, headers=AUTH_HEADERS)
    listing = client.get(
        "/api/audit/logs",
        params={"startDate": "2000-01-01T00:00:00Z", "endDate": "2100-01-01T00:00:00Z"},
        headers=AUTH_HEADERS,
    )

    assert response.status_code == 201
    assert [(log["action"], log["userId"]) for log in listing.json()["logs"]] == [("add_item", None)]


@pytest.mark.parametrize(
    "body",
    [
        {"content": b"{not json", "headers": {"Content-Type": "application/json"}},
        {"json": ["add_item"]},
        {"json": {"action": "add_item", "userId": "u1", "details": ["x"]}},
    ],
    ids=["unparseable", "not-an-object", "details-not-an-object"],
)
def test_log_rejects_a_malformed_body(client: TestClient, body: dict) -> None:
    headers = {**AUTH_HEADERS, **body.pop("headers", {})}

    response = client.post("/api/audit/log", headers=headers, **body)

    assert response.status_code == 400
    assert response.json()["code"] == "audit.invalid_body"
    assert asyncio.run(factories.audit_actions()) == []


def test_log_reports_a_failed_write(client: TestClient) -> None:
    class FailingSink:
        async def log_action(self, *args, **kwargs) -> bool:
            return False

    client.app.dependency_overrides[common.get_audit_sink] = FailingSink

    response = client.post("/api/audit/log", json={"action": "add_item", "userId": "u1"}, headers=AUTH_HEADERS)

    assert response.status_code == 500
    assert response.json()["code"] == "audit.write_failed"


def test_logs_in_range_newest_first_with_names_resolved(client: TestClient) -> None:
    async def seed() -> None:
        await factories.user("u1", name="Maria Silva")
        await factories.audit_entry("add_item", "u1", {"n": 1}, dt.datetime(2030, 1, 2, 8, 0))
        await factories.audit_entry("remove_item", "u2", {"n": 2}, dt.datetime(2030, 1, 3, 8, 0), user_name="Rui")
        await factories.audit_entry("add_item", "u1", {"n": 3}, dt.datetime(2030, 2, 3, 8, 0))

    asyncio.run(seed())

    response = client.get("/api/audit/logs", params=WINDOW, headers=AUTH_HEADERS)

    assert response.status_code == 200
    payload = response.json()
    assert payload["success"] is True
    assert payload["count"] == 2
    assert [log["details"]["n"] for log in payload["logs"]] == [2, 1]
    assert [log["userName"] for log in payload["logs"]] == ["Rui", "Maria Silva"]
    assert payload["logs"][1]["userId"] == "u1"


def test_logs_need_both_dates(client: TestClient) -> None:
    response = client.get("/api/audit/logs", params={"startDate": WINDOW["startDate"]}, headers=AUTH_HEADERS)

    assert response.status_code == 400
    assert response.json()["code"] == "audit.missing_dates"


def test_logs_reject_malformed_dates(client: TestClient) -> None:
    response = client.get(
        "/api/audit/logs", params={"startDate": "yesterday", "endDate": WINDOW["endDate"]}, headers=AUTH_HEADERS
    )

    assert response.status_code == 400
    assert response.json()["code"] == "audit.invalid_date"


def test_campaign_products_match_receipts_on_the_campaign_name(client: TestClient) -> None:
    async def seed() -> str:
        campaign_id = await factories.campaign("Natal 2030")
        await factories.product("B1", name="Arroz", brand=None)
        await factories.audit_entry(
            "add_item", "u1", {"itemId": "batch-1", "barcode": "B1", "quantity": 4, "campaignId": "Natal 2030"},
            dt.datetime(2030, 1, 2),
        )
        await factories.audit_entry(
            "campaign_receive_product", "u2", {"barcode": "B9", "quantity": 2, "campaignId": "Natal 2030"},
            dt.datetime(2030, 1, 3),
        )
        await factories.audit_entry(
            "add_item", "u1", {"barcode": "B1", "quantity": 1, "campaignId": "Páscoa"}, dt.datetime(2030, 1, 4)
        )
        await factories.audit_entry(
            "remove_item", "u1", {"barcode": "B1", "quantity": 1, "campaignId": "Natal 2030"}, dt.datetime(2030, 1, 5)
        )
        return campaign_id

    campaign_id = asyncio.run(seed())

    response = client.get(f"/api/audit/campaign/{campaign_id}/products", headers=AUTH_HEADERS)

    assert response.status_code == 200
    payload = response.json()
    assert payload["count"] == 2
    newest, oldest = payload["products"]
    assert newest["barcode"] == "B9"
    assert newest["product"] is None
    assert oldest["itemId"] == "batch-1"
    assert oldest["quantity"] == 4
    assert oldest["product"] == {"id": "B1", "name": "Arroz", "brand": "", "category": 1, "imageUrl": ""}


def test_campaign_products_fall_back_to_the_raw_value(client: TestClient) -> None:
    asyncio.run(
        factories.audit_entry("add_item", "u1", {"quantity": 3, "campaignId": "legacy"}, dt.datetime(2030, 1, 2))
    )

    response = client.get("/api/audit/campaign/legacy/products", headers=AUTH_HEADERS)

    assert response.json()["count"] == 1
