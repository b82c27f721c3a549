"""
Order Tracking API Tests.

Validates the buyer/seller HTTP surface over the tracking core.
"""

import pytest


@pytest.mark.asyncio
async def test_list_stages(client, auth_headers):
    response = await client.get("/v1/stages", headers=auth_headers(20, "BUYER"))

    assert response.status_code == 200
    codes = [s["code"] for s in response.json()]
    assert codes[0] == "pending"
    assert codes[-1] == "delivered"
    assert len(codes) == 8


@pytest.mark.asyncio
async def test_unstarted_order_is_reported_as_unstarted(client, auth_headers, make_order):
    order = await make_order()

    response = await client.get(f"/v1/orders/{order.id}/tracking", headers=auth_headers(20, "BUYER"))

    assert response.status_code == 200
    data = response.json()
    assert data["started"] is False
    assert data["current_stage"] is None
    assert data["progress_percent"] is None
    assert len(data["stages"]) == 8


@pytest.mark.asyncio
async def test_seller_records_stage_and_buyer_sees_it(client, auth_headers, make_order):
    order = await make_order()

    response = await client.post(
        f"/v1/orders/{order.id}/status",
        headers=auth_headers(10, "SELLER"),
        json={"stage_code": "picked_up", "note": "Handed to courier", "location": {"lat": 52.52, "lng": 13.405}},
    )
    assert response.status_code == 201
    entry = response.json()
    assert entry["sequence"] == 1
    assert entry["source_actor"] == "SELLER"
    assert entry["created_by"] == 10

    tracking = await client.get(f"/v1/orders/{order.id}/tracking", headers=auth_headers(20, "BUYER"))
    data = tracking.json()
    assert data["started"] is True
    assert data["current_stage"]["code"] == "picked_up"
    assert data["progress_percent"] == 57
    assert data["last_location"]["latitude"] == 52.52


@pytest.mark.asyncio
async def test_buyer_cannot_change_status(client, auth_headers, make_order):
    order = await make_order()

    response = await client.post(
        f"/v1/orders/{order.id}/status",
        headers=auth_headers(20, "BUYER"),
        json={"stage_code": "delivered"},
    )

    assert response.status_code == 403
    assert response.json()["error_code"] == "ERR_PERM_001"

    history = await client.get(f"/v1/orders/{order.id}/history", headers=auth_headers(20, "BUYER"))
    assert history.json()["total"] == 0


@pytest.mark.asyncio
async def test_unknown_stage_is_a_validation_error(client, auth_headers, make_order):
    order = await make_order()

    response = await client.post(
        f"/v1/orders/{order.id}/status",
        headers=auth_headers(10, "SELLER"),
        json={"stage_code": "lost"},
    )

    assert response.status_code == 400
    assert response.json()["error_code"] == "ERR_VALIDATION_001"


@pytest.mark.asyncio
async def test_out_of_range_location_rejected(client, auth_headers, make_order):
    order = await make_order()

    response = await client.post(
        f"/v1/orders/{order.id}/status",
        headers=auth_headers(10, "SELLER"),
        json={"stage_code": "picked_up", "location": {"lat": 123.0, "lng": 0.0}},
    )

    assert response.status_code == 422
    assert response.json()["error_code"] == "ERR_VALIDATION"


@pytest.mark.asyncio
async def test_unknown_order_is_not_found(client, auth_headers):
    response = await client.get("/v1/orders/777/tracking", headers=auth_headers(20, "BUYER"))

    assert response.status_code == 404
    assert response.json()["error_code"] == "ERR_NOT_FOUND_001"


@pytest.mark.asyncio
async def test_strangers_cannot_read_an_order(client, auth_headers, make_order):
    order = await make_order()

    for path in ("tracking", "history"):
        response = await client.get(f"/v1/orders/{order.id}/{path}", headers=auth_headers(55, "BUYER"))
        assert response.status_code == 403


@pytest.mark.asyncio
async def test_requests_without_valid_token_are_rejected(client, make_order):
    order = await make_order()

    missing = await client.get(f"/v1/orders/{order.id}/tracking")
    assert missing.status_code in (401, 403)

    invalid = await client.get(
        f"/v1/orders/{order.id}/tracking", headers={"Authorization": "Bearer not-a-jwt"}
    )
    assert invalid.status_code == 401


@pytest.mark.asyncio
async def test_history_is_paged_most_recent_first(client, auth_headers, make_order):
    order = await make_order()
    for code in ("confirmed", "preparing", "pickup_scheduled"):
        response = await client.post(
            f"/v1/orders/{order.id}/status", headers=auth_headers(10, "SELLER"), json={"stage_code": code}
        )
        assert response.status_code == 201

    page = await client.get(
        f"/v1/orders/{order.id}/history", headers=auth_headers(10, "SELLER"), params={"limit": 2}
    )

    data = page.json()
    assert [e["stage_code"] for e in data["entries"]] == ["pickup_scheduled", "preparing"]
    assert data["total"] == 3
    assert data["has_more"] is True


@pytest.mark.asyncio
async def test_seller_refreshes_cache(client, auth_headers, make_order):
    order = await make_order()
    await client.post(
        f"/v1/orders/{order.id}/status", headers=auth_headers(10, "SELLER"), json={"stage_code": "confirmed"}
    )

    response = await client.post(f"/v1/orders/{order.id}/status/refresh", headers=auth_headers(10, "SELLER"))

    assert response.status_code == 200
    assert response.json()["current_stage_code"] == "confirmed"
    assert response.json()["version"] == 1

    denied = await client.post(f"/v1/orders/{order.id}/status/refresh", headers=auth_headers(20, "BUYER"))
    assert denied.status_code == 403


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert "X-Correlation-ID" in response.headers
