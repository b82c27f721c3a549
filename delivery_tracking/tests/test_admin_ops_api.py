"""
Admin Operations API Tests.

Validates inspection and replay of failed courier pushes.
"""

import pytest


@pytest.mark.asyncio
async def test_admin_lists_and_replays_failed_push(client, auth_headers, tracking_service, courier, make_order):
    order = await make_order(external_ref="SD-77")
    courier.fail_times = 100

    await client.post(
        f"/v1/orders/{order.id}/status", headers=auth_headers(10, "SELLER"), json={"stage_code": "in_transit"}
    )
    await tracking_service.authority.drain()

    listing = await client.get("/v1/admin/ops/courier-pushes", headers=auth_headers(1, "ADMIN"))
    assert listing.status_code == 200
    pushes = listing.json()
    assert len(pushes) == 1
    assert pushes[0]["external_status_code"] == "on_the_way"
    assert pushes[0]["status"] == "PENDING"

    courier.fail_times = 0
    courier.calls.clear()
    replay = await client.post(
        f"/v1/admin/ops/courier-pushes/{pushes[0]['id']}/replay", headers=auth_headers(1, "ADMIN")
    )
    assert replay.status_code == 200
    assert replay.json()["status"] == "REPLAYED"
    assert courier.pushed == [("SD-77", "on_the_way")]


@pytest.mark.asyncio
async def test_non_admins_are_denied(client, auth_headers):
    response = await client.get("/v1/admin/ops/courier-pushes", headers=auth_headers(10, "SELLER"))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_replay_unknown_push(client, auth_headers):
    response = await client.post("/v1/admin/ops/courier-pushes/999/replay", headers=auth_headers(1, "ADMIN"))
    assert response.status_code == 404
