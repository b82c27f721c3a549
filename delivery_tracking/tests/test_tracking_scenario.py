"""
End-to-end tracking scenario.

A four-stage lifecycle driven by the seller and the courier platform.
"""

import pytest

from delivery_tracking.app.core.config import settings
from delivery_tracking.app.core.exceptions import NoHistoryError
from delivery_tracking.app.models.enums import SourceActor
from delivery_tracking.app.services.stage_registry import Stage


@pytest.fixture
def stage_catalogue():
    return [
        Stage("pending", "Pending", 0),
        Stage("confirmed", "Confirmed", 1),
        Stage("in_transit", "In Transit", 2),
        Stage("delivered", "Delivered", 3),
    ]


@pytest.fixture
def dispatcher(mocker):
    dispatcher = mocker.AsyncMock()
    dispatcher.notify.return_value = 1
    return dispatcher


@pytest.mark.asyncio
async def test_seller_and_courier_drive_an_order_to_delivery(
    client, auth_headers, db_session, tracking_service, dispatcher, make_order, monkeypatch
):
    monkeypatch.setattr(settings, "courier_webhook_tokens", ["courier-secret"])
    order = await make_order(external_ref="SD-1001")
    seller = auth_headers(10, "SELLER")
    buyer = auth_headers(20, "BUYER")

    with pytest.raises(NoHistoryError):
        await tracking_service.projector.project(db_session, order.id)

    # Seller confirms
    response = await client.post(f"/v1/orders/{order.id}/status", headers=seller, json={"stage_code": "confirmed"})
    assert response.status_code == 201
    tracking = (await client.get(f"/v1/orders/{order.id}/tracking", headers=buyer)).json()
    assert (tracking["current_stage"]["code"], tracking["progress_percent"]) == ("confirmed", 33)

    # Courier reports the parcel on its way
    response = await client.post(
        "/v1/webhooks/courier",
        headers={"X-Webhook-Token": "courier-secret"},
        json={"orderNumber": "SD-1001", "externalStatusCode": "on_the_way"},
    )
    assert response.status_code == 200
    assert response.json()["status"] == "applied"
    tracking = (await client.get(f"/v1/orders/{order.id}/tracking", headers=buyer)).json()
    assert (tracking["current_stage"]["code"], tracking["progress_percent"]) == ("in_transit", 67)

    history = (await client.get(f"/v1/orders/{order.id}/history", headers=buyer)).json()
    assert history["entries"][0]["source_actor"] == SourceActor.EXTERNAL_SYSTEM.value

    # Seller marks it delivered
    response = await client.post(f"/v1/orders/{order.id}/status", headers=seller, json={"stage_code": "delivered"})
    assert response.status_code == 201
    tracking = (await client.get(f"/v1/orders/{order.id}/tracking", headers=buyer)).json()
    assert (tracking["current_stage"]["code"], tracking["progress_percent"]) == ("delivered", 100)

    await tracking_service.authority.drain()
    final_hops = [
        call for call in dispatcher.notify.await_args_list
        if call.args[1:3] == ("in_transit", "delivered")
    ]
    assert len(final_hops) == 1
    assert dispatcher.notify.await_count == 3
