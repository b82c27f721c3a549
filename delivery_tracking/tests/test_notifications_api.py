"""
Notification API Tests.
"""

import pytest

from delivery_tracking.app.services.notification_service import InAppNotificationSink, NotificationService


@pytest.mark.asyncio
async def test_buyer_inbox_after_seller_update(
    client, auth_headers, tracking_service, make_order, session_factory, mocker
):
    # Use the real inbox storage for this test
    mocker.patch.object(tracking_service.authority.dispatcher, "in_app", InAppNotificationSink(session_factory))
    order = await make_order(buyer_id=20, seller_id=10)

    await client.post(
        f"/v1/orders/{order.id}/status", headers=auth_headers(10, "SELLER"), json={"stage_code": "out_for_delivery"}
    )
    await tracking_service.authority.drain()

    inbox = await client.get("/v1/notifications", headers=auth_headers(20, "BUYER"))
    assert inbox.status_code == 200
    items = inbox.json()
    assert len(items) == 1
    assert items[0]["template_kind"] == "order_status_changed"
    assert items[0]["is_read"] is False

    # The seller's inbox stays empty for their own update
    seller_inbox = await client.get("/v1/notifications", headers=auth_headers(10, "SELLER"))
    assert seller_inbox.json() == []

    marked = await client.patch(f"/v1/notifications/{items[0]['id']}/read", headers=auth_headers(20, "BUYER"))
    assert marked.status_code == 200

    unread = await client.get("/v1/notifications", headers=auth_headers(20, "BUYER"), params={"unread_only": True})
    assert unread.json() == []


@pytest.mark.asyncio
async def test_cannot_mark_someone_elses_notification(client, auth_headers, db_session):
    notif = await NotificationService.create_notification(db_session, 20, "Order update", "Delivered")
    await db_session.commit()

    response = await client.patch(f"/v1/notifications/{notif.id}/read", headers=auth_headers(21, "BUYER"))
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_mark_all_read(client, auth_headers, db_session):
    for message in ("Confirmed", "Shipped"):
        await NotificationService.create_notification(db_session, 20, "Order update", message)
    await db_session.commit()

    response = await client.patch("/v1/notifications/read-all", headers=auth_headers(20, "BUYER"))

    assert response.status_code == 200
    assert response.json() == {"status": "success", "count": 2}
