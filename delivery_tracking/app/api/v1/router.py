"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from delivery_tracking.app.api.v1.endpoints import (
    stages, order_tracking, courier_webhook, notifications, admin_ops
)

router = APIRouter()

# Stage catalogue
router.include_router(stages.router)

# Buyer/seller order tracking
router.include_router(order_tracking.router)

# Inbound courier events
router.include_router(courier_webhook.router)

# In-app notifications
router.include_router(notifications.router)

# Operations
router.include_router(admin_ops.router)
