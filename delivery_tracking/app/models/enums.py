"""
Shared enumerations for the delivery tracking domain.
"""

import enum


class UserRole(str, enum.Enum):
    """
    Marketplace user roles carried in access tokens.

    Roles:
        BUYER: Purchased the order, read-only observer of its tracking
        SELLER: Sold the order, the only user allowed to move its stage
        ADMIN: Back-office staff; no tracking rights of its own
    """
    BUYER = "BUYER"
    SELLER = "SELLER"
    ADMIN = "ADMIN"


class SourceActor(str, enum.Enum):
    """Who produced a status history entry."""
    SELLER = "SELLER"
    EXTERNAL_SYSTEM = "EXTERNAL_SYSTEM"


class DisputeState(str, enum.Enum):
    """
    Buyer dispute lifecycle for an order.

    Owned by the dispute workflow; the tracking core only stores it.
    """
    NONE = "NONE"
    OPENED = "OPENED"
    RESOLVED = "RESOLVED"
