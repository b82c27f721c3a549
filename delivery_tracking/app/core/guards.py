"""
Security guards for role-based, ownership-based and webhook access control.
"""

import hmac
from typing import List, Optional

from fastapi import Depends, HTTPException, status
from delivery_tracking.app.core.dependencies import get_current_user
from delivery_tracking.app.models.enums import UserRole
from delivery_tracking.app.models.order import Order
from delivery_tracking.app.services.transition_authority import Actor


def require_role(allowed_roles: List[UserRole]):
    """
    Dependency factory for role-based access control.

    Usage:
        @router.post("/orders/{order_id}/status")
        async def update(current_user: dict = Depends(require_role([UserRole.SELLER]))):
            ...

    Raises:
        HTTPException 403 if user role is not in allowed_roles
    """
    async def role_checker(current_user: dict = Depends(get_current_user)) -> dict:
        try:
            user_role = UserRole(current_user.get("role"))
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Invalid role in token"
            )

        if user_role not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required role: {', '.join([r.value for r in allowed_roles])}"
            )

        return current_user

    return role_checker


def actor_from_user(current_user: dict) -> Actor:
    """Build the transition actor for an authenticated marketplace user."""
    return Actor(user_id=current_user.get("user_id"))


def can_view_order(order: Order, current_user: dict) -> bool:
    """Only the order's buyer and seller may follow its delivery."""
    user_id = current_user.get("user_id")
    return user_id is not None and user_id in (order.buyer_id, order.seller_id)


def enforce_order_visibility(order: Order, current_user: dict) -> None:
    if not can_view_order(order, current_user):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied. You do not have permission to access this order."
        )


def enforce_order_seller(order: Order, current_user: dict) -> None:
    if current_user.get("user_id") != order.seller_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied. Only the seller can manage this order."
        )


def webhook_token_valid(token: Optional[str], accepted_tokens: List[str]) -> bool:
    """Constant-time check against every currently accepted shared secret."""
    if not token:
        return False
    return any(
        hmac.compare_digest(token.encode(), candidate.encode())
        for candidate in accepted_tokens
        if candidate
    )
