"""
Courier platform client.

The tracking core programs against CourierPort; the HTTP adapter talks to
the courier's REST API and the null adapter is used when no courier is
configured.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx

from delivery_tracking.app.core.config import Settings
from delivery_tracking.app.core.exceptions import UpstreamError

logger = logging.getLogger("delivery_tracking.courier")


class CourierPort(ABC):
    """Outbound interface to the courier/dispatch platform."""

    @abstractmethod
    async def push_status(self, external_order_ref: str, external_status_code: str) -> None:
        """
        Tell the courier platform an order moved to a new status.

        Raises:
            UpstreamError: the platform could not be reached or rejected the call
        """
        ...

    @abstractmethod
    async def create_order(self, external_order_ref: str, order_payload: Dict[str, Any]) -> None:
        """
        Hand a delivery over to the courier platform.

        Raises:
            UpstreamError: the platform could not be reached or rejected the order
        """
        ...

    async def aclose(self) -> None:
        return None


class HttpCourierClient(CourierPort):
    """REST adapter: POST {base_url}/orders and {base_url}/orders/{ref}/status."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout_seconds: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout_seconds,
            headers={
                "Authorization": api_key,
                "Content-Type": "application/json",
            },
            transport=transport,
        )

    async def push_status(self, external_order_ref: str, external_status_code: str) -> None:
        try:
            response = await self._client.post(
                f"/orders/{external_order_ref}/status",
                json={"status": external_status_code},
            )
        except httpx.HTTPError as exc:
            raise UpstreamError(
                f"Courier platform unreachable: {exc}",
                details={"order_ref": external_order_ref, "status": external_status_code}
            ) from exc

        if response.is_error:
            raise UpstreamError(
                f"Courier platform rejected status push with HTTP {response.status_code}",
                details={
                    "order_ref": external_order_ref,
                    "status": external_status_code,
                    "http_status": response.status_code,
                    "body": response.text[:500],
                }
            )
        logger.info("Pushed status %s for courier order %s", external_status_code, external_order_ref)

    async def create_order(self, external_order_ref: str, order_payload: Dict[str, Any]) -> None:
        try:
            response = await self._client.post("/orders", json=order_payload)
        except httpx.HTTPError as exc:
            raise UpstreamError(
                f"Courier platform unreachable: {exc}",
                details={"order_ref": external_order_ref}
            ) from exc

        if response.is_error:
            raise UpstreamError(
                f"Courier platform rejected order creation with HTTP {response.status_code}",
                details={
                    "order_ref": external_order_ref,
                    "http_status": response.status_code,
                    "body": response.text[:500],
                }
            )
        logger.info("Created courier order %s", external_order_ref)

    async def aclose(self) -> None:
        await self._client.aclose()


class NullCourierClient(CourierPort):
    """Used when no courier platform is configured; pushes are logged and dropped."""

    async def push_status(self, external_order_ref: str, external_status_code: str) -> None:
        logger.debug(
            "No courier configured, not pushing %s for order %s",
            external_status_code, external_order_ref
        )

    async def create_order(self, external_order_ref: str, order_payload: Dict[str, Any]) -> None:
        logger.debug("No courier configured, not creating courier order %s", external_order_ref)


def build_courier_client(settings: Settings) -> CourierPort:
    if not settings.courier_api_base_url:
        return NullCourierClient()
    return HttpCourierClient(
        base_url=settings.courier_api_base_url,
        api_key=settings.courier_api_key,
        timeout_seconds=settings.courier_timeout_seconds,
    )
