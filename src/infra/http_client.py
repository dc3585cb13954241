# src/infra/http_client.py
"""
HTTP clients of the services we talk to.

Two calling conventions:
- critical calls raise NotFoundError / UpstreamUnavailableError and abort
  the operation that needed them;
- best-effort calls never raise, they return a PropagationOutcome
  (timeout means the outcome is unknown, hence DEFERRED).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Dict, List

import httpx

from src.common.constants import INTERNAL_TOKEN_HEADER, SERVICE_NAME_HEADER
from src.common.logger import log_warning
from src.config import settings
from src.shared.errors import NotFoundError, UnauthenticatedError, UpstreamUnavailableError
from src.shared.models.enums import OrderStatus, PropagationOutcome, UserRole
from src.shared.models.location_dto import GeoPoint
from src.shared.models.order_dto import OrderDTO
from src.shared.models.user_dto import CallerIdentity, DeliveryPersonDTO

_ENVELOPE_KEYS = {"status", "data", "message", "results"}


def unwrap(body: Any, key: str | None = None) -> Any:
    """
    Strips the ``{"status": ..., "data": {...}}`` envelope some services use
    and, when ``key`` is given, the named wrapper inside it
    (``{"data": {"restaurant": {...}}}``).
    """
    if isinstance(body, dict) and "data" in body and set(body) <= _ENVELOPE_KEYS:
        body = body["data"]
    if key and isinstance(body, dict) and key in body:
        body = body[key]
    return body


class BaseClient:
    def __init__(self, base_url: str, timeout: float | None = None, service_name: str | None = None):
        self.base_url = base_url
        self.timeout = timeout if timeout is not None else settings.http.HTTP_TIMEOUT_SECONDS
        self.service_name = service_name
        self.client = httpx.AsyncClient(base_url=base_url, timeout=self.timeout)

    async def close(self):
        await self.client.aclose()

    def _headers(self, token: Optional[str] = None) -> Dict[str, str]:
        headers: Dict[str, str] = {}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        if self.service_name and settings.security.INTERNAL_SERVICE_TOKEN:
            headers[INTERNAL_TOKEN_HEADER] = settings.security.INTERNAL_SERVICE_TOKEN
            headers[SERVICE_NAME_HEADER] = self.service_name
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        options: Dict[str, Any] = {} if timeout is None else {"timeout": timeout}
        response = await self.client.request(
            method, path, params=params, json=json, headers=self._headers(token), **options
        )
        response.raise_for_status()
        if not response.content:
            return None
        return response.json()

    async def _critical(self, method: str, path: str, resource: str, **kwargs: Any) -> Any:
        try:
            return await self._request(method, path, **kwargs)
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                raise NotFoundError(f"{resource} not found") from e
            raise UpstreamUnavailableError(
                f"{resource} lookup failed with HTTP {e.response.status_code}",
                details={"upstream": self.base_url},
            ) from e
        except httpx.HTTPError as e:
            raise UpstreamUnavailableError(
                f"{resource} lookup failed: {e.__class__.__name__}",
                details={"upstream": self.base_url},
            ) from e

    async def _best_effort(
        self,
        method: str,
        path: str,
        action: str,
        extra: Optional[Dict[str, Any]] = None,
        **kwargs: Any,
    ) -> PropagationOutcome:
        kwargs.setdefault("timeout", settings.http.BEST_EFFORT_TIMEOUT_SECONDS)
        try:
            await self._request(method, path, **kwargs)
            return PropagationOutcome.PROPAGATED
        except httpx.TimeoutException as e:
            outcome = PropagationOutcome.DEFERRED
            reason = f"timeout ({e.__class__.__name__})"
        except httpx.HTTPStatusError as e:
            outcome = PropagationOutcome.FAILED
            reason = f"HTTP {e.response.status_code}"
        except httpx.HTTPError as e:
            outcome = PropagationOutcome.FAILED
            reason = e.__class__.__name__

        await log_warning(
            f"Propagation {outcome}: {action} ({reason})",
            extra={"action": action, "outcome": str(outcome), "upstream": self.base_url, **(extra or {})},
        )
        return outcome


class UsersClient(BaseClient):
    def __init__(self, service_name: str | None = None):
        super().__init__(settings.deployment.user_service_url, service_name=service_name)

    async def verify_token(self, token: str) -> CallerIdentity:
        """Resolves a bearer token to ``{id, role}``. Any failure means unauthenticated."""
        try:
            response = await self.client.get(
                "/users/verify-token", headers={"Authorization": f"Bearer {token}"}
            )
            response.raise_for_status()
            data = unwrap(response.json(), "user")
        except httpx.HTTPStatusError as e:
            raise UnauthenticatedError("Invalid or expired token") from e
        except (httpx.HTTPError, ValueError) as e:
            raise UnauthenticatedError("Token could not be verified") from e

        user_id = data.get("id") or data.get("_id") if isinstance(data, dict) else None
        try:
            role = UserRole(data.get("role"))
        except (ValueError, AttributeError) as e:
            raise UnauthenticatedError("Token resolved to an unknown role") from e
        if not user_id:
            raise UnauthenticatedError("Token resolved to no user")
        return CallerIdentity(id=str(user_id), role=role)

    async def list_available_personnel(self, token: Optional[str] = None) -> List[DeliveryPersonDTO]:
        data = await self._critical(
            "GET", "/users/delivery-personnel", "Delivery personnel directory", token=token
        )
        users = unwrap(data, "users") or []
        return [DeliveryPersonDTO.model_validate(user) for user in users]

    async def get_delivery_person(self, user_id: str) -> DeliveryPersonDTO:
        data = await self._critical("GET", f"/users/{user_id}", "User")
        return DeliveryPersonDTO.model_validate(unwrap(data, "user"))

    async def set_availability(self, user_id: str, available: bool) -> PropagationOutcome:
        return await self._best_effort(
            "PATCH",
            f"/users/{user_id}",
            action="availability_reset",
            extra={"delivery_person_id": user_id},
            json={"isAvailable": available},
        )

    async def update_location(self, user_id: str, point: GeoPoint) -> PropagationOutcome:
        return await self._best_effort(
            "PATCH",
            f"/users/{user_id}",
            action="directory_location",
            extra={"delivery_person_id": user_id},
            json={"currentLocation": {"type": "Point", "coordinates": [point.longitude, point.latitude]}},
        )


class RestaurantClient(BaseClient):
    def __init__(self, service_name: str | None = None):
        super().__init__(settings.deployment.restaurant_service_url, service_name=service_name)

    async def get_restaurant(self, restaurant_id: str) -> Dict[str, Any]:
        data = await self._critical("GET", f"/restaurants/{restaurant_id}", "Restaurant")
        return unwrap(data, "restaurant")

    @staticmethod
    def owner_id(restaurant: Dict[str, Any]) -> Optional[str]:
        owner = restaurant.get("ownerId") or restaurant.get("owner")
        if isinstance(owner, dict):
            owner = owner.get("id") or owner.get("_id")
        return str(owner) if owner else None


class NotificationClient(BaseClient):
    def __init__(self, service_name: str | None = None):
        super().__init__(settings.deployment.notification_service_url, service_name=service_name)

    async def delivery_status(
        self,
        delivery_id: str,
        order_id: str,
        user_id: str,
        status: str,
        current_location: Optional[GeoPoint] = None,
    ) -> PropagationOutcome:
        return await self._best_effort(
            "POST",
            "/notifications/delivery-status",
            action="delivery_notification",
            extra={"delivery_id": delivery_id, "order_id": order_id},
            json={
                "deliveryId": delivery_id,
                "orderId": order_id,
                "userId": user_id,
                "status": status,
                "currentLocation": current_location.model_dump() if current_location else None,
            },
        )


class OrderServiceClient(BaseClient):
    """Calls the order service as a trusted service principal."""

    def __init__(self, service_name: str):
        super().__init__(settings.deployment.order_service_url, service_name=service_name)

    async def get_order(self, order_id: str) -> OrderDTO:
        data = await self._critical("GET", f"/orders/{order_id}", "Order")
        return OrderDTO.model_validate(unwrap(data, "order"))

    async def update_status(
        self,
        order_id: str,
        status: OrderStatus,
        delivery_person_id: Optional[str] = None,
        estimated_delivery_time: Optional[datetime] = None,
    ) -> PropagationOutcome:
        body: Dict[str, Any] = {"status": str(status)}
        if delivery_person_id:
            body["deliveryPersonId"] = delivery_person_id
        if estimated_delivery_time:
            body["estimatedDeliveryTime"] = estimated_delivery_time.isoformat()
        return await self._best_effort(
            "PATCH",
            f"/orders/{order_id}/status",
            action="order_sync",
            extra={"order_id": order_id, "target": str(status)},
            json=body,
        )


class DeliveryServiceClient(BaseClient):
    """Calls the delivery service as a trusted service principal."""

    def __init__(self, service_name: str):
        super().__init__(settings.deployment.delivery_service_url, service_name=service_name)

    async def cancel_for_order(self, order_id: str) -> PropagationOutcome:
        return await self._best_effort(
            "POST",
            f"/deliveries/order/{order_id}/cancel",
            action="delivery_cancel",
            extra={"order_id": order_id},
        )
