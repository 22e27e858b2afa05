from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

import httpx
from packages.shared.schemas.marketplace_v1 import (
    CartItemRequestV1,
    CreateOrderRequestV1,
    CustomerLocationV1,
    DeliveryRequestV1,
    GatewayListResponseV1,
    InitiatePaymentRequestV1,
    InitiatePaymentResponseV1,
    MyCartV1,
    OrderListResponseV1,
    OrderResponseV1,
    PaymentGatewayV1,
    PaymentVerificationV1,
)
from pydantic import BaseModel, ValidationError
from services.storefront.app.services.marketplace_base import (
    MarketplaceBackendError,
    MarketplaceHTTPError,
    MarketplaceUnavailableError,
)
from services.storefront.app.settings import Settings

logger = logging.getLogger(__name__)


class MarketplaceHttpBackend:
    """Marketplace backend reached over its REST API.

    Every authenticated call carries `Authorization: Token <token>`. No call is retried:
    a repeated cart, payment or order request must come from an explicit buyer action.

    Env vars:
    - STOREFRONT_BACKEND=http
    - STOREFRONT_API_URL (default: http://localhost:8000)
    - STOREFRONT_HTTP_TIMEOUT_S (default: 15)
    """

    vendor = "MARKETPLACE_HTTP"

    def __init__(self, base_url: str, *, timeout_s: float = 15.0, transport: Any = None) -> None:
        self._base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=timeout_s,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    @classmethod
    def from_env(cls) -> "MarketplaceHttpBackend":
        settings = Settings.from_env()
        return cls(settings.api_url, timeout_s=settings.http_timeout_s)

    async def create_cart(self, token: str) -> int:
        data = await self._request("POST", "/api/v1/carts/", token=token, json={})
        return _parse_id(data, "Cart creation")

    async def get_my_cart(self, token: str) -> MyCartV1:
        data = await self._request("GET", "/api/v1/my-cart/", token=token)
        return _parse(MyCartV1, data)

    async def add_cart_item(self, token: str, cart_id: int, product_id: int, quantity: int) -> int:
        request = CartItemRequestV1(cart=cart_id, product=product_id, quantity=quantity)
        data = await self._request(
            "POST", f"/api/v1/carts/{cart_id}/items/", token=token, json=request.model_dump()
        )
        return _parse_id(data, "Cart item")

    async def update_cart_item(
        self, token: str, cart_id: int, item_id: int, quantity: int
    ) -> None:
        await self._request(
            "PATCH",
            f"/api/v1/carts/{cart_id}/items/{item_id}/",
            token=token,
            json={"quantity": quantity},
        )

    async def delete_cart_item(self, token: str, cart_id: int, item_id: int) -> None:
        await self._request("DELETE", f"/api/v1/carts/{cart_id}/items/{item_id}/", token=token)

    async def update_customer_location(
        self, token: str, latitude: float, longitude: float
    ) -> None:
        location = CustomerLocationV1(latitude=latitude, longitude=longitude)
        await self._request(
            "PATCH", "/api/v1/customer/location/", token=token, json=location.model_dump()
        )

    async def create_delivery(self, token: str, request: DeliveryRequestV1) -> None:
        await self._request(
            "POST",
            "/api/v1/deliveries/",
            token=token,
            json=request.model_dump(mode="json", exclude_none=True),
        )

    async def list_gateways(self) -> list[PaymentGatewayV1]:
        data = await self._request("GET", "/api/v1/payments/gateways/")
        return _parse(GatewayListResponseV1, data).data

    async def initiate_payment(
        self, token: str, request: InitiatePaymentRequestV1
    ) -> InitiatePaymentResponseV1:
        data = await self._request(
            "POST",
            "/api/v1/payments/initiate/",
            token=token,
            json=request.model_dump(mode="json", exclude_none=True),
        )
        return _parse(InitiatePaymentResponseV1, data or {})

    async def verify_payment(self, params: Mapping[str, str]) -> PaymentVerificationV1:
        # The callback is keyed by the gateway reference, not by the buyer token.
        data = await self._request("POST", "/api/v1/payments/callback/", json=dict(params))
        return _parse(PaymentVerificationV1, data or {})

    async def create_order(self, token: str, request: CreateOrderRequestV1) -> OrderResponseV1:
        data = await self._request(
            "POST",
            "/api/v1/marketplace/orders/create/",
            token=token,
            json=request.model_dump(mode="json", exclude_none=True),
        )
        return _parse(OrderResponseV1, data)

    async def get_order(self, token: str, order_id: int) -> OrderResponseV1:
        data = await self._request("GET", f"/api/v1/marketplace/orders/{order_id}/", token=token)
        return _parse(OrderResponseV1, data)

    async def list_orders(self, token: str) -> list[OrderResponseV1]:
        data = await self._request("GET", "/api/v1/marketplace/orders/", token=token)
        return _parse(OrderListResponseV1, data).results

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        token: str | None = None,
        json: dict[str, Any] | None = None,
    ) -> Any:
        headers = {"Authorization": f"Token {token}"} if token else {}
        try:
            response = await self._client.request(method, path, json=json, headers=headers)
        except httpx.HTTPError as e:
            logger.warning("%s %s failed: %s", method, path, e)
            raise MarketplaceUnavailableError(f"{self._base_url}{path}", str(e)) from e

        payload = _decode_body(response)
        if response.is_error:
            logger.warning("%s %s returned HTTP %s", method, path, response.status_code)
            raise MarketplaceHTTPError(response.status_code, payload)
        return payload


def _decode_body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


def _parse_id(data: Any, what: str) -> int:
    value = data.get("id") if isinstance(data, dict) else None
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise MarketplaceBackendError(f"{what} response did not contain an id") from e


def _parse(model: type[BaseModel], data: Any) -> Any:
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise MarketplaceBackendError(f"Unexpected {model.__name__} payload: {e}") from e
