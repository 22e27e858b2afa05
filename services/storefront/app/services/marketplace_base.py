from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol

from packages.shared.schemas.marketplace_v1 import (
    CreateOrderRequestV1,
    DeliveryRequestV1,
    InitiatePaymentRequestV1,
    InitiatePaymentResponseV1,
    MyCartV1,
    OrderResponseV1,
    PaymentGatewayV1,
    PaymentVerificationV1,
)


class MarketplaceBackendError(Exception):
    """Base class for marketplace backend errors."""


class MarketplaceUnavailableError(MarketplaceBackendError):
    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"Marketplace backend unreachable at {url}: {reason}")
        self.url = url
        self.reason = reason


class MarketplaceHTTPError(MarketplaceBackendError):
    def __init__(self, status_code: int, payload: Any) -> None:
        super().__init__(f"Marketplace backend returned HTTP {status_code}")
        self.status_code = status_code
        self.payload = payload

    def detail(self) -> str | None:
        """Best-effort human readable message from the error body."""
        if isinstance(self.payload, dict):
            for key in ("detail", "message", "error"):
                value = self.payload.get(key)
                if isinstance(value, str) and value.strip():
                    return value.strip()
        if isinstance(self.payload, str) and self.payload.strip():
            return self.payload.strip()
        return None


class MarketplaceBackend(Protocol):
    vendor: str

    async def create_cart(self, token: str) -> int: ...

    async def get_my_cart(self, token: str) -> MyCartV1: ...

    async def add_cart_item(self, token: str, cart_id: int, product_id: int, quantity: int) -> int:
        """Adds a line to the backend cart and returns the backend line id."""
        ...

    async def update_cart_item(
        self, token: str, cart_id: int, item_id: int, quantity: int
    ) -> None: ...

    async def delete_cart_item(self, token: str, cart_id: int, item_id: int) -> None: ...

    async def update_customer_location(
        self, token: str, latitude: float, longitude: float
    ) -> None: ...

    async def create_delivery(self, token: str, request: DeliveryRequestV1) -> None: ...

    async def list_gateways(self) -> list[PaymentGatewayV1]: ...

    async def initiate_payment(
        self, token: str, request: InitiatePaymentRequestV1
    ) -> InitiatePaymentResponseV1: ...

    async def verify_payment(self, params: Mapping[str, str]) -> PaymentVerificationV1: ...

    async def create_order(self, token: str, request: CreateOrderRequestV1) -> OrderResponseV1: ...

    async def get_order(self, token: str, order_id: int) -> OrderResponseV1: ...

    async def list_orders(self, token: str) -> list[OrderResponseV1]: ...

    async def aclose(self) -> None: ...
