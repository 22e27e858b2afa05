from __future__ import annotations

import logging
from typing import Any

from packages.shared.schemas.marketplace_v1 import (
    CreateOrderRequestV1,
    DeliveryInfoV1,
    OrderResponseV1,
)
from services.storefront.app.checkout.auth import TokenStore
from services.storefront.app.checkout.cart import CartStore
from services.storefront.app.checkout.errors import (
    AuthRequiredError,
    CartMissingError,
    EmptyCartError,
    OrderCreationError,
    OrderLookupError,
    OrderValidationError,
)
from services.storefront.app.services.marketplace_base import (
    MarketplaceBackend,
    MarketplaceBackendError,
    MarketplaceHTTPError,
)

logger = logging.getLogger(__name__)

GENERIC_ORDER_FAILURE = "Failed to create order. Please try again."
_NON_FIELD_KEYS = frozenset({"detail", "message", "error", "status", "code"})


def flatten_field_errors(payload: Any) -> list[str]:
    """Collect every message from a field-error body, depth first, in key order."""
    if isinstance(payload, str):
        return [payload] if payload.strip() else []
    if isinstance(payload, list):
        out: list[str] = []
        for entry in payload:
            out.extend(flatten_field_errors(entry))
        return out
    if isinstance(payload, dict):
        out = []
        for value in payload.values():
            out.extend(flatten_field_errors(value))
        return out
    return []


def join_messages(messages: list[str]) -> str:
    """`["Invalid", "Required"]` -> `"Invalid. Required."`"""
    parts = [m.strip().rstrip(".").strip() for m in messages]
    parts = [p for p in parts if p]
    if not parts:
        return ""
    return ". ".join(parts) + "."


class OrderSubmission:
    """Turns cart + delivery + payment label into one backend order.

    The cart is cleared only after the backend confirms the order. On any failure the
    cart and the caller's delivery data are left exactly as they were.
    """

    def __init__(self, backend: MarketplaceBackend, cart: CartStore, tokens: TokenStore) -> None:
        self._backend = backend
        self._cart = cart
        self._tokens = tokens

    async def create_order(
        self,
        cart_id: int | None,
        delivery: DeliveryInfoV1,
        payment_label: str,
        *,
        coupon_code: str | None = None,
    ) -> OrderResponseV1:
        token = self._tokens.get()
        if not token:
            raise AuthRequiredError()
        if self._cart.is_empty():
            raise EmptyCartError()
        if not cart_id:
            raise CartMissingError()

        # Edits made after the cart was created must reach the backend before it is ordered.
        await self._cart.sync_to_backend()

        request = CreateOrderRequestV1(
            cart_id=cart_id,
            delivery_info=delivery,
            payment_method=payment_label,
            coupon_code=coupon_code or None,
        )

        try:
            order = await self._backend.create_order(token, request)
        except MarketplaceHTTPError as e:
            raise _order_error(e) from e
        except MarketplaceBackendError as e:
            logger.warning("Order creation for cart %s failed: %s", cart_id, e)
            raise OrderCreationError(GENERIC_ORDER_FAILURE) from e

        logger.info("Order %s created for cart %s", order.order_number, cart_id)
        self._cart.clear_cart()
        return order

    async def get_order(self, order_id: int) -> OrderResponseV1:
        token = self._require_token()
        try:
            return await self._backend.get_order(token, order_id)
        except MarketplaceHTTPError as e:
            raise OrderLookupError(e.detail() or "Failed to fetch order details") from e
        except MarketplaceBackendError as e:
            raise OrderLookupError("Failed to fetch order details") from e

    async def list_orders(self) -> list[OrderResponseV1]:
        token = self._require_token()
        try:
            return await self._backend.list_orders(token)
        except MarketplaceHTTPError as e:
            raise OrderLookupError(e.detail() or "Failed to fetch orders") from e
        except MarketplaceBackendError as e:
            raise OrderLookupError("Failed to fetch orders") from e

    def _require_token(self) -> str:
        token = self._tokens.get()
        if not token:
            raise AuthRequiredError()
        return token


def _order_error(e: MarketplaceHTTPError) -> Exception:
    if e.status_code in (401, 403):
        return AuthRequiredError()

    if 400 <= e.status_code < 500 and isinstance(e.payload, dict):
        field_errors = {k: v for k, v in e.payload.items() if k not in _NON_FIELD_KEYS}
        message = join_messages(flatten_field_errors(field_errors))
        if message:
            logger.info("Order rejected by backend validation: %s", message)
            return OrderValidationError(message, field_errors=field_errors)

    logger.warning("Order creation failed with HTTP %s", e.status_code)
    return OrderCreationError(e.detail() or GENERIC_ORDER_FAILURE)
