from __future__ import annotations

import asyncio
from collections import Counter
from collections.abc import Mapping
from datetime import datetime, timezone
from decimal import Decimal

from packages.shared.schemas.marketplace_v1 import (
    CartLineV1,
    CreateOrderRequestV1,
    DeliveryRequestV1,
    GatewayItemV1,
    InitiatePaymentRequestV1,
    InitiatePaymentResponseV1,
    MyCartV1,
    OrderItemV1,
    OrderResponseV1,
    PaymentGatewayV1,
    PaymentVerificationDataV1,
    PaymentVerificationV1,
)
from services.storefront.app.services.marketplace_base import (
    MarketplaceBackendError,
    MarketplaceHTTPError,
    MarketplaceUnavailableError,
)

_COMPLETED_STATUSES = frozenset({"completed", "complete", "success"})


class MarketplaceMockBackend:
    """Deterministic in-process backend for local dev and tests.

    Failure knobs are plain attributes so tests can flip them between calls. Every call is
    counted in `calls` by method name.
    """

    vendor = "MARKETPLACE_MOCK"

    def __init__(self) -> None:
        self.calls: Counter[str] = Counter()
        self.initiate_requests: list[InitiatePaymentRequestV1] = []
        self.order_requests: list[CreateOrderRequestV1] = []
        self.verify_requests: list[dict[str, str]] = []
        self.delivery_requests: list[DeliveryRequestV1] = []
        self.customer_location: tuple[float, float] | None = None

        self.fail_cart_creation = False
        self.fail_cart_items = False
        self.fail_gateway_list = False
        self.fail_initiation_network = False
        self.fail_location_update = False
        self.order_error: MarketplaceBackendError | None = None
        self.verification_error: MarketplaceBackendError | None = None
        self.verification_outcome: PaymentVerificationV1 | None = None
        # Optional artificial latency, lets tests interleave concurrent callers.
        self.latency_s = 0.0

        self.gateways = [
            PaymentGatewayV1(slug="khalti", name="Khalti Wallet", logo="khalti.png"),
            PaymentGatewayV1(slug="esewa", name="eSewa", logo="esewa.png"),
            PaymentGatewayV1(
                slug="mobile_banking",
                name="Mobile Banking",
                logo="mbank.png",
                items=[
                    GatewayItemV1(idx="NABIL", name="Nabil Bank", logo="nabil.png"),
                    GatewayItemV1(idx="NICA", name="NIC Asia", logo="nica.png"),
                ],
            ),
            PaymentGatewayV1(
                slug="ebanking",
                name="E-Banking",
                logo="ebank.png",
                items=[GatewayItemV1(idx="GLOBAL", name="Global IME", logo="gibl.png")],
            ),
            PaymentGatewayV1(slug="card", name="Credit/Debit Card", logo="card.png"),
        ]
        # Per-gateway initiation outcomes. Gateways not listed redirect to a hosted page.
        self.initiation_outcomes: dict[str, InitiatePaymentResponseV1] = {
            "esewa": InitiatePaymentResponseV1(success=True, message="Payment captured"),
        }
        # Listing id -> (name, unit price). Lines for other listings carry no price.
        self.catalog: dict[int, tuple[str, Decimal]] = {}

        self.carts: dict[int, dict[int, CartLineV1]] = {}
        self.orders: list[OrderResponseV1] = []
        self._next_cart_id = 1000
        self._next_item_id = 5000

    async def create_cart(self, token: str) -> int:
        del token
        self.calls["create_cart"] += 1
        await self._pause()
        if self.fail_cart_creation:
            raise MarketplaceHTTPError(500, {"detail": "Failed to create cart"})

        self._next_cart_id += 1
        self.carts[self._next_cart_id] = {}
        return self._next_cart_id

    async def get_my_cart(self, token: str) -> MyCartV1:
        del token
        self.calls["get_my_cart"] += 1
        await self._pause()
        if not self.carts:
            raise MarketplaceHTTPError(404, {"detail": "Not found."})

        cart_id = max(self.carts)
        lines = list(self.carts[cart_id].values())
        subtotal = sum(
            ((line.unit_price or Decimal("0")) * line.quantity for line in lines), Decimal("0")
        )
        return MyCartV1(id=cart_id, items=lines, subtotal=subtotal, total=subtotal)

    async def add_cart_item(self, token: str, cart_id: int, product_id: int, quantity: int) -> int:
        del token
        self.calls["add_cart_item"] += 1
        lines = await self._cart_lines(cart_id)

        self._next_item_id += 1
        listing = self.catalog.get(product_id)
        lines[self._next_item_id] = CartLineV1(
            id=self._next_item_id,
            product=product_id,
            quantity=quantity,
            unit_price=listing[1] if listing else None,
            product_details={"name": listing[0]} if listing else None,
        )
        return self._next_item_id

    async def update_cart_item(
        self, token: str, cart_id: int, item_id: int, quantity: int
    ) -> None:
        del token
        self.calls["update_cart_item"] += 1
        lines = await self._cart_lines(cart_id)
        line = lines.get(item_id)
        if line is None:
            raise MarketplaceHTTPError(404, {"detail": "Not found."})
        lines[item_id] = line.model_copy(update={"quantity": quantity})

    async def delete_cart_item(self, token: str, cart_id: int, item_id: int) -> None:
        del token
        self.calls["delete_cart_item"] += 1
        lines = await self._cart_lines(cart_id)
        if lines.pop(item_id, None) is None:
            raise MarketplaceHTTPError(404, {"detail": "Not found."})

    async def update_customer_location(
        self, token: str, latitude: float, longitude: float
    ) -> None:
        del token
        self.calls["update_customer_location"] += 1
        await self._pause()
        if self.fail_location_update:
            raise MarketplaceUnavailableError("mock://customer/location/", "connection reset")
        self.customer_location = (latitude, longitude)

    async def create_delivery(self, token: str, request: DeliveryRequestV1) -> None:
        del token
        self.calls["create_delivery"] += 1
        await self._pause()
        self.delivery_requests.append(request)

    async def list_gateways(self) -> list[PaymentGatewayV1]:
        self.calls["list_gateways"] += 1
        await self._pause()
        if self.fail_gateway_list:
            raise MarketplaceUnavailableError("mock://payments/gateways/", "connection refused")
        return list(self.gateways)

    async def initiate_payment(
        self, token: str, request: InitiatePaymentRequestV1
    ) -> InitiatePaymentResponseV1:
        del token
        self.calls["initiate_payment"] += 1
        self.initiate_requests.append(request)
        await self._pause()
        if self.fail_initiation_network:
            raise MarketplaceUnavailableError("mock://payments/initiate/", "timed out")

        outcome = self.initiation_outcomes.get(request.gateway)
        if outcome is not None:
            return outcome
        return InitiatePaymentResponseV1(
            payment_url=f"https://pay.example.test/{request.gateway}/{request.cart_id}",
        )

    async def verify_payment(self, params: Mapping[str, str]) -> PaymentVerificationV1:
        self.calls["verify_payment"] += 1
        self.verify_requests.append(dict(params))
        await self._pause()
        if self.verification_error is not None:
            raise self.verification_error
        if self.verification_outcome is not None:
            return self.verification_outcome

        reference = params.get("pidx") or params.get("transaction_id")
        status = (params.get("status") or "").strip().lower()
        if not reference or (status and status not in _COMPLETED_STATUSES):
            return PaymentVerificationV1(status="error", message="Payment verification failed.")

        amount = params.get("total_amount") or params.get("amount")
        return PaymentVerificationV1(
            status="success",
            message="Payment verified successfully.",
            data=PaymentVerificationDataV1(
                order_number=params.get("purchase_order_id") or f"MB-{reference}",
                amount=Decimal(amount) if amount else None,
            ),
        )

    async def create_order(self, token: str, request: CreateOrderRequestV1) -> OrderResponseV1:
        del token
        self.calls["create_order"] += 1
        self.order_requests.append(request)
        await self._pause()
        if self.order_error is not None:
            raise self.order_error

        lines = self.carts.get(request.cart_id)
        if lines is None:
            raise MarketplaceHTTPError(
                400, {"cart_id": ["Invalid pk - object does not exist."]}
            )
        if not lines:
            raise MarketplaceHTTPError(400, {"cart": ["Cart is empty."]})

        # Only catalog listings are itemized; the client fills in the rest from its cart.
        items = [
            OrderItemV1(
                id=line.id,
                product_name=line.display_name,
                quantity=line.quantity,
                price=line.unit_price,
                total=line.unit_price * line.quantity,
            )
            for line in lines.values()
            if line.unit_price is not None
        ]
        order_id = len(self.orders) + 1
        order = OrderResponseV1(
            id=order_id,
            order_number=f"MB-{request.cart_id}-{order_id:04d}",
            status="pending",
            total_amount=sum((item.total for item in items), Decimal("0")),
            items=items,
            delivery_info=request.delivery_info,
            payment_method=request.payment_method,
            created_at=datetime.now(timezone.utc).isoformat(),
        )
        self.orders.append(order)
        # An ordered cart is closed on the backend.
        del self.carts[request.cart_id]
        return order

    async def get_order(self, token: str, order_id: int) -> OrderResponseV1:
        del token
        self.calls["get_order"] += 1
        for order in self.orders:
            if order.id == order_id:
                return order
        raise MarketplaceHTTPError(404, {"detail": "Not found."})

    async def list_orders(self, token: str) -> list[OrderResponseV1]:
        del token
        self.calls["list_orders"] += 1
        return list(self.orders)

    async def aclose(self) -> None:
        return None

    async def _cart_lines(self, cart_id: int) -> dict[int, CartLineV1]:
        await self._pause()
        if self.fail_cart_items:
            raise MarketplaceHTTPError(400, {"detail": "Product is not available"})
        lines = self.carts.get(cart_id)
        if lines is None:
            raise MarketplaceHTTPError(404, {"detail": "Not found."})
        return lines

    async def _pause(self) -> None:
        await asyncio.sleep(self.latency_s)
