"""Marketplace wire schema (v1).

Payloads exchanged with the marketplace REST backend during checkout. Field names follow
the backend serializers, so these models can be dumped straight into request bodies.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class DeliveryInfoV1(BaseModel):
    customer_name: str
    phone_number: str
    email: str | None = None
    address: str
    city: str
    state: str
    zip_code: str
    latitude: float
    longitude: float
    delivery_instructions: str | None = None


class CreateOrderRequestV1(BaseModel):
    cart_id: int
    delivery_info: DeliveryInfoV1
    payment_method: str | None = None
    coupon_code: str | None = None


class OrderItemV1(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    product_name: str
    quantity: int
    price: Decimal
    total: Decimal


class OrderResponseV1(BaseModel):
    """An order as created by the backend. Never edited by the client."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    id: int
    order_number: str
    status: str
    total_amount: Decimal
    items: list[OrderItemV1] = Field(default_factory=list)
    delivery_info: DeliveryInfoV1 | None = None
    payment_method: str | None = None
    created_at: str


class OrderListResponseV1(BaseModel):
    model_config = ConfigDict(extra="ignore")

    count: int | None = None
    results: list[OrderResponseV1] = Field(default_factory=list)


class GatewayItemV1(BaseModel):
    """A sub-choice of a gateway, typically a bank."""

    model_config = ConfigDict(extra="ignore")

    idx: int | str
    name: str
    logo: str = ""


class PaymentGatewayV1(BaseModel):
    model_config = ConfigDict(extra="ignore")

    slug: str
    name: str
    logo: str = ""
    items: list[GatewayItemV1] = Field(default_factory=list)


class GatewayListResponseV1(BaseModel):
    model_config = ConfigDict(extra="ignore")

    status: str | None = None
    data: list[PaymentGatewayV1] = Field(default_factory=list)


class InitiatePaymentRequestV1(BaseModel):
    cart_id: int
    gateway: str
    customer_name: str
    customer_email: str = ""
    customer_phone: str
    tax_amount: Decimal = Decimal("0")
    shipping_cost: Decimal
    return_url: str
    bank: str | None = None


class InitiatePaymentResponseV1(BaseModel):
    model_config = ConfigDict(extra="ignore")

    payment_url: str | None = None
    success: bool | None = None
    message: str | None = None


class CartItemRequestV1(BaseModel):
    cart: int
    product: int
    quantity: int = Field(..., ge=1)


class CartLineV1(BaseModel):
    """A line of the backend cart. `product` is the marketplace listing id."""

    model_config = ConfigDict(extra="ignore")

    id: int
    product: int
    quantity: int = 1
    unit_price: Decimal | None = None
    product_details: dict[str, Any] | None = None

    @property
    def display_name(self) -> str:
        details = self.product_details or {}
        # Listing details wrap the catalog product details on some endpoints.
        nested = details.get("product_details")
        if isinstance(nested, dict):
            details = nested
        name = details.get("name")
        return name.strip() if isinstance(name, str) and name.strip() else "Product"


class MyCartV1(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    items: list[CartLineV1] = Field(default_factory=list)
    subtotal: Decimal | None = None
    shipping: Decimal | None = None
    total: Decimal | None = None


class CustomerLocationV1(BaseModel):
    latitude: float
    longitude: float


class DeliveryRequestV1(DeliveryInfoV1):
    cart: int


class SaleLineV1(BaseModel):
    model_config = ConfigDict(extra="ignore")

    product_name: str
    quantity: int = 1
    seller: str | None = None


class PaymentVerificationDataV1(BaseModel):
    model_config = ConfigDict(extra="ignore")

    order_number: str | None = None
    amount: Decimal | None = None
    marketplace_sales: list[SaleLineV1] = Field(default_factory=list)


class PaymentVerificationV1(BaseModel):
    """Backend verdict on the parameters a hosted gateway sent back."""

    model_config = ConfigDict(extra="ignore")

    status: str | None = None
    message: str | None = None
    data: PaymentVerificationDataV1 | None = None

    @property
    def verified(self) -> bool:
        return (self.status or "").strip().lower() == "success"
