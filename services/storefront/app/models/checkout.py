from __future__ import annotations

from decimal import Decimal

from packages.shared.schemas.marketplace_v1 import DeliveryInfoV1, PaymentGatewayV1
from pydantic import BaseModel, Field
from services.storefront.app.checkout.confirmation import ConfirmationView
from services.storefront.app.checkout.payment import GatewaySelector


class StageChangeRequest(BaseModel):
    stage: str


class LocationRequest(BaseModel):
    latitude: float
    longitude: float
    # Also store the pin on the buyer profile.
    save: bool = False


class LocationOut(BaseModel):
    latitude: float
    longitude: float
    selected: bool


class DeliveryFormRequest(BaseModel):
    name: str = ""
    phone: str = ""
    address: str = ""
    city: str = ""
    state: str = ""
    zip_code: str = ""
    email: str = ""
    delivery_instructions: str = ""


class DeliveryOut(BaseModel):
    status: str
    stage: str
    cart_id: int | None = None
    delivery: DeliveryInfoV1 | None = None
    message: str | None = None


class GatewaySelectRequest(BaseModel):
    slug: str


class BankSelectRequest(BaseModel):
    slug: str
    bank_id: str


class ConfirmPaymentRequest(BaseModel):
    coupon_code: str | None = None


class CardDetailsRequest(BaseModel):
    number: str
    expiry: str
    cvv: str
    coupon_code: str | None = None


class PaymentStateOut(BaseModel):
    active_method: str | None = None
    active_label: str | None = None
    bank_name: str | None = None
    expanded_slug: str | None = None
    modal: str
    processing: bool
    card_masked: str | None = None

    @classmethod
    def from_selector(cls, selector: GatewaySelector) -> "PaymentStateOut":
        active = selector.active
        return cls(
            active_method=active.method_id if active is not None else None,
            active_label=active.label if active is not None else None,
            bank_name=getattr(active, "bank_name", None),
            expanded_slug=selector.expanded_slug,
            modal=selector.modal.value,
            processing=selector.processing,
            card_masked=selector.card_masked,
        )


class GatewaysOut(BaseModel):
    gateways: list[PaymentGatewayV1]
    cod_label: str
    warning: str | None = None


class ConfirmationLineOut(BaseModel):
    name: str
    quantity: int
    unit_price: Decimal | None = None
    line_total: Decimal | None = None
    seller: str | None = None


class ConfirmationOut(BaseModel):
    success: bool
    title: str
    message: str
    order_id: int | None = None
    order_number: str | None = None
    status: str | None = None
    payment_method: str | None = None
    lines: list[ConfirmationLineOut] = Field(default_factory=list)
    sub_total: Decimal | None = None
    shipping: Decimal | None = None
    total: Decimal | None = None
    delivery_summary: str | None = None
    next_steps: list[str] = Field(default_factory=list)
    references: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_view(cls, view: ConfirmationView) -> "ConfirmationOut":
        return cls(
            success=view.success,
            title=view.title,
            message=view.message,
            order_id=view.order_id,
            order_number=view.order_number,
            status=view.status,
            payment_method=view.payment_method,
            lines=[
                ConfirmationLineOut(
                    name=line.name,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    line_total=line.line_total,
                    seller=line.seller,
                )
                for line in view.lines
            ],
            sub_total=view.sub_total,
            shipping=view.shipping,
            total=view.total,
            delivery_summary=view.delivery_summary,
            next_steps=list(view.next_steps),
            references=dict(view.references),
        )


class PaymentResultOut(BaseModel):
    outcome: str
    stage: str
    payment_label: str | None = None
    redirect_url: str | None = None
    message: str | None = None
    payment: PaymentStateOut
    confirmation: ConfirmationOut | None = None


class CheckoutStateOut(BaseModel):
    session_id: str
    stage: str
    last_error: str | None = None
    cart_id: int | None = None
    location: LocationOut
    delivery: DeliveryInfoV1 | None = None
    payment: PaymentStateOut
    confirmation: ConfirmationOut | None = None
