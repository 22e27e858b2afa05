"""Builds what the buyer sees once checkout finishes. Pure functions, no backend calls."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation

from packages.shared.schemas.marketplace_v1 import OrderResponseV1, PaymentVerificationV1
from services.storefront.app.checkout.cart import CartSnapshot

NEXT_STEPS = (
    "We have sent your order to the seller for confirmation.",
    "You will be notified when the order is dispatched.",
    "Track progress any time from My Orders.",
)

# Gateway `status` values that mean the buyer finished paying.
_COMPLETED_STATUSES = frozenset({"completed", "complete", "success"})


@dataclass(frozen=True, slots=True)
class ConfirmationLine:
    name: str
    quantity: int
    unit_price: Decimal | None = None
    line_total: Decimal | None = None
    seller: str | None = None


@dataclass(frozen=True, slots=True)
class ConfirmationView:
    success: bool
    title: str
    message: str
    order_id: int | None = None
    order_number: str | None = None
    status: str | None = None
    payment_method: str | None = None
    lines: tuple[ConfirmationLine, ...] = ()
    sub_total: Decimal | None = None
    shipping: Decimal | None = None
    total: Decimal | None = None
    delivery_summary: str | None = None
    next_steps: tuple[str, ...] = ()
    references: dict[str, str] = field(default_factory=dict)


def from_order(order: OrderResponseV1, cart: CartSnapshot | None = None) -> ConfirmationView:
    """Confirmation for a structured order.

    `cart` is the snapshot taken just before submission; its lines and totals fill in
    when the backend response does not itemize the order.
    """

    if order.items:
        lines = tuple(
            ConfirmationLine(
                name=i.product_name,
                quantity=i.quantity,
                unit_price=i.price,
                line_total=i.total,
            )
            for i in order.items
        )
    elif cart is not None:
        lines = tuple(
            ConfirmationLine(
                name=i.name, quantity=i.quantity, unit_price=i.price, line_total=i.line_total
            )
            for i in cart.items
        )
    else:
        lines = ()

    total = order.total_amount
    if not total and cart is not None:
        total = cart.total

    delivery_summary = None
    if order.delivery_info is not None:
        d = order.delivery_info
        delivery_summary = (
            f"{d.customer_name}, {d.phone_number}, {d.address}, {d.city}, {d.state} {d.zip_code}"
        )

    return ConfirmationView(
        success=True,
        title="Order placed",
        message=f"Thank you! Your order {order.order_number} has been placed.",
        order_id=order.id,
        order_number=order.order_number,
        status=order.status,
        payment_method=order.payment_method,
        lines=lines,
        sub_total=cart.sub_total if cart is not None else None,
        shipping=cart.shipping if cart is not None else None,
        total=total,
        delivery_summary=delivery_summary,
        next_steps=NEXT_STEPS,
    )


def from_gateway_return(query: Mapping[str, str]) -> ConfirmationView:
    """What a hosted gateway claims on its redirect back.

    The query string is buyer-controlled, so a successful view here is only a claim; the
    payment must still be verified with the backend before the order is treated as paid.
    """

    transaction_id = (query.get("transaction_id") or query.get("pidx") or "").strip()
    purchase_order_id = (query.get("purchase_order_id") or "").strip()
    amount = _parse_amount(query.get("amount"))
    mobile = (query.get("mobile") or "").strip()
    status = (query.get("status") or "").strip()

    references = {
        k: v
        for k, v in (
            ("transaction_id", transaction_id),
            ("purchase_order_id", purchase_order_id),
            ("mobile", mobile),
        )
        if v
    }

    if not transaction_id and not purchase_order_id:
        return ConfirmationView(
            success=False,
            title="Payment not confirmed",
            message="We could not find a payment reference in the gateway response.",
            references=references,
        )

    if status and status.lower() not in _COMPLETED_STATUSES:
        return ConfirmationView(
            success=False,
            title="Payment not completed",
            message=f"The gateway reported the payment as \"{status}\". You have not been charged.",
            references=references,
        )

    return ConfirmationView(
        success=True,
        title="Payment received",
        message="Your payment was completed with the gateway.",
        order_number=purchase_order_id or None,
        total=amount,
        next_steps=NEXT_STEPS,
        references=references,
    )


def from_payment_verification(
    result: PaymentVerificationV1, claimed: ConfirmationView
) -> ConfirmationView:
    """Confirmation once the backend has verified a gateway return.

    Backend data wins; the gateway's claim only fills what the backend left out.
    """
    data = result.data
    lines: tuple[ConfirmationLine, ...] = ()
    order_number = claimed.order_number
    total = claimed.total
    if data is not None:
        order_number = data.order_number or order_number
        total = data.amount if data.amount is not None else total
        lines = tuple(
            ConfirmationLine(name=s.product_name, quantity=s.quantity, seller=s.seller)
            for s in data.marketplace_sales
        )

    return ConfirmationView(
        success=True,
        title="Payment successful",
        message=(result.message or "").strip() or "Your payment has been verified.",
        order_number=order_number,
        lines=lines,
        total=total,
        next_steps=NEXT_STEPS,
        references=dict(claimed.references),
    )


def verification_failed(
    message: str | None, references: Mapping[str, str] | None = None
) -> ConfirmationView:
    return ConfirmationView(
        success=False,
        title="Payment not confirmed",
        message=(message or "").strip() or "Payment verification failed.",
        references=dict(references or {}),
    )


def failure(message: str) -> ConfirmationView:
    return ConfirmationView(success=False, title="Order failed", message=message)


def _parse_amount(raw: str | None) -> Decimal | None:
    if not raw:
        return None
    try:
        return Decimal(raw.strip())
    except InvalidOperation:
        return None
