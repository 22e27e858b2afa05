"""Checkout flow controller.

One flow per checkout session. It owns the session's cart store and wires the delivery,
payment, order and confirmation steps together through an explicit stage machine:

    CART_REVIEW -> DELIVERY_ENTRY -> PAYMENT_SELECT -> ORDER_PENDING -> CONFIRMED | FAILED
                                                   \\-> AWAITING_GATEWAY (hosted payment page)

Every failure leaves the flow on a stage the buyer can retry from, with the cart and the
entered delivery details intact.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from packages.shared.schemas.events import EntityTypeV1, EventTypeV1
from packages.shared.schemas.marketplace_v1 import OrderResponseV1, PaymentGatewayV1
from services.storefront.app.checkout import confirmation
from services.storefront.app.checkout.auth import (
    InMemoryTokenStore,
    PendingActionQueue,
    TokenStore,
)
from services.storefront.app.checkout.cart import CartStore
from services.storefront.app.checkout.confirmation import ConfirmationView
from services.storefront.app.checkout.delivery import (
    DeliveryCapture,
    DeliveryForm,
    DeliveryHandoff,
    DeliveryResult,
    DeliveryStatus,
)
from services.storefront.app.checkout.errors import (
    AuthRequiredError,
    CheckoutError,
    CheckoutStateError,
    EmptyCartError,
    PaymentInitiationError,
    PaymentVerificationError,
)
from services.storefront.app.checkout.orders import OrderSubmission
from services.storefront.app.checkout.payment import (
    CardDetails,
    CashOnDelivery,
    GatewaySelector,
    PaymentOutcome,
    PaymentOutcomeKind,
)
from services.storefront.app.services.marketplace_base import (
    MarketplaceBackend,
    MarketplaceBackendError,
    MarketplaceHTTPError,
)
from services.storefront.app.settings import Settings

logger = logging.getLogger(__name__)


class CheckoutStage(str, Enum):
    CART_REVIEW = "CART_REVIEW"
    DELIVERY_ENTRY = "DELIVERY_ENTRY"
    PAYMENT_SELECT = "PAYMENT_SELECT"
    AWAITING_GATEWAY = "AWAITING_GATEWAY"
    ORDER_PENDING = "ORDER_PENDING"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"


ALLOWED_TRANSITIONS: Mapping[CheckoutStage, frozenset[CheckoutStage]] = {
    CheckoutStage.CART_REVIEW: frozenset({CheckoutStage.DELIVERY_ENTRY}),
    CheckoutStage.DELIVERY_ENTRY: frozenset(
        {
            CheckoutStage.PAYMENT_SELECT,
            CheckoutStage.CART_REVIEW,
        }
    ),
    CheckoutStage.PAYMENT_SELECT: frozenset(
        {
            CheckoutStage.ORDER_PENDING,
            CheckoutStage.AWAITING_GATEWAY,
            CheckoutStage.DELIVERY_ENTRY,
            CheckoutStage.CART_REVIEW,
        }
    ),
    CheckoutStage.AWAITING_GATEWAY: frozenset(
        {
            CheckoutStage.CONFIRMED,
            CheckoutStage.PAYMENT_SELECT,
        }
    ),
    CheckoutStage.ORDER_PENDING: frozenset(
        {
            CheckoutStage.CONFIRMED,
            CheckoutStage.FAILED,
        }
    ),
    CheckoutStage.FAILED: frozenset(
        {
            CheckoutStage.PAYMENT_SELECT,
            CheckoutStage.DELIVERY_ENTRY,
            CheckoutStage.CART_REVIEW,
        }
    ),
    CheckoutStage.CONFIRMED: frozenset({CheckoutStage.CART_REVIEW}),
}


@dataclass(frozen=True, slots=True)
class FlowEvent:
    entity_type: EntityTypeV1
    entity_id: str
    event_type: EventTypeV1
    payload: dict[str, Any] = field(default_factory=dict)


class CheckoutFlow:
    def __init__(
        self,
        backend: MarketplaceBackend,
        settings: Settings,
        *,
        tokens: TokenStore | None = None,
        session_id: str = "",
    ) -> None:
        self.session_id = session_id
        self._backend = backend
        self._settings = settings

        self.tokens = tokens if tokens is not None else InMemoryTokenStore()
        self.pending = PendingActionQueue()
        self.cart = CartStore(backend, self.tokens, shipping_fee=settings.shipping_fee)
        self.delivery = DeliveryCapture(
            backend,
            self.cart,
            self.tokens,
            self.pending,
            fallback_location=(settings.fallback_latitude, settings.fallback_longitude),
            register_delivery=settings.register_delivery,
        )
        self.payment = self._new_selector()
        self.orders = OrderSubmission(backend, self.cart, self.tokens)

        self.stage = CheckoutStage.CART_REVIEW
        self.handoff: DeliveryHandoff | None = None
        self.order: OrderResponseV1 | None = None
        self.confirmation: ConfirmationView | None = None
        self.last_error: str | None = None
        self._events: list[FlowEvent] = []
        self._emit(EntityTypeV1.SESSION, session_id, EventTypeV1.SESSION_CREATED)

    # -- stage machine ---------------------------------------------------------------

    def can_transition(self, target: CheckoutStage) -> bool:
        return target == self.stage or target in ALLOWED_TRANSITIONS[self.stage]

    def back_to(self, stage: CheckoutStage) -> None:
        """Return to an earlier stage. Cart, delivery form and handoff are kept."""
        if self.stage == CheckoutStage.ORDER_PENDING:
            raise CheckoutStateError(self.stage.value, stage.value)
        if self.stage == CheckoutStage.CONFIRMED:
            self._start_over()
        self._transition(stage)
        if stage != CheckoutStage.AWAITING_GATEWAY:
            self.payment.dismiss_modal()

    def drain_events(self) -> list[FlowEvent]:
        events, self._events = self._events, []
        return events

    # -- cart ------------------------------------------------------------------------

    def begin_checkout(self) -> None:
        self._expect(CheckoutStage.CART_REVIEW)
        if self.cart.is_empty():
            raise EmptyCartError()
        self._transition(CheckoutStage.DELIVERY_ENTRY)

    async def restore_cart(self) -> bool:
        """Load the buyer's open backend cart into this session."""
        self._expect(CheckoutStage.CART_REVIEW)
        restored = await self.cart.restore_from_backend()
        if restored:
            self._emit(
                EntityTypeV1.CART,
                str(self.cart.cart_id),
                EventTypeV1.CART_RESTORED,
                {"cart_id": self.cart.cart_id, "items": self.cart.distinct_item_count},
            )
        return restored

    # -- delivery --------------------------------------------------------------------

    async def submit_delivery(self, form: DeliveryForm) -> DeliveryResult:
        self._expect(CheckoutStage.DELIVERY_ENTRY)
        had_cart = self.cart.cart_id is not None
        try:
            result = await self.delivery.submit(form)
        except CheckoutError as e:
            self._fail_softly(e)
            raise

        if result.status == DeliveryStatus.AUTH_REQUIRED:
            self.last_error = "Please log in to continue to checkout."
            self._emit(EntityTypeV1.DELIVERY, self.session_id, EventTypeV1.DELIVERY_HELD_FOR_AUTH)
            return result

        assert result.handoff is not None
        self._accept_handoff(result.handoff, cart_created=not had_cart)
        return result

    async def authenticate(self, token: str) -> DeliveryHandoff | None:
        """Store the session token and replay the delivery submit that was waiting on it."""
        token = (token or "").strip()
        if not token:
            # The held submit stays queued for a real login.
            raise AuthRequiredError("Login did not return a session token.")
        self.tokens.set(token)
        self._emit(EntityTypeV1.SESSION, self.session_id, EventTypeV1.AUTHENTICATED)

        if self.pending.pending is None:
            return None

        had_cart = self.cart.cart_id is not None
        try:
            replayed = await self.pending.on_authenticated()
        except CheckoutError as e:
            self._fail_softly(e)
            raise

        if isinstance(replayed, DeliveryHandoff) and self.stage == CheckoutStage.DELIVERY_ENTRY:
            self._accept_handoff(replayed, cart_created=not had_cart)
            return replayed
        return None

    def _accept_handoff(self, handoff: DeliveryHandoff, *, cart_created: bool) -> None:
        if cart_created:
            self._emit(
                EntityTypeV1.CART,
                str(handoff.cart_id),
                EventTypeV1.CART_CREATED,
                {"cart_id": handoff.cart_id},
            )
        self.handoff = handoff
        self.last_error = None
        self._transition(CheckoutStage.PAYMENT_SELECT)
        self._emit(
            EntityTypeV1.DELIVERY,
            str(handoff.cart_id),
            EventTypeV1.DELIVERY_CAPTURED,
            {"city": handoff.delivery.city, "state": handoff.delivery.state},
        )

    # -- payment ---------------------------------------------------------------------

    async def load_gateways(self) -> list[PaymentGatewayV1]:
        self._expect(CheckoutStage.PAYMENT_SELECT)
        gateways = await self.payment.load_gateways()
        if self.payment.warning:
            self._emit(
                EntityTypeV1.PAYMENT,
                self.session_id,
                EventTypeV1.GATEWAYS_FALLBACK,
                {"gateways": [g.slug for g in gateways]},
            )
        return gateways

    def select_gateway(self, slug: str) -> None:
        self._expect(CheckoutStage.PAYMENT_SELECT)
        self.payment.select_gateway(slug)

    def select_bank(self, slug: str, bank_id: str) -> None:
        self._expect(CheckoutStage.PAYMENT_SELECT)
        self.payment.select_bank(slug, bank_id)

    def dismiss_modal(self) -> None:
        was_processing = self.payment.processing
        self.payment.dismiss_modal()
        if was_processing:
            self._emit(EntityTypeV1.PAYMENT, self.session_id, EventTypeV1.PAYMENT_CANCELLED)

    async def confirm_payment(self, *, coupon_code: str | None = None) -> PaymentOutcome:
        self._expect(CheckoutStage.PAYMENT_SELECT)
        handoff = self._require_handoff()
        try:
            outcome = await self.payment.confirm(handoff)
        except CheckoutError as e:
            self._payment_failed(e)
            raise
        return await self._after_payment(outcome, coupon_code=coupon_code)

    async def submit_card_details(
        self, card: CardDetails, *, coupon_code: str | None = None
    ) -> PaymentOutcome:
        self._expect(CheckoutStage.PAYMENT_SELECT)
        handoff = self._require_handoff()
        try:
            outcome = await self.payment.submit_card_details(card, handoff)
        except CheckoutError as e:
            self._payment_failed(e)
            raise
        return await self._after_payment(outcome, coupon_code=coupon_code)

    async def _after_payment(
        self, outcome: PaymentOutcome, *, coupon_code: str | None
    ) -> PaymentOutcome:
        if outcome.kind == PaymentOutcomeKind.REDIRECT:
            self._transition(CheckoutStage.AWAITING_GATEWAY)
            self._emit(
                EntityTypeV1.PAYMENT,
                self.session_id,
                EventTypeV1.PAYMENT_REDIRECTED,
                {"method": self.payment.active.method_id if self.payment.active else None},
            )
            return outcome

        if outcome.kind == PaymentOutcomeKind.SUBMIT_ORDER:
            active = self.payment.active
            if active is not None and not isinstance(active, CashOnDelivery):
                self._emit(
                    EntityTypeV1.PAYMENT,
                    self.session_id,
                    EventTypeV1.PAYMENT_INITIATED,
                    {"method": active.method_id},
                )
            assert outcome.payment_label is not None
            await self._submit_order(outcome.payment_label, coupon_code=coupon_code)

        return outcome

    def _payment_failed(self, e: CheckoutError) -> None:
        self.last_error = str(e)
        if isinstance(e, PaymentInitiationError):
            self._emit(
                EntityTypeV1.PAYMENT,
                self.session_id,
                EventTypeV1.PAYMENT_FAILED,
                {"error": str(e)},
            )

    # -- order -----------------------------------------------------------------------

    async def _submit_order(self, payment_label: str, *, coupon_code: str | None) -> None:
        handoff = self._require_handoff()
        snapshot = self.cart.snapshot()
        self._transition(CheckoutStage.ORDER_PENDING)

        try:
            order = await self.orders.create_order(
                self.cart.cart_id,
                handoff.delivery,
                payment_label,
                coupon_code=coupon_code,
            )
        except CheckoutError as e:
            self.last_error = str(e)
            self.confirmation = confirmation.failure(str(e))
            self._transition(CheckoutStage.FAILED)
            self._emit(
                EntityTypeV1.ORDER,
                str(snapshot.cart_id or ""),
                EventTypeV1.ORDER_FAILED,
                {"error": str(e), "error_type": type(e).__name__},
            )
            raise

        self.order = order
        self.handoff = None
        self.last_error = None
        self.confirmation = confirmation.from_order(order, snapshot)
        self._transition(CheckoutStage.CONFIRMED)
        self._emit(
            EntityTypeV1.ORDER,
            str(order.id),
            EventTypeV1.ORDER_CREATED,
            {
                "order_number": order.order_number,
                "payment_method": payment_label,
                "total": str(self.confirmation.total),
            },
        )
        self._emit(EntityTypeV1.CART, str(snapshot.cart_id), EventTypeV1.CART_CLEARED)

    async def complete_gateway_return(self, query: Mapping[str, str]) -> ConfirmationView:
        """Finish a hosted-gateway checkout once the backend has verified the return.

        A cancelled, forged or rejected return goes back to payment selection with the cart
        intact. If the verifier cannot be reached the flow keeps waiting on the gateway.
        """
        self._expect(CheckoutStage.AWAITING_GATEWAY)
        try:
            view = await verify_gateway_return(self._backend, query)
        except PaymentVerificationError as e:
            self._fail_softly(e)
            raise

        if not view.success:
            self.last_error = view.message
            self._transition(CheckoutStage.PAYMENT_SELECT)
            self.dismiss_modal()
            self._emit(
                EntityTypeV1.PAYMENT,
                self.session_id,
                EventTypeV1.PAYMENT_FAILED,
                {**view.references, "error": view.message},
            )
            return view

        cart_id = self.cart.cart_id
        self.cart.clear_cart()
        self.handoff = None
        self.confirmation = view
        self._transition(CheckoutStage.CONFIRMED)
        self._emit(
            EntityTypeV1.PAYMENT,
            view.references.get("transaction_id") or view.order_number or self.session_id,
            EventTypeV1.PAYMENT_COMPLETED,
            {**view.references, "amount": str(view.total) if view.total is not None else None},
        )
        self._emit(EntityTypeV1.CART, str(cart_id), EventTypeV1.CART_CLEARED)
        return view

    # -- helpers ---------------------------------------------------------------------

    def _new_selector(self) -> GatewaySelector:
        return GatewaySelector(
            self._backend,
            self.cart,
            self.tokens,
            return_url=_return_url(self._settings.payment_return_url, self.session_id),
            fallback_gateway=PaymentGatewayV1(
                slug=self._settings.fallback_gateway_slug,
                name=self._settings.fallback_gateway_name,
            ),
            card_gateway_slugs=self._settings.card_gateway_slugs,
        )

    def _start_over(self) -> None:
        self.payment = self._new_selector()
        self.order = None
        self.confirmation = None
        self.last_error = None

    def _require_handoff(self) -> DeliveryHandoff:
        if self.handoff is None:
            raise CheckoutStateError(self.stage.value, CheckoutStage.DELIVERY_ENTRY.value)
        return self.handoff

    def _expect(self, stage: CheckoutStage) -> None:
        if self.stage != stage:
            raise CheckoutStateError(self.stage.value, stage.value)

    def _transition(self, target: CheckoutStage) -> None:
        if not self.can_transition(target):
            raise CheckoutStateError(self.stage.value, target.value)
        if target != self.stage:
            logger.debug("Checkout %s: %s -> %s", self.session_id, self.stage.value, target.value)
        self.stage = target

    def _fail_softly(self, e: CheckoutError) -> None:
        self.last_error = str(e)
        logger.info("Checkout %s stays on %s: %s", self.session_id, self.stage.value, e)

    def _emit(
        self,
        entity_type: EntityTypeV1,
        entity_id: str,
        event_type: EventTypeV1,
        payload: dict[str, Any] | None = None,
    ) -> None:
        self._events.append(
            FlowEvent(
                entity_type=entity_type,
                entity_id=entity_id,
                event_type=event_type,
                payload=dict(payload or {}),
            )
        )


async def verify_gateway_return(
    backend: MarketplaceBackend, query: Mapping[str, str]
) -> ConfirmationView:
    """Check a hosted gateway's redirect parameters with the backend."""
    claimed = confirmation.from_gateway_return(query)
    if not claimed.success:
        return claimed

    params = {k: v for k, v in query.items() if k != "session_id"}
    try:
        result = await backend.verify_payment(params)
    except MarketplaceHTTPError as e:
        logger.warning("Gateway return rejected by the backend: %s", e)
        return confirmation.verification_failed(e.detail(), claimed.references)
    except MarketplaceBackendError as e:
        logger.warning("Gateway return could not be verified: %s", e)
        raise PaymentVerificationError() from e

    if not result.verified:
        logger.info("Gateway return not verified: %s", result.message)
        return confirmation.verification_failed(result.message, claimed.references)
    return confirmation.from_payment_verification(result, claimed)


def _return_url(base: str, session_id: str) -> str:
    """Gateway return URL carrying the session id so the redirect back finds this checkout."""
    if not session_id:
        return base
    parts = urlsplit(base)
    query = [(k, v) for k, v in parse_qsl(parts.query) if k != "session_id"]
    query.append(("session_id", session_id))
    return urlunsplit(parts._replace(query=urlencode(query)))
