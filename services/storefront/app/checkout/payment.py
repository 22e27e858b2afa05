from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum

from packages.shared.schemas.marketplace_v1 import (
    InitiatePaymentRequestV1,
    InitiatePaymentResponseV1,
    PaymentGatewayV1,
)
from services.storefront.app.checkout.auth import TokenStore
from services.storefront.app.checkout.cart import CartStore
from services.storefront.app.checkout.delivery import DeliveryHandoff
from services.storefront.app.checkout.errors import (
    AuthRequiredError,
    CheckoutError,
    PaymentInitiationError,
    PaymentSelectionError,
    SubmissionInProgressError,
)
from services.storefront.app.services.marketplace_base import (
    MarketplaceBackend,
    MarketplaceBackendError,
    MarketplaceHTTPError,
)

logger = logging.getLogger(__name__)

COD_SLUG = "cod"
COD_LABEL = "Cash on Delivery"


@dataclass(frozen=True, slots=True)
class CashOnDelivery:
    @property
    def method_id(self) -> str:
        return COD_SLUG

    @property
    def label(self) -> str:
        return COD_LABEL


@dataclass(frozen=True, slots=True)
class SimpleGateway:
    slug: str
    name: str

    @property
    def method_id(self) -> str:
        return self.slug

    @property
    def label(self) -> str:
        return self.name


@dataclass(frozen=True, slots=True)
class BankGateway:
    slug: str
    name: str
    bank_id: str
    bank_name: str

    @property
    def method_id(self) -> str:
        return f"{self.slug}_{self.bank_id}"

    @property
    def label(self) -> str:
        return self.name


PaymentMethod = CashOnDelivery | SimpleGateway | BankGateway


@dataclass(frozen=True, slots=True)
class CardDetails:
    number: str
    expiry: str  # MM/YY
    cvv: str

    @property
    def masked(self) -> str:
        digits = re.sub(r"\D", "", self.number)
        return f"**** {digits[-4:]}"


def validate_card(card: CardDetails, *, today: date | None = None) -> dict[str, str]:
    errors: dict[str, str] = {}
    digits = re.sub(r"[\s\-]", "", card.number or "")
    if not re.fullmatch(r"\d{12,19}", digits):
        errors["number"] = "Enter a valid card number"

    match = re.fullmatch(r"(\d{2})/(\d{2})", (card.expiry or "").strip())
    if match is None or not 1 <= int(match.group(1)) <= 12:
        errors["expiry"] = "Expiry must be MM/YY"
    else:
        today = today or date.today()
        month, year = int(match.group(1)), 2000 + int(match.group(2))
        if (year, month) < (today.year, today.month):
            errors["expiry"] = "Card has expired"

    if not re.fullmatch(r"\d{3,4}", (card.cvv or "").strip()):
        errors["cvv"] = "CVV must be 3 or 4 digits"
    return errors


class ModalKind(str, Enum):
    NONE = "NONE"
    BANK = "BANK"
    CARD = "CARD"


class PaymentOutcomeKind(str, Enum):
    SUBMIT_ORDER = "SUBMIT_ORDER"
    REDIRECT = "REDIRECT"
    AWAITING_CARD_DETAILS = "AWAITING_CARD_DETAILS"
    CANCELLED = "CANCELLED"


@dataclass(frozen=True, slots=True)
class PaymentOutcome:
    kind: PaymentOutcomeKind
    payment_label: str | None = None
    redirect_url: str | None = None
    message: str | None = None


class GatewaySelector:
    """Payment method selection and gateway initiation.

    Cash on Delivery never touches the initiation endpoint. Gateways that list banks open
    a bank picker instead of activating directly. Closing a modal clears `processing` and
    makes any response still in flight stale; stale responses change nothing.
    """

    def __init__(
        self,
        backend: MarketplaceBackend,
        cart: CartStore,
        tokens: TokenStore,
        *,
        return_url: str,
        fallback_gateway: PaymentGatewayV1,
        card_gateway_slugs: frozenset[str] = frozenset({"card"}),
    ) -> None:
        self._backend = backend
        self._cart = cart
        self._tokens = tokens
        self._return_url = return_url
        self._fallback_gateway = fallback_gateway
        self._card_gateway_slugs = frozenset(s.strip().lower() for s in card_gateway_slugs)

        self.gateways: list[PaymentGatewayV1] = []
        self.warning: str | None = None
        self.loaded = False

        self.active: PaymentMethod | None = None
        self.expanded_slug: str | None = None
        self.modal = ModalKind.NONE
        self.processing = False
        self.card_masked: str | None = None

        self._card: CardDetails | None = None
        self._attempt = 0

    async def load_gateways(self) -> list[PaymentGatewayV1]:
        try:
            gateways = await self._backend.list_gateways()
        except MarketplaceBackendError as e:
            logger.warning("Gateway list unavailable, using %s: %s", self._fallback_gateway.slug, e)
            gateways = [self._fallback_gateway]
            self.warning = "Could not load payment options. Showing the default wallet only."
        else:
            self.warning = None
            if not gateways:
                gateways = [self._fallback_gateway]

        self.gateways = [g for g in gateways if g.slug != COD_SLUG]
        self.loaded = True
        return self.gateways

    def select_gateway(self, slug: str) -> PaymentMethod | None:
        if slug == COD_SLUG:
            self._activate(CashOnDelivery())
            return self.active

        gateway = self._gateway(slug)
        if gateway.items:
            self.active = None
            self.expanded_slug = gateway.slug
            self.modal = ModalKind.BANK
            return None

        self._activate(SimpleGateway(slug=gateway.slug, name=gateway.name))
        return self.active

    def select_bank(self, slug: str, bank_id: str) -> BankGateway:
        gateway = self._gateway(slug)
        bank = next((b for b in gateway.items if str(b.idx) == str(bank_id)), None)
        if bank is None:
            raise PaymentSelectionError(f"Unknown bank {bank_id!r} for {gateway.name}")

        method = BankGateway(
            slug=gateway.slug,
            name=gateway.name,
            bank_id=str(bank.idx),
            bank_name=bank.name,
        )
        self._activate(method)
        return method

    def open_card_modal(self) -> None:
        method = self._require_method()
        if not self._is_card(method):
            raise PaymentSelectionError("Card details are only needed for card payments")
        self.modal = ModalKind.CARD

    def dismiss_modal(self) -> None:
        if self.processing:
            logger.info("Payment attempt %s dismissed while in flight", self._attempt)
        self.modal = ModalKind.NONE
        self.expanded_slug = None
        self.processing = False
        self._attempt += 1

    async def confirm(self, handoff: DeliveryHandoff) -> PaymentOutcome:
        if self.processing:
            raise SubmissionInProgressError()

        method = self._require_method()
        if isinstance(method, CashOnDelivery):
            return PaymentOutcome(PaymentOutcomeKind.SUBMIT_ORDER, payment_label=COD_LABEL)

        if self._is_card(method) and self._card is None:
            self.modal = ModalKind.CARD
            return PaymentOutcome(PaymentOutcomeKind.AWAITING_CARD_DETAILS)

        return await self._initiate(method, handoff)

    async def submit_card_details(
        self, card: CardDetails, handoff: DeliveryHandoff
    ) -> PaymentOutcome:
        if self.processing:
            raise SubmissionInProgressError()

        method = self._require_method()
        if not self._is_card(method):
            raise PaymentSelectionError("Card details are only needed for card payments")

        errors = validate_card(card)
        if errors:
            raise PaymentSelectionError("; ".join(errors.values()))

        self._card = card
        self.card_masked = card.masked
        return await self._initiate(method, handoff)

    def _is_card(self, method: PaymentMethod) -> bool:
        if isinstance(method, CashOnDelivery):
            return False
        return method.slug.lower() in self._card_gateway_slugs

    def _require_method(self) -> PaymentMethod:
        if self.active is None:
            if self.expanded_slug is not None:
                raise PaymentSelectionError("Please select a bank")
            raise PaymentSelectionError("Please select a payment method")
        return self.active

    async def _initiate(
        self, method: SimpleGateway | BankGateway, handoff: DeliveryHandoff
    ) -> PaymentOutcome:
        self.processing = True
        self._attempt += 1
        attempt = self._attempt

        try:
            response = await self._send(method, handoff)
        except CheckoutError:
            if attempt != self._attempt:
                return PaymentOutcome(PaymentOutcomeKind.CANCELLED)
            raise
        finally:
            # A dismissed attempt was already reset, possibly by a newer one.
            if attempt == self._attempt:
                self.processing = False

        if attempt != self._attempt:
            logger.info("Ignoring late initiation response for attempt %s", attempt)
            return PaymentOutcome(PaymentOutcomeKind.CANCELLED)

        self.modal = ModalKind.NONE
        return self._interpret(method, response)

    async def _send(
        self, method: SimpleGateway | BankGateway, handoff: DeliveryHandoff
    ) -> InitiatePaymentResponseV1:
        cart_id = await self._cart.create_cart_on_backend()
        token = self._tokens.get()
        if not token:
            raise AuthRequiredError()

        delivery = handoff.delivery
        request = InitiatePaymentRequestV1(
            cart_id=cart_id,
            gateway=method.slug,
            customer_name=delivery.customer_name,
            customer_email=delivery.email or "",
            customer_phone=delivery.phone_number,
            tax_amount=Decimal("0"),
            shipping_cost=self._cart.shipping,
            return_url=self._return_url,
            bank=method.bank_id if isinstance(method, BankGateway) else None,
        )

        try:
            response = await self._backend.initiate_payment(token, request)
        except MarketplaceHTTPError as e:
            if e.status_code in (401, 403):
                raise AuthRequiredError() from e
            logger.warning("Payment initiation via %s rejected: %s", method.slug, e)
            raise PaymentInitiationError(e.detail() or "Payment initiation failed") from e
        except MarketplaceBackendError as e:
            logger.warning("Payment initiation via %s failed: %s", method.slug, e)
            raise PaymentInitiationError(
                "Could not reach the payment gateway. Please try again."
            ) from e

        logger.info("Payment initiated via %s for cart %s", method.method_id, cart_id)
        return response

    def _interpret(
        self, method: SimpleGateway | BankGateway, response: InitiatePaymentResponseV1
    ) -> PaymentOutcome:
        if response.payment_url:
            return PaymentOutcome(
                PaymentOutcomeKind.REDIRECT,
                payment_label=method.label,
                redirect_url=response.payment_url,
                message=response.message,
            )

        if response.success:
            return PaymentOutcome(
                PaymentOutcomeKind.SUBMIT_ORDER,
                payment_label=method.label,
                message=response.message,
            )

        raise PaymentInitiationError(response.message or "Payment initiation failed")

    def _activate(self, method: PaymentMethod) -> None:
        if method != self.active:
            self._card = None
            self.card_masked = None
        self.active = method
        self.expanded_slug = None
        self.modal = ModalKind.NONE

    def _gateway(self, slug: str) -> PaymentGatewayV1:
        for gateway in self.gateways:
            if gateway.slug == slug:
                return gateway
        raise PaymentSelectionError(f"Unknown payment method: {slug}")
