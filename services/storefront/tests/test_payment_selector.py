import asyncio
from datetime import date
from decimal import Decimal

import pytest
from packages.shared.schemas.marketplace_v1 import (
    DeliveryInfoV1,
    InitiatePaymentResponseV1,
    PaymentGatewayV1,
)
from services.storefront.app.checkout.auth import InMemoryTokenStore
from services.storefront.app.checkout.cart import CartStore, Product
from services.storefront.app.checkout.delivery import DeliveryHandoff
from services.storefront.app.checkout.errors import (
    PaymentInitiationError,
    PaymentSelectionError,
    SubmissionInProgressError,
)
from services.storefront.app.checkout.payment import (
    BankGateway,
    CardDetails,
    CashOnDelivery,
    GatewaySelector,
    ModalKind,
    PaymentOutcomeKind,
    validate_card,
)
from services.storefront.app.services.marketplace_base import MarketplaceHTTPError
from services.storefront.app.services.marketplace_mock import MarketplaceMockBackend

GOOD_CARD = CardDetails(number="4111 1111 1111 1111", expiry="12/99", cvv="123")


async def _ready(
    backend: MarketplaceMockBackend,
) -> tuple[GatewaySelector, DeliveryHandoff, CartStore]:
    tokens = InMemoryTokenStore("tok")
    cart = CartStore(backend, tokens)
    cart.add_to_cart(Product(id=1, name="Tea Leaves", price=Decimal("100")), 2)
    cart_id = await cart.create_cart_on_backend()
    handoff = DeliveryHandoff(
        delivery=DeliveryInfoV1(
            customer_name="Asha Gurung",
            phone_number="+9779800000000",
            email="asha@example.com",
            address="Thamel Marg 12",
            city="Kathmandu",
            state="Bagmati",
            zip_code="44600",
            latitude=27.7172,
            longitude=85.324,
        ),
        cart_id=cart_id,
    )
    selector = GatewaySelector(
        backend,
        cart,
        tokens,
        return_url="http://shop.test/payment-success",
        fallback_gateway=PaymentGatewayV1(slug="khalti", name="Khalti Wallet"),
    )
    await selector.load_gateways()
    return selector, handoff, cart


@pytest.mark.asyncio
async def test_gateway_list_failure_falls_back_with_warning(
    backend: MarketplaceMockBackend,
) -> None:
    backend.fail_gateway_list = True
    selector, _, _ = await _ready(backend)

    assert [g.slug for g in selector.gateways] == ["khalti"]
    assert selector.warning is not None


@pytest.mark.asyncio
async def test_cash_on_delivery_never_initiates(backend: MarketplaceMockBackend) -> None:
    selector, handoff, _ = await _ready(backend)
    selector.select_gateway("cod")

    outcome = await selector.confirm(handoff)

    assert isinstance(selector.active, CashOnDelivery)
    assert outcome.kind == PaymentOutcomeKind.SUBMIT_ORDER
    assert outcome.payment_label == "Cash on Delivery"
    assert backend.calls["initiate_payment"] == 0


@pytest.mark.asyncio
async def test_confirm_without_selection_is_rejected(backend: MarketplaceMockBackend) -> None:
    selector, handoff, _ = await _ready(backend)
    with pytest.raises(PaymentSelectionError, match="Please select a payment method"):
        await selector.confirm(handoff)


@pytest.mark.asyncio
async def test_bank_gateway_needs_bank_before_confirm(backend: MarketplaceMockBackend) -> None:
    selector, handoff, _ = await _ready(backend)
    selector.select_gateway("mobile_banking")

    assert selector.modal == ModalKind.BANK
    assert selector.active is None
    with pytest.raises(PaymentSelectionError, match="Please select a bank"):
        await selector.confirm(handoff)
    assert backend.calls["initiate_payment"] == 0


@pytest.mark.asyncio
async def test_bank_selection_is_sent_with_initiation(backend: MarketplaceMockBackend) -> None:
    selector, handoff, cart = await _ready(backend)
    selector.select_gateway("mobile_banking")
    method = selector.select_bank("mobile_banking", "NABIL")

    outcome = await selector.confirm(handoff)

    assert method == BankGateway(
        slug="mobile_banking", name="Mobile Banking", bank_id="NABIL", bank_name="Nabil Bank"
    )
    assert method.method_id == "mobile_banking_NABIL"
    assert outcome.kind == PaymentOutcomeKind.REDIRECT
    request = backend.initiate_requests[-1]
    assert request.bank == "NABIL"
    assert request.cart_id == cart.cart_id
    assert request.tax_amount == Decimal("0")
    assert request.shipping_cost == Decimal("100")


@pytest.mark.asyncio
async def test_unknown_bank_is_rejected(backend: MarketplaceMockBackend) -> None:
    selector, _, _ = await _ready(backend)
    with pytest.raises(PaymentSelectionError):
        selector.select_bank("ebanking", "NOPE")


@pytest.mark.asyncio
async def test_redirect_outcome_carries_payment_url(backend: MarketplaceMockBackend) -> None:
    selector, handoff, cart = await _ready(backend)
    selector.select_gateway("khalti")

    outcome = await selector.confirm(handoff)

    assert outcome.kind == PaymentOutcomeKind.REDIRECT
    assert outcome.redirect_url == f"https://pay.example.test/khalti/{cart.cart_id}"
    assert selector.processing is False


@pytest.mark.asyncio
async def test_success_without_url_submits_order(backend: MarketplaceMockBackend) -> None:
    selector, handoff, _ = await _ready(backend)
    selector.select_gateway("esewa")

    outcome = await selector.confirm(handoff)

    assert outcome.kind == PaymentOutcomeKind.SUBMIT_ORDER
    assert outcome.payment_label == "eSewa"


@pytest.mark.asyncio
async def test_gateway_failure_message_is_surfaced_verbatim(
    backend: MarketplaceMockBackend,
) -> None:
    backend.initiation_outcomes["khalti"] = InitiatePaymentResponseV1(
        success=False, message="Merchant account suspended"
    )
    selector, handoff, _ = await _ready(backend)
    selector.select_gateway("khalti")

    with pytest.raises(PaymentInitiationError, match="^Merchant account suspended$"):
        await selector.confirm(handoff)
    assert selector.processing is False
    assert backend.calls["create_order"] == 0


@pytest.mark.asyncio
async def test_network_failure_is_reported_and_retry_is_fresh(
    backend: MarketplaceMockBackend,
) -> None:
    selector, handoff, _ = await _ready(backend)
    selector.select_gateway("khalti")
    backend.fail_initiation_network = True

    with pytest.raises(PaymentInitiationError, match="Could not reach the payment gateway"):
        await selector.confirm(handoff)

    backend.fail_initiation_network = False
    outcome = await selector.confirm(handoff)
    assert outcome.kind == PaymentOutcomeKind.REDIRECT
    assert backend.calls["initiate_payment"] == 2


@pytest.mark.asyncio
async def test_http_rejection_uses_backend_detail(
    backend: MarketplaceMockBackend, monkeypatch: pytest.MonkeyPatch
) -> None:
    selector, handoff, _ = await _ready(backend)
    selector.select_gateway("khalti")

    async def _reject(token, request):
        raise MarketplaceHTTPError(400, {"detail": "Amount below minimum"})

    monkeypatch.setattr(backend, "initiate_payment", _reject)
    with pytest.raises(PaymentInitiationError, match="Amount below minimum"):
        await selector.confirm(handoff)


@pytest.mark.asyncio
async def test_double_confirm_is_rejected_while_processing(
    backend: MarketplaceMockBackend,
) -> None:
    selector, handoff, _ = await _ready(backend)
    selector.select_gateway("khalti")
    backend.latency_s = 0.05

    first = asyncio.create_task(selector.confirm(handoff))
    await asyncio.sleep(0.01)
    with pytest.raises(SubmissionInProgressError):
        await selector.confirm(handoff)

    outcome = await first
    assert outcome.kind == PaymentOutcomeKind.REDIRECT
    assert backend.calls["initiate_payment"] == 1


@pytest.mark.asyncio
async def test_dismiss_makes_late_response_stale(backend: MarketplaceMockBackend) -> None:
    selector, handoff, _ = await _ready(backend)
    selector.select_gateway("khalti")
    backend.latency_s = 0.05

    pending = asyncio.create_task(selector.confirm(handoff))
    await asyncio.sleep(0.01)
    selector.dismiss_modal()
    assert selector.processing is False

    outcome = await pending
    assert outcome.kind == PaymentOutcomeKind.CANCELLED
    assert selector.processing is False


@pytest.mark.asyncio
async def test_card_gateway_asks_for_details_then_initiates(
    backend: MarketplaceMockBackend,
) -> None:
    selector, handoff, _ = await _ready(backend)
    selector.select_gateway("card")

    first = await selector.confirm(handoff)
    assert first.kind == PaymentOutcomeKind.AWAITING_CARD_DETAILS
    assert selector.modal == ModalKind.CARD
    assert backend.calls["initiate_payment"] == 0

    outcome = await selector.submit_card_details(GOOD_CARD, handoff)
    assert outcome.kind == PaymentOutcomeKind.REDIRECT
    assert selector.card_masked == "**** 1111"
    # Card data never leaves the selector.
    assert "4111" not in backend.initiate_requests[-1].model_dump_json()


@pytest.mark.asyncio
async def test_invalid_card_is_rejected_without_network(backend: MarketplaceMockBackend) -> None:
    selector, handoff, _ = await _ready(backend)
    selector.select_gateway("card")

    with pytest.raises(PaymentSelectionError):
        await selector.submit_card_details(CardDetails("1234", "13/20", "1"), handoff)
    assert backend.calls["initiate_payment"] == 0


def test_validate_card_detects_expiry() -> None:
    errors = validate_card(
        CardDetails(number="4111111111111111", expiry="01/24", cvv="123"),
        today=date(2024, 2, 1),
    )
    assert errors == {"expiry": "Card has expired"}
    assert validate_card(GOOD_CARD, today=date(2024, 2, 1)) == {}


@pytest.mark.asyncio
async def test_unknown_gateway_is_rejected(backend: MarketplaceMockBackend) -> None:
    selector, _, _ = await _ready(backend)
    with pytest.raises(PaymentSelectionError, match="Unknown payment method"):
        selector.select_gateway("bitcoin")


@pytest.mark.asyncio
async def test_card_modal_only_for_card_gateways(backend: MarketplaceMockBackend) -> None:
    selector, _, _ = await _ready(backend)
    selector.select_gateway("khalti")
    with pytest.raises(PaymentSelectionError):
        selector.open_card_modal()

    selector.select_gateway("card")
    selector.open_card_modal()
    assert selector.modal == ModalKind.CARD


@pytest.mark.asyncio
async def test_card_gateway_slug_is_matched_case_insensitively(
    backend: MarketplaceMockBackend,
) -> None:
    backend.gateways = [PaymentGatewayV1(slug="Card", name="Visa / Mastercard")]
    selector, handoff, _ = await _ready(backend)
    selector.select_gateway("Card")

    outcome = await selector.confirm(handoff)

    assert outcome.kind == PaymentOutcomeKind.AWAITING_CARD_DETAILS
    assert selector.modal == ModalKind.CARD
    assert backend.calls["initiate_payment"] == 0


@pytest.mark.asyncio
async def test_unexpected_initiation_error_clears_processing(
    backend: MarketplaceMockBackend, monkeypatch: pytest.MonkeyPatch
) -> None:
    selector, handoff, _ = await _ready(backend)
    selector.select_gateway("khalti")
    initiate = backend.initiate_payment

    async def _boom(token, request):
        raise RuntimeError("serializer bug")

    monkeypatch.setattr(backend, "initiate_payment", _boom)
    with pytest.raises(RuntimeError):
        await selector.confirm(handoff)

    assert selector.processing is False
    monkeypatch.setattr(backend, "initiate_payment", initiate)
    outcome = await selector.confirm(handoff)
    assert outcome.kind == PaymentOutcomeKind.REDIRECT
