from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from services.storefront.app.checkout.delivery import DeliveryForm
from services.storefront.app.checkout.flow import (
    CheckoutFlow,
    CheckoutStage,
    verify_gateway_return,
)
from services.storefront.app.checkout.payment import COD_LABEL, CardDetails, PaymentOutcome
from services.storefront.app.db.deps import get_db
from services.storefront.app.models.checkout import (
    BankSelectRequest,
    CardDetailsRequest,
    CheckoutStateOut,
    ConfirmationOut,
    ConfirmPaymentRequest,
    DeliveryFormRequest,
    DeliveryOut,
    GatewaySelectRequest,
    GatewaysOut,
    LocationOut,
    LocationRequest,
    PaymentResultOut,
    PaymentStateOut,
    StageChangeRequest,
)
from services.storefront.app.routers.errors import get_session_or_404, raise_checkout_http_error
from services.storefront.app.services import journal
from services.storefront.app.services.marketplace_factory import get_shared_backend
from services.storefront.app.services.store import store
from sqlalchemy.orm import Session

router = APIRouter()


def _state(flow: CheckoutFlow) -> CheckoutStateOut:
    latitude, longitude = flow.delivery.location
    return CheckoutStateOut(
        session_id=flow.session_id,
        stage=flow.stage.value,
        last_error=flow.last_error,
        cart_id=flow.cart.cart_id,
        location=LocationOut(
            latitude=latitude,
            longitude=longitude,
            selected=flow.delivery.location_selected,
        ),
        delivery=flow.handoff.delivery if flow.handoff is not None else None,
        payment=PaymentStateOut.from_selector(flow.payment),
        confirmation=(
            ConfirmationOut.from_view(flow.confirmation) if flow.confirmation is not None else None
        ),
    )


def _payment_result(flow: CheckoutFlow, outcome: PaymentOutcome) -> PaymentResultOut:
    return PaymentResultOut(
        outcome=outcome.kind.value,
        stage=flow.stage.value,
        payment_label=outcome.payment_label,
        redirect_url=outcome.redirect_url,
        message=outcome.message,
        payment=PaymentStateOut.from_selector(flow.payment),
        confirmation=(
            ConfirmationOut.from_view(flow.confirmation)
            if flow.stage == CheckoutStage.CONFIRMED and flow.confirmation is not None
            else None
        ),
    )


@router.get("/v1/sessions/{session_id}/checkout", response_model=CheckoutStateOut)
def get_checkout(session_id: str) -> CheckoutStateOut:
    return _state(get_session_or_404(session_id).flow)


@router.post("/v1/sessions/{session_id}/checkout/start", response_model=CheckoutStateOut)
def start_checkout(session_id: str, db: Session = Depends(get_db)) -> CheckoutStateOut:
    session = get_session_or_404(session_id)
    try:
        session.flow.begin_checkout()
    except Exception as e:
        raise_checkout_http_error(e)

    journal.record(db, session)
    return _state(session.flow)


@router.post("/v1/sessions/{session_id}/checkout/back", response_model=CheckoutStateOut)
def go_back(
    session_id: str, payload: StageChangeRequest, db: Session = Depends(get_db)
) -> CheckoutStateOut:
    session = get_session_or_404(session_id)
    try:
        session.flow.back_to(CheckoutStage(payload.stage.strip().upper()))
    except Exception as e:
        raise_checkout_http_error(e)

    journal.record(db, session)
    return _state(session.flow)


@router.post("/v1/sessions/{session_id}/checkout/location", response_model=LocationOut)
async def select_location(session_id: str, payload: LocationRequest) -> LocationOut:
    delivery = get_session_or_404(session_id).flow.delivery
    try:
        delivery.select_location(payload.latitude, payload.longitude)
        if payload.save:
            await delivery.save_location()
    except Exception as e:
        raise_checkout_http_error(e)

    latitude, longitude = delivery.location
    return LocationOut(latitude=latitude, longitude=longitude, selected=delivery.location_selected)


@router.post("/v1/sessions/{session_id}/checkout/delivery", response_model=DeliveryOut)
async def submit_delivery(
    session_id: str, payload: DeliveryFormRequest, db: Session = Depends(get_db)
) -> DeliveryOut:
    session = get_session_or_404(session_id)
    flow = session.flow
    form = DeliveryForm(**payload.model_dump())

    try:
        result = await flow.submit_delivery(form)
    except Exception as e:
        journal.record(db, session)
        raise_checkout_http_error(e)

    journal.record(db, session)
    handoff = result.handoff
    return DeliveryOut(
        status=result.status.value,
        stage=flow.stage.value,
        cart_id=handoff.cart_id if handoff is not None else None,
        delivery=handoff.delivery if handoff is not None else None,
        message=flow.last_error if handoff is None else None,
    )


@router.get("/v1/sessions/{session_id}/checkout/gateways", response_model=GatewaysOut)
async def list_gateways(session_id: str, db: Session = Depends(get_db)) -> GatewaysOut:
    session = get_session_or_404(session_id)
    try:
        gateways = await session.flow.load_gateways()
    except Exception as e:
        raise_checkout_http_error(e)

    journal.record(db, session)
    return GatewaysOut(gateways=gateways, cod_label=COD_LABEL, warning=session.flow.payment.warning)


@router.post("/v1/sessions/{session_id}/checkout/gateways/select", response_model=PaymentStateOut)
def select_gateway(session_id: str, payload: GatewaySelectRequest) -> PaymentStateOut:
    flow = get_session_or_404(session_id).flow
    try:
        flow.select_gateway(payload.slug)
    except Exception as e:
        raise_checkout_http_error(e)
    return PaymentStateOut.from_selector(flow.payment)


@router.post("/v1/sessions/{session_id}/checkout/gateways/bank", response_model=PaymentStateOut)
def select_bank(session_id: str, payload: BankSelectRequest) -> PaymentStateOut:
    flow = get_session_or_404(session_id).flow
    try:
        flow.select_bank(payload.slug, payload.bank_id)
    except Exception as e:
        raise_checkout_http_error(e)
    return PaymentStateOut.from_selector(flow.payment)


@router.post("/v1/sessions/{session_id}/checkout/dismiss", response_model=PaymentStateOut)
def dismiss_modal(session_id: str, db: Session = Depends(get_db)) -> PaymentStateOut:
    session = get_session_or_404(session_id)
    session.flow.dismiss_modal()
    journal.record(db, session)
    return PaymentStateOut.from_selector(session.flow.payment)


@router.post("/v1/sessions/{session_id}/checkout/confirm", response_model=PaymentResultOut)
async def confirm_payment(
    session_id: str, payload: ConfirmPaymentRequest, db: Session = Depends(get_db)
) -> PaymentResultOut:
    session = get_session_or_404(session_id)
    flow = session.flow
    try:
        outcome = await flow.confirm_payment(coupon_code=payload.coupon_code)
    except Exception as e:
        journal.record(db, session)
        raise_checkout_http_error(e)

    journal.record(db, session)
    return _payment_result(flow, outcome)


@router.post("/v1/sessions/{session_id}/checkout/card", response_model=PaymentResultOut)
async def submit_card(
    session_id: str, payload: CardDetailsRequest, db: Session = Depends(get_db)
) -> PaymentResultOut:
    session = get_session_or_404(session_id)
    flow = session.flow
    card = CardDetails(number=payload.number, expiry=payload.expiry, cvv=payload.cvv)
    try:
        outcome = await flow.submit_card_details(card, coupon_code=payload.coupon_code)
    except Exception as e:
        journal.record(db, session)
        raise_checkout_http_error(e)

    journal.record(db, session)
    return _payment_result(flow, outcome)


@router.get("/v1/checkout/return", response_model=ConfirmationOut)
async def gateway_return(request: Request, db: Session = Depends(get_db)) -> ConfirmationOut:
    """Landing point for hosted gateways redirecting the buyer back.

    The parameters are always verified with the backend. With a `session_id` whose checkout
    is waiting on the gateway, that session is completed or sent back to payment selection.
    """

    query = dict(request.query_params)
    session = store.get(query.get("session_id", ""))
    if session is None or session.flow.stage != CheckoutStage.AWAITING_GATEWAY:
        try:
            view = await verify_gateway_return(get_shared_backend(), query)
        except Exception as e:
            raise_checkout_http_error(e)
        return ConfirmationOut.from_view(view)

    try:
        view = await session.flow.complete_gateway_return(query)
    except Exception as e:
        journal.record(db, session)
        raise_checkout_http_error(e)

    journal.record(db, session)
    return ConfirmationOut.from_view(view)
