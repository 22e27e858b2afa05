from __future__ import annotations

from typing import NoReturn

from fastapi import HTTPException
from services.storefront.app.checkout.errors import (
    AuthRequiredError,
    CartCreationError,
    CartMissingError,
    CartSyncError,
    CheckoutStateError,
    DeliverySyncError,
    DeliveryValidationError,
    EmptyCartError,
    OrderCreationError,
    OrderLookupError,
    OrderValidationError,
    PaymentInitiationError,
    PaymentSelectionError,
    PaymentVerificationError,
    SubmissionInProgressError,
)
from services.storefront.app.services.marketplace_base import MarketplaceHTTPError
from services.storefront.app.services.store import SessionRecord, store


def get_session_or_404(session_id: str) -> SessionRecord:
    session = store.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Checkout session not found")
    return session


def raise_checkout_http_error(e: Exception) -> NoReturn:
    if isinstance(e, AuthRequiredError):
        raise HTTPException(status_code=401, detail=str(e)) from e

    if isinstance(e, (CheckoutStateError, SubmissionInProgressError)):
        raise HTTPException(status_code=409, detail=str(e)) from e

    if isinstance(e, (EmptyCartError, CartMissingError)):
        raise HTTPException(status_code=409, detail=str(e)) from e

    if isinstance(e, (DeliveryValidationError, OrderValidationError)):
        raise HTTPException(
            status_code=422,
            detail={"message": str(e), "field_errors": e.field_errors},
        ) from e

    if isinstance(e, (PaymentSelectionError, ValueError)):
        raise HTTPException(status_code=422, detail=str(e)) from e

    if isinstance(e, OrderLookupError):
        cause = e.__cause__
        if isinstance(cause, MarketplaceHTTPError) and cause.status_code == 404:
            raise HTTPException(status_code=404, detail=str(e)) from e
        raise HTTPException(status_code=502, detail=str(e)) from e

    if isinstance(
        e,
        (
            CartCreationError,
            CartSyncError,
            DeliverySyncError,
            PaymentInitiationError,
            PaymentVerificationError,
            OrderCreationError,
        ),
    ):
        raise HTTPException(status_code=502, detail=str(e)) from e

    raise HTTPException(status_code=500, detail="Internal Server Error") from e
