from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, replace
from enum import Enum

from packages.shared.schemas.marketplace_v1 import DeliveryInfoV1, DeliveryRequestV1
from services.storefront.app.checkout.auth import PendingActionQueue, TokenStore
from services.storefront.app.checkout.cart import CartStore
from services.storefront.app.checkout.errors import (
    AuthRequiredError,
    DeliverySyncError,
    DeliveryValidationError,
)
from services.storefront.app.services.marketplace_base import (
    MarketplaceBackend,
    MarketplaceBackendError,
    MarketplaceHTTPError,
)

logger = logging.getLogger(__name__)

# Central reference point used until the buyer picks a location on the map.
FALLBACK_LOCATION = (27.7172, 85.3240)

_PHONE_RE = re.compile(r"^\+?\d{7,15}$")
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

_REQUIRED_FIELDS = {
    "name": "Full name is required",
    "phone": "Phone number is required",
    "address": "Address is required",
    "city": "City is required",
    "state": "State is required",
    "zip_code": "ZIP code is required",
}


@dataclass(frozen=True, slots=True)
class DeliveryForm:
    name: str
    phone: str
    address: str
    city: str
    state: str
    zip_code: str
    email: str = ""
    delivery_instructions: str = ""


@dataclass(frozen=True, slots=True)
class DeliveryHandoff:
    """What the payment step needs from delivery capture."""

    delivery: DeliveryInfoV1
    cart_id: int


class DeliveryStatus(str, Enum):
    READY = "READY"
    AUTH_REQUIRED = "AUTH_REQUIRED"


@dataclass(frozen=True, slots=True)
class DeliveryResult:
    status: DeliveryStatus
    handoff: DeliveryHandoff | None = None


def normalize_phone(phone: str) -> str:
    return re.sub(r"[\s\-()]", "", phone or "")


def validate_delivery_form(form: DeliveryForm) -> dict[str, str]:
    errors: dict[str, str] = {}
    for field_name, message in _REQUIRED_FIELDS.items():
        if not str(getattr(form, field_name) or "").strip():
            errors[field_name] = message

    if "phone" not in errors and not _PHONE_RE.match(normalize_phone(form.phone)):
        errors["phone"] = "Phone number must be 7-15 digits, optionally starting with +"

    email = (form.email or "").strip()
    if email and not _EMAIL_RE.match(email):
        errors["email"] = "Enter a valid email address"

    return errors


def is_valid_coordinate(value: float) -> bool:
    return isinstance(value, (int, float)) and math.isfinite(value) and value != 0


class DeliveryCapture:
    """Collects recipient and address, then makes sure a backend cart exists.

    Submitting while logged out holds the form and asks for login. The held form is
    replayed once, unchanged, when the session authenticates. With `register_delivery`
    the delivery is also recorded against the cart on the backend before payment.
    """

    def __init__(
        self,
        backend: MarketplaceBackend,
        cart: CartStore,
        tokens: TokenStore,
        pending: PendingActionQueue,
        *,
        fallback_location: tuple[float, float] = FALLBACK_LOCATION,
        register_delivery: bool = False,
    ) -> None:
        self._backend = backend
        self._register_delivery = register_delivery
        self._cart = cart
        self._tokens = tokens
        self._pending = pending
        self._location = fallback_location
        self._location_selected = False
        self.last_form: DeliveryForm | None = None

    @property
    def location(self) -> tuple[float, float]:
        return self._location

    @property
    def location_selected(self) -> bool:
        return self._location_selected

    def select_location(self, latitude: float, longitude: float) -> None:
        if not (is_valid_coordinate(latitude) and is_valid_coordinate(longitude)):
            raise DeliveryValidationError({"location": "Please select a location on the map."})
        self._location = (float(latitude), float(longitude))
        self._location_selected = True

    async def save_location(self) -> None:
        """Store the selected pin on the buyer's profile."""
        token = self._tokens.get()
        if not token:
            raise AuthRequiredError()
        latitude, longitude = self._location
        try:
            await self._backend.update_customer_location(token, latitude, longitude)
        except MarketplaceHTTPError as e:
            if e.status_code in (401, 403):
                raise AuthRequiredError() from e
            logger.warning("Saving customer location failed: %s", e)
            raise DeliverySyncError(e.detail()) from e
        except MarketplaceBackendError as e:
            logger.warning("Saving customer location failed: %s", e)
            raise DeliverySyncError() from e

    async def submit(self, form: DeliveryForm) -> DeliveryResult:
        form = _strip(form)
        self.last_form = form

        errors = validate_delivery_form(form)
        if errors:
            raise DeliveryValidationError(errors)

        if not self._tokens.get():
            self._pending.capture("submit_delivery", form, self._process)
            logger.info("Delivery form held until login")
            return DeliveryResult(status=DeliveryStatus.AUTH_REQUIRED)

        handoff = await self._process(form)
        return DeliveryResult(status=DeliveryStatus.READY, handoff=handoff)

    async def _process(self, form: DeliveryForm) -> DeliveryHandoff:
        cart_id = await self._cart.create_cart_on_backend()
        latitude, longitude = self._location
        delivery = DeliveryInfoV1(
            customer_name=form.name,
            phone_number=normalize_phone(form.phone),
            email=form.email or None,
            address=form.address,
            city=form.city,
            state=form.state,
            zip_code=form.zip_code,
            latitude=latitude,
            longitude=longitude,
            delivery_instructions=form.delivery_instructions or None,
        )
        if self._register_delivery:
            await self._register(cart_id, delivery)
        return DeliveryHandoff(delivery=delivery, cart_id=cart_id)

    async def _register(self, cart_id: int, delivery: DeliveryInfoV1) -> None:
        token = self._tokens.get()
        if not token:
            raise AuthRequiredError()
        request = DeliveryRequestV1(cart=cart_id, **delivery.model_dump())
        try:
            await self._backend.create_delivery(token, request)
        except MarketplaceHTTPError as e:
            if e.status_code in (401, 403):
                raise AuthRequiredError() from e
            logger.warning("Delivery registration for cart %s failed: %s", cart_id, e)
            raise DeliverySyncError(e.detail() or "Failed to save delivery details") from e
        except MarketplaceBackendError as e:
            logger.warning("Delivery registration for cart %s failed: %s", cart_id, e)
            raise DeliverySyncError("Failed to save delivery details") from e


def _strip(form: DeliveryForm) -> DeliveryForm:
    return replace(
        form,
        name=form.name.strip(),
        phone=form.phone.strip(),
        address=form.address.strip(),
        city=form.city.strip(),
        state=form.state.strip(),
        zip_code=form.zip_code.strip(),
        email=(form.email or "").strip(),
        delivery_instructions=(form.delivery_instructions or "").strip(),
    )
