"""Shared event schema (v1).

The storefront stores an append-only checkout event log. Clients can consume these events
to render an audit trail of a checkout session.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class EntityTypeV1(str, Enum):
    SESSION = "CheckoutSession"
    CART = "Cart"
    DELIVERY = "Delivery"
    PAYMENT = "Payment"
    ORDER = "Order"


class EventTypeV1(str, Enum):
    SESSION_CREATED = "SESSION_CREATED"
    AUTHENTICATED = "AUTHENTICATED"
    CART_CREATED = "CART_CREATED"
    CART_CLEARED = "CART_CLEARED"
    CART_RESTORED = "CART_RESTORED"
    DELIVERY_HELD_FOR_AUTH = "DELIVERY_HELD_FOR_AUTH"
    DELIVERY_CAPTURED = "DELIVERY_CAPTURED"
    GATEWAYS_FALLBACK = "GATEWAYS_FALLBACK"
    PAYMENT_INITIATED = "PAYMENT_INITIATED"
    PAYMENT_REDIRECTED = "PAYMENT_REDIRECTED"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    PAYMENT_CANCELLED = "PAYMENT_CANCELLED"
    PAYMENT_COMPLETED = "PAYMENT_COMPLETED"
    ORDER_CREATED = "ORDER_CREATED"
    ORDER_FAILED = "ORDER_FAILED"


class EventV1(BaseModel):
    id: str
    session_id: str

    entity_type: EntityTypeV1
    entity_id: str

    event_type: EventTypeV1
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: str
