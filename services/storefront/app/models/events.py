from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, Field


class CheckoutSessionOut(BaseModel):
    session_id: str
    backend_vendor: str
    stage: str
    cart_id: int | None = None
    created_at: str
    updated_at: str


class OrderReceiptOut(BaseModel):
    id: str
    order_id: int | None = None
    order_number: str | None = None
    payment_method: str | None = None
    total_amount: Decimal | None = None
    references: dict[str, str] = Field(default_factory=dict)
    created_at: str
