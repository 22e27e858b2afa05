from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, Field
from services.storefront.app.checkout.cart import CartStore


class CartItemAddRequest(BaseModel):
    id: int
    name: str = Field(..., min_length=1)
    price: Decimal = Field(..., ge=0)
    image: str | None = None
    quantity: int = Field(1, ge=1)


class CartItemUpdateRequest(BaseModel):
    # Zero or less removes the line.
    quantity: int


class CartItemOut(BaseModel):
    id: int
    name: str
    price: Decimal
    quantity: int
    image: str | None = None
    line_total: Decimal


class CartOut(BaseModel):
    cart_id: int | None = None
    items: list[CartItemOut] = Field(default_factory=list)
    sub_total: Decimal
    shipping: Decimal
    total: Decimal
    item_count: int
    distinct_item_count: int

    @classmethod
    def from_store(cls, cart: CartStore) -> "CartOut":
        return cls(
            cart_id=cart.cart_id,
            items=[
                CartItemOut(
                    id=i.id,
                    name=i.name,
                    price=i.price,
                    quantity=i.quantity,
                    image=i.image,
                    line_total=i.line_total,
                )
                for i in cart.items
            ],
            sub_total=cart.sub_total,
            shipping=cart.shipping,
            total=cart.total,
            item_count=cart.item_count,
            distinct_item_count=cart.distinct_item_count,
        )
