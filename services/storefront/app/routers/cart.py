from __future__ import annotations

from fastapi import APIRouter, Depends
from services.storefront.app.checkout.cart import CartStore, Product
from services.storefront.app.db.deps import get_db
from services.storefront.app.models.cart import CartItemAddRequest, CartItemUpdateRequest, CartOut
from services.storefront.app.routers.errors import get_session_or_404, raise_checkout_http_error
from services.storefront.app.services import journal
from sqlalchemy.orm import Session

router = APIRouter()


async def _synced(cart: CartStore) -> CartOut:
    # Local edits stand even when the backend is behind; the next sync retries them.
    try:
        await cart.sync_to_backend()
    except Exception as e:
        raise_checkout_http_error(e)
    return CartOut.from_store(cart)


@router.get("/v1/sessions/{session_id}/cart", response_model=CartOut)
def get_cart(session_id: str) -> CartOut:
    return CartOut.from_store(get_session_or_404(session_id).flow.cart)


@router.post("/v1/sessions/{session_id}/cart/items", response_model=CartOut)
async def add_item(session_id: str, payload: CartItemAddRequest) -> CartOut:
    cart = get_session_or_404(session_id).flow.cart
    product = Product(id=payload.id, name=payload.name, price=payload.price, image=payload.image)
    try:
        cart.add_to_cart(product, payload.quantity)
    except Exception as e:
        raise_checkout_http_error(e)
    return await _synced(cart)


@router.patch("/v1/sessions/{session_id}/cart/items/{item_id}", response_model=CartOut)
async def update_item(session_id: str, item_id: int, payload: CartItemUpdateRequest) -> CartOut:
    cart = get_session_or_404(session_id).flow.cart
    cart.update_quantity(item_id, payload.quantity)
    return await _synced(cart)


@router.delete("/v1/sessions/{session_id}/cart/items/{item_id}", response_model=CartOut)
async def remove_item(session_id: str, item_id: int) -> CartOut:
    cart = get_session_or_404(session_id).flow.cart
    cart.remove_item(item_id)
    return await _synced(cart)


@router.delete("/v1/sessions/{session_id}/cart", response_model=CartOut)
def clear_cart(session_id: str) -> CartOut:
    cart = get_session_or_404(session_id).flow.cart
    cart.clear_cart()
    return CartOut.from_store(cart)


@router.post("/v1/sessions/{session_id}/cart/restore", response_model=CartOut)
async def restore_cart(session_id: str, db: Session = Depends(get_db)) -> CartOut:
    """Load the buyer's open marketplace cart. Leaves the session cart alone if none exists."""
    session = get_session_or_404(session_id)
    try:
        await session.flow.restore_cart()
    except Exception as e:
        raise_checkout_http_error(e)

    journal.record(db, session)
    return CartOut.from_store(session.flow.cart)
