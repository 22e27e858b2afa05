from __future__ import annotations

from fastapi import APIRouter
from packages.shared.schemas.marketplace_v1 import OrderResponseV1
from services.storefront.app.routers.errors import get_session_or_404, raise_checkout_http_error

router = APIRouter()


@router.get("/v1/sessions/{session_id}/orders", response_model=list[OrderResponseV1])
async def list_orders(session_id: str) -> list[OrderResponseV1]:
    flow = get_session_or_404(session_id).flow
    try:
        return await flow.orders.list_orders()
    except Exception as e:
        raise_checkout_http_error(e)


@router.get("/v1/sessions/{session_id}/orders/{order_id}", response_model=OrderResponseV1)
async def get_order(session_id: str, order_id: int) -> OrderResponseV1:
    flow = get_session_or_404(session_id).flow
    try:
        return await flow.orders.get_order(order_id)
    except Exception as e:
        raise_checkout_http_error(e)
