import json
from decimal import Decimal

import httpx
import pytest
from packages.shared.schemas.marketplace_v1 import (
    CreateOrderRequestV1,
    DeliveryInfoV1,
    DeliveryRequestV1,
    InitiatePaymentRequestV1,
)
from services.storefront.app.checkout.auth import InMemoryTokenStore
from services.storefront.app.checkout.cart import Product
from services.storefront.app.checkout.delivery import DeliveryForm
from services.storefront.app.checkout.flow import CheckoutFlow, CheckoutStage
from services.storefront.app.services.marketplace_base import (
    MarketplaceBackendError,
    MarketplaceHTTPError,
    MarketplaceUnavailableError,
)
from services.storefront.app.services.marketplace_http import MarketplaceHttpBackend
from services.storefront.app.settings import Settings

DELIVERY = DeliveryInfoV1(
    customer_name="Asha Gurung",
    phone_number="+9779800000000",
    address="Thamel Marg 12",
    city="Kathmandu",
    state="Bagmati",
    zip_code="44600",
    latitude=27.7172,
    longitude=85.324,
)

ORDER_BODY = {
    "id": 12,
    "order_number": "MB-0012",
    "status": "pending",
    "total_amount": "450.00",
    "items": [
        {"id": 1, "product_name": "Tea", "quantity": 1, "price": "100.00", "total": "100.00"}
    ],
    "payment_method": "Cash on Delivery",
    "created_at": "2026-01-01T00:00:00Z",
    "unexpected": "ignored",
}


def _backend(handler) -> tuple[MarketplaceHttpBackend, list[httpx.Request]]:
    seen: list[httpx.Request] = []

    def _record(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    backend = MarketplaceHttpBackend(
        "http://market.test/", transport=httpx.MockTransport(_record)
    )
    return backend, seen


@pytest.mark.asyncio
async def test_create_cart_sends_token_header() -> None:
    backend, seen = _backend(lambda r: httpx.Response(201, json={"id": 55}))

    assert await backend.create_cart("abc") == 55
    assert seen[0].method == "POST"
    assert seen[0].url.path == "/api/v1/carts/"
    assert seen[0].headers["Authorization"] == "Token abc"
    await backend.aclose()


@pytest.mark.asyncio
async def test_gateway_list_is_unauthenticated() -> None:
    body = {
        "status": "success",
        "data": [
            {"slug": "khalti", "name": "Khalti", "logo": "k.png"},
            {
                "slug": "mobile_banking",
                "name": "Mobile Banking",
                "items": [{"idx": 3, "name": "Nabil Bank"}],
            },
        ],
    }
    backend, seen = _backend(lambda r: httpx.Response(200, json=body))

    gateways = await backend.list_gateways()

    assert [g.slug for g in gateways] == ["khalti", "mobile_banking"]
    assert gateways[1].items[0].idx == 3
    assert "Authorization" not in seen[0].headers


@pytest.mark.asyncio
async def test_initiate_payment_body() -> None:
    backend, seen = _backend(
        lambda r: httpx.Response(200, json={"payment_url": "https://pay.test/x"})
    )
    request = InitiatePaymentRequestV1(
        cart_id=55,
        gateway="khalti",
        customer_name="Asha",
        customer_phone="+9779800000000",
        shipping_cost=Decimal("100"),
        return_url="http://shop.test/return",
    )

    response = await backend.initiate_payment("abc", request)

    assert response.payment_url == "https://pay.test/x"
    sent = json.loads(seen[0].content)
    assert sent["cart_id"] == 55
    assert sent["tax_amount"] == "0"
    assert "bank" not in sent


@pytest.mark.asyncio
async def test_create_order_parses_response_and_ignores_extra_fields() -> None:
    backend, seen = _backend(lambda r: httpx.Response(201, json=ORDER_BODY))

    order = await backend.create_order(
        "abc",
        CreateOrderRequestV1(cart_id=55, delivery_info=DELIVERY, payment_method="Cash on Delivery"),
    )

    assert order.order_number == "MB-0012"
    assert order.total_amount == Decimal("450.00")
    assert seen[0].url.path == "/api/v1/marketplace/orders/create/"


@pytest.mark.asyncio
async def test_list_and_get_orders() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/api/v1/marketplace/orders/":
            return httpx.Response(200, json={"count": 1, "results": [ORDER_BODY]})
        return httpx.Response(200, json=ORDER_BODY)

    backend, _ = _backend(handler)

    assert [o.id for o in await backend.list_orders("abc")] == [12]
    assert (await backend.get_order("abc", 12)).id == 12


@pytest.mark.asyncio
async def test_error_status_keeps_payload() -> None:
    backend, _ = _backend(
        lambda r: httpx.Response(400, json={"cart_id": ["Invalid"], "detail": "Bad request"})
    )

    with pytest.raises(MarketplaceHTTPError) as exc:
        await backend.create_order(
            "abc", CreateOrderRequestV1(cart_id=1, delivery_info=DELIVERY)
        )

    assert exc.value.status_code == 400
    assert exc.value.payload["cart_id"] == ["Invalid"]
    assert exc.value.detail() == "Bad request"


@pytest.mark.asyncio
async def test_transport_error_is_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    backend, _ = _backend(handler)

    with pytest.raises(MarketplaceUnavailableError):
        await backend.list_gateways()


@pytest.mark.asyncio
async def test_malformed_body_is_backend_error() -> None:
    backend, _ = _backend(lambda r: httpx.Response(200, json={"unexpected": True}))

    with pytest.raises(MarketplaceBackendError):
        await backend.create_cart("abc")
    with pytest.raises(MarketplaceBackendError):
        await backend.get_order("abc", 1)


@pytest.mark.asyncio
async def test_non_numeric_id_is_backend_error() -> None:
    backend, _ = _backend(lambda r: httpx.Response(201, json={"id": "not-a-number"}))

    with pytest.raises(MarketplaceBackendError, match="did not contain an id"):
        await backend.create_cart("abc")
    with pytest.raises(MarketplaceBackendError, match="Cart item"):
        await backend.add_cart_item("abc", 55, 7, 1)


@pytest.mark.asyncio
async def test_cart_item_requests() -> None:
    backend, seen = _backend(lambda r: httpx.Response(201, json={"id": 901}))

    assert await backend.add_cart_item("abc", 55, 7, 2) == 901
    await backend.update_cart_item("abc", 55, 901, 3)
    await backend.delete_cart_item("abc", 55, 901)

    assert [(r.method, r.url.path) for r in seen] == [
        ("POST", "/api/v1/carts/55/items/"),
        ("PATCH", "/api/v1/carts/55/items/901/"),
        ("DELETE", "/api/v1/carts/55/items/901/"),
    ]
    assert json.loads(seen[0].content) == {"cart": 55, "product": 7, "quantity": 2}
    assert json.loads(seen[1].content) == {"quantity": 3}
    assert all(r.headers["Authorization"] == "Token abc" for r in seen)


@pytest.mark.asyncio
async def test_my_cart_unwraps_nested_product_details() -> None:
    body = {
        "id": 55,
        "items": [
            {
                "id": 901,
                "product": 7,
                "quantity": 2,
                "unit_price": "120.00",
                "product_details": {"product_details": {"name": "Tea Leaves"}},
            },
            {"id": 902, "product": 8, "quantity": 1},
        ],
        "subtotal": "240.00",
    }
    backend, seen = _backend(lambda r: httpx.Response(200, json=body))

    cart = await backend.get_my_cart("abc")

    assert seen[0].url.path == "/api/v1/my-cart/"
    assert cart.id == 55
    assert [line.display_name for line in cart.items] == ["Tea Leaves", "Product"]
    assert cart.items[0].unit_price == Decimal("120.00")


@pytest.mark.asyncio
async def test_location_and_delivery_requests() -> None:
    backend, seen = _backend(lambda r: httpx.Response(200, json={}))

    await backend.update_customer_location("abc", 27.7, 85.31)
    await backend.create_delivery(
        "abc", DeliveryRequestV1(cart=55, **DELIVERY.model_dump())
    )

    assert (seen[0].method, seen[0].url.path) == ("PATCH", "/api/v1/customer/location/")
    assert json.loads(seen[0].content) == {"latitude": 27.7, "longitude": 85.31}
    assert (seen[1].method, seen[1].url.path) == ("POST", "/api/v1/deliveries/")
    sent = json.loads(seen[1].content)
    assert sent["cart"] == 55
    assert sent["customer_name"] == "Asha Gurung"
    assert "email" not in sent


@pytest.mark.asyncio
async def test_verify_payment_posts_gateway_params_without_token() -> None:
    body = {
        "status": "success",
        "message": "Payment verified",
        "data": {
            "order_number": "ORD-1",
            "amount": "450",
            "marketplace_sales": [{"product_name": "Tea", "quantity": 1, "seller": "Hill"}],
        },
    }
    backend, seen = _backend(lambda r: httpx.Response(200, json=body))

    result = await backend.verify_payment({"pidx": "px-1", "status": "Completed"})

    assert result.verified is True
    assert result.data.marketplace_sales[0].seller == "Hill"
    assert seen[0].url.path == "/api/v1/payments/callback/"
    assert json.loads(seen[0].content) == {"pidx": "px-1", "status": "Completed"}
    assert "Authorization" not in seen[0].headers


@pytest.mark.asyncio
async def test_cash_on_delivery_checkout_over_http(
    settings: Settings, delivery_form: DeliveryForm
) -> None:
    item_ids = iter(range(901, 999))

    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/api/v1/carts/":
            return httpx.Response(201, json={"id": 55})
        if path == "/api/v1/carts/55/items/":
            return httpx.Response(201, json={"id": next(item_ids)})
        if path == "/api/v1/payments/gateways/":
            return httpx.Response(200, json={"data": [{"slug": "khalti", "name": "Khalti"}]})
        if path == "/api/v1/marketplace/orders/create/":
            return httpx.Response(201, json=ORDER_BODY)
        return httpx.Response(404, json={"detail": "Not found."})

    backend, seen = _backend(handler)
    flow = CheckoutFlow(backend, settings, tokens=InMemoryTokenStore("abc"), session_id="s")
    flow.cart.add_to_cart(Product(id=7, name="Tea", price=Decimal("100")), 2)
    flow.cart.add_to_cart(Product(id=8, name="Mug", price=Decimal("50")))

    flow.begin_checkout()
    await flow.submit_delivery(delivery_form)
    await flow.load_gateways()
    flow.select_gateway("cod")
    await flow.confirm_payment()

    assert flow.stage == CheckoutStage.CONFIRMED
    assert [(r.method, r.url.path) for r in seen] == [
        ("POST", "/api/v1/carts/"),
        ("POST", "/api/v1/carts/55/items/"),
        ("POST", "/api/v1/carts/55/items/"),
        ("GET", "/api/v1/payments/gateways/"),
        ("POST", "/api/v1/marketplace/orders/create/"),
    ]
    assert [json.loads(r.content)["product"] for r in seen[1:3]] == [7, 8]
    assert json.loads(seen[-1].content)["cart_id"] == 55
    await backend.aclose()
