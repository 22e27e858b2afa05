from __future__ import annotations

import argparse
import asyncio
import logging
import os
from decimal import Decimal

from services.storefront.app.checkout.cart import Product
from services.storefront.app.checkout.delivery import DeliveryForm
from services.storefront.app.checkout.errors import CheckoutError
from services.storefront.app.checkout.flow import CheckoutFlow
from services.storefront.app.checkout.payment import PaymentOutcomeKind
from services.storefront.app.services.marketplace_factory import get_marketplace_backend
from services.storefront.app.settings import Settings


async def _run(args: argparse.Namespace) -> int:
    settings = Settings.from_env()
    backend = get_marketplace_backend()
    flow = CheckoutFlow(backend, settings, session_id="demo")

    try:
        flow.cart.add_to_cart(Product(id=1, name="Tea Leaves 500g", price=Decimal("150")), 2)
        flow.cart.add_to_cart(Product(id=2, name="Ceramic Mug", price=Decimal("50")), 1)
        print(f"Cart: {flow.cart.item_count} items, total {flow.cart.total}")

        flow.begin_checkout()
        form = DeliveryForm(
            name=args.name,
            phone=args.phone,
            address=args.address,
            city=args.city,
            state=args.state,
            zip_code=args.zip_code,
            email=args.email,
        )
        await flow.submit_delivery(form)
        if args.token:
            await flow.authenticate(args.token)
        if flow.handoff is None:
            print("Delivery held until login. Pass --token to continue.")
            return 1
        print(f"Backend cart {flow.handoff.cart_id} ready")

        gateways = await flow.load_gateways()
        print("Gateways: " + ", ".join(g.slug for g in gateways))
        if flow.payment.warning:
            print(f"Warning: {flow.payment.warning}")

        flow.select_gateway(args.gateway)
        if args.bank:
            flow.select_bank(args.gateway, args.bank)

        outcome = await flow.confirm_payment(coupon_code=args.coupon or None)
        if outcome.kind == PaymentOutcomeKind.REDIRECT:
            print(f"Continue payment at: {outcome.redirect_url}")
            return 0
        if outcome.kind == PaymentOutcomeKind.AWAITING_CARD_DETAILS:
            print("Card details required; this demo does not collect them.")
            return 1

        view = flow.confirmation
        assert view is not None
        print(view.title)
        print(view.message)
        for line in view.lines:
            suffix = f" = {line.line_total}" if line.line_total is not None else ""
            print(f"  {line.quantity} x {line.name}{suffix}")
        print(f"Total: {view.total}")
        return 0
    except CheckoutError as e:
        print(f"Checkout stopped at {flow.stage.value}: {e}")
        return 1
    finally:
        await backend.aclose()


def main() -> int:
    parser = argparse.ArgumentParser(description="Run one checkout end to end against the backend")
    parser.add_argument(
        "--token",
        default=os.getenv("STOREFRONT_TOKEN", "demo-token"),
        help="Session token sent as 'Authorization: Token <token>'",
    )
    parser.add_argument("--gateway", default="cod", help="Payment method slug (default: cod)")
    parser.add_argument("--bank", default="", help="Bank id for gateways that list banks")
    parser.add_argument("--coupon", default="", help="Coupon code to send with the order")
    parser.add_argument("--name", default="Asha Gurung")
    parser.add_argument("--phone", default="+9779800000000")
    parser.add_argument("--email", default="")
    parser.add_argument("--address", default="Thamel Marg 12")
    parser.add_argument("--city", default="Kathmandu")
    parser.add_argument("--state", default="Bagmati")
    parser.add_argument("--zip-code", default="44600")
    parser.add_argument("--verbose", action="store_true")

    args = parser.parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    return asyncio.run(_run(args))


if __name__ == "__main__":
    raise SystemExit(main())
