from __future__ import annotations

import os
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path


@dataclass(frozen=True, slots=True)
class Settings:
    """Checkout configuration.

    Env vars:
    - STOREFRONT_API_URL (default: http://localhost:8000)
    - STOREFRONT_HTTP_TIMEOUT_S (default: 15)
    - STOREFRONT_SHIPPING_FEE (default: 100)
    - STOREFRONT_FALLBACK_LAT / STOREFRONT_FALLBACK_LNG (default: 27.7172 / 85.3240)
    - STOREFRONT_FALLBACK_GATEWAY_SLUG (default: khalti)
    - STOREFRONT_FALLBACK_GATEWAY_NAME (default: Khalti Wallet)
    - STOREFRONT_CARD_GATEWAYS (comma separated, default: card)
    - STOREFRONT_PAYMENT_RETURN_URL (default: http://localhost:5173/payment-success)
    - STOREFRONT_TOKEN_DIR (default: .local/tokens)
    - STOREFRONT_PERSIST_TOKENS (default: false)
    - STOREFRONT_REGISTER_DELIVERY (default: false)
    - STOREFRONT_LOG_LEVEL (default: INFO)
    """

    api_url: str
    http_timeout_s: float
    shipping_fee: Decimal
    fallback_latitude: float
    fallback_longitude: float
    fallback_gateway_slug: str
    fallback_gateway_name: str
    card_gateway_slugs: frozenset[str]
    payment_return_url: str
    token_dir: Path
    persist_tokens: bool
    register_delivery: bool
    log_level: str

    @classmethod
    def from_env(cls) -> "Settings":
        card_gateways = os.getenv("STOREFRONT_CARD_GATEWAYS", "card")
        return cls(
            api_url=os.getenv("STOREFRONT_API_URL", "http://localhost:8000").rstrip("/"),
            http_timeout_s=float(os.getenv("STOREFRONT_HTTP_TIMEOUT_S", "15")),
            shipping_fee=Decimal(os.getenv("STOREFRONT_SHIPPING_FEE", "100")),
            fallback_latitude=float(os.getenv("STOREFRONT_FALLBACK_LAT", "27.7172")),
            fallback_longitude=float(os.getenv("STOREFRONT_FALLBACK_LNG", "85.3240")),
            fallback_gateway_slug=os.getenv("STOREFRONT_FALLBACK_GATEWAY_SLUG", "khalti").strip(),
            fallback_gateway_name=os.getenv(
                "STOREFRONT_FALLBACK_GATEWAY_NAME", "Khalti Wallet"
            ).strip(),
            card_gateway_slugs=frozenset(
                s.strip().lower() for s in card_gateways.split(",") if s.strip()
            ),
            payment_return_url=os.getenv(
                "STOREFRONT_PAYMENT_RETURN_URL", "http://localhost:5173/payment-success"
            ),
            token_dir=Path(os.getenv("STOREFRONT_TOKEN_DIR", ".local/tokens")).expanduser(),
            persist_tokens=_parse_bool(os.getenv("STOREFRONT_PERSIST_TOKENS", "false")),
            register_delivery=_parse_bool(os.getenv("STOREFRONT_REGISTER_DELIVERY", "false")),
            log_level=os.getenv("STOREFRONT_LOG_LEVEL", "INFO").strip().upper(),
        )


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "y"}
