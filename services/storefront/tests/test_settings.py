from decimal import Decimal

import pytest
from services.storefront.app.settings import Settings


def test_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("STOREFRONT_SHIPPING_FEE", "STOREFRONT_FALLBACK_LAT", "STOREFRONT_CARD_GATEWAYS"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings.from_env()

    assert settings.shipping_fee == Decimal("100")
    assert (settings.fallback_latitude, settings.fallback_longitude) == (27.7172, 85.3240)
    assert settings.fallback_gateway_slug == "khalti"
    assert settings.card_gateway_slugs == frozenset({"card"})
    assert settings.persist_tokens is False
    assert settings.register_delivery is False


def test_env_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("STOREFRONT_API_URL", "http://market.test/")
    monkeypatch.setenv("STOREFRONT_SHIPPING_FEE", "60")
    monkeypatch.setenv("STOREFRONT_CARD_GATEWAYS", "Card, visa ,")
    monkeypatch.setenv("STOREFRONT_PERSIST_TOKENS", "yes")
    monkeypatch.setenv("STOREFRONT_REGISTER_DELIVERY", "1")

    settings = Settings.from_env()

    assert settings.api_url == "http://market.test"
    assert settings.shipping_fee == Decimal("60")
    assert settings.card_gateway_slugs == frozenset({"card", "visa"})
    assert settings.persist_tokens is True
    assert settings.register_delivery is True
