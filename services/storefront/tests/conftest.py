from collections.abc import Iterator
from pathlib import Path

import pytest
from services.storefront.app.checkout.auth import InMemoryTokenStore
from services.storefront.app.checkout.cart import CartStore
from services.storefront.app.checkout.delivery import DeliveryForm
from services.storefront.app.services import marketplace_factory
from services.storefront.app.services.marketplace_mock import MarketplaceMockBackend
from services.storefront.app.services.store import store
from services.storefront.app.settings import Settings


@pytest.fixture(autouse=True)
def _isolated_storefront(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    monkeypatch.setenv("DATABASE_URL", f"sqlite+pysqlite:///{tmp_path / 'storefront_test.db'}")
    monkeypatch.setenv("STOREFRONT_DB_AUTO_CREATE", "true")
    monkeypatch.delenv("STOREFRONT_BACKEND", raising=False)
    monkeypatch.delenv("STOREFRONT_PERSIST_TOKENS", raising=False)
    monkeypatch.delenv("STOREFRONT_REGISTER_DELIVERY", raising=False)
    monkeypatch.setattr(marketplace_factory, "_SHARED", {})

    from services.storefront.app.db.init_db import init_db

    init_db()
    store.clear()
    yield
    store.clear()


@pytest.fixture
def settings() -> Settings:
    return Settings.from_env()


@pytest.fixture
def backend() -> MarketplaceMockBackend:
    return MarketplaceMockBackend()


@pytest.fixture
def tokens() -> InMemoryTokenStore:
    return InMemoryTokenStore("tok-123")


@pytest.fixture
def cart(backend: MarketplaceMockBackend, tokens: InMemoryTokenStore) -> CartStore:
    return CartStore(backend, tokens)


@pytest.fixture
def delivery_form() -> DeliveryForm:
    return DeliveryForm(
        name="Asha Gurung",
        phone="+977 980-000-0000",
        address="Thamel Marg 12",
        city="Kathmandu",
        state="Bagmati",
        zip_code="44600",
        email="asha@example.com",
    )
