from __future__ import annotations

import os

from services.storefront.app.services.marketplace_base import MarketplaceBackend
from services.storefront.app.services.marketplace_mock import MarketplaceMockBackend


def get_marketplace_backend() -> MarketplaceBackend:
    """Select a backend based on env vars.

    Defaults to the mock backend so tests and local dev are deterministic unless explicitly
    configured otherwise.
    """

    mode = os.getenv("STOREFRONT_BACKEND", "mock").strip().lower()

    if mode == "mock":
        return MarketplaceMockBackend()

    if mode == "http":
        from services.storefront.app.services.marketplace_http import MarketplaceHttpBackend

        return MarketplaceHttpBackend.from_env()

    raise ValueError(f"Unknown STOREFRONT_BACKEND={mode!r}. Expected mock or http.")


_SHARED: dict[str, MarketplaceBackend] = {}


def get_shared_backend() -> MarketplaceBackend:
    """Process-wide backend for the current STOREFRONT_BACKEND mode.

    Sessions share it so the HTTP backend keeps one connection pool. One backend is kept
    per mode, so sessions opened before a mode switch keep a live client until shutdown.
    """

    mode = os.getenv("STOREFRONT_BACKEND", "mock").strip().lower()
    backend = _SHARED.get(mode)
    if backend is None:
        backend = get_marketplace_backend()
        _SHARED[mode] = backend
    return backend


async def close_shared_backend() -> None:
    backends = list(_SHARED.values())
    _SHARED.clear()
    for backend in backends:
        await backend.aclose()
