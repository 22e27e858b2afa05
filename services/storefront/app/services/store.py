from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from uuid import uuid4

from services.storefront.app.checkout.auth import FileTokenStore, InMemoryTokenStore, TokenStore
from services.storefront.app.checkout.flow import CheckoutFlow
from services.storefront.app.services.marketplace_base import MarketplaceBackend
from services.storefront.app.settings import Settings


@dataclass
class SessionRecord:
    session_id: str
    vendor: str
    flow: CheckoutFlow
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class InMemorySessionStore:
    """Live checkout sessions. Carts are client state, so they never leave this process."""

    def __init__(self) -> None:
        self._sessions: dict[str, SessionRecord] = {}

    def create(
        self,
        backend: MarketplaceBackend,
        settings: Settings,
        *,
        token: str | None = None,
    ) -> SessionRecord:
        session_id = uuid4().hex
        tokens = _token_store(settings, session_id)
        if token:
            tokens.set(token)

        record = SessionRecord(
            session_id=session_id,
            vendor=backend.vendor,
            flow=CheckoutFlow(backend, settings, tokens=tokens, session_id=session_id),
        )
        self._sessions[session_id] = record
        return record

    def get(self, session_id: str) -> SessionRecord | None:
        return self._sessions.get(session_id)

    def drop(self, session_id: str) -> None:
        record = self._sessions.pop(session_id, None)
        if record is not None:
            record.flow.tokens.clear()

    def clear(self) -> None:
        self._sessions.clear()


def _token_store(settings: Settings, session_id: str) -> TokenStore:
    if settings.persist_tokens:
        return FileTokenStore(Path(settings.token_dir) / f"{session_id}.json")
    return InMemoryTokenStore()


store = InMemorySessionStore()
