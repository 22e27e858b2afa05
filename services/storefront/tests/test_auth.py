from pathlib import Path

import pytest
from services.storefront.app.checkout.auth import (
    FileTokenStore,
    InMemoryTokenStore,
    PendingActionQueue,
)
from services.storefront.app.services.marketplace_mock import MarketplaceMockBackend
from services.storefront.app.services.store import InMemorySessionStore
from services.storefront.app.settings import Settings


def test_file_token_store_round_trip(tmp_path: Path) -> None:
    tokens = FileTokenStore(tmp_path / "tokens" / "s1.json")
    assert tokens.get() is None

    tokens.set(" abc ")
    assert tokens.get() == "abc"
    assert FileTokenStore(tmp_path / "tokens" / "s1.json").get() == "abc"

    tokens.clear()
    assert tokens.get() is None


def test_file_token_store_ignores_garbage(tmp_path: Path) -> None:
    path = tmp_path / "bad.json"
    path.write_text("{not json")
    assert FileTokenStore(path).get() is None


def test_blank_token_counts_as_logged_out() -> None:
    tokens = InMemoryTokenStore()
    tokens.set("   ")
    assert tokens.get() is None


@pytest.mark.asyncio
async def test_pending_action_runs_once_and_latest_wins() -> None:
    ran: list[str] = []

    async def _run(payload: str) -> str:
        ran.append(payload)
        return payload.upper()

    queue = PendingActionQueue()
    queue.capture("submit", "first", _run)
    queue.capture("submit", "second", _run)

    assert await queue.on_authenticated() == "SECOND"
    assert await queue.on_authenticated() is None
    assert ran == ["second"]


@pytest.mark.asyncio
async def test_failed_replay_is_not_retried() -> None:
    calls = 0

    async def _boom(payload: object) -> None:
        nonlocal calls
        calls += 1
        raise RuntimeError("backend down")

    queue = PendingActionQueue()
    queue.capture("submit", None, _boom)

    with pytest.raises(RuntimeError):
        await queue.on_authenticated()
    assert await queue.on_authenticated() is None
    assert calls == 1


def test_sessions_can_persist_tokens(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("STOREFRONT_PERSIST_TOKENS", "true")
    monkeypatch.setenv("STOREFRONT_TOKEN_DIR", str(tmp_path))
    sessions = InMemorySessionStore()

    record = sessions.create(MarketplaceMockBackend(), Settings.from_env(), token="tok")

    assert (tmp_path / f"{record.session_id}.json").exists()
    sessions.drop(record.session_id)
    assert not (tmp_path / f"{record.session_id}.json").exists()
    assert sessions.get(record.session_id) is None
