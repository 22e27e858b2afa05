from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class TokenStore(Protocol):
    def get(self) -> str | None: ...

    def set(self, token: str) -> None: ...

    def clear(self) -> None: ...


class InMemoryTokenStore:
    def __init__(self, token: str | None = None) -> None:
        self._token = token or None

    def get(self) -> str | None:
        return self._token

    def set(self, token: str) -> None:
        self._token = token.strip() or None

    def clear(self) -> None:
        self._token = None


class FileTokenStore:
    """Token kept in a small JSON file so it survives process restarts."""

    def __init__(self, path: Path) -> None:
        self._path = path

    def get(self) -> str | None:
        if not self._path.exists():
            return None
        try:
            data = json.loads(self._path.read_text())
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable token file %s: %s", self._path, e)
            return None
        token = data.get("token") if isinstance(data, dict) else None
        return token or None

    def set(self, token: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps({"token": token.strip()}))

    def clear(self) -> None:
        self._path.unlink(missing_ok=True)


@dataclass(frozen=True, slots=True)
class PendingAction:
    name: str
    payload: Any
    run: Callable[[Any], Awaitable[Any]]


class PendingActionQueue:
    """Holds the one action that was blocked on login.

    Capturing again replaces the held action. `on_authenticated` runs the held action
    exactly once; later calls find nothing to run.
    """

    def __init__(self) -> None:
        self._pending: PendingAction | None = None

    @property
    def pending(self) -> PendingAction | None:
        return self._pending

    def capture(self, name: str, payload: Any, run: Callable[[Any], Awaitable[Any]]) -> None:
        self._pending = PendingAction(name=name, payload=payload, run=run)

    def discard(self) -> None:
        self._pending = None

    async def on_authenticated(self) -> Any:
        action = self._pending
        if action is None:
            return None
        # Pop before running so a failure cannot cause a second replay.
        self._pending = None
        logger.info("Replaying %s after login", action.name)
        return await action.run(action.payload)
