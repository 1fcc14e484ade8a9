"""Route guard deciding between protected content, a loader, or a redirect."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Any
from urllib.parse import urlsplit

from .models import SessionState, WalletSession

logger = logging.getLogger(__name__)

DEFAULT_CONNECT_PATH = "/connect-wallet"
DEFAULT_LANDING_PATH = "/dashboard"
DEFAULT_PROTECTED_PREFIXES = ("/dashboard", "/freelancer", "/client")


class GuardAction(str, Enum):
    RENDER = "render"
    LOADING = "loading"
    REDIRECT = "redirect"


@dataclass(frozen=True, slots=True)
class GuardDecision:
    action: GuardAction
    location: str | None = None

    def to_payload(self) -> dict[str, Any]:
        return {"action": self.action.value, "location": self.location}


def is_site_relative(path: str) -> bool:
    if not path.startswith("/") or path.startswith("//") or "\\" in path:
        return False
    parts = urlsplit(path)
    return not parts.scheme and not parts.netloc


class IntentSlot:
    """Holds the redirect intent of one browsing context.

    The path is read and cleared in a single `consume()` call, so a
    post-connect navigation can happen at most once per recorded intent.
    """

    def __init__(self) -> None:
        self._path: str | None = None

    def record(self, path: str) -> None:
        self._path = path

    def peek(self) -> str | None:
        return self._path

    def consume(self) -> str | None:
        path, self._path = self._path, None
        return path

    def clear(self) -> None:
        self._path = None


class RouteGuard:
    def __init__(
        self,
        *,
        connect_path: str = DEFAULT_CONNECT_PATH,
        default_path: str = DEFAULT_LANDING_PATH,
        protected_prefixes: Iterable[str] = DEFAULT_PROTECTED_PREFIXES,
    ) -> None:
        self.connect_path = connect_path
        self.default_path = default_path
        self.protected_prefixes = tuple(protected_prefixes)

    def is_protected(self, path: str) -> bool:
        clean = urlsplit(path).path or "/"
        for prefix in self.protected_prefixes:
            if clean == prefix or clean.startswith(prefix.rstrip("/") + "/"):
                return True
        return False

    def decide(self, session: WalletSession, path: str, slot: IntentSlot) -> GuardDecision:
        """Decide what to show for `path` given the current session snapshot.

        Connecting never redirects: the pending attempt must resolve first.
        """
        if not self.is_protected(path):
            return GuardDecision(GuardAction.RENDER)
        if session.state is SessionState.AUTHENTICATED:
            return GuardDecision(GuardAction.RENDER)
        if session.state is SessionState.CONNECTING:
            return GuardDecision(GuardAction.LOADING)
        if is_site_relative(path) and path != self.connect_path:
            slot.record(path)
            logger.debug("Recorded redirect intent %s", path)
        return GuardDecision(GuardAction.REDIRECT, self.connect_path)

    def complete_connect(self, session: WalletSession, slot: IntentSlot) -> str | None:
        """Destination after a connect attempt; None while not authenticated.

        The recorded intent is consumed only once the session is authenticated.
        """
        if session.state is not SessionState.AUTHENTICATED:
            return None
        intent = slot.consume()
        if intent and is_site_relative(intent):
            return intent
        return self.default_path


__all__ = [
    "GuardAction",
    "GuardDecision",
    "IntentSlot",
    "RouteGuard",
    "DEFAULT_CONNECT_PATH",
    "DEFAULT_LANDING_PATH",
    "DEFAULT_PROTECTED_PREFIXES",
]
