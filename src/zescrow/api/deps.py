"""Per-browsing-context state and FastAPI dependency providers."""

from __future__ import annotations

import logging
import secrets
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request, Response, status

from zescrow.core.aggregator import BalanceAggregator
from zescrow.core.errors import ErrorKind
from zescrow.core.logs import DEFAULT_ACTIVITY_ENTRIES, ActivityLog
from zescrow.session import IntentSlot, RouteGuard, WalletConnector, WalletSessionManager

logger = logging.getLogger(__name__)

CLIENT_COOKIE = "zescrow_client"
DEFAULT_MAX_CLIENTS = 1024


@dataclass
class ClientContext:
    """Everything owned by one browsing context."""

    token: str
    manager: WalletSessionManager
    intent: IntentSlot
    activity: ActivityLog
    last_seen: float = 0.0


class SessionRegistry:
    """Maps client tokens to the state of their browsing context.

    Contexts are kept in least-recently-used order. One idle for longer than
    `session_ttl_secs` is evicted on the next lookup or creation, and creating
    a context beyond `max_clients` evicts the least recently used one.
    Eviction disconnects the context's wallet session and drops its intent.
    """

    def __init__(
        self,
        *,
        aggregator: BalanceAggregator,
        connector_factory: Callable[[], WalletConnector],
        guard: RouteGuard,
        session_ttl_secs: float,
        balance_refresh_secs: float = 0,
        max_clients: int = DEFAULT_MAX_CLIENTS,
        activity_entries: int = DEFAULT_ACTIVITY_ENTRIES,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.aggregator = aggregator
        self.connector_factory = connector_factory
        self.guard = guard
        self.session_ttl_secs = session_ttl_secs
        self.balance_refresh_secs = balance_refresh_secs
        self.max_clients = max(max_clients, 1)
        self.activity_entries = activity_entries
        self._clock = clock or time.monotonic
        self._clients: OrderedDict[str, ClientContext] = OrderedDict()

    def get(self, token: str | None) -> ClientContext | None:
        if not token:
            return None
        context = self._clients.get(token)
        if context is None:
            return None
        now = self._clock()
        if now - context.last_seen > self.session_ttl_secs:
            self._evict(token, "idle")
            return None
        context.last_seen = now
        self._clients.move_to_end(token)
        return context

    def create(self, intent: IntentSlot | None = None) -> ClientContext:
        self.prune()
        while len(self._clients) >= self.max_clients:
            self._evict(next(iter(self._clients)), "capacity")
        token = secrets.token_urlsafe(24)
        activity = ActivityLog(self.activity_entries)
        manager = WalletSessionManager(
            self.connector_factory(),
            self.aggregator,
            session_ttl_secs=self.session_ttl_secs,
            balance_refresh_secs=self.balance_refresh_secs,
            activity=activity,
        )
        context = ClientContext(
            token=token,
            manager=manager,
            intent=intent or IntentSlot(),
            activity=activity,
            last_seen=self._clock(),
        )
        self._clients[token] = context
        logger.debug("Created browsing context %s…", token[:6])
        return context

    def prune(self) -> int:
        """Evict every context idle for longer than the session TTL."""
        cutoff = self._clock() - self.session_ttl_secs
        evicted = 0
        while self._clients:
            token, context = next(iter(self._clients.items()))
            if context.last_seen >= cutoff:
                break
            self._evict(token, "idle")
            evicted += 1
        return evicted

    def close(self) -> None:
        for context in self._clients.values():
            context.manager.disconnect()
        self._clients.clear()

    def _evict(self, token: str, reason: str) -> None:
        context = self._clients.pop(token)
        context.intent.clear()
        context.manager.disconnect()
        logger.debug("Evicted browsing context %s… (%s)", token[:6], reason)

    def __len__(self) -> int:
        return len(self._clients)


def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.registry


def issue_client(response: Response, registry: SessionRegistry, intent: IntentSlot | None = None) -> ClientContext:
    context = registry.create(intent)
    response.set_cookie(CLIENT_COOKIE, context.token, httponly=True, samesite="lax")
    return context


def find_client(
    request: Request,
    registry: SessionRegistry = Depends(get_registry),
) -> ClientContext | None:
    return registry.get(request.cookies.get(CLIENT_COOKIE))


def get_client(
    response: Response,
    context: ClientContext | None = Depends(find_client),
    registry: SessionRegistry = Depends(get_registry),
) -> ClientContext:
    return context if context is not None else issue_client(response, registry)


def get_authenticated_client(context: ClientContext | None = Depends(find_client)) -> ClientContext:
    if context is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="No wallet session")
    context.manager.check_expiry()
    session = context.manager.current_session()
    if not session.is_authenticated:
        detail = ErrorKind.SESSION_EXPIRED.value if session.error is ErrorKind.SESSION_EXPIRED else "Wallet not connected"
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)
    return context


__all__ = [
    "CLIENT_COOKIE",
    "DEFAULT_MAX_CLIENTS",
    "ClientContext",
    "SessionRegistry",
    "find_client",
    "get_authenticated_client",
    "get_client",
    "get_registry",
    "issue_client",
]
