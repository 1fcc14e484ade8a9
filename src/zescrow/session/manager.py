"""Wallet session state machine and balance publication."""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime, timedelta
from typing import Callable

from zescrow.core.aggregator import BalanceAggregator
from zescrow.core.balance import BalanceView, Completeness, describe_balance
from zescrow.core.errors import ErrorKind, WalletConnectError
from zescrow.core.logs import ActivityLog, redact

from .connector import WalletConnector
from .models import EventKind, SessionEvent, SessionState, WalletSession, new_session_id

logger = logging.getLogger(__name__)

DEFAULT_SESSION_TTL_SECS = 3600

Subscriber = Callable[[SessionEvent], None]


def _utcnow() -> datetime:
    return datetime.now(UTC)


class WalletSessionManager:
    """Single writer of the current wallet session and its balance view.

    States move Disconnected -> Connecting -> Authenticated | Error. A new
    `connect()` supersedes whatever attempt or aggregation is in flight; any
    result computed for a superseded session id is dropped before it can be
    published. Readers get immutable snapshots, so they never observe a
    half-applied transition.

    With a positive `balance_refresh_secs` an authenticated session is
    re-aggregated on that interval for as long as it stays current. The last
    good view is kept per manager and offered to the aggregator as the
    fallback when every chain fails.
    """

    def __init__(
        self,
        connector: WalletConnector,
        aggregator: BalanceAggregator,
        *,
        session_ttl_secs: float = DEFAULT_SESSION_TTL_SECS,
        balance_refresh_secs: float = 0,
        activity: ActivityLog | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._connector = connector
        self._aggregator = aggregator
        self._ttl = timedelta(seconds=session_ttl_secs)
        self._refresh_interval = balance_refresh_secs
        self._activity = activity
        self._clock = clock or _utcnow
        self._session = WalletSession.disconnected()
        self._balance: BalanceView | None = None
        self._cached: tuple[str, BalanceView] | None = None
        self._connect_task: asyncio.Task | None = None
        self._aggregation_task: asyncio.Task | None = None
        self._refresh_task: asyncio.Task | None = None
        self._subscribers: list[Subscriber] = []

    # ------------------------------------------------------------------
    # Readers
    # ------------------------------------------------------------------
    def current_session(self) -> WalletSession:
        return self._session

    def current_balance(self) -> BalanceView | None:
        return self._balance

    def snapshot(self) -> tuple[WalletSession, BalanceView | None]:
        return self._session, self._balance

    def subscribe(self, callback: Subscriber) -> None:
        if callback not in self._subscribers:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: Subscriber) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------
    async def connect(self, connector: WalletConnector | None = None) -> WalletSession:
        """Start a new connection attempt and wait until it resolves.

        `connector` overrides the default connector for this attempt only.

        Returns the Authenticated or Error session for this attempt. When the
        attempt is superseded by another `connect()` or a `disconnect()`, the
        session that replaced it is returned instead.
        """
        self._cancel_in_flight()
        self._balance = None
        attempt = WalletSession(session_id=new_session_id(), state=SessionState.CONNECTING)
        self._set_session(attempt)
        self._record("session", f"Connecting wallet (session {attempt.session_id})")

        task = asyncio.create_task((connector or self._connector).connect(), name=f"connect-{attempt.session_id}")
        self._connect_task = task
        try:
            identity = await task
        except asyncio.CancelledError:
            if self._is_current(attempt):
                # The caller itself was cancelled; nothing superseded us.
                self._set_session(WalletSession.disconnected())
                raise
            logger.debug("Connection attempt %s superseded", attempt.session_id)
            return self._session
        except WalletConnectError as exc:
            if not self._is_current(attempt):
                return self._session
            logger.warning("Wallet connection failed: %s", exc)
            self._record("session", f"Wallet connection failed: {exc}", severity="error")
            self._set_session(
                WalletSession(session_id=attempt.session_id, state=SessionState.ERROR, error=ErrorKind.CONNECT_FAILED)
            )
            return self._session
        except Exception:
            if self._is_current(attempt):
                logger.exception("Wallet connector failed unexpectedly")
                self._set_session(
                    WalletSession(session_id=attempt.session_id, state=SessionState.ERROR, error=ErrorKind.CONNECT_FAILED)
                )
            raise
        finally:
            if self._connect_task is task:
                self._connect_task = None

        if not self._is_current(attempt):
            logger.debug("Dropping late connection result for %s", attempt.session_id)
            return self._session

        session = WalletSession(
            session_id=attempt.session_id,
            state=SessionState.AUTHENTICATED,
            address=identity.address,
            connected_at=self._clock(),
            chain_addresses=identity.chain_addresses,
        )
        self._set_session(session)
        self._record("session", f"Wallet {identity.address} authenticated")

        cached = self._cached_view(session.address)
        if cached is not None:
            self._set_balance(cached.as_stale())
        self._start_aggregation(session, cached)
        self._start_refresh_loop(session)
        return session

    def disconnect(self) -> WalletSession:
        """Drop the current session, its cached balance and any work in flight."""
        previous = self._session
        self._cancel_in_flight()
        if previous.address:
            self._record("session", f"Wallet {previous.address} disconnected")
        self._cached = None
        self._balance = None
        self._set_session(WalletSession.disconnected())
        return self._session

    async def refresh(self) -> BalanceView | None:
        """Run a new aggregation cycle for the current authenticated session."""
        session = self._session
        if not session.is_authenticated:
            return self._balance
        self._begin_refresh(session)
        return await self.wait_for_balance()

    async def wait_for_balance(self) -> BalanceView | None:
        """Wait for the in-flight aggregation, if any, and return the current view."""
        task = self._aggregation_task
        if task is not None and not task.done():
            try:
                await asyncio.shield(task)
            except asyncio.CancelledError:
                if not task.cancelled():
                    raise
        return self._balance

    def check_expiry(self, now: datetime | None = None) -> bool:
        """Expire an authenticated session older than the configured TTL."""
        session = self._session
        if not session.is_authenticated or session.connected_at is None:
            return False
        now = now or self._clock()
        if now - session.connected_at <= self._ttl:
            return False
        self._cancel_in_flight()
        self._cached = None
        self._balance = None
        self._record("session", f"Session for {session.address} expired", severity="warning")
        self._set_session(
            WalletSession(
                session_id=session.session_id,
                state=SessionState.ERROR,
                address=session.address,
                connected_at=session.connected_at,
                chain_addresses=session.chain_addresses,
                error=ErrorKind.SESSION_EXPIRED,
            )
        )
        return True

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _is_current(self, session: WalletSession) -> bool:
        return self._session.session_id == session.session_id

    def _cached_view(self, address: str | None) -> BalanceView | None:
        if self._cached is None or address is None:
            return None
        cached_address, view = self._cached
        return view if cached_address == address else None

    def _begin_refresh(self, session: WalletSession) -> None:
        if self._aggregation_task is not None and not self._aggregation_task.done():
            self._aggregation_task.cancel()
        if self._balance is not None and self._balance.is_available:
            self._set_balance(self._balance.as_stale())
        self._start_aggregation(session, self._cached_view(session.address))

    def _start_refresh_loop(self, session: WalletSession) -> None:
        if self._refresh_interval <= 0:
            return
        self._refresh_task = asyncio.create_task(
            self._refresh_periodically(session),
            name=f"refresh-{session.session_id}",
        )

    async def _refresh_periodically(self, session: WalletSession) -> None:
        while True:
            try:
                await self.wait_for_balance()
            except Exception:  # noqa: BLE001
                logger.exception("Balance refresh failed for session %s", session.session_id)
            await asyncio.sleep(self._refresh_interval)
            if not self._is_current(session) or self.check_expiry() or not self._session.is_authenticated:
                return
            logger.debug("Periodic balance refresh for session %s", session.session_id)
            self._begin_refresh(session)

    def _start_aggregation(self, session: WalletSession, previous: BalanceView | None) -> None:
        self._aggregation_task = asyncio.create_task(
            self._run_aggregation(session, previous),
            name=f"aggregate-{session.session_id}",
        )

    async def _run_aggregation(self, session: WalletSession, previous: BalanceView | None) -> BalanceView | None:
        assert session.address is not None
        view = await self._aggregator.aggregate_within(
            session.address,
            chain_addresses=session.chain_addresses,
            previous=previous,
        )
        if not self._is_current(session) or not self._session.is_authenticated:
            logger.debug("Discarding balance computed for superseded session %s", session.session_id)
            return None
        if view.is_available and view.completeness is not Completeness.STALE:
            self._cached = (session.address, view)
        self._set_balance(view)
        self._record(
            "balance",
            f"Balance for {session.address}: {describe_balance(view)}",
            severity="info" if view.is_available else "warning",
        )
        return view

    def _cancel_in_flight(self) -> None:
        for task in (self._connect_task, self._aggregation_task, self._refresh_task):
            if task is not None and not task.done():
                task.cancel()
        self._connect_task = None
        self._aggregation_task = None
        self._refresh_task = None

    def _set_session(self, session: WalletSession) -> None:
        self._session = session
        self._publish("state")

    def _set_balance(self, view: BalanceView | None) -> None:
        self._balance = view
        self._publish("balance")

    def _publish(self, kind: EventKind) -> None:
        event = SessionEvent(kind=kind, session=self._session, balance=self._balance)
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:  # noqa: BLE001
                logger.exception("Session subscriber %r failed", callback)

    def _record(self, category: str, message: str, *, severity: str = "info") -> None:
        if self._activity is not None:
            self._activity.record(category, message, severity=severity, session_id=self._session.session_id)
        logger.debug("%s: %s", category, redact(message))


__all__ = ["WalletSessionManager", "DEFAULT_SESSION_TTL_SECS"]
