from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from types import MappingProxyType

import pytest

from zescrow.core.balance import BalanceView, Completeness
from zescrow.core.errors import ErrorKind, WalletConnectError
from zescrow.core.logs import ActivityLog
from zescrow.session import SessionEvent, SessionState, WalletIdentity, WalletSessionManager

ADDRESS_A = "zs1" + "a" * 75
ADDRESS_B = "zs1" + "c" * 75
T0 = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def make_view(amount: str) -> BalanceView:
    return BalanceView(
        balance=Decimal(amount),
        pending_balance=Decimal("0"),
        shielded=True,
        completeness=Completeness.FULL,
        chains=("zcash",),
        as_of=T0,
    )


class FakeConnector:
    def __init__(self, address: str = ADDRESS_A, *, error: Exception | None = None) -> None:
        self.address = address
        self.error = error
        self.gate: asyncio.Event | None = None
        self.calls = 0

    async def connect(self) -> WalletIdentity:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return WalletIdentity(address=self.address, chain_addresses=MappingProxyType({"zcash": self.address}))


class FakeAggregator:
    def __init__(
        self,
        *views: BalanceView,
        by_address: dict[str, BalanceView] | None = None,
        stubborn: bool = False,
    ) -> None:
        self.views = list(views) or [make_view("1")]
        self.by_address = by_address or {}
        self.stubborn = stubborn
        self.gate: asyncio.Event | None = None
        self.calls: list[tuple[str, BalanceView | None]] = []

    async def aggregate_within(self, address, timeout=None, *, chain_addresses=None, previous=None) -> BalanceView:
        self.calls.append((address, previous))
        if address in self.by_address:
            view = self.by_address[address]
        else:
            view = self.views.pop(0) if len(self.views) > 1 else self.views[0]
        if self.gate is not None:
            try:
                await self.gate.wait()
            except asyncio.CancelledError:
                # Ignores cancellation and answers anyway, like a misbehaving backend.
                if not self.stubborn:
                    raise
        return view


def make_manager(
    connector: FakeConnector | None = None,
    aggregator: FakeAggregator | None = None,
    **kwargs,
) -> tuple[WalletSessionManager, FakeConnector, FakeAggregator]:
    connector = connector or FakeConnector()
    aggregator = aggregator or FakeAggregator()
    kwargs.setdefault("clock", lambda: T0)
    return WalletSessionManager(connector, aggregator, **kwargs), connector, aggregator


def test_starts_disconnected() -> None:
    manager, _, _ = make_manager()

    session, balance = manager.snapshot()

    assert session.state is SessionState.DISCONNECTED
    assert session.address is None
    assert balance is None


def test_connect_authenticates_and_publishes_balance() -> None:
    view = make_view("5.25")
    manager, _, aggregator = make_manager(aggregator=FakeAggregator(view))
    events: list[SessionEvent] = []
    manager.subscribe(events.append)

    async def run() -> BalanceView | None:
        session = await manager.connect()
        assert session.state is SessionState.AUTHENTICATED
        return await manager.wait_for_balance()

    result = asyncio.run(run())
    session = manager.current_session()

    assert result == view
    assert manager.current_balance() == view
    assert session.address == ADDRESS_A
    assert session.connected_at == T0
    assert dict(session.chain_addresses) == {"zcash": ADDRESS_A}
    assert [event.kind for event in events] == ["state", "state", "balance"]
    assert [event.session.state for event in events] == [
        SessionState.CONNECTING,
        SessionState.AUTHENTICATED,
        SessionState.AUTHENTICATED,
    ]
    assert events[0].balance is None
    assert events[-1].balance == view
    assert aggregator.calls == [(ADDRESS_A, None)]


def test_connect_failure_moves_to_error() -> None:
    manager, _, aggregator = make_manager(FakeConnector(error=WalletConnectError("rejected")))

    session = asyncio.run(manager.connect())

    assert session.state is SessionState.ERROR
    assert session.error is ErrorKind.CONNECT_FAILED
    assert manager.current_balance() is None
    assert aggregator.calls == []


def test_unexpected_connector_error_propagates_after_marking_error() -> None:
    manager, _, _ = make_manager(FakeConnector(error=RuntimeError("wallet crashed")))

    with pytest.raises(RuntimeError):
        asyncio.run(manager.connect())

    assert manager.current_session().state is SessionState.ERROR
    assert manager.current_session().error is ErrorKind.CONNECT_FAILED


def test_new_connect_supersedes_in_flight_attempt() -> None:
    slow = FakeConnector(ADDRESS_A)
    fast = FakeConnector(ADDRESS_B)
    manager, _, aggregator = make_manager(slow, FakeAggregator(make_view("2")))

    async def run():
        slow.gate = asyncio.Event()
        first = asyncio.create_task(manager.connect())
        await asyncio.sleep(0.01)
        assert manager.current_session().state is SessionState.CONNECTING
        second = await manager.connect(fast)
        slow.gate.set()
        first_result = await first
        await manager.wait_for_balance()
        return first_result, second

    first_result, second = asyncio.run(run())

    assert second.state is SessionState.AUTHENTICATED
    assert second.address == ADDRESS_B
    assert first_result.session_id == second.session_id
    assert manager.current_session().address == ADDRESS_B
    assert [address for address, _ in aggregator.calls] == [ADDRESS_B]


def test_balance_for_superseded_session_is_never_published() -> None:
    aggregator = FakeAggregator(by_address={ADDRESS_A: make_view("9"), ADDRESS_B: make_view("3")}, stubborn=True)
    manager, _, _ = make_manager(aggregator=aggregator)
    events: list[SessionEvent] = []

    async def run() -> None:
        aggregator.gate = asyncio.Event()
        await manager.connect()
        await asyncio.sleep(0)
        assert [address for address, _ in aggregator.calls] == [ADDRESS_A]
        manager.subscribe(events.append)
        await manager.connect(FakeConnector(ADDRESS_B))
        aggregator.gate.set()
        await manager.wait_for_balance()
        await asyncio.sleep(0.01)

    asyncio.run(run())

    balances = [event.balance for event in events if event.kind == "balance"]
    assert balances == [make_view("3")]
    assert manager.current_session().address == ADDRESS_B
    assert manager.current_balance() == make_view("3")
    assert [address for address, _ in aggregator.calls] == [ADDRESS_A, ADDRESS_B]


def test_reconnecting_same_wallet_serves_cached_view_as_stale_first() -> None:
    first_view = make_view("4")
    second_view = make_view("6")
    aggregator = FakeAggregator(first_view, second_view)
    manager, _, _ = make_manager(aggregator=aggregator)

    async def run() -> tuple[BalanceView | None, BalanceView | None]:
        await manager.connect()
        await manager.wait_for_balance()
        aggregator.gate = asyncio.Event()
        await manager.connect()
        interim = manager.current_balance()
        aggregator.gate.set()
        return interim, await manager.wait_for_balance()

    interim, final = asyncio.run(run())

    assert interim == first_view.as_stale()
    assert interim is not None and interim.completeness is Completeness.STALE
    assert final == second_view
    assert aggregator.calls[1] == (ADDRESS_A, first_view)


def test_disconnect_clears_session_balance_and_cache() -> None:
    manager, _, aggregator = make_manager()

    async def run() -> None:
        await manager.connect()
        await manager.wait_for_balance()

    asyncio.run(run())
    previous_id = manager.current_session().session_id

    session = manager.disconnect()

    assert session.state is SessionState.DISCONNECTED
    assert session.session_id != previous_id
    assert manager.current_balance() is None

    asyncio.run(run())
    assert aggregator.calls[-1] == (ADDRESS_A, None)


def test_disconnect_during_aggregation_drops_the_result() -> None:
    aggregator = FakeAggregator(make_view("8"))
    manager, _, _ = make_manager(aggregator=aggregator)

    async def run() -> None:
        aggregator.gate = asyncio.Event()
        await manager.connect()
        manager.disconnect()
        aggregator.gate.set()
        await asyncio.sleep(0.01)

    asyncio.run(run())

    assert manager.current_session().state is SessionState.DISCONNECTED
    assert manager.current_balance() is None


def test_refresh_marks_view_stale_then_replaces_it() -> None:
    aggregator = FakeAggregator(make_view("1"), make_view("2"))
    manager, _, _ = make_manager(aggregator=aggregator)
    balances: list[BalanceView | None] = []

    async def run() -> BalanceView | None:
        await manager.connect()
        await manager.wait_for_balance()
        manager.subscribe(lambda event: balances.append(event.balance) if event.kind == "balance" else None)
        return await manager.refresh()

    result = asyncio.run(run())

    assert result == make_view("2")
    assert balances == [make_view("1").as_stale(), make_view("2")]


def test_refresh_without_session_is_a_no_op() -> None:
    manager, _, aggregator = make_manager()

    assert asyncio.run(manager.refresh()) is None
    assert aggregator.calls == []


def test_session_expires_after_ttl() -> None:
    manager, _, aggregator = make_manager(session_ttl_secs=60)

    async def run() -> None:
        await manager.connect()
        await manager.wait_for_balance()

    asyncio.run(run())

    assert manager.check_expiry(now=T0 + timedelta(seconds=30)) is False
    assert manager.check_expiry(now=T0 + timedelta(seconds=61)) is True

    session = manager.current_session()
    assert session.state is SessionState.ERROR
    assert session.error is ErrorKind.SESSION_EXPIRED
    assert session.address == ADDRESS_A
    assert manager.current_balance() is None
    assert manager.check_expiry(now=T0 + timedelta(hours=2)) is False


def test_subscribers_are_called_in_order_and_isolated_from_failures() -> None:
    manager, _, _ = make_manager(FakeConnector(error=WalletConnectError("no wallet")))
    calls: list[str] = []

    def broken(_event: SessionEvent) -> None:
        calls.append("broken")
        raise RuntimeError("subscriber bug")

    def healthy(_event: SessionEvent) -> None:
        calls.append("healthy")

    manager.subscribe(broken)
    manager.subscribe(healthy)
    manager.subscribe(healthy)
    asyncio.run(manager.connect())
    manager.unsubscribe(broken)
    manager.disconnect()

    assert calls == ["broken", "healthy", "broken", "healthy", "healthy"]


def test_cancelling_connect_caller_returns_to_disconnected() -> None:
    connector = FakeConnector()
    manager, _, _ = make_manager(connector)

    async def run() -> None:
        connector.gate = asyncio.Event()
        task = asyncio.create_task(manager.connect())
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(run())

    assert manager.current_session().state is SessionState.DISCONNECTED


def test_transitions_are_recorded_without_raw_addresses() -> None:
    activity = ActivityLog()
    manager, _, _ = make_manager(activity=activity)

    async def run() -> None:
        await manager.connect()
        await manager.wait_for_balance()

    asyncio.run(run())

    entries = activity.recent()
    messages = [entry.message for entry in entries]
    assert any("authenticated" in message for message in messages)
    assert any(entry.category == "balance" for entry in entries)
    assert {entry.session_id for entry in entries} == {manager.current_session().session_id}
    assert all(ADDRESS_A not in message for message in messages)


def test_periodic_refresh_publishes_stale_then_fresh_views() -> None:
    aggregator = FakeAggregator(make_view("1"), make_view("2"), make_view("3"))
    manager, _, _ = make_manager(aggregator=aggregator, balance_refresh_secs=0.02)
    balances: list[BalanceView | None] = []
    manager.subscribe(lambda event: balances.append(event.balance) if event.kind == "balance" else None)

    async def run() -> None:
        await manager.connect()
        await manager.wait_for_balance()
        while len(aggregator.calls) < 3:
            await asyncio.sleep(0.01)
        await manager.wait_for_balance()
        manager.disconnect()

    asyncio.run(run())

    assert balances[:5] == [
        make_view("1"),
        make_view("1").as_stale(),
        make_view("2"),
        make_view("2").as_stale(),
        make_view("3"),
    ]
    assert aggregator.calls[1] == (ADDRESS_A, make_view("1"))


def test_periodic_refresh_stops_on_disconnect() -> None:
    aggregator = FakeAggregator()
    manager, _, _ = make_manager(aggregator=aggregator, balance_refresh_secs=0.01)

    async def run() -> tuple[int, int]:
        await manager.connect()
        while len(aggregator.calls) < 2:
            await asyncio.sleep(0.005)
        manager.disconnect()
        calls_at_disconnect = len(aggregator.calls)
        await asyncio.sleep(0.05)
        return calls_at_disconnect, len(aggregator.calls)

    calls_at_disconnect, calls_after = asyncio.run(run())

    assert calls_after == calls_at_disconnect
    assert manager.current_balance() is None


def test_periodic_refresh_stops_for_superseded_session() -> None:
    aggregator = FakeAggregator()
    manager, _, _ = make_manager(aggregator=aggregator, balance_refresh_secs=0.01)

    def calls_for(address: str) -> int:
        return sum(1 for called, _ in aggregator.calls if called == address)

    async def run() -> tuple[int, int, int]:
        await manager.connect()
        while calls_for(ADDRESS_A) < 2:
            await asyncio.sleep(0.005)
        await manager.connect(FakeConnector(ADDRESS_B))
        a_at_switch = calls_for(ADDRESS_A)
        while calls_for(ADDRESS_B) < 3:
            await asyncio.sleep(0.005)
        manager.disconnect()
        return a_at_switch, calls_for(ADDRESS_A), calls_for(ADDRESS_B)

    a_at_switch, a_final, b_final = asyncio.run(run())

    assert a_final == a_at_switch
    assert b_final >= 3


def test_periodic_refresh_stops_when_session_expires() -> None:
    now = [T0]
    aggregator = FakeAggregator()
    manager, _, _ = make_manager(
        aggregator=aggregator,
        balance_refresh_secs=0.01,
        session_ttl_secs=60,
        clock=lambda: now[0],
    )

    async def run() -> tuple[int, int]:
        await manager.connect()
        await manager.wait_for_balance()
        now[0] = T0 + timedelta(minutes=5)
        await asyncio.sleep(0.03)
        calls_after_expiry = len(aggregator.calls)
        await asyncio.sleep(0.03)
        return calls_after_expiry, len(aggregator.calls)

    calls_after_expiry, calls_final = asyncio.run(run())

    assert manager.current_session().error is ErrorKind.SESSION_EXPIRED
    assert calls_final == calls_after_expiry == 1


def test_disconnect_in_one_manager_keeps_anothers_fallback_view() -> None:
    aggregator = FakeAggregator(make_view("7"))
    first, _, _ = make_manager(aggregator=aggregator)
    second, _, _ = make_manager(aggregator=aggregator)

    async def run() -> None:
        await first.connect()
        await first.wait_for_balance()
        await second.connect()
        await second.wait_for_balance()
        first.disconnect()
        await second.refresh()

    asyncio.run(run())

    assert aggregator.calls[-1] == (ADDRESS_A, make_view("7"))
    assert second.current_balance() == make_view("7")
