from __future__ import annotations

from datetime import UTC, datetime, timedelta
from decimal import Decimal
from types import MappingProxyType

from fastapi.testclient import TestClient

from zescrow.api import create_app
from zescrow.api.deps import CLIENT_COOKIE
from zescrow.core.balance import BalanceView, Completeness
from zescrow.core.config import ZescrowConfig
from zescrow.core.errors import ErrorKind, WalletConnectError
from zescrow.session import WalletIdentity

ADDRESS = "zs1" + "d" * 75


def partial_view(amount: str = "5.25") -> BalanceView:
    return BalanceView(
        balance=Decimal(amount),
        pending_balance=Decimal("0"),
        shielded=True,
        completeness=Completeness.PARTIAL,
        chains=("zcash",),
        failed_chains=("near",),
        chain_errors=(("near", ErrorKind.ADAPTER_TIMEOUT),),
        as_of=datetime(2026, 1, 1, tzinfo=UTC),
    )


class FakeAggregator:
    def __init__(self, *views: BalanceView) -> None:
        self.views = list(views) or [partial_view()]
        self.calls: list[str] = []

    async def aggregate_within(self, address, timeout=None, *, chain_addresses=None, previous=None) -> BalanceView:
        self.calls.append(address)
        return self.views.pop(0) if len(self.views) > 1 else self.views[0]


class FakeConnector:
    def __init__(self, address: str | None = ADDRESS) -> None:
        self.address = address

    async def connect(self) -> WalletIdentity:
        if self.address is None:
            raise WalletConnectError("user rejected the connection")
        return WalletIdentity(address=self.address, chain_addresses=MappingProxyType({"zcash": self.address}))


def make_client(
    aggregator: FakeAggregator | None = None,
    address: str | None = ADDRESS,
    config: ZescrowConfig | None = None,
) -> TestClient:
    app = create_app(
        config or ZescrowConfig(),
        aggregator=aggregator or FakeAggregator(),  # type: ignore[arg-type]
        connector_factory=lambda: FakeConnector(address),
    )
    return TestClient(app)


def test_balance_requires_a_session() -> None:
    with make_client() as client:
        response = client.get("/api/balance")

    assert response.status_code == 401
    assert response.json()["detail"] == "No wallet session"


def test_guard_redirect_connect_and_return_to_intended_page() -> None:
    with make_client() as client:
        guard = client.get("/api/guard", params={"path": "/freelancer/dashboard"})
        assert guard.status_code == 200
        assert guard.json() == {"action": "redirect", "location": "/connect-wallet"}
        assert CLIENT_COOKIE in guard.cookies

        connected = client.post("/api/session/connect")
        assert connected.status_code == 200
        body = connected.json()
        assert body["location"] == "/freelancer/dashboard"
        assert body["session"]["state"] == "authenticated"
        assert body["session"]["address"] == ADDRESS
        assert body["session"]["chainAddresses"] == {"zcash": ADDRESS}

        again = client.post("/api/session/connect")
        assert again.json()["location"] == "/dashboard"

        assert client.get("/api/guard", params={"path": "/freelancer/dashboard"}).json() == {
            "action": "render",
            "location": None,
        }


def test_balance_payload_carries_completeness() -> None:
    with make_client() as client:
        client.post("/api/session/connect")
        response = client.get("/api/balance")

    assert response.status_code == 200
    assert response.json() == {
        "balance": "5.25",
        "pendingBalance": "0",
        "shielded": True,
        "completeness": "partial",
        "error": None,
        "chains": ["zcash"],
        "failedChains": ["near"],
        "chainErrors": {"near": "AdapterTimeout"},
        "asOf": "2026-01-01T00:00:00+00:00",
    }


def test_connect_failure_returns_bad_gateway() -> None:
    with make_client(address=None) as client:
        response = client.post("/api/session/connect")
        balance = client.get("/api/balance")

    assert response.status_code == 502
    body = response.json()
    assert body["session"]["state"] == "error"
    assert body["session"]["error"] == "ConnectFailed"
    assert body["location"] is None
    assert balance.status_code == 401
    assert balance.json()["detail"] == "Wallet not connected"


def test_connect_body_overrides_configured_wallet() -> None:
    aggregator = FakeAggregator()
    with make_client(aggregator) as client:
        response = client.post(
            "/api/session/connect",
            json={"zcashAddress": "zs1custom", "nearAccountId": "custom.testnet"},
        )
        client.get("/api/balance")

    session = response.json()["session"]
    assert session["address"] == "zs1custom"
    assert session["chainAddresses"] == {"zcash": "zs1custom", "near": "custom.testnet"}
    assert aggregator.calls == ["zs1custom"]


def test_session_snapshot_and_disconnect() -> None:
    aggregator = FakeAggregator()
    with make_client(aggregator) as client:
        assert client.get("/api/session").json()["session"]["state"] == "disconnected"

        client.post("/api/session/connect")
        client.get("/api/balance")
        snapshot = client.get("/api/session").json()
        assert snapshot["session"]["state"] == "authenticated"
        assert snapshot["balance"]["completeness"] == "partial"

        disconnected = client.post("/api/session/disconnect")
        assert disconnected.json()["state"] == "disconnected"
        assert client.get("/api/session").json()["balance"] is None
        assert client.get("/api/balance").status_code == 401

    assert aggregator.calls == [ADDRESS]


def test_refresh_runs_a_new_cycle() -> None:
    aggregator = FakeAggregator(partial_view("1"), partial_view("2"))
    with make_client(aggregator) as client:
        client.post("/api/session/connect")
        first = client.get("/api/balance").json()
        refreshed = client.post("/api/balance/refresh").json()

    assert first["balance"] == "1"
    assert refreshed["balance"] == "2"
    assert aggregator.calls == [ADDRESS, ADDRESS]


def test_expired_session_is_rejected() -> None:
    with make_client() as client:
        client.post("/api/session/connect")
        client.get("/api/balance")
        registry = client.app.state.registry
        context = registry.get(client.cookies.get(CLIENT_COOKIE))
        context.manager.check_expiry(now=datetime.now(UTC) + timedelta(hours=2))

        balance = client.get("/api/balance")
        session = client.get("/api/session").json()["session"]

    assert balance.status_code == 401
    assert balance.json()["detail"] == "SessionExpired"
    assert session["state"] == "error"
    assert session["error"] == "SessionExpired"


def test_browsing_contexts_are_isolated() -> None:
    with make_client() as client:
        client.post("/api/session/connect")
        client.cookies.clear()

        other = client.get("/api/session")
        assert CLIENT_COOKIE not in other.cookies
        assert len(client.app.state.registry) == 1

    assert other.json()["session"]["state"] == "disconnected"


def test_guard_requires_path() -> None:
    with make_client() as client:
        assert client.get("/api/guard").status_code == 422


def test_demo_app_mints_wallets() -> None:
    app = create_app(ZescrowConfig(), aggregator=FakeAggregator(), demo=True)  # type: ignore[arg-type]
    with TestClient(app) as client:
        session = client.post("/api/session/connect").json()["session"]

    assert session["address"].startswith("zs1")


def test_anonymous_read_only_requests_do_not_create_contexts() -> None:
    with make_client() as client:
        for _ in range(50):
            client.cookies.clear()
            assert client.get("/api/session").json()["session"]["state"] == "disconnected"
            assert client.get("/api/guard", params={"path": "/about"}).json()["action"] == "render"
            assert client.get("/api/activity").json() == []
            assert client.post("/api/session/disconnect").json()["state"] == "disconnected"

        assert len(client.app.state.registry) == 0


def test_redirect_intents_are_bounded_by_the_context_cap() -> None:
    with make_client(config=ZescrowConfig(max_client_contexts=20)) as client:
        tokens = []
        for _ in range(500):
            client.cookies.clear()
            response = client.get("/api/guard", params={"path": "/dashboard"})
            assert response.json()["action"] == "redirect"
            tokens.append(response.cookies[CLIENT_COOKIE])

        registry = client.app.state.registry
        assert len(registry) == 20
        assert registry.get(tokens[0]) is None
        assert registry.get(tokens[-1]).intent.peek() == "/dashboard"


def test_disconnect_drops_a_pending_redirect_intent() -> None:
    with make_client(address=None) as client:
        guard = client.get("/api/guard", params={"path": "/freelancer/jobs"})
        assert guard.json()["action"] == "redirect"
        assert client.post("/api/session/connect").status_code == 502

        client.post("/api/session/disconnect")
        context = client.app.state.registry.get(client.cookies.get(CLIENT_COOKIE))

    assert context.intent.peek() is None


def test_next_connect_after_disconnect_lands_on_default_page() -> None:
    connector = FakeConnector(None)
    app = create_app(ZescrowConfig(), aggregator=FakeAggregator(), connector_factory=lambda: connector)  # type: ignore[arg-type]
    with TestClient(app) as client:
        client.get("/api/guard", params={"path": "/client/escrows"})
        assert client.post("/api/session/connect").status_code == 502

        client.post("/api/session/disconnect")
        connector.address = ADDRESS
        connected = client.post("/api/session/connect").json()

    assert connected["session"]["state"] == "authenticated"
    assert connected["location"] == "/dashboard"


def test_activity_feed_lists_redacted_entries_for_the_caller_only() -> None:
    with make_client() as client:
        client.post("/api/session/connect")
        client.get("/api/balance")
        session_id = client.get("/api/session").json()["session"]["sessionId"]

        activity = client.get("/api/activity").json()
        balance_only = client.get("/api/activity", params={"category": "balance", "limit": 1}).json()

        client.cookies.clear()
        stranger = client.get("/api/activity").json()

    messages = [entry["message"] for entry in activity]
    assert any("authenticated" in message for message in messages)
    assert all(ADDRESS not in message for message in messages)
    assert {entry["sessionId"] for entry in activity} == {session_id}
    assert [entry["category"] for entry in balance_only] == ["balance"]
    assert balance_only[0]["message"].endswith("5.25 (partial)")
    assert stranger == []


def test_activity_limit_is_validated() -> None:
    with make_client() as client:
        assert client.get("/api/activity", params={"limit": 0}).status_code == 422
