"""FastAPI application factory."""

from __future__ import annotations

from collections.abc import Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI

from zescrow import __version__
from zescrow.core.adapters import build_aggregator
from zescrow.core.aggregator import BalanceAggregator
from zescrow.core.config import AdapterSecrets, ZescrowConfig
from zescrow.session import ConfiguredWalletConnector, DemoWalletConnector, RouteGuard, WalletConnector

from .deps import SessionRegistry
from .routes import create_api_router


def default_connector_factory(config: ZescrowConfig, *, demo: bool = False) -> Callable[[], WalletConnector]:
    def factory() -> WalletConnector:
        if demo:
            return DemoWalletConnector(near_account_id=config.near_account_id)
        return ConfiguredWalletConnector(
            zcash_address=config.zcash_address,
            near_account_id=config.near_account_id,
        )

    return factory


def create_app(
    config: ZescrowConfig | None = None,
    *,
    secrets: AdapterSecrets | None = None,
    aggregator: BalanceAggregator | None = None,
    connector_factory: Callable[[], WalletConnector] | None = None,
    demo: bool = False,
) -> FastAPI:
    config = config or ZescrowConfig()
    registry = SessionRegistry(
        aggregator=aggregator or build_aggregator(config, secrets),
        connector_factory=connector_factory or default_connector_factory(config, demo=demo),
        guard=RouteGuard(
            connect_path=config.connect_path,
            default_path=config.default_landing_path,
            protected_prefixes=config.protected_prefixes,
        ),
        session_ttl_secs=config.session_ttl_secs,
        balance_refresh_secs=config.balance_refresh_secs,
        max_clients=config.max_client_contexts,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        registry.close()

    app = FastAPI(
        title="zescrow",
        description="Wallet session and multi-chain balance service",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.registry = registry
    app.include_router(create_api_router("/api"))
    return app


__all__ = ["create_app", "default_connector_factory"]
