"""Helpers wiring configured chain adapters into an aggregator."""

from __future__ import annotations

import logging

from zescrow.chains import ChainAdapter, NearAdapter, ZcashAdapter
from zescrow.chains.rpc import RequestFn

from .aggregator import BalanceAggregator
from .config import AdapterSecrets, ZescrowConfig

logger = logging.getLogger(__name__)


def build_adapters(
    config: ZescrowConfig,
    secrets: AdapterSecrets | None = None,
    *,
    request: RequestFn | None = None,
) -> list[ChainAdapter]:
    """Create the Zcash and NEAR adapters described by `config`."""
    secrets = secrets or AdapterSecrets()
    zcash = ZcashAdapter.from_endpoint(
        config.zcash_rpc_url,
        rpc_user=config.zcash_rpc_user,
        rpc_password=secrets.zcash_rpc_password,
        api_key=secrets.zcash_api_key,
        confirmations=config.zcash_confirmations,
        request=request,
    )
    near = NearAdapter.from_endpoint(
        config.resolved_near_rpc_url,
        api_key=secrets.near_api_key,
        request=request,
    )
    logger.debug("Configured adapters: zcash=%s near=%s", config.zcash_rpc_url, config.resolved_near_rpc_url)
    return [zcash, near]


def build_aggregator(
    config: ZescrowConfig,
    secrets: AdapterSecrets | None = None,
    *,
    request: RequestFn | None = None,
) -> BalanceAggregator:
    return BalanceAggregator(
        build_adapters(config, secrets, request=request),
        timeout=config.aggregation_timeout_secs,
    )


__all__ = ["build_adapters", "build_aggregator"]
