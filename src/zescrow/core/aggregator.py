"""Concurrent fan-out across chain adapters with a single shared deadline."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence

from zescrow.chains import ChainAdapter, ChainBalance, ChainErrorKind, mask_address

from .balance import BalanceView, merge_chain_balances, summarize_chain_errors

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECS = 5.0


async def _guarded_fetch(adapter: ChainAdapter, address: str, deadline: float) -> ChainBalance:
    try:
        return await adapter.fetch(address, deadline)
    except asyncio.CancelledError:
        raise
    except Exception as exc:  # noqa: BLE001
        logger.error("Adapter %s raised instead of reporting a failure: %s", adapter.chain_id, exc, exc_info=True)
        return ChainBalance.failure(adapter.chain_id, ChainErrorKind.ERROR, detail=str(exc))


async def collect(
    address: str,
    adapters: Sequence[ChainAdapter],
    deadline: float,
    *,
    chain_addresses: Mapping[str, str] | None = None,
) -> list[ChainBalance]:
    """Run every adapter concurrently and return one result per adapter.

    Adapters still running when `deadline` passes are cancelled and reported
    as timeouts. Cancelling the caller cancels every outstanding fetch.
    """
    if not adapters:
        return []
    chain_addresses = chain_addresses or {}
    loop = asyncio.get_running_loop()
    tasks = {
        asyncio.create_task(
            _guarded_fetch(adapter, chain_addresses.get(adapter.chain_id, address), deadline),
            name=f"fetch-{adapter.chain_id}",
        ): adapter
        for adapter in adapters
    }
    try:
        _, pending = await asyncio.wait(set(tasks), timeout=max(deadline - loop.time(), 0))
    except asyncio.CancelledError:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise

    for task in pending:
        task.cancel()
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)

    results: list[ChainBalance] = []
    for task, adapter in tasks.items():
        if task in pending:
            logger.warning("%s missed the aggregation deadline for %s", adapter.chain_id, mask_address(address))
            results.append(ChainBalance.failure(adapter.chain_id, ChainErrorKind.TIMEOUT, detail="deadline exceeded"))
        else:
            results.append(task.result())
    return results


async def aggregate(
    address: str,
    adapters: Sequence[ChainAdapter],
    deadline: float,
    *,
    chain_addresses: Mapping[str, str] | None = None,
    previous: BalanceView | None = None,
) -> BalanceView:
    """Fetch from all adapters and merge them into one `BalanceView`.

    All succeeded gives FULL, some succeeded gives PARTIAL. When nothing
    succeeded the previous view is returned as STALE, or a zero view flagged
    NO_DATA when there is none.
    """
    results = await collect(address, adapters, deadline, chain_addresses=chain_addresses)
    merged = merge_chain_balances(results)
    if merged is not None:
        if merged.failed_chains:
            logger.info(
                "Partial balance for %s; failed chains: %s",
                mask_address(address),
                ", ".join(merged.failed_chains),
            )
        return merged

    failed = [item.chain_id for item in results]
    if previous is not None and previous.is_available:
        logger.warning("All chains failed for %s; serving cached balance as stale", mask_address(address))
        return previous.as_stale()
    logger.warning("All chains failed for %s and no cached balance exists", mask_address(address))
    return BalanceView.unavailable(failed, errors=summarize_chain_errors(results))


class BalanceAggregator:
    """Binds a fixed set of adapters and a default timeout.

    Holds no per-address state. The last good view belongs to whoever owns
    the session and is passed back in as `previous`.
    """

    def __init__(self, adapters: Sequence[ChainAdapter], *, timeout: float = DEFAULT_TIMEOUT_SECS) -> None:
        self.adapters = tuple(adapters)
        self.timeout = timeout

    @property
    def chain_ids(self) -> list[str]:
        return [adapter.chain_id for adapter in self.adapters]

    async def aggregate_within(
        self,
        address: str,
        timeout: float | None = None,
        *,
        chain_addresses: Mapping[str, str] | None = None,
        previous: BalanceView | None = None,
    ) -> BalanceView:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + (self.timeout if timeout is None else timeout)
        return await aggregate(
            address,
            self.adapters,
            deadline,
            chain_addresses=chain_addresses,
            previous=previous,
        )


__all__ = ["BalanceAggregator", "aggregate", "collect", "DEFAULT_TIMEOUT_SECS"]
