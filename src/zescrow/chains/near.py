"""NEAR account balance adapter."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, localcontext
from typing import Any

from .base import AMOUNT_PRECISION, ZERO, BaseChainAdapter, ChainBalance
from .rpc import JSONRPCClient, RequestFn

NEAR_CHAIN_ID = "near"
YOCTO_EXPONENT = 24


def default_rpc_url(network: str) -> str:
    return f"https://rpc.{network}.near.org"


def yocto_to_near(value: Any) -> Decimal:
    if not isinstance(value, str) or not value.isdigit():
        raise ValueError(f"yoctoNEAR amount must be an unsigned integer string, got {value!r}")
    with localcontext() as ctx:
        ctx.prec = AMOUNT_PRECISION
        return Decimal(value).scaleb(-YOCTO_EXPONENT)


@dataclass
class NearAdapter(BaseChainAdapter):
    """Reads `view_account` at final and optimistic finality.

    The difference between the two is reported as pending. NEAR has no
    privacy pool, so `shielded_amount` is always None.
    """

    client: JSONRPCClient
    chain_id: str = NEAR_CHAIN_ID

    @classmethod
    def from_endpoint(
        cls,
        endpoint: str,
        *,
        api_key: str | None = None,
        request: RequestFn | None = None,
    ) -> NearAdapter:
        headers = {"x-api-key": api_key} if api_key else {}
        return cls(client=JSONRPCClient(endpoint=endpoint, headers=headers, _request=request))

    async def _view_amount(self, account_id: str, finality: str, timeout: float) -> Decimal:
        result = await self.client.call(
            "query",
            {"request_type": "view_account", "finality": finality, "account_id": account_id},
            timeout=timeout,
        )
        return yocto_to_near(result["amount"])

    async def _query(self, address: str, timeout: float) -> ChainBalance:
        final = await self._view_amount(address, "final", timeout)
        optimistic = await self._view_amount(address, "optimistic", timeout)
        with localcontext() as ctx:
            ctx.prec = AMOUNT_PRECISION
            pending = max(ZERO, optimistic - final)
        return ChainBalance.success(self.chain_id, transparent=final, shielded=None, pending=pending)


__all__ = ["NearAdapter", "NEAR_CHAIN_ID", "default_rpc_url", "yocto_to_near"]
