"""Zcash balance adapter speaking the zcashd JSON-RPC dialect."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from .base import ZERO, BaseChainAdapter, ChainBalance
from .rpc import JSONRPCClient, RequestFn

logger = logging.getLogger(__name__)

ZCASH_CHAIN_ID = "zcash"
DEFAULT_CONFIRMATIONS = 10
ZATOSHI = Decimal("0.00000001")


def is_transparent_address(address: str) -> bool:
    return address.startswith("t")


def _to_zec(value: Any) -> Decimal:
    if isinstance(value, bool) or not isinstance(value, (int, str, Decimal)):
        raise ValueError(f"balance is not numeric: {value!r}")
    amount = Decimal(value).quantize(ZATOSHI)
    if amount < ZERO:
        raise ValueError(f"negative balance {amount}")
    return amount


@dataclass
class ZcashAdapter(BaseChainAdapter):
    """Reports confirmed and unconfirmed funds for one Zcash address.

    Shielded addresses (`zs…`, `u…`) contribute to the shielded pool, `t…`
    addresses to the transparent one. The pending amount is whatever is
    visible at zero confirmations but not yet at `confirmations`.
    """

    client: JSONRPCClient
    confirmations: int = DEFAULT_CONFIRMATIONS
    chain_id: str = ZCASH_CHAIN_ID

    @classmethod
    def from_endpoint(
        cls,
        endpoint: str,
        *,
        rpc_user: str | None = None,
        rpc_password: str | None = None,
        api_key: str | None = None,
        confirmations: int = DEFAULT_CONFIRMATIONS,
        request: RequestFn | None = None,
    ) -> ZcashAdapter:
        auth = (rpc_user, rpc_password or "") if rpc_user else None
        headers = {"x-api-key": api_key} if api_key else {}
        client = JSONRPCClient(endpoint=endpoint, auth=auth, headers=headers, jsonrpc="1.0", _request=request)
        return cls(client=client, confirmations=confirmations)

    async def _query(self, address: str, timeout: float) -> ChainBalance:
        confirmed = _to_zec(await self.client.call("z_getbalance", [address, self.confirmations], timeout=timeout))
        seen = _to_zec(await self.client.call("z_getbalance", [address, 0], timeout=timeout))
        pending = max(ZERO, seen - confirmed)
        if is_transparent_address(address):
            return ChainBalance.success(self.chain_id, transparent=confirmed, shielded=None, pending=pending)
        return ChainBalance.success(self.chain_id, transparent=ZERO, shielded=confirmed, pending=pending)


__all__ = ["ZcashAdapter", "ZCASH_CHAIN_ID", "DEFAULT_CONFIRMATIONS", "is_transparent_address"]
