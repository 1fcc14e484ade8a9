"""Chain adapters reporting per-chain balance snapshots."""

from .base import AMOUNT_PRECISION, BaseChainAdapter, ChainAdapter, ChainBalance, ChainErrorKind, mask_address
from .near import NEAR_CHAIN_ID, NearAdapter
from .rpc import ChainRPCError, JSONRPCClient
from .zcash import ZCASH_CHAIN_ID, ZcashAdapter

__all__ = [
    "AMOUNT_PRECISION",
    "BaseChainAdapter",
    "ChainAdapter",
    "ChainBalance",
    "ChainErrorKind",
    "ChainRPCError",
    "JSONRPCClient",
    "NearAdapter",
    "NEAR_CHAIN_ID",
    "ZcashAdapter",
    "ZCASH_CHAIN_ID",
    "mask_address",
]
