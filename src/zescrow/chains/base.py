"""Common types and the deadline-bounded fetch contract for chain adapters."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Protocol, runtime_checkable

import httpx

from .rpc import ChainRPCError

logger = logging.getLogger(__name__)

ZERO = Decimal(0)
# Wide enough for yoctoNEAR amounts (24 fractional digits) on large balances.
AMOUNT_PRECISION = 60


class ChainErrorKind(str, Enum):
    TIMEOUT = "timeout"
    ERROR = "error"


def mask_address(address: str | None) -> str:
    """Return a shortened address suitable for logs."""
    if not address:
        return "---"
    if len(address) <= 10:
        return address
    return f"{address[:4]}…{address[-4:]}"


@dataclass(frozen=True, slots=True)
class ChainBalance:
    """Raw balance snapshot reported by one chain adapter."""

    chain_id: str
    transparent_amount: Decimal
    shielded_amount: Decimal | None
    pending_amount: Decimal
    fetched_at: datetime
    ok: bool
    error_kind: ChainErrorKind | None = None
    detail: str | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        if self.ok and self.error_kind is not None:
            raise ValueError("Successful balances cannot carry an error kind")
        if not self.ok and self.error_kind is None:
            raise ValueError("Failed balances require an error kind")
        for name in ("transparent_amount", "pending_amount"):
            if getattr(self, name) < ZERO:
                raise ValueError(f"{name} must be non-negative")
        if self.shielded_amount is not None and self.shielded_amount < ZERO:
            raise ValueError("shielded_amount must be non-negative")

    @classmethod
    def success(
        cls,
        chain_id: str,
        *,
        transparent: Decimal,
        shielded: Decimal | None = None,
        pending: Decimal = ZERO,
        fetched_at: datetime | None = None,
    ) -> ChainBalance:
        return cls(
            chain_id=chain_id,
            transparent_amount=transparent,
            shielded_amount=shielded,
            pending_amount=pending,
            fetched_at=fetched_at or datetime.now(UTC),
            ok=True,
        )

    @classmethod
    def failure(
        cls,
        chain_id: str,
        kind: ChainErrorKind,
        *,
        detail: str | None = None,
        fetched_at: datetime | None = None,
    ) -> ChainBalance:
        return cls(
            chain_id=chain_id,
            transparent_amount=ZERO,
            shielded_amount=None,
            pending_amount=ZERO,
            fetched_at=fetched_at or datetime.now(UTC),
            ok=False,
            error_kind=kind,
            detail=detail,
        )

    @property
    def confirmed_total(self) -> Decimal:
        return self.transparent_amount + (self.shielded_amount or ZERO)

    @property
    def has_shielded_funds(self) -> bool:
        return self.shielded_amount is not None and self.shielded_amount > ZERO


@runtime_checkable
class ChainAdapter(Protocol):
    """Anything able to report a balance for one chain within a deadline."""

    chain_id: str

    async def fetch(self, address: str, deadline: float) -> ChainBalance:
        ...


class BaseChainAdapter:
    """Turns a raw `_query` coroutine into the never-raising `fetch` contract.

    `deadline` is an absolute time on the running event loop's clock. Timeouts
    and transport or data errors come back as failed `ChainBalance` values;
    only cancellation propagates.
    """

    chain_id: str = "unknown"

    async def fetch(self, address: str, deadline: float) -> ChainBalance:
        loop = asyncio.get_running_loop()
        remaining = deadline - loop.time()
        if remaining <= 0:
            return ChainBalance.failure(self.chain_id, ChainErrorKind.TIMEOUT, detail="deadline already passed")
        try:
            async with asyncio.timeout_at(deadline):
                balance = await self._query(address, remaining)
        except (TimeoutError, httpx.TimeoutException):
            logger.warning("%s balance for %s timed out", self.chain_id, mask_address(address))
            return ChainBalance.failure(self.chain_id, ChainErrorKind.TIMEOUT, detail="timed out")
        except ChainRPCError as exc:
            logger.warning("%s RPC failed for %s: %s", self.chain_id, mask_address(address), exc)
            return ChainBalance.failure(self.chain_id, ChainErrorKind.ERROR, detail=str(exc))
        except (KeyError, TypeError, ValueError, InvalidOperation) as exc:
            logger.warning("%s returned unusable data for %s: %s", self.chain_id, mask_address(address), exc)
            return ChainBalance.failure(self.chain_id, ChainErrorKind.ERROR, detail=f"invalid data: {exc}")
        logger.debug(
            "%s balance for %s: transparent=%s shielded=%s pending=%s",
            self.chain_id,
            mask_address(address),
            balance.transparent_amount,
            balance.shielded_amount,
            balance.pending_amount,
        )
        return balance

    async def _query(self, address: str, timeout: float) -> ChainBalance:
        raise NotImplementedError


__all__ = [
    "ChainAdapter",
    "BaseChainAdapter",
    "ChainBalance",
    "ChainErrorKind",
    "mask_address",
    "ZERO",
    "AMOUNT_PRECISION",
]
