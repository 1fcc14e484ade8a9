"""Merged, user-facing balance view."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal, localcontext
from enum import Enum
from typing import Any

from zescrow.chains import AMOUNT_PRECISION, ChainBalance, ChainErrorKind

from .errors import ErrorKind

ZERO = Decimal(0)

_ADAPTER_ERRORS = {
    ChainErrorKind.TIMEOUT: ErrorKind.ADAPTER_TIMEOUT,
    ChainErrorKind.ERROR: ErrorKind.ADAPTER_ERROR,
}

ChainErrors = tuple[tuple[str, ErrorKind], ...]


def summarize_chain_errors(results: Iterable[ChainBalance]) -> ChainErrors:
    """Map each failed chain to the error kind surfaced to callers, ordered by chain id."""
    return tuple(
        (item.chain_id, _ADAPTER_ERRORS.get(item.error_kind, ErrorKind.ADAPTER_ERROR))  # type: ignore[arg-type]
        for item in sorted(results, key=lambda item: item.chain_id)
        if not item.ok
    )


class Completeness(str, Enum):
    FULL = "full"
    PARTIAL = "partial"
    STALE = "stale"


def format_amount(amount: Decimal) -> str:
    """Render `amount` in plain notation without trailing zeros."""
    if amount == ZERO:
        return "0"
    with localcontext() as ctx:
        ctx.prec = AMOUNT_PRECISION
        return f"{amount.normalize():f}"


@dataclass(frozen=True, slots=True)
class BalanceView:
    """Balance across all contributing chains, tagged with its completeness."""

    balance: Decimal
    pending_balance: Decimal
    shielded: bool
    completeness: Completeness
    error: ErrorKind | None = None
    chains: tuple[str, ...] = ()
    failed_chains: tuple[str, ...] = ()
    chain_errors: ChainErrors = ()
    as_of: datetime | None = None

    @classmethod
    def unavailable(cls, failed_chains: Iterable[str] = (), *, errors: ChainErrors = ()) -> BalanceView:
        return cls(
            balance=ZERO,
            pending_balance=ZERO,
            shielded=False,
            completeness=Completeness.STALE,
            error=ErrorKind.NO_DATA,
            failed_chains=tuple(sorted(failed_chains)),
            chain_errors=errors,
        )

    @property
    def is_available(self) -> bool:
        return self.error is not ErrorKind.NO_DATA

    def as_stale(self) -> BalanceView:
        return replace(self, completeness=Completeness.STALE)

    def to_payload(self) -> dict[str, Any]:
        return {
            "balance": format_amount(self.balance),
            "pendingBalance": format_amount(self.pending_balance),
            "shielded": self.shielded,
            "completeness": self.completeness.value,
            "error": self.error.value if self.error else None,
            "chains": list(self.chains),
            "failedChains": list(self.failed_chains),
            "chainErrors": {chain_id: kind.value for chain_id, kind in self.chain_errors},
            "asOf": self.as_of.isoformat() if self.as_of else None,
        }


def merge_chain_balances(results: Iterable[ChainBalance]) -> BalanceView | None:
    """Merge successful chain results; None when nothing succeeded.

    Results are ordered by chain id first, so the outcome does not depend on
    the order in which adapters answered.
    """
    ordered = sorted(results, key=lambda item: item.chain_id)
    succeeded = [item for item in ordered if item.ok]
    failed = tuple(item.chain_id for item in ordered if not item.ok)
    if not succeeded:
        return None

    with localcontext() as ctx:
        ctx.prec = AMOUNT_PRECISION
        balance = sum((item.confirmed_total for item in succeeded), ZERO)
        pending = sum((item.pending_amount for item in succeeded), ZERO)

    return BalanceView(
        balance=max(balance, ZERO),
        pending_balance=max(pending, ZERO),
        shielded=any(item.has_shielded_funds for item in succeeded),
        completeness=Completeness.PARTIAL if failed else Completeness.FULL,
        chains=tuple(item.chain_id for item in succeeded),
        failed_chains=failed,
        chain_errors=summarize_chain_errors(ordered),
        as_of=max(item.fetched_at for item in succeeded),
    )


def describe_balance(view: BalanceView | None, *, unit: str = "") -> str:
    """One-line rendering that keeps zero, degraded and unavailable apart."""
    if view is None or not view.is_available:
        return "unavailable"
    text = format_amount(view.balance)
    if unit:
        text = f"{text} {unit}"
    if view.completeness is Completeness.FULL:
        return text
    return f"{text} ({view.completeness.value})"


__all__ = [
    "BalanceView",
    "ChainErrors",
    "Completeness",
    "describe_balance",
    "format_amount",
    "merge_chain_balances",
    "summarize_chain_errors",
]
