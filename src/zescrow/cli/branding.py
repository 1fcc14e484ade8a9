"""Console theme and balance rendering for the zescrow CLI."""

from __future__ import annotations

from rich import box
from rich.console import Console
from rich.table import Table
from rich.theme import Theme

from zescrow.chains import mask_address
from zescrow.core.balance import BalanceView, Completeness, describe_balance, format_amount
from zescrow.session import WalletSession

ZESCROW_THEME = Theme(
    {
        "zescrow.header": "bold #F4B728",
        "zescrow.label": "bold #94A3B8",
        "zescrow.value": "#E6FFFA",
        "zescrow.full": "bold #14F195",
        "zescrow.partial": "bold #FBBF24",
        "zescrow.stale": "bold #FB923C",
        "zescrow.unavailable": "bold #FB7185",
        "zescrow.error": "bold #FB7185",
    }
)

_COMPLETENESS_STYLES = {
    Completeness.FULL: "zescrow.full",
    Completeness.PARTIAL: "zescrow.partial",
    Completeness.STALE: "zescrow.stale",
}


def themed_console(**kwargs) -> Console:
    return Console(theme=ZESCROW_THEME, **kwargs)


def completeness_label(view: BalanceView) -> tuple[str, str]:
    """Label and style for the completeness column; never blank."""
    if not view.is_available:
        return "unavailable", "zescrow.unavailable"
    return view.completeness.value, _COMPLETENESS_STYLES[view.completeness]


def balance_table(session: WalletSession, view: BalanceView) -> Table:
    table = Table(box=box.SIMPLE_HEAVY, show_header=False, title="Escrow balance", title_style="zescrow.header")
    table.add_column("field", style="zescrow.label")
    table.add_column("value", style="zescrow.value")
    label, style = completeness_label(view)
    table.add_row("Wallet", mask_address(session.address))
    table.add_row("Balance", describe_balance(view))
    table.add_row("Pending", format_amount(view.pending_balance) if view.is_available else "unavailable")
    table.add_row("Shielded", "yes" if view.shielded else "no")
    table.add_row("Completeness", f"[{style}]{label}[/]")
    if view.chains:
        table.add_row("Chains", ", ".join(view.chains))
    if view.failed_chains:
        table.add_row("Failed", f"[zescrow.error]{', '.join(view.failed_chains)}[/]")
    return table


__all__ = ["ZESCROW_THEME", "balance_table", "completeness_label", "themed_console"]
