"""zescrow: wallet sessions and multi-chain balances for freelance escrow."""

__version__ = "0.1.0"

__all__ = ["__version__"]
