"""Core services for zescrow."""

from .adapters import build_adapters, build_aggregator
from .aggregator import DEFAULT_TIMEOUT_SECS, BalanceAggregator, aggregate
from .balance import BalanceView, Completeness, describe_balance, format_amount, merge_chain_balances
from .config import (
    AdapterSecrets,
    ConfigContext,
    ConfigManager,
    ConfigurationError,
    ZescrowConfig,
    default_config_dir,
)
from .errors import ErrorKind, WalletConnectError, ZescrowError
from .logs import ActivityEntry, ActivityLog

__all__ = [
    "ActivityEntry",
    "ActivityLog",
    "AdapterSecrets",
    "BalanceAggregator",
    "BalanceView",
    "Completeness",
    "ConfigContext",
    "ConfigManager",
    "ConfigurationError",
    "DEFAULT_TIMEOUT_SECS",
    "ErrorKind",
    "WalletConnectError",
    "ZescrowConfig",
    "ZescrowError",
    "aggregate",
    "build_adapters",
    "build_aggregator",
    "default_config_dir",
    "describe_balance",
    "format_amount",
    "merge_chain_balances",
]
