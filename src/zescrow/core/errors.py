"""Error kinds surfaced by the session and balance core."""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    CONNECT_FAILED = "ConnectFailed"
    ADAPTER_TIMEOUT = "AdapterTimeout"
    ADAPTER_ERROR = "AdapterError"
    SESSION_EXPIRED = "SessionExpired"
    NO_DATA = "NoData"


class ZescrowError(RuntimeError):
    """Base class for errors raised by zescrow."""


class WalletConnectError(ZescrowError):
    """Raised by wallet connectors when a connection is rejected or unavailable."""


__all__ = ["ErrorKind", "ZescrowError", "WalletConnectError"]
