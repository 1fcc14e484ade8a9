"""Session snapshots and events published by the session manager."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Literal, Mapping

from zescrow.core.balance import BalanceView
from zescrow.core.errors import ErrorKind


class SessionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AUTHENTICATED = "authenticated"
    ERROR = "error"


def new_session_id() -> str:
    return uuid.uuid4().hex[:12]


@dataclass(frozen=True, slots=True)
class WalletIdentity:
    """What a wallet connector hands back on a successful connection."""

    address: str
    chain_addresses: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class WalletSession:
    session_id: str
    state: SessionState
    address: str | None = None
    connected_at: datetime | None = None
    chain_addresses: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    error: ErrorKind | None = None

    @classmethod
    def disconnected(cls, *, error: ErrorKind | None = None) -> WalletSession:
        return cls(session_id=new_session_id(), state=SessionState.DISCONNECTED, error=error)

    @property
    def is_authenticated(self) -> bool:
        return self.state is SessionState.AUTHENTICATED

    def to_payload(self) -> dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "state": self.state.value,
            "address": self.address,
            "connectedAt": self.connected_at.isoformat() if self.connected_at else None,
            "chainAddresses": dict(self.chain_addresses),
            "error": self.error.value if self.error else None,
        }


EventKind = Literal["state", "balance"]


@dataclass(frozen=True, slots=True)
class SessionEvent:
    """Delivered to subscribers on every state or balance transition."""

    kind: EventKind
    session: WalletSession
    balance: BalanceView | None


__all__ = ["EventKind", "SessionEvent", "SessionState", "WalletIdentity", "WalletSession", "new_session_id"]
