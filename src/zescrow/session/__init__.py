"""Wallet session management for zescrow."""

from .connector import ConfiguredWalletConnector, DemoWalletConnector, WalletConnector
from .guard import GuardAction, GuardDecision, IntentSlot, RouteGuard
from .manager import DEFAULT_SESSION_TTL_SECS, WalletSessionManager
from .models import SessionEvent, SessionState, WalletIdentity, WalletSession

__all__ = [
    "ConfiguredWalletConnector",
    "DEFAULT_SESSION_TTL_SECS",
    "DemoWalletConnector",
    "GuardAction",
    "GuardDecision",
    "IntentSlot",
    "RouteGuard",
    "SessionEvent",
    "SessionState",
    "WalletConnector",
    "WalletIdentity",
    "WalletSession",
    "WalletSessionManager",
]
