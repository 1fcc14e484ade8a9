"""Wallet connectors: the step a session waits on while Connecting."""

from __future__ import annotations

import asyncio
import logging
import secrets
from types import MappingProxyType
from typing import Protocol

from zescrow.chains import NEAR_CHAIN_ID, ZCASH_CHAIN_ID, mask_address
from zescrow.core.errors import WalletConnectError

from .models import WalletIdentity

logger = logging.getLogger(__name__)

BECH32_CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"


class WalletConnector(Protocol):
    async def connect(self) -> WalletIdentity:
        ...


class ConfiguredWalletConnector:
    """Connects the addresses an operator configured for the escrow account."""

    def __init__(self, *, zcash_address: str | None = None, near_account_id: str | None = None) -> None:
        self.zcash_address = zcash_address
        self.near_account_id = near_account_id

    async def connect(self) -> WalletIdentity:
        chain_addresses: dict[str, str] = {}
        if self.zcash_address:
            chain_addresses[ZCASH_CHAIN_ID] = self.zcash_address
        if self.near_account_id:
            chain_addresses[NEAR_CHAIN_ID] = self.near_account_id
        if not chain_addresses:
            raise WalletConnectError("No wallet address configured; set zcash_address or near_account_id.")
        primary = next(iter(chain_addresses.values()))
        logger.debug("Connected configured wallet %s", mask_address(primary))
        return WalletIdentity(address=primary, chain_addresses=MappingProxyType(chain_addresses))


class DemoWalletConnector:
    """Mints a throwaway shielded address, for demos and local development."""

    def __init__(self, *, delay: float = 0.0, near_account_id: str | None = None) -> None:
        self.delay = delay
        self.near_account_id = near_account_id

    async def connect(self) -> WalletIdentity:
        if self.delay:
            await asyncio.sleep(self.delay)
        address = "zs1" + "".join(secrets.choice(BECH32_CHARSET) for _ in range(75))
        chain_addresses = {ZCASH_CHAIN_ID: address}
        if self.near_account_id:
            chain_addresses[NEAR_CHAIN_ID] = self.near_account_id
        return WalletIdentity(address=address, chain_addresses=MappingProxyType(chain_addresses))


__all__ = ["ConfiguredWalletConnector", "DemoWalletConnector", "WalletConnector"]
