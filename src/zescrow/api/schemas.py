"""Request and response models for the HTTP API."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class BalanceResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    balance: str
    pending_balance: str = Field(alias="pendingBalance")
    shielded: bool
    completeness: str
    error: str | None = None
    chains: list[str] = Field(default_factory=list)
    failed_chains: list[str] = Field(default_factory=list, alias="failedChains")
    chain_errors: dict[str, str] = Field(default_factory=dict, alias="chainErrors")
    as_of: str | None = Field(default=None, alias="asOf")


class SessionResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId")
    state: str
    address: str | None = None
    connected_at: str | None = Field(default=None, alias="connectedAt")
    chain_addresses: dict[str, str] = Field(default_factory=dict, alias="chainAddresses")
    error: str | None = None


class SessionStatusResponse(BaseModel):
    session: SessionResponse
    balance: BalanceResponse | None = None


class ConnectRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    zcash_address: str | None = Field(default=None, alias="zcashAddress")
    near_account_id: str | None = Field(default=None, alias="nearAccountId")


class ConnectResponse(BaseModel):
    session: SessionResponse
    location: str | None = None


class GuardResponse(BaseModel):
    action: str
    location: str | None = None


class ActivityResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    timestamp: str
    category: str
    severity: str
    message: str
    session_id: str | None = Field(default=None, alias="sessionId")


__all__ = [
    "ActivityResponse",
    "BalanceResponse",
    "ConnectRequest",
    "ConnectResponse",
    "GuardResponse",
    "SessionResponse",
    "SessionStatusResponse",
]
