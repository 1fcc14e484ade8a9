"""Wallet session and balance endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Body, Depends, Query, Response, status

from zescrow.core.balance import BalanceView
from zescrow.session import ConfiguredWalletConnector, IntentSlot, SessionState, WalletSession

from .deps import (
    ClientContext,
    SessionRegistry,
    find_client,
    get_authenticated_client,
    get_client,
    get_registry,
    issue_client,
)
from .schemas import (
    ActivityResponse,
    BalanceResponse,
    ConnectRequest,
    ConnectResponse,
    GuardResponse,
    SessionResponse,
    SessionStatusResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _session_response(session: WalletSession) -> SessionResponse:
    return SessionResponse.model_validate(session.to_payload())


def _balance_response(view: BalanceView) -> BalanceResponse:
    return BalanceResponse.model_validate(view.to_payload())


@router.get("/balance", response_model=BalanceResponse)
async def get_balance(client: ClientContext = Depends(get_authenticated_client)) -> BalanceResponse:
    """Balance for the caller's authenticated session, tagged with its completeness."""
    view = client.manager.current_balance()
    if view is None:
        view = await client.manager.wait_for_balance()
    if view is None:
        view = BalanceView.unavailable()
    return _balance_response(view)


@router.post("/balance/refresh", response_model=BalanceResponse)
async def refresh_balance(client: ClientContext = Depends(get_authenticated_client)) -> BalanceResponse:
    view = await client.manager.refresh()
    return _balance_response(view or BalanceView.unavailable())


@router.get("/session", response_model=SessionStatusResponse)
async def get_session(client: ClientContext | None = Depends(find_client)) -> SessionStatusResponse:
    if client is None:
        return SessionStatusResponse(session=_session_response(WalletSession.disconnected()))
    client.manager.check_expiry()
    session, view = client.manager.snapshot()
    return SessionStatusResponse(
        session=_session_response(session),
        balance=_balance_response(view) if view is not None else None,
    )


@router.post("/session/connect", response_model=ConnectResponse)
async def connect_session(
    response: Response,
    payload: ConnectRequest | None = Body(default=None),
    client: ClientContext = Depends(get_client),
    registry: SessionRegistry = Depends(get_registry),
) -> ConnectResponse:
    """Connect a wallet; the response carries where to navigate next."""
    connector = None
    if payload is not None and (payload.zcash_address or payload.near_account_id):
        connector = ConfiguredWalletConnector(
            zcash_address=payload.zcash_address,
            near_account_id=payload.near_account_id,
        )
    session = await client.manager.connect(connector)
    if session.state is SessionState.ERROR:
        logger.info("Connect attempt %s failed: %s", session.session_id, session.error)
        response.status_code = status.HTTP_502_BAD_GATEWAY
        return ConnectResponse(session=_session_response(session), location=None)
    return ConnectResponse(
        session=_session_response(session),
        location=registry.guard.complete_connect(session, client.intent),
    )


@router.post("/session/disconnect", response_model=SessionResponse)
async def disconnect_session(client: ClientContext | None = Depends(find_client)) -> SessionResponse:
    """Disconnect the wallet and drop any pending redirect intent."""
    if client is None:
        return _session_response(WalletSession.disconnected())
    client.intent.clear()
    return _session_response(client.manager.disconnect())


@router.get("/guard", response_model=GuardResponse)
async def guard_decision(
    response: Response,
    path: str = Query(..., min_length=1),
    client: ClientContext | None = Depends(find_client),
    registry: SessionRegistry = Depends(get_registry),
) -> GuardResponse:
    """Guard decision for `path`.

    A caller without a browsing context only gets one when the decision
    records a redirect intent.
    """
    if client is None:
        intent = IntentSlot()
        decision = registry.guard.decide(WalletSession.disconnected(), path, intent)
        if intent.peek() is not None:
            issue_client(response, registry, intent)
        return GuardResponse.model_validate(decision.to_payload())
    client.manager.check_expiry()
    decision = registry.guard.decide(client.manager.current_session(), path, client.intent)
    return GuardResponse.model_validate(decision.to_payload())


@router.get("/activity", response_model=list[ActivityResponse])
async def get_activity(
    limit: int = Query(50, ge=1, le=200),
    category: str | None = Query(None),
    client: ClientContext | None = Depends(find_client),
) -> list[ActivityResponse]:
    """Recent session and balance activity of the caller, oldest first."""
    if client is None:
        return []
    entries = client.activity.recent(limit, category=category)
    return [ActivityResponse.model_validate(entry.as_dict()) for entry in entries]


def create_api_router(prefix: str = "/api") -> APIRouter:
    api_router = APIRouter(prefix=prefix)
    api_router.include_router(router)
    return api_router


__all__ = ["router", "create_api_router"]
