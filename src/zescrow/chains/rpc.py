"""Async JSON-RPC transport shared by the chain adapters."""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Awaitable, Callable

import httpx

logger = logging.getLogger(__name__)


class ChainRPCError(RuntimeError):
    """Raised when a JSON-RPC call fails at the transport or protocol level."""


RequestFn = Callable[..., Awaitable[httpx.Response]]


async def _default_post(url: str, **kwargs: Any) -> httpx.Response:
    timeout = kwargs.pop("timeout", None)
    async with httpx.AsyncClient(timeout=timeout) as client:
        return await client.post(url, **kwargs)


@dataclass
class JSONRPCClient:
    """Thin async wrapper around a JSON-RPC endpoint."""

    endpoint: str
    timeout: float = 10.0
    auth: tuple[str, str] | None = None
    headers: dict[str, str] = field(default_factory=dict)
    jsonrpc: str = "2.0"
    _request: RequestFn | None = None

    def __post_init__(self) -> None:
        if self._request is None:
            self._request = _default_post
        self._ids = itertools.count(1)

    async def call(self, method: str, params: Any, *, timeout: float | None = None) -> Any:
        """Invoke `method` and return its `result` member."""
        payload = {
            "jsonrpc": self.jsonrpc,
            "id": next(self._ids),
            "method": method,
            "params": params,
        }
        kwargs: dict[str, Any] = {
            "json": payload,
            "timeout": self.timeout if timeout is None else timeout,
        }
        if self.headers:
            kwargs["headers"] = dict(self.headers)
        if self.auth is not None:
            kwargs["auth"] = self.auth
        try:
            response = await self._request(self.endpoint, **kwargs)  # type: ignore[misc]
        except httpx.TimeoutException:
            raise
        except httpx.HTTPError as exc:
            raise ChainRPCError(f"RPC request failed: {exc}") from exc

        try:
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise ChainRPCError(f"RPC request failed: {exc}") from exc

        try:
            data = response.json(parse_float=Decimal)
        except ValueError as exc:
            raise ChainRPCError("Invalid JSON in RPC response") from exc

        if not isinstance(data, dict):
            raise ChainRPCError("Malformed RPC response; expected an object")
        error = data.get("error")
        if error:
            message = error.get("message", "Unknown RPC error") if isinstance(error, dict) else str(error)
            raise ChainRPCError(message)
        if "result" not in data:
            raise ChainRPCError("Malformed RPC response; missing result")
        logger.debug("RPC %s on %s succeeded", method, self.endpoint)
        return data["result"]


__all__ = ["JSONRPCClient", "ChainRPCError", "RequestFn"]
