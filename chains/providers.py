# PATH: chains/providers.py
"""
chains/providers.py - JSON-RPC access to gateway endpoints.

Provides the one RPC primitive the driver consumes:
- eth_blockNumber against a resolved Endpoint
- Request timeout handling
- Connection pooling (one httpx.AsyncClient per client instance)

No caching, no retries, no failover: every call is exactly one POST and
every problem surfaces as a TransportError subtype.
"""

import time
from typing import Any, Optional

import httpx

from core.constants import (
    DEFAULT_MAX_CONNECTIONS,
    DEFAULT_RPC_TIMEOUT_SECONDS,
    JSONRPC_VERSION,
    METHOD_BLOCK_NUMBER,
)
from core.exceptions import (
    HTTPStatusError,
    ProtocolError,
    RateLimitError,
    RPCTimeoutError,
    TransportError,
)
from core.logging import get_logger
from core.models import Endpoint

logger = get_logger(__name__)


class BlockNumberClient:
    """
    Async JSON-RPC client for latest-block queries.

    Usage:
        async with BlockNumberClient(timeout_seconds=5) as client:
            block = await client.get_latest_block_number(endpoint)
    """

    def __init__(
        self,
        timeout_seconds: float = DEFAULT_RPC_TIMEOUT_SECONDS,
        max_connections: int = DEFAULT_MAX_CONNECTIONS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout_seconds = timeout_seconds
        self.max_connections = max_connections
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._request_id = 0

    async def __aenter__(self) -> "BlockNumberClient":
        await self._get_client()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout_seconds),
                limits=httpx.Limits(max_connections=self.max_connections),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _next_request_id(self) -> int:
        self._request_id += 1
        return self._request_id

    async def call(
        self,
        endpoint: Endpoint,
        method: str,
        params: list | None = None,
    ) -> Any:
        """
        Make one JSON-RPC call.

        Args:
            endpoint: Resolved gateway endpoint
            method: RPC method name
            params: Method parameters

        Returns:
            The "result" member of the response

        Raises:
            RPCTimeoutError: Request timed out
            RateLimitError: HTTP 429
            HTTPStatusError: Any other non-2xx status
            ProtocolError: Body is not a matching JSON-RPC reply
            TransportError: Connection failures and JSON-RPC error objects
        """
        client = await self._get_client()
        request_id = self._next_request_id()
        payload = {
            "jsonrpc": JSONRPC_VERSION,
            "method": method,
            "params": params or [],
            "id": request_id,
        }
        details = {"chain_id": endpoint.chain_id, "url": endpoint.redacted_url, "method": method}

        start_ms = int(time.time() * 1000)
        try:
            resp = await client.post(endpoint.url, json=payload)
        except httpx.TimeoutException as e:
            latency_ms = int(time.time() * 1000) - start_ms
            raise RPCTimeoutError(
                f"Timeout after {latency_ms}ms: {type(e).__name__}",
                details=details,
            )
        except httpx.HTTPError as e:
            raise TransportError(
                f"Request failed: {type(e).__name__}: {e}",
                details=details,
            )

        if resp.status_code == 429:
            raise RateLimitError(
                "Rate limited (HTTP 429)",
                details={**details, "status_code": resp.status_code},
            )
        if not resp.is_success:
            raise HTTPStatusError(
                f"HTTP {resp.status_code}: {resp.text[:200]}",
                details={**details, "status_code": resp.status_code},
            )

        try:
            result = resp.json()
        except ValueError:
            raise ProtocolError(
                f"Response is not JSON: {resp.text[:200]!r}",
                details=details,
            )

        if not isinstance(result, dict):
            raise ProtocolError(
                f"Response is not a JSON-RPC object: {result!r}",
                details=details,
            )

        if "error" in result and result["error"] is not None:
            error = result["error"]
            error_msg = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            raise TransportError(
                f"RPC error: {error_msg}",
                details=details,
            )

        if result.get("id") != request_id:
            raise ProtocolError(
                f"Response id mismatch: expected {request_id}, got {result.get('id')!r}",
                details=details,
            )

        if "result" not in result:
            raise ProtocolError("Response has no result", details=details)

        logger.debug(
            f"{method} ok",
            extra={"context": {**details, "latency_ms": int(time.time() * 1000) - start_ms}},
        )
        return result["result"]

    async def get_latest_block_number(self, endpoint: Endpoint) -> int:
        """
        Get latest block number from an endpoint.

        Raises:
            TransportError: Call failed or result is not a hex quantity
        """
        raw = await self.call(endpoint, METHOD_BLOCK_NUMBER)
        return parse_quantity(raw, endpoint)


def parse_quantity(raw: Any, endpoint: Endpoint) -> int:
    """Parse a JSON-RPC hex quantity ("0x1b4") into an int."""
    if not isinstance(raw, str) or not raw.startswith("0x"):
        raise ProtocolError(
            f"Malformed quantity: {raw!r}",
            details={"chain_id": endpoint.chain_id},
        )
    try:
        return int(raw, 16)
    except ValueError:
        raise ProtocolError(
            f"Malformed quantity: {raw!r}",
            details={"chain_id": endpoint.chain_id},
        )
