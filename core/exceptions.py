# PATH: core/exceptions.py
"""
Typed exceptions for rpcpoll.

Configuration errors are fatal to the affected chain's run only.
Transport errors are fatal to a single attempt only.
"""

from typing import Optional

from core.constants import ErrorCode


class HarnessError(Exception):
    """Base exception for rpcpoll."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.UNKNOWN,
        details: Optional[dict] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def __str__(self):
        return f"[{self.code.value}] {self.message}"


class ConfigurationError(HarnessError):
    """Required configuration missing or malformed."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.CONFIG_MISSING,
        details: Optional[dict] = None,
    ):
        super().__init__(message, code, details)


class TransportError(HarnessError):
    """RPC call failed (network, timeout, status, payload)."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.TRANSPORT_RPC_ERROR,
        details: Optional[dict] = None,
    ):
        super().__init__(message, code, details)


class RPCTimeoutError(TransportError):
    """RPC call timed out."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message, ErrorCode.TRANSPORT_TIMEOUT, details)


class RateLimitError(TransportError):
    """Endpoint rejected the call with HTTP 429."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message, ErrorCode.TRANSPORT_RATE_LIMIT, details)


class HTTPStatusError(TransportError):
    """Endpoint answered with a non-2xx status."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message, ErrorCode.TRANSPORT_HTTP_STATUS, details)


class ProtocolError(TransportError):
    """Response was not a usable JSON-RPC reply."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message, ErrorCode.TRANSPORT_PROTOCOL, details)
