# PATH: core/constants.py
"""
Constants for rpcpoll.

Contains enums, defaults, and configuration constants.
"""

from enum import Enum
from typing import Final

# Run defaults
DEFAULT_ATTEMPT_COUNT: Final[int] = 100
DEFAULT_REPETITIONS: Final[int] = 1
HIGH_LOAD_REPETITIONS: Final[int] = 10

# Endpoint defaults
DEFAULT_PATH_PREFIX: Final[str] = "/v1/chain"

# Transport defaults
DEFAULT_RPC_TIMEOUT_SECONDS: Final[float] = 10.0
DEFAULT_MAX_CONNECTIONS: Final[int] = 100

JSONRPC_VERSION: Final[str] = "2.0"
METHOD_BLOCK_NUMBER: Final[str] = "eth_blockNumber"

SERVICE_NAME: Final[str] = "rpcpoll"
VERSION: Final[str] = "0.1.0"


class ConcurrencyMode(str, Enum):
    """How a campaign schedules its runs."""
    SEQUENTIAL = "sequential"
    FAN_OUT = "fan-out"


class ErrorCode(str, Enum):
    """
    Canonical error codes.

    CONFIG_*    - configuration missing or malformed
    TRANSPORT_* - the RPC call failed
    """
    # Configuration
    CONFIG_MISSING = "CONFIG_MISSING"
    CONFIG_INVALID = "CONFIG_INVALID"

    # Transport
    TRANSPORT_RPC_ERROR = "TRANSPORT_RPC_ERROR"
    TRANSPORT_TIMEOUT = "TRANSPORT_TIMEOUT"
    TRANSPORT_RATE_LIMIT = "TRANSPORT_RATE_LIMIT"
    TRANSPORT_HTTP_STATUS = "TRANSPORT_HTTP_STATUS"
    TRANSPORT_PROTOCOL = "TRANSPORT_PROTOCOL"

    UNKNOWN = "UNKNOWN"
