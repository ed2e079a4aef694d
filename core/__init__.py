# PATH: core/__init__.py
"""
core - Core utilities and models for rpcpoll.

This package contains:
- models.py: Data models (Endpoint, Attempt, Success/Failure, summaries)
- constants.py: Enums and defaults
- exceptions.py: Typed exceptions with error codes
- logging.py: Structured logging
"""

from core.constants import (
    ConcurrencyMode,
    ErrorCode,
    DEFAULT_ATTEMPT_COUNT,
    DEFAULT_PATH_PREFIX,
)
from core.exceptions import (
    HarnessError,
    ConfigurationError,
    TransportError,
    RPCTimeoutError,
    RateLimitError,
    HTTPStatusError,
    ProtocolError,
)
from core.models import (
    Attempt,
    CampaignSummary,
    Endpoint,
    Failure,
    RunSummary,
    Success,
)

__all__ = [
    # Constants
    "ConcurrencyMode",
    "ErrorCode",
    "DEFAULT_ATTEMPT_COUNT",
    "DEFAULT_PATH_PREFIX",
    # Exceptions
    "HarnessError",
    "ConfigurationError",
    "TransportError",
    "RPCTimeoutError",
    "RateLimitError",
    "HTTPStatusError",
    "ProtocolError",
    # Models
    "Attempt",
    "CampaignSummary",
    "Endpoint",
    "Failure",
    "RunSummary",
    "Success",
]
