# PATH: chains/__init__.py
"""
chains/ - Gateway interaction layer.

Modules:
- endpoints: chain identifier -> gateway endpoint
- providers: JSON-RPC client (eth_blockNumber)
"""

from chains.endpoints import (
    EndpointResolver,
    resolve_endpoint,
)
from chains.providers import (
    BlockNumberClient,
    parse_quantity,
)

__all__ = [
    # Endpoints
    "EndpointResolver",
    "resolve_endpoint",
    # Providers
    "BlockNumberClient",
    "parse_quantity",
]
