# PATH: chains/endpoints.py
"""
chains/endpoints.py - Gateway endpoint resolution.

Maps a chain identifier to the gateway route that proxies it:
    {base_host}{path_prefix}/{chain_id}[/{credential}]
"""

from typing import Optional

from config import Settings
from core.constants import DEFAULT_PATH_PREFIX, ErrorCode
from core.exceptions import ConfigurationError
from core.models import Endpoint


def resolve_endpoint(
    chain_id: str,
    base_host: Optional[str],
    credential: Optional[str] = None,
    path_prefix: str = DEFAULT_PATH_PREFIX,
) -> Endpoint:
    """
    Build the Endpoint for a chain.

    Args:
        chain_id: Chain identifier token (e.g. "1", "56")
        base_host: Gateway base URL (e.g. "http://127.0.0.1:3001")
        credential: Optional API key appended as the last path segment
        path_prefix: Route prefix, "/v1/chain" by default

    Returns:
        Endpoint

    Raises:
        ConfigurationError: If base_host or chain_id is missing
    """
    chain_id = str(chain_id).strip()
    if not chain_id:
        raise ConfigurationError(
            "Chain identifier is empty",
            code=ErrorCode.CONFIG_INVALID,
        )
    if base_host is None or not base_host.strip():
        raise ConfigurationError(
            "RPC base host is not configured",
            details={"chain_id": chain_id},
        )

    prefix = "/" + path_prefix.strip("/") if path_prefix.strip("/") else ""
    url = f"{base_host.strip().rstrip('/')}{prefix}/{chain_id}"
    if credential:
        url = f"{url}/{credential}"

    return Endpoint(chain_id=chain_id, url=url, credential=credential or None)


class EndpointResolver:
    """Resolver bound to static gateway configuration."""

    def __init__(
        self,
        base_host: Optional[str],
        credential: Optional[str] = None,
        path_prefix: str = DEFAULT_PATH_PREFIX,
    ):
        self.base_host = base_host
        self.credential = credential
        self.path_prefix = path_prefix

    @classmethod
    def from_settings(cls, settings: Settings) -> "EndpointResolver":
        return cls(
            base_host=settings.base_host,
            credential=settings.api_key,
            path_prefix=settings.path_prefix,
        )

    def resolve(self, chain_id: str) -> Endpoint:
        return resolve_endpoint(
            chain_id,
            self.base_host,
            credential=self.credential,
            path_prefix=self.path_prefix,
        )
