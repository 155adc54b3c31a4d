"""
Node endpoint resolution.

The ``node`` entry of config.json is a resolver hint. Each entry is either a
direct wRPC endpoint (``ws://`` / ``wss://``) or a resolver service
(``http://`` / ``https://``) that hands out the URL of a public node for the
requested network.
"""

import asyncio
import random
from typing import List, Optional

import aiohttp
import structlog

from katpool_payout.core.exceptions import RpcConnectionError


logger = structlog.get_logger(__name__)

DEFAULT_RESOLVERS = [
    "https://eric.kaspa.stream",
    "https://maxim.kaspa.stream",
    "https://sean.kaspa.stream",
    "https://troy.kaspa.stream",
]

RESOLVER_API_VERSION = 2
WRPC_ENCODING = "json"


def is_direct_endpoint(url: str) -> bool:
    return url.startswith(("ws://", "wss://"))


class Resolver:
    """Pick a node endpoint from the resolver hint."""

    def __init__(
        self,
        urls: Optional[List[str]] = None,
        tls: bool = True,
        timeout: float = 10.0,
        shuffle: bool = True,
    ):
        self.urls = list(urls) if urls else list(DEFAULT_RESOLVERS)
        self.tls = tls
        self.timeout = timeout
        self.shuffle = shuffle
        self.logger = logger.bind(component="resolver")

    def endpoint_path(self, network_id: str) -> str:
        """Resolver API path for the given network."""
        scheme = "tls" if self.tls else "any"
        return f"/v{RESOLVER_API_VERSION}/kaspa/{network_id}/{scheme}/wrpc/{WRPC_ENCODING}"

    def candidates(self) -> List[str]:
        """Direct endpoints first, in the configured order, then resolvers."""
        direct = [url for url in self.urls if is_direct_endpoint(url)]
        resolvers = [url for url in self.urls if not is_direct_endpoint(url)]
        if self.shuffle:
            random.shuffle(resolvers)
        return direct + resolvers

    async def get_url(self, network_id: str) -> str:
        """
        Return a node wRPC URL for ``network_id``.

        Raises:
            RpcConnectionError: if no candidate yields a URL
        """
        errors = []
        for candidate in self.candidates():
            if is_direct_endpoint(candidate):
                return candidate

            try:
                return await self._query_resolver(candidate, network_id)
            except (aiohttp.ClientError, asyncio.TimeoutError, ValueError, KeyError, TypeError) as e:
                self.logger.warning("Resolver query failed", resolver=candidate, error=str(e))
                errors.append(f"{candidate}: {e}")

        raise RpcConnectionError(
            "No node endpoint could be resolved",
            {"network_id": network_id, "errors": errors}
        )

    async def _query_resolver(self, resolver_url: str, network_id: str) -> str:
        url = resolver_url.rstrip("/") + self.endpoint_path(network_id)
        timeout = aiohttp.ClientTimeout(total=self.timeout)

        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(url) as response:
                response.raise_for_status()
                payload = await response.json(content_type=None)

        node_url = payload["url"]
        if not isinstance(node_url, str) or not is_direct_endpoint(node_url):
            raise ValueError(f"resolver returned unusable url {node_url!r}")

        self.logger.debug("Resolved node endpoint", resolver=resolver_url, node_url=node_url)
        return node_url
