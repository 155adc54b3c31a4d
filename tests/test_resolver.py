"""
Test node endpoint resolution from the resolver hint.
"""

from unittest.mock import AsyncMock

import aiohttp
import pytest

from katpool_payout.core.exceptions import RpcConnectionError
from katpool_payout.services.resolver import DEFAULT_RESOLVERS, Resolver, is_direct_endpoint


def test_direct_endpoint_detection():
    assert is_direct_endpoint("ws://127.0.0.1:17110")
    assert is_direct_endpoint("wss://node.example:443")
    assert not is_direct_endpoint("https://eric.kaspa.stream")


def test_defaults_to_public_resolvers():
    assert Resolver().urls == DEFAULT_RESOLVERS
    assert Resolver([]).urls == DEFAULT_RESOLVERS


def test_endpoint_path():
    assert Resolver().endpoint_path("mainnet") == "/v2/kaspa/mainnet/tls/wrpc/json"
    assert Resolver(tls=False).endpoint_path("testnet-10") == "/v2/kaspa/testnet-10/any/wrpc/json"


def test_direct_endpoints_come_first():
    resolver = Resolver(["https://a.example", "ws://127.0.0.1:17110", "https://b.example"], shuffle=False)
    assert resolver.candidates() == ["ws://127.0.0.1:17110", "https://a.example", "https://b.example"]


@pytest.mark.asyncio
async def test_direct_endpoint_needs_no_lookup():
    resolver = Resolver(["ws://127.0.0.1:17110"])
    resolver._query_resolver = AsyncMock()

    assert await resolver.get_url("mainnet") == "ws://127.0.0.1:17110"
    resolver._query_resolver.assert_not_awaited()


@pytest.mark.asyncio
async def test_falls_through_to_next_resolver():
    resolver = Resolver(["https://a.example", "https://b.example"], shuffle=False)
    resolver._query_resolver = AsyncMock(
        side_effect=[aiohttp.ClientError("503 Service Unavailable"), "wss://node-7.example/mainnet"]
    )

    url = await resolver.get_url("mainnet")

    assert url == "wss://node-7.example/mainnet"
    assert [call.args for call in resolver._query_resolver.await_args_list] == [
        ("https://a.example", "mainnet"),
        ("https://b.example", "mainnet"),
    ]


@pytest.mark.asyncio
async def test_all_resolvers_failing():
    resolver = Resolver(["https://a.example"], shuffle=False)
    resolver._query_resolver = AsyncMock(side_effect=ValueError("resolver returned unusable url None"))

    with pytest.raises(RpcConnectionError) as exc_info:
        await resolver.get_url("mainnet")

    assert exc_info.value.details["network_id"] == "mainnet"
    assert len(exc_info.value.details["errors"]) == 1
