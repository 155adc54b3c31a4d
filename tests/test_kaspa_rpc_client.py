"""
Test the node wRPC client against an in-memory websocket.
"""

import asyncio
import json

import pytest

from katpool_payout.core.exceptions import RpcConnectionError, RpcRequestError
from katpool_payout.services.kaspa_rpc_client import KaspaRpcClient, ServerInfo
from katpool_payout.services.resolver import Resolver

NODE_URL = "ws://127.0.0.1:17110"

SERVER_INFO = {
    "rpcApiVersion": 1,
    "serverVersion": "1.0.0",
    "networkId": "mainnet",
    "hasUtxoIndex": True,
    "isSynced": True,
    "virtualDaaScore": "91234567",
}


class FakeNodeSocket:
    """Answers each request with the canned reply for its method."""

    def __init__(self, replies=None):
        self.replies = replies or {}
        self.sent = []
        self.closed = False
        self._incoming = asyncio.Queue()

    async def send(self, raw):
        message = json.loads(raw)
        self.sent.append(message)
        reply = self.replies.get(message["method"])
        if reply is not None:
            await self._incoming.put(json.dumps({"id": message["id"], **reply}))

    async def push(self, raw):
        await self._incoming.put(raw)

    def __aiter__(self):
        return self

    async def __anext__(self):
        raw = await self._incoming.get()
        if raw is None:
            raise StopAsyncIteration
        return raw

    async def close(self):
        self.closed = True
        await self._incoming.put(None)


def make_client(socket, **kwargs):
    calls = []

    async def connector(url, **options):
        calls.append((url, options))
        return socket

    client = KaspaRpcClient(
        network_id="mainnet",
        resolver=Resolver([NODE_URL]),
        connector=connector,
        **kwargs
    )
    return client, calls


@pytest.mark.asyncio
async def test_connect_and_get_server_info():
    socket = FakeNodeSocket({"getServerInfo": {"method": "getServerInfo", "params": SERVER_INFO}})
    client, calls = make_client(socket)

    await client.connect()
    info = await client.get_server_info()

    assert calls[0][0] == NODE_URL
    assert client.url == NODE_URL
    assert client.is_connected
    assert info == ServerInfo(
        is_synced=True,
        has_utxo_index=True,
        server_version="1.0.0",
        network_id="mainnet",
        virtual_daa_score=91234567,
    )
    assert info.is_ready
    assert socket.sent == [{"id": 1, "method": "getServerInfo", "params": {}}]

    await client.close()
    assert socket.closed
    assert not client.is_connected


@pytest.mark.asyncio
async def test_unsynced_node_is_not_ready():
    socket = FakeNodeSocket({"getServerInfo": {"params": {**SERVER_INFO, "isSynced": False}}})
    client, _ = make_client(socket)

    async with client:
        info = await client.get_server_info()

    assert info.is_synced is False
    assert info.is_ready is False


@pytest.mark.asyncio
async def test_node_error_raises_request_error():
    socket = FakeNodeSocket({"getUtxosByAddresses": {"error": {"message": "UTXO index is not enabled"}}})
    client, _ = make_client(socket)
    await client.connect()

    with pytest.raises(RpcRequestError) as exc_info:
        await client.request("getUtxosByAddresses", {"addresses": ["kaspa:qz"]})

    assert "UTXO index is not enabled" in str(exc_info.value)
    assert exc_info.value.details["method"] == "getUtxosByAddresses"
    await client.close()


@pytest.mark.asyncio
async def test_request_timeout():
    client, _ = make_client(FakeNodeSocket(), timeout=0.05)
    await client.connect()

    with pytest.raises(RpcRequestError) as exc_info:
        await client.request("getServerInfo")

    assert "no response" in str(exc_info.value)
    assert client._pending == {}
    await client.close()


@pytest.mark.asyncio
async def test_malformed_and_unsolicited_messages_are_ignored():
    socket = FakeNodeSocket({"getServerInfo": {"params": SERVER_INFO}})
    client, _ = make_client(socket)
    await client.connect()

    await socket.push("not json")
    await socket.push(json.dumps({"id": 999, "params": {}}))
    await socket.push(json.dumps({"method": "blockAddedNotification", "params": {}}))

    info = await client.get_server_info()
    assert info.is_ready
    await client.close()


@pytest.mark.asyncio
async def test_request_before_connect():
    client, _ = make_client(FakeNodeSocket())

    with pytest.raises(RpcRequestError):
        await client.request("getServerInfo")


@pytest.mark.asyncio
async def test_closed_connection_fails_pending_requests():
    socket = FakeNodeSocket()
    client, _ = make_client(socket)
    await client.connect()

    pending = asyncio.create_task(client.request("getServerInfo"))
    await asyncio.sleep(0)
    await socket.push(None)

    with pytest.raises(RpcRequestError) as exc_info:
        await pending

    assert "connection closed" in str(exc_info.value)


@pytest.mark.asyncio
async def test_connect_failure_raises_connection_error():
    attempts = []

    async def refusing_connector(url, **options):
        attempts.append(url)
        raise OSError("Connection refused")

    client = KaspaRpcClient("mainnet", resolver=Resolver([NODE_URL]), connector=refusing_connector)

    with pytest.raises(RpcConnectionError) as exc_info:
        await client.connect()

    assert str(exc_info.value) == "RPC connection error"
    assert attempts == [NODE_URL]
    assert not client.is_connected


@pytest.mark.asyncio
async def test_connect_retries_with_backoff():
    socket = FakeNodeSocket()
    attempts = []

    async def flaky_connector(url, **options):
        attempts.append(url)
        if len(attempts) < 3:
            raise OSError("Connection refused")
        return socket

    client = KaspaRpcClient(
        "mainnet",
        resolver=Resolver([NODE_URL]),
        connect_retries=2,
        retry_delay=0,
        connector=flaky_connector,
    )

    await client.connect()

    assert len(attempts) == 3
    assert client.is_connected
    await client.close()


@pytest.mark.asyncio
async def test_retries_are_bounded():
    attempts = []

    async def refusing_connector(url, **options):
        attempts.append(url)
        raise OSError("Connection refused")

    client = KaspaRpcClient(
        "mainnet",
        resolver=Resolver([NODE_URL]),
        connect_retries=1,
        retry_delay=0,
        connector=refusing_connector,
    )

    with pytest.raises(RpcConnectionError) as exc_info:
        await client.connect()

    assert len(attempts) == 2
    assert exc_info.value.details["attempts"] == 2
