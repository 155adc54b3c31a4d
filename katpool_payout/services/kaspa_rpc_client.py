"""
Kaspa wRPC client holding the single node connection of the payout service.

Requests are JSON framed over one websocket. Responses are matched to their
request by id, so the transaction manager can issue its own calls through
``request()`` on the same connection.
"""

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

import structlog
import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from katpool_payout.core.exceptions import RpcConnectionError, RpcRequestError
from .resolver import Resolver


logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ServerInfo:
    """Server info snapshot reported by the node."""
    is_synced: bool
    has_utxo_index: bool
    server_version: Optional[str] = None
    network_id: Optional[str] = None
    virtual_daa_score: Optional[int] = None

    @property
    def is_ready(self) -> bool:
        return self.is_synced and self.has_utxo_index

    @classmethod
    def from_response(cls, data: Dict[str, Any]) -> "ServerInfo":
        daa_score = data.get("virtualDaaScore")
        return cls(
            is_synced=bool(data.get("isSynced", False)),
            has_utxo_index=bool(data.get("hasUtxoIndex", False)),
            server_version=data.get("serverVersion"),
            network_id=data.get("networkId"),
            virtual_daa_score=int(daa_score) if daa_score is not None else None,
        )


class KaspaRpcClient:
    """
    Async wRPC client for one Kaspa node.

    Provides:
    - Endpoint discovery through a ``Resolver``
    - Bounded connect retries with exponential backoff (off by default)
    - Request/response correlation over a single websocket
    """

    def __init__(
        self,
        network_id: str,
        resolver: Optional[Resolver] = None,
        timeout: float = 30.0,
        connect_retries: int = 0,
        retry_delay: float = 1.0,
        connector: Optional[Callable[..., Any]] = None,
    ):
        self.network_id = network_id
        self.resolver = resolver or Resolver()
        self.timeout = timeout
        self.connect_retries = connect_retries
        self.retry_delay = retry_delay
        self.url: Optional[str] = None
        self.logger = logger.bind(component="rpc_client", network_id=network_id)

        self._connector = connector or websockets.connect
        self._ws = None
        self._reader_task: Optional[asyncio.Task] = None
        self._pending: Dict[int, Tuple[str, asyncio.Future]] = {}
        self._next_id = 0

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    @property
    def is_connected(self) -> bool:
        return self._ws is not None and self._reader_task is not None and not self._reader_task.done()

    async def connect(self) -> None:
        """
        Open the node connection.

        Raises:
            RpcConnectionError: when every attempt fails
        """
        attempts = self.connect_retries + 1
        last_error: Optional[Exception] = None

        for attempt in range(attempts):
            try:
                await self._connect_once()
                return
            except RpcConnectionError as e:
                last_error = e
                if attempt + 1 >= attempts:
                    break
                delay = self.retry_delay * (2 ** attempt)
                self.logger.warning(
                    f"RPC connection failed (attempt {attempt + 1}/{attempts}). Retrying in {delay:.1f}s...",
                    error=str(e)
                )
                await asyncio.sleep(delay)

        raise RpcConnectionError(
            "RPC connection error",
            {"attempts": attempts, "error": str(last_error)}
        )

    async def _connect_once(self) -> None:
        url = await self.resolver.get_url(self.network_id)
        self.logger.debug("Connecting to node", url=url)

        try:
            self._ws = await self._connector(
                url,
                ping_interval=30,
                ping_timeout=10,
                close_timeout=5,
                max_size=None,
            )
        except (OSError, WebSocketException, asyncio.TimeoutError) as e:
            raise RpcConnectionError(f"Failed to connect to {url}: {e}", {"url": url})

        self.url = url
        self._reader_task = asyncio.create_task(self._read_loop(), name="kaspa_rpc_reader")
        self.logger.info("Connected to node", url=url)

    async def close(self) -> None:
        """Close the node connection."""
        if self._ws is not None:
            await self._ws.close()

        if self._reader_task and not self._reader_task.done():
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass

        self._ws = None
        self._reader_task = None

    async def request(self, method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Send one request and wait for its response payload.

        Raises:
            RpcRequestError: on node error, timeout or closed connection
        """
        if not self.is_connected:
            raise RpcRequestError(method, "not connected")

        self._next_id += 1
        request_id = self._next_id
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = (method, future)

        try:
            await self._ws.send(json.dumps({
                "id": request_id,
                "method": method,
                "params": params or {},
            }))
            return await asyncio.wait_for(future, self.timeout)
        except asyncio.TimeoutError:
            raise RpcRequestError(method, f"no response within {self.timeout}s")
        except ConnectionClosed as e:
            raise RpcRequestError(method, f"connection closed: {e}")
        finally:
            self._pending.pop(request_id, None)

    async def get_server_info(self) -> ServerInfo:
        """Query sync state and UTXO index availability."""
        data = await self.request("getServerInfo")
        info = ServerInfo.from_response(data)
        self.logger.debug(
            "Server info received",
            is_synced=info.is_synced,
            has_utxo_index=info.has_utxo_index,
            server_version=info.server_version,
            virtual_daa_score=info.virtual_daa_score,
        )
        return info

    async def _read_loop(self) -> None:
        try:
            async for raw in self._ws:
                self._dispatch(raw)
        except ConnectionClosed as e:
            self.logger.warning("Node connection closed", code=e.rcvd.code if e.rcvd else None)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.error("Error in RPC read loop", error=str(e), exc_info=True)
        finally:
            self._fail_pending("connection closed")

    def _dispatch(self, raw) -> None:
        try:
            message = json.loads(raw)
        except (json.JSONDecodeError, TypeError) as e:
            self.logger.warning("Discarding malformed RPC message", error=str(e))
            return

        if not isinstance(message, dict):
            self.logger.warning("Discarding malformed RPC message", error="not an object")
            return

        entry = self._pending.get(message.get("id"))
        if entry is None:
            # Notifications and late responses have no waiter
            self.logger.debug("Unsolicited RPC message", method=message.get("method"))
            return

        method, future = entry
        if future.done():
            return

        error = message.get("error")
        if error:
            if isinstance(error, dict):
                error = error.get("message", error)
            future.set_exception(RpcRequestError(method, str(error)))
        else:
            future.set_result(message.get("params") or {})

    def _fail_pending(self, reason: str) -> None:
        for method, future in list(self._pending.values()):
            if not future.done():
                future.set_exception(RpcRequestError(method, reason))
