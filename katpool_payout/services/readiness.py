"""
Readiness gate for the node connection.
"""

from enum import Enum
from typing import Optional

import structlog

from katpool_payout.core.exceptions import NodeNotReadyError
from .kaspa_rpc_client import ServerInfo


logger = structlog.get_logger(__name__)


class ConnectionState(Enum):
    """State of the single node connection."""
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"


class ReadinessGate:
    """
    Process-wide readiness state, written once at startup.

    The gate opens only for a server info snapshot that reports the node as
    synchronized and carrying the UTXO index. There is no way back to
    ``DISCONNECTED``.
    """

    def __init__(self):
        self.state = ConnectionState.DISCONNECTED
        self.server_info: Optional[ServerInfo] = None

    @property
    def is_ready(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    def open(self, server_info: ServerInfo) -> None:
        """
        Mark the connection usable.

        Raises:
            NodeNotReadyError: if the node is not synced or lacks the UTXO index
        """
        if not server_info.is_ready:
            raise NodeNotReadyError(server_info.is_synced, server_info.has_utxo_index)

        if self.is_ready:
            return

        self.server_info = server_info
        self.state = ConnectionState.CONNECTED
        logger.info(
            "Readiness gate open",
            component="readiness",
            server_version=server_info.server_version,
            network_id=server_info.network_id,
        )
