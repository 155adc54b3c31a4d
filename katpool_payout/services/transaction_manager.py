"""
Transaction manager contract.

The payout mechanics (UTXO selection, signing, payout records) live outside
this service. A deployment names its implementation through the
``TRANSACTION_MANAGER`` setting as ``"package.module:ClassName"``; the class
must subclass ``TransactionManager``.
"""

import importlib
from abc import ABC, abstractmethod
from typing import Type

import structlog

from katpool_payout.core.exceptions import ConfigurationError
from .kaspa_rpc_client import KaspaRpcClient


logger = structlog.get_logger(__name__)


class TransactionManager(ABC):
    """Base class for payout transaction managers."""

    def __init__(
        self,
        network_id: str,
        treasury_private_key: str,
        database_url: str,
        rpc_client: KaspaRpcClient,
    ):
        self.network_id = network_id
        self.treasury_private_key = treasury_private_key
        self.database_url = database_url
        self.rpc_client = rpc_client

    @abstractmethod
    async def transfer_balances(self) -> None:
        """Pay out all balances that are due."""


def load_transaction_manager_class(path: str) -> Type[TransactionManager]:
    """
    Import the transaction manager class named by ``path``.

    Raises:
        ConfigurationError: if the path is malformed, cannot be imported or
            does not name a ``TransactionManager`` subclass
    """
    module_name, sep, class_name = path.partition(":")
    if not sep or not module_name or not class_name:
        raise ConfigurationError(
            f"TRANSACTION_MANAGER must look like 'package.module:ClassName', got {path!r}",
            {"setting": "TRANSACTION_MANAGER"}
        )

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigurationError(
            f"Cannot import transaction manager module {module_name}: {e}",
            {"setting": "TRANSACTION_MANAGER"}
        )

    manager_class = getattr(module, class_name, None)
    if not isinstance(manager_class, type) or not issubclass(manager_class, TransactionManager):
        raise ConfigurationError(
            f"{path} is not a TransactionManager subclass",
            {"setting": "TRANSACTION_MANAGER"}
        )

    logger.debug("Transaction manager class loaded", path=path)
    return manager_class
