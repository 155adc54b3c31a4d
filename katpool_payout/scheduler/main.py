"""
Main entry point for the payout service.

Startup runs in a fixed order and any failure ends the process:
validate configuration, connect to the node, verify readiness, build the
transaction manager. Only then are the scheduler and heartbeat started.
"""

import asyncio
import signal
import sys
from datetime import datetime
from typing import Callable, Optional, Type

import structlog

from katpool_payout.core.config import PayoutConfig, Settings, load_payout_config, settings as default_settings
from katpool_payout.core.exceptions import MissingSettingError, TransactionManagerError
from katpool_payout.core.logging import setup_logging
from katpool_payout.core.validation import StartupConfig, validate_startup
from katpool_payout.services.kaspa_rpc_client import KaspaRpcClient
from katpool_payout.services.metrics import PayoutMetrics
from katpool_payout.services.readiness import ReadinessGate
from katpool_payout.services.resolver import Resolver
from katpool_payout.services.transaction_manager import TransactionManager, load_transaction_manager_class
from .heartbeat import HeartbeatReporter
from .payout_scheduler import PayoutScheduler, utc_now


logger = structlog.get_logger(__name__)


class PayoutService:
    """Payout service coordinator."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        payout_config: Optional[PayoutConfig] = None,
        rpc_client_factory: Optional[Callable[[StartupConfig], KaspaRpcClient]] = None,
        transaction_manager_class: Optional[Type[TransactionManager]] = None,
        metrics_factory: Optional[Callable[[StartupConfig], PayoutMetrics]] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.settings = settings or default_settings
        self.payout_config = payout_config
        self.logger = logger.bind(component="main")

        self._rpc_client_factory = rpc_client_factory or self._default_rpc_client
        self._transaction_manager_class = transaction_manager_class
        self._metrics_factory = metrics_factory or self._default_metrics
        self._clock = clock

        self.config: Optional[StartupConfig] = None
        self.gate = ReadinessGate()
        self.rpc_client: Optional[KaspaRpcClient] = None
        self.transaction_manager: Optional[TransactionManager] = None
        self.metrics: Optional[PayoutMetrics] = None
        self.scheduler: Optional[PayoutScheduler] = None
        self.heartbeat: Optional[HeartbeatReporter] = None
        self.running = False
        self._stop_requested = asyncio.Event()

    def _default_rpc_client(self, config: StartupConfig) -> KaspaRpcClient:
        self.logger.debug("Resolver options", node=list(config.node))
        return KaspaRpcClient(
            network_id=config.network_id,
            resolver=Resolver(list(config.node) or None),
            timeout=self.settings.rpc_timeout,
            connect_retries=self.settings.rpc_connect_retries,
            retry_delay=self.settings.rpc_retry_delay,
        )

    def _default_metrics(self, config: StartupConfig) -> PayoutMetrics:
        return PayoutMetrics(config.pushgateway, job_name=self.settings.metrics_job_name)

    def validate(self) -> StartupConfig:
        """Validate configuration. Makes no network calls."""
        if self.payout_config is None:
            self.payout_config = load_payout_config(self.settings.config_path)

        self.config = validate_startup(self.settings, self.payout_config)

        if self._transaction_manager_class is None:
            if not self.settings.transaction_manager:
                raise MissingSettingError("TRANSACTION_MANAGER")
            self._transaction_manager_class = load_transaction_manager_class(self.settings.transaction_manager)

        return self.config

    async def start_rpc_connection(self):
        """Connect to the node and open the readiness gate."""
        self.logger.debug("Starting RPC connection")
        self.rpc_client = self._rpc_client_factory(self.config)
        await self.rpc_client.connect()

        server_info = await self.rpc_client.get_server_info()
        self.gate.open(server_info)

        if self.metrics is not None:
            self.metrics.set_rpc_ready(True)
            await self.metrics.push()
        self.logger.debug("RPC connection established")

    def setup_transaction_manager(self) -> TransactionManager:
        """Build the transaction manager, once, on a ready connection."""
        if not self.gate.is_ready:
            raise TransactionManagerError("RPC connection is not established, refusing to start transaction manager")

        if self.transaction_manager is not None:
            return self.transaction_manager

        self.logger.debug("Starting transaction manager")
        try:
            self.transaction_manager = self._transaction_manager_class(
                self.config.network_id,
                self.config.treasury_private_key,
                self.config.database_url,
                self.rpc_client,
            )
        except Exception as e:
            raise TransactionManagerError(f"Failed to start transaction manager: {e}") from e

        return self.transaction_manager

    async def initialize(self):
        """Run the startup phase."""
        self.logger.info(f"Starting {self.settings.app_name}", version=self.settings.app_version)

        self.validate()
        self.metrics = self._metrics_factory(self.config)

        await self.start_rpc_connection()
        self.setup_transaction_manager()

        self.logger.info("Payout service initialized", network_id=self.config.network_id)

    async def start(self):
        """Start the scheduler and heartbeat and run until stopped."""
        if not self.gate.is_ready or self.transaction_manager is None:
            raise TransactionManagerError("Payout service must be initialized before start")

        self.scheduler = PayoutScheduler(
            gate=self.gate,
            transaction_manager=self.transaction_manager,
            payment_interval=self.config.payment_interval,
            metrics=self.metrics,
            clock=self._clock,
        )
        self.heartbeat = HeartbeatReporter(
            payment_interval=self.config.payment_interval,
            interval_seconds=self.settings.heartbeat_interval,
            metrics=self.metrics,
            clock=self._clock,
        )

        self.running = True
        await self.scheduler.start()
        await self.heartbeat.start()

        self.logger.info(f"Scheduled balance transfer every {self.config.payment_interval} hours")

        await self._stop_requested.wait()

    def request_stop(self):
        """Ask ``start()`` to return. Safe to call from a signal handler."""
        self._stop_requested.set()

    async def stop(self):
        """Stop the payout service."""
        self.request_stop()

        if self.heartbeat:
            await self.heartbeat.stop()

        if self.scheduler:
            await self.scheduler.stop()

        if self.rpc_client:
            await self.rpc_client.close()

        if self.running:
            self.logger.info("Payout service stopped")
        self.running = False


async def serve(service: PayoutService) -> int:
    """
    Run the service to completion.

    Returns:
        Process exit status: 1 if startup failed, 0 after a clean shutdown
    """
    try:
        await service.initialize()
    except Exception as e:
        service.logger.error(
            f"Startup failed: {e}",
            error_type=type(e).__name__,
            details=getattr(e, "details", None),
        )
        await service.stop()
        return 1

    try:
        await service.start()
    finally:
        await service.stop()

    return 0


async def main(settings: Optional[Settings] = None) -> int:
    """Main function to run the payout service."""
    settings = settings or default_settings
    setup_logging(settings)

    service = PayoutService(settings=settings)

    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, service.request_stop)
        except NotImplementedError:
            # add_signal_handler is unavailable on Windows event loops
            pass

    return await serve(service)


def run():
    """Console script entry point."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
