"""
Startup validation. Runs before any network activity and fails fast.
"""

from dataclasses import dataclass, field
from typing import Tuple

import structlog

from .config import DatabaseConfig, PayoutConfig, Settings
from .exceptions import MissingSettingError
from katpool_payout.scheduler.schedule import payment_interval_hours


logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class StartupConfig:
    """Validated, immutable startup values."""
    treasury_private_key: str = field(repr=False)
    network_id: str
    pushgateway: str
    database_url: str = field(repr=False)
    payment_interval: int
    node: Tuple[str, ...] = ()


def validate_startup(settings: Settings, payout_config: PayoutConfig) -> StartupConfig:
    """
    Check secrets, endpoints and cadence.

    Raises:
        MissingSettingError: naming the first missing value
        PaymentIntervalError: if payoutsPerDay gives an out-of-range interval
        ConfigurationError: if DATABASE_URL does not parse
    """
    log = logger.bind(component="main")

    treasury_private_key = settings.treasury_private_key
    if not treasury_private_key:
        raise MissingSettingError("TREASURY_PRIVATE_KEY")
    log.debug("Obtained treasury private key")

    network_id = payout_config.network
    if not network_id:
        raise MissingSettingError("network", source="config.json value")
    log.debug("Network id obtained", network_id=network_id)

    pushgateway = settings.pushgateway
    if not pushgateway:
        raise MissingSettingError("PUSHGATEWAY")
    log.debug("PushGateway URL obtained")

    database_url = settings.database_url
    if not database_url:
        raise MissingSettingError("DATABASE_URL")
    DatabaseConfig.validate_database_url(database_url)
    log.debug("Database URL obtained", database_url=DatabaseConfig.masked_database_url(database_url))

    payment_interval = payment_interval_hours(payout_config.payouts_per_day)
    log.debug("Payment interval set", payment_interval_hours=payment_interval)

    return StartupConfig(
        treasury_private_key=treasury_private_key,
        network_id=network_id,
        pushgateway=pushgateway,
        database_url=database_url,
        payment_interval=payment_interval,
        node=tuple(payout_config.node),
    )
