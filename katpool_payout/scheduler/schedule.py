"""
Wall-clock schedule math for balance transfers.

Transfers run at minute 0 of every hour that is a multiple of the payment
interval, i.e. the cron expression ``0 */<interval> * * *``.
"""

from datetime import datetime, timedelta
from typing import List, Optional

from katpool_payout.core.exceptions import PaymentIntervalError

HOURS_PER_DAY = 24
DEFAULT_PAYOUTS_PER_DAY = 2


def payment_interval_hours(payouts_per_day: Optional[int]) -> int:
    """
    Hours between transfers for the configured payouts per day.

    Raises:
        PaymentIntervalError: if the interval is outside [1, 24] hours or is
            not a whole number of hours
    """
    if payouts_per_day is None:
        payouts_per_day = DEFAULT_PAYOUTS_PER_DAY

    if payouts_per_day <= 0:
        raise PaymentIntervalError(payouts_per_day)

    interval = HOURS_PER_DAY / payouts_per_day
    if interval < 1 or interval > HOURS_PER_DAY:
        raise PaymentIntervalError(payouts_per_day)

    if not interval.is_integer():
        raise PaymentIntervalError(
            payouts_per_day,
            f"payoutsPerDay must divide {HOURS_PER_DAY} evenly, got {payouts_per_day}."
        )

    return int(interval)


def cron_expression(interval: int) -> str:
    return f"0 */{interval} * * *"


def firing_hours(interval: int) -> List[int]:
    """Hours of the day at which transfers run."""
    return list(range(0, HOURS_PER_DAY, interval))


def next_run_time(now: datetime, interval: int) -> datetime:
    """First firing strictly after ``now``."""
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    next_hour = (now.hour // interval + 1) * interval
    if next_hour >= HOURS_PER_DAY:
        return midnight + timedelta(days=1)
    return midnight + timedelta(hours=next_hour)


def minutes_until_next_transfer(now: datetime, interval: int) -> int:
    """
    Minutes left until the next transfer, from the hour and minute of ``now``.

    Exactly at a firing boundary this is 0, not a full interval.
    """
    next_transfer_hours = interval - (now.hour % interval)
    remaining_minutes = next_transfer_hours * 60 - now.minute
    if remaining_minutes == interval * 60:
        return 0
    return remaining_minutes
