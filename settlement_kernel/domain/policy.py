"""
LedgerPolicy -- the tunable numbers the kernel needs, as one frozen value.

The kernel never reads configuration itself; settlement_config builds a
LedgerPolicy (see settlement_config.bridges) and callers inject it.
"""

from dataclasses import dataclass
from decimal import Decimal

from settlement_kernel.domain.dates import ScheduleInterval


@dataclass(frozen=True)
class LedgerPolicy:
    late_payment_fee_pct: Decimal = Decimal("2")
    late_payment_daily_interest_pct: Decimal = Decimal("0.033")
    default_threshold_days: int = 30
    default_interval: ScheduleInterval = ScheduleInterval.MONTHLY
    lock_timeout_seconds: float = 10.0

    def __post_init__(self) -> None:
        if self.late_payment_fee_pct < 0 or self.late_payment_daily_interest_pct < 0:
            raise ValueError("penalty percentages cannot be negative")
        if self.default_threshold_days < 0:
            raise ValueError("default_threshold_days cannot be negative")
        if self.lock_timeout_seconds <= 0:
            raise ValueError("lock_timeout_seconds must be positive")
