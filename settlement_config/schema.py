"""
Configuration schema (``settlement_config.schema``).

Frozen dataclasses the YAML loader produces.  Validation happens in
``__post_init__`` so an invalid file never yields a settings object.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from settlement_kernel.domain.dates import ScheduleInterval
from settlement_kernel.logging_config import get_logger

logger = get_logger("config.schema")


class StandardExitPolicy(str, Enum):
    """What happens to a paid-into standard agreement when its case leaves
    the agreement status.  Unpaid ones are always deleted."""

    KEEP_IF_PAID = "keep_if_paid"
    CANCEL_IF_PAID = "cancel_if_paid"


@dataclass(frozen=True)
class EngineSettings:
    """Runtime settings for the settlement engine."""

    config_id: str
    version: int
    currency: str = "BRL"
    late_payment_fee_pct: Decimal = Decimal("2")
    late_payment_daily_interest_pct: Decimal = Decimal("0.033")
    default_threshold_days: int = 30
    standard_exit_policy: StandardExitPolicy = StandardExitPolicy.KEEP_IF_PAID
    lock_timeout_seconds: float = 10.0
    default_interval: ScheduleInterval = ScheduleInterval.MONTHLY
    checksum: str = ""

    def __post_init__(self) -> None:
        if not self.config_id:
            raise ValueError("config_id is required")
        if len(self.currency) != 3 or not self.currency.isalpha():
            raise ValueError(f"currency must be an ISO 4217 code, got {self.currency!r}")
        if self.late_payment_fee_pct < 0:
            raise ValueError("late_payment_fee_pct cannot be negative")
        if self.late_payment_daily_interest_pct < 0:
            raise ValueError("late_payment_daily_interest_pct cannot be negative")
        if self.default_threshold_days < 0:
            raise ValueError("default_threshold_days cannot be negative")
        if self.lock_timeout_seconds <= 0:
            raise ValueError("lock_timeout_seconds must be positive")
        logger.info(
            "engine_settings_initialized",
            extra={
                "config_id": self.config_id,
                "version": self.version,
                "default_threshold_days": self.default_threshold_days,
                "standard_exit_policy": self.standard_exit_policy.value,
            },
        )

    @classmethod
    def with_defaults(cls) -> EngineSettings:
        return cls(config_id="builtin-defaults", version=1)
