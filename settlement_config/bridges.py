"""
Config -> Kernel Bridges.

The kernel must never import settlement_config; these functions translate
settings into kernel inputs.

Usage:
    settings = get_active_config()
    policy = build_ledger_policy(settings)
"""

from __future__ import annotations

from settlement_config.schema import EngineSettings
from settlement_kernel.domain.policy import LedgerPolicy


def build_ledger_policy(settings: EngineSettings) -> LedgerPolicy:
    return LedgerPolicy(
        late_payment_fee_pct=settings.late_payment_fee_pct,
        late_payment_daily_interest_pct=settings.late_payment_daily_interest_pct,
        default_threshold_days=settings.default_threshold_days,
        default_interval=settings.default_interval,
        lock_timeout_seconds=settings.lock_timeout_seconds,
    )
