"""
Configuration Loader (``settlement_config.loader``).

Loads a YAML settings file and parses it into a frozen ``EngineSettings``.
Build/test tooling only; runtime callers go through
``settlement_config.get_active_config()``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Out-of-range values  -> ``ValueError`` from ``EngineSettings``.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from settlement_config.schema import EngineSettings, StandardExitPolicy
from settlement_kernel.domain.dates import ScheduleInterval


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a single YAML file and return its contents as a dict."""
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_decimal(value: Any, field: str) -> Decimal:
    """YAML floats are read through ``str`` so 0.033 stays 0.033."""
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ValueError(f"{field}: not a number: {value!r}") from e


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def parse_settings(data: dict[str, Any]) -> EngineSettings:
    """
    Parse ``EngineSettings`` from the top-level YAML mapping.

    ``config_id`` and ``version`` are required; every section is optional
    and falls back to the schema defaults.
    """
    penalties = data.get("penalties", {}) or {}
    status = data.get("status_derivation", {}) or {}
    automation = data.get("case_automation", {}) or {}
    schedule = data.get("schedule", {}) or {}
    locking = data.get("locking", {}) or {}
    defaults = EngineSettings.__dataclass_fields__

    return EngineSettings(
        config_id=data["config_id"],
        version=int(data["version"]),
        currency=str(data.get("currency", defaults["currency"].default)),
        late_payment_fee_pct=parse_decimal(
            penalties.get("late_payment_fee_pct", defaults["late_payment_fee_pct"].default),
            "penalties.late_payment_fee_pct",
        ),
        late_payment_daily_interest_pct=parse_decimal(
            penalties.get(
                "late_payment_daily_interest_pct",
                defaults["late_payment_daily_interest_pct"].default,
            ),
            "penalties.late_payment_daily_interest_pct",
        ),
        default_threshold_days=int(
            status.get("default_threshold_days", defaults["default_threshold_days"].default)
        ),
        standard_exit_policy=StandardExitPolicy(
            automation.get("standard_exit_policy", StandardExitPolicy.KEEP_IF_PAID.value)
        ),
        lock_timeout_seconds=float(
            locking.get("timeout_seconds", defaults["lock_timeout_seconds"].default)
        ),
        default_interval=ScheduleInterval(
            schedule.get("default_interval", ScheduleInterval.MONTHLY.value)
        ),
        checksum=compute_checksum(data),
    )


def load_settings(path: Path) -> EngineSettings:
    return parse_settings(load_yaml_file(path))
