"""
settlement_config -- single public entrypoint for engine configuration.

Responsibility:
    ``get_active_config()`` is the only way to obtain settings at runtime.
    No other component reads configuration files or environment variables.

Architecture position:
    Sits above ``settlement_kernel`` and below ``settlement_services``.  The
    kernel MUST NEVER import from here; ``bridges`` translates settings into
    kernel inputs.

Audit relevance:
    Every call emits a ``SETTLEMENT_CONFIG_TRACE`` log entry carrying the
    config id, version and checksum, tying every ledger mutation to the
    settings that governed it.
"""

from __future__ import annotations

import logging
from pathlib import Path

from settlement_config.bridges import build_ledger_policy
from settlement_config.loader import load_settings
from settlement_config.schema import EngineSettings, StandardExitPolicy

__all__ = [
    "EngineSettings",
    "StandardExitPolicy",
    "build_ledger_policy",
    "get_active_config",
]

_logger = logging.getLogger("settlement_kernel.config")

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(config_path: Path | str | None = None) -> EngineSettings:
    """
    The ONLY public configuration entrypoint.

    Raises:
        FileNotFoundError: If the settings file does not exist.
        ValueError: If a value is out of range.
    """
    path = Path(config_path) if config_path is not None else _DEFAULT_CONFIG_PATH
    settings = load_settings(path)

    _logger.info(
        "SETTLEMENT_CONFIG_TRACE",
        extra={
            "trace_type": "SETTLEMENT_CONFIG_TRACE",
            "config_id": settings.config_id,
            "config_version": settings.version,
            "checksum": settings.checksum,
            "currency": settings.currency,
            "default_threshold_days": settings.default_threshold_days,
            "standard_exit_policy": settings.standard_exit_policy.value,
        },
    )
    return settings
