"""
Settings loading and the config-to-kernel bridge.

Verifies:
- The packaged default set loads and matches the documented defaults
- YAML numbers become exact Decimals
- Omitted sections fall back to defaults
- Out-of-range values refuse to load
- Loading emits the SETTLEMENT_CONFIG_TRACE record
"""

from decimal import Decimal

import pytest
import yaml

from settlement_config import (
    EngineSettings,
    StandardExitPolicy,
    build_ledger_policy,
    get_active_config,
)
from settlement_config.loader import compute_checksum, parse_settings
from settlement_kernel.domain.dates import ScheduleInterval


def _write(tmp_path, data):
    path = tmp_path / "settings.yaml"
    path.write_text(yaml.safe_dump(data))
    return path


class TestDefaultSet:

    def test_packaged_defaults(self):
        settings = get_active_config()
        assert settings.config_id == "default"
        assert settings.currency == "BRL"
        assert settings.late_payment_fee_pct == Decimal("2")
        assert settings.late_payment_daily_interest_pct == Decimal("0.033")
        assert settings.default_threshold_days == 30
        assert settings.standard_exit_policy is StandardExitPolicy.KEEP_IF_PAID
        assert settings.default_interval is ScheduleInterval.MONTHLY
        assert settings.checksum

    def test_trace_logged(self, captured_logs):
        settings = get_active_config()
        traces = [r for r in captured_logs() if r["message"] == "SETTLEMENT_CONFIG_TRACE"]
        assert traces
        assert traces[-1]["config_id"] == settings.config_id
        assert traces[-1]["checksum"] == settings.checksum


class TestParsing:

    def test_float_yaml_stays_exact(self, tmp_path):
        path = _write(
            tmp_path,
            {"config_id": "x", "version": 2, "penalties": {"late_payment_daily_interest_pct": 0.033}},
        )
        settings = get_active_config(path)
        assert settings.late_payment_daily_interest_pct == Decimal("0.033")
        assert settings.version == 2

    def test_sections_optional(self):
        settings = parse_settings({"config_id": "minimal", "version": 1})
        assert settings.default_threshold_days == 30
        assert settings.lock_timeout_seconds == 10.0

    def test_overrides(self, tmp_path):
        path = _write(
            tmp_path,
            {
                "config_id": "strict",
                "version": 1,
                "status_derivation": {"default_threshold_days": 15},
                "case_automation": {"standard_exit_policy": "cancel_if_paid"},
                "schedule": {"default_interval": "biweekly"},
            },
        )
        settings = get_active_config(path)
        assert settings.default_threshold_days == 15
        assert settings.standard_exit_policy is StandardExitPolicy.CANCEL_IF_PAID
        assert settings.default_interval is ScheduleInterval.BIWEEKLY

    def test_checksum_stable(self):
        data = {"config_id": "a", "version": 1, "currency": "BRL"}
        assert compute_checksum(data) == compute_checksum(dict(reversed(list(data.items()))))

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "absent.yaml")

    def test_missing_config_id(self):
        with pytest.raises(KeyError):
            parse_settings({"version": 1})


class TestValidation:

    @pytest.mark.parametrize(
        "section,key,value",
        [
            ("penalties", "late_payment_fee_pct", "-1"),
            ("penalties", "late_payment_daily_interest_pct", "-0.1"),
            ("penalties", "late_payment_fee_pct", "abc"),
            ("status_derivation", "default_threshold_days", -5),
            ("locking", "timeout_seconds", 0),
            ("case_automation", "standard_exit_policy", "delete_always"),
        ],
    )
    def test_bad_values_refused(self, section, key, value):
        with pytest.raises(ValueError):
            parse_settings({"config_id": "bad", "version": 1, section: {key: value}})

    def test_bad_currency(self):
        with pytest.raises(ValueError):
            EngineSettings(config_id="x", version=1, currency="REAIS")


class TestBridge:

    def test_policy_mirrors_settings(self):
        settings = parse_settings(
            {
                "config_id": "x",
                "version": 1,
                "penalties": {"late_payment_fee_pct": "5"},
                "status_derivation": {"default_threshold_days": 60},
            }
        )
        policy = build_ledger_policy(settings)
        assert policy.late_payment_fee_pct == Decimal("5")
        assert policy.default_threshold_days == 60
        assert policy.lock_timeout_seconds == settings.lock_timeout_seconds
