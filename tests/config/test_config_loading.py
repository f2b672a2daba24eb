"""
Tests for namlend_config: packaged defaults, YAML overrides, environment
overrides, validation and the config checksum.
"""

from dataclasses import replace
from decimal import Decimal

import pytest
import yaml

from namlend_config import (
    GatewayConfig,
    NamlendConfig,
    compute_checksum,
    get_active_config,
)
from namlend_config.loader import parse_config
from namlend_kernel.domain.schedule import RegenerationPolicy
from namlend_kernel.exceptions import ConfigurationError


def _write(tmp_path, data, name="namlend.yaml"):
    path = tmp_path / name
    path.write_text(yaml.safe_dump(data))
    return path


class TestDefaults:
    """The packaged defaults.yaml matches the dataclass defaults."""

    def test_defaults_file_loads(self):
        config = get_active_config(environ={})

        assert config.gateway.timeout_ms == 3000
        assert config.gateway.retries == 1
        assert config.gateway.base_delay_ms == 250
        assert config.gateway.breaker.failure_threshold == 3
        assert config.gateway.breaker.cooldown_ms == 15000
        assert config.late_fee.daily_rate == Decimal("0.001")
        assert config.late_fee.max_fee == Decimal("500.00")
        assert config.schedule.regeneration_policy == RegenerationPolicy.ERROR
        assert config.roles.super_admin_id is None

    def test_defaults_file_agrees_with_schema(self):
        assert compute_checksum(get_active_config(environ={})) == compute_checksum(NamlendConfig())

    def test_empty_file_means_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")

        assert get_active_config(path, environ={}) == NamlendConfig()

    def test_logs_source_and_checksum(self, captured_logs):
        config = get_active_config(environ={})

        records = [r for r in captured_logs() if r["message"] == "namlend_config_loaded"]
        assert records[0]["checksum"] == compute_checksum(config)
        assert records[0]["source"].endswith("defaults.yaml")


class TestFileOverrides:
    """Values from a YAML file replace the defaults section by section."""

    def test_partial_override(self, tmp_path):
        path = _write(tmp_path, {
            "gateway": {"retries": 3, "breaker": {"cooldown_ms": 1000}},
            "late_fee": {"grace_days": 10, "daily_rate": "0.002"},
            "schedule": {"regeneration_policy": "replace"},
            "roles": {"super_admin_id": "00000000-0000-4000-8000-000000000001"},
        })

        config = get_active_config(path, environ={})

        assert config.gateway.retries == 3
        assert config.gateway.timeout_ms == 3000
        assert config.gateway.breaker.cooldown_ms == 1000
        assert config.gateway.breaker.failure_threshold == 3
        assert config.late_fee.grace_days == 10
        assert config.late_fee.daily_rate == Decimal("0.002")
        assert config.schedule.regeneration_policy == RegenerationPolicy.REPLACE
        assert config.roles.super_admin_id == "00000000-0000-4000-8000-000000000001"

    def test_float_rates_keep_their_written_value(self, tmp_path):
        path = _write(tmp_path, {"late_fee": {"daily_rate": 0.001}})

        assert get_active_config(path, environ={}).late_fee.daily_rate == Decimal("0.001")

    def test_path_from_environment(self, tmp_path):
        path = _write(tmp_path, {"log_level": "debug"})

        config = get_active_config(environ={"NAMLEND_CONFIG": str(path)})

        assert config.log_level == "DEBUG"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "absent.yaml", environ={})


class TestEnvironmentOverrides:
    """Single-field overrides from the environment win over the file."""

    def test_overrides(self, tmp_path):
        path = _write(tmp_path, {"database": {"url": "sqlite:///file.db"}})

        config = get_active_config(path, environ={
            "DATABASE_URL": "postgresql+psycopg2://namlend@db/namlend",
            "NAMLEND_LOG_LEVEL": "warning",
            "NAMLEND_SUPER_ADMIN_ID": "root-user",
        })

        assert config.database.url == "postgresql+psycopg2://namlend@db/namlend"
        assert config.log_level == "WARNING"
        assert config.roles.super_admin_id == "root-user"

    def test_empty_values_ignored(self):
        config = get_active_config(environ={"DATABASE_URL": "", "NAMLEND_LOG_LEVEL": ""})

        assert config.database.url == "sqlite:///:memory:"
        assert config.log_level == "INFO"


class TestValidation:
    """Bad types fail while parsing; bad ranges fail in validate()."""

    @pytest.mark.parametrize(
        "data",
        [
            {"gateway": {"timeout_ms": "fast"}},
            {"gateway": {"retries": True}},
            {"gateway": "not-a-mapping"},
            {"late_fee": {"max_fee": "lots"}},
            {"schedule": {"regeneration_policy": "merge"}},
        ],
    )
    def test_malformed_values(self, data):
        with pytest.raises(ConfigurationError):
            parse_config(data)

    @pytest.mark.parametrize(
        "data",
        [
            {"gateway": {"timeout_ms": 0}},
            {"gateway": {"retries": -1}},
            {"gateway": {"breaker": {"failure_threshold": 0}}},
            {"late_fee": {"daily_rate": "1.5"}},
            {"late_fee": {"grace_days": -2}},
            {"schedule": {"apr_limit": "0"}},
        ],
    )
    def test_out_of_range_values(self, tmp_path, data):
        with pytest.raises(ConfigurationError):
            get_active_config(_write(tmp_path, data), environ={})

    def test_jitter_must_be_below_one(self):
        config = NamlendConfig(gateway=GatewayConfig(jitter_ratio=1.0))

        with pytest.raises(ConfigurationError, match="jitter_ratio"):
            config.validate()


class TestChecksum:
    def test_stable_and_sensitive(self):
        base = NamlendConfig()
        changed = replace(base, gateway=replace(base.gateway, retries=2))

        assert compute_checksum(base) == compute_checksum(NamlendConfig())
        assert compute_checksum(base) != compute_checksum(changed)
        assert len(compute_checksum(base)) == 64
