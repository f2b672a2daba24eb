"""
Configuration Loader (``namlend_config.loader``).

Responsibility
--------------
Reads a YAML file into the frozen ``namlend_config.schema`` dataclasses
and applies single-field environment overrides. Runtime callers go
through ``namlend_config.get_active_config()``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Wrong value types or unknown enum values -> ``ConfigurationError``.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from dataclasses import asdict, replace
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from namlend_config.schema import (
    BreakerConfig,
    DatabaseConfig,
    GatewayConfig,
    LateFeeConfig,
    NamlendConfig,
    RoleConfig,
    ScheduleConfig,
)
from namlend_kernel.domain.schedule import RegenerationPolicy
from namlend_kernel.exceptions import ConfigurationError

ENV_CONFIG_PATH = "NAMLEND_CONFIG"
ENV_DATABASE_URL = "DATABASE_URL"
ENV_LOG_LEVEL = "NAMLEND_LOG_LEVEL"
ENV_SUPER_ADMIN_ID = "NAMLEND_SUPER_ADMIN_ID"


def load_yaml_file(path: Path) -> dict[str, Any]:
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _decimal(value: Any, name: str) -> Decimal:
    if isinstance(value, float):
        value = repr(value)
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ConfigurationError(f"{name} is not a number: {value!r}") from None


def _int(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")
    return value


def _section(data: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    section = data.get(key) or {}
    if not isinstance(section, Mapping):
        raise ConfigurationError(f"'{key}' must be a mapping")
    return section


def parse_gateway(data: Mapping[str, Any]) -> GatewayConfig:
    d = GatewayConfig()
    b = _section(data, "breaker")
    return GatewayConfig(
        timeout_ms=_int(data.get("timeout_ms", d.timeout_ms), "gateway.timeout_ms"),
        retries=_int(data.get("retries", d.retries), "gateway.retries"),
        base_delay_ms=_int(data.get("base_delay_ms", d.base_delay_ms), "gateway.base_delay_ms"),
        jitter_ratio=float(data.get("jitter_ratio", d.jitter_ratio)),
        slow_call_ms=_int(data.get("slow_call_ms", d.slow_call_ms), "gateway.slow_call_ms"),
        critical_call_ms=_int(
            data.get("critical_call_ms", d.critical_call_ms), "gateway.critical_call_ms",
        ),
        max_workers=_int(data.get("max_workers", d.max_workers), "gateway.max_workers"),
        breaker=BreakerConfig(
            failure_threshold=_int(
                b.get("failure_threshold", d.breaker.failure_threshold),
                "gateway.breaker.failure_threshold",
            ),
            cooldown_ms=_int(
                b.get("cooldown_ms", d.breaker.cooldown_ms), "gateway.breaker.cooldown_ms",
            ),
        ),
    )


def parse_late_fee(data: Mapping[str, Any]) -> LateFeeConfig:
    d = LateFeeConfig()
    return LateFeeConfig(
        grace_days=_int(data.get("grace_days", d.grace_days), "late_fee.grace_days"),
        daily_rate=_decimal(data.get("daily_rate", d.daily_rate), "late_fee.daily_rate"),
        max_fee_ratio=_decimal(
            data.get("max_fee_ratio", d.max_fee_ratio), "late_fee.max_fee_ratio",
        ),
        max_fee=_decimal(data.get("max_fee", d.max_fee), "late_fee.max_fee"),
    )


def parse_schedule(data: Mapping[str, Any]) -> ScheduleConfig:
    d = ScheduleConfig()
    raw_policy = data.get("regeneration_policy", d.regeneration_policy.value)
    try:
        policy = RegenerationPolicy(raw_policy)
    except ValueError:
        raise ConfigurationError(
            f"schedule.regeneration_policy must be one of "
            f"{[p.value for p in RegenerationPolicy]}, got {raw_policy!r}"
        ) from None
    return ScheduleConfig(
        regeneration_policy=policy,
        apr_limit=_decimal(data.get("apr_limit", d.apr_limit), "schedule.apr_limit"),
        fee_per_installment=_decimal(
            data.get("fee_per_installment", d.fee_per_installment),
            "schedule.fee_per_installment",
        ),
        currency=str(data.get("currency", d.currency)),
    )


def parse_config(data: Mapping[str, Any]) -> NamlendConfig:
    """Build a NamlendConfig from a parsed YAML mapping (no env overrides)."""
    roles = _section(data, "roles")
    db = _section(data, "database")
    d = DatabaseConfig()
    super_admin = roles.get("super_admin_id")
    return NamlendConfig(
        gateway=parse_gateway(_section(data, "gateway")),
        late_fee=parse_late_fee(_section(data, "late_fee")),
        schedule=parse_schedule(_section(data, "schedule")),
        roles=RoleConfig(super_admin_id=str(super_admin) if super_admin else None),
        database=DatabaseConfig(
            url=str(db.get("url", d.url)),
            echo=bool(db.get("echo", d.echo)),
            pool_size=_int(db.get("pool_size", d.pool_size), "database.pool_size"),
        ),
        log_level=str(data.get("log_level", "INFO")).upper(),
    )


def apply_env_overrides(config: NamlendConfig, environ: Mapping[str, str]) -> NamlendConfig:
    if environ.get(ENV_DATABASE_URL):
        config = replace(config, database=replace(config.database, url=environ[ENV_DATABASE_URL]))
    if environ.get(ENV_LOG_LEVEL):
        config = replace(config, log_level=environ[ENV_LOG_LEVEL].upper())
    if environ.get(ENV_SUPER_ADMIN_ID):
        config = replace(config, roles=RoleConfig(super_admin_id=environ[ENV_SUPER_ADMIN_ID]))
    return config


def compute_checksum(config: NamlendConfig) -> str:
    """SHA-256 of the canonical JSON form of the config."""
    canonical = json.dumps(asdict(config), sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
