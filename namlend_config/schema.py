"""
NamLend runtime configuration schema.

Every section is a frozen dataclass; the loader builds them from YAML and
``NamlendConfig.validate()`` rejects out-of-range values before anything
consumes them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from namlend_kernel.domain.schedule import RegenerationPolicy
from namlend_kernel.exceptions import ConfigurationError

# ---------------------------------------------------------------------------
# RPC gateway
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BreakerConfig:
    """Per-procedure circuit breaker."""

    failure_threshold: int = 3
    cooldown_ms: int = 15_000


@dataclass(frozen=True)
class GatewayConfig:
    timeout_ms: int = 3_000
    retries: int = 1
    base_delay_ms: int = 250
    jitter_ratio: float = 0.2
    slow_call_ms: int = 2_000
    critical_call_ms: int = 5_000
    max_workers: int = 4
    breaker: BreakerConfig = field(default_factory=BreakerConfig)


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LateFeeConfig:
    grace_days: int = 5
    daily_rate: Decimal = Decimal("0.001")
    max_fee_ratio: Decimal = Decimal("0.25")
    max_fee: Decimal = Decimal("500.00")


@dataclass(frozen=True)
class ScheduleConfig:
    regeneration_policy: RegenerationPolicy = RegenerationPolicy.ERROR
    apr_limit: Decimal = Decimal("32")
    fee_per_installment: Decimal = Decimal("0")
    currency: str = "NAD"


# ---------------------------------------------------------------------------
# Roles / storage
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RoleConfig:
    # Identity exempt from role-hierarchy rules. None disables the exemption.
    super_admin_id: str | None = None


@dataclass(frozen=True)
class DatabaseConfig:
    url: str = "sqlite:///:memory:"
    echo: bool = False
    pool_size: int = 10


@dataclass(frozen=True)
class NamlendConfig:
    gateway: GatewayConfig = field(default_factory=GatewayConfig)
    late_fee: LateFeeConfig = field(default_factory=LateFeeConfig)
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)
    roles: RoleConfig = field(default_factory=RoleConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    log_level: str = "INFO"

    def validate(self) -> NamlendConfig:
        """Raise ConfigurationError on the first out-of-range value."""
        g = self.gateway
        if g.timeout_ms <= 0:
            raise ConfigurationError(f"gateway.timeout_ms must be positive, got {g.timeout_ms}")
        if g.retries < 0:
            raise ConfigurationError(f"gateway.retries cannot be negative, got {g.retries}")
        if g.base_delay_ms < 0:
            raise ConfigurationError("gateway.base_delay_ms cannot be negative")
        if not 0 <= g.jitter_ratio < 1:
            raise ConfigurationError("gateway.jitter_ratio must be within [0, 1)")
        if g.max_workers < 1:
            raise ConfigurationError("gateway.max_workers must be at least 1")
        if g.breaker.failure_threshold < 1:
            raise ConfigurationError("gateway.breaker.failure_threshold must be at least 1")
        if g.breaker.cooldown_ms < 0:
            raise ConfigurationError("gateway.breaker.cooldown_ms cannot be negative")

        lf = self.late_fee
        if lf.grace_days < 0:
            raise ConfigurationError("late_fee.grace_days cannot be negative")
        for name in ("daily_rate", "max_fee_ratio"):
            value = getattr(lf, name)
            if not Decimal("0") <= value <= Decimal("1"):
                raise ConfigurationError(f"late_fee.{name} must be within [0, 1], got {value}")
        if lf.max_fee < 0:
            raise ConfigurationError("late_fee.max_fee cannot be negative")

        if self.schedule.apr_limit <= 0:
            raise ConfigurationError("schedule.apr_limit must be positive")
        return self
