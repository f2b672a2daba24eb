"""
namlend_config -- single public entrypoint for runtime configuration.

Responsibility:
    ``get_active_config()`` is the only way services obtain configuration.
    No other component reads YAML files or environment variables.

Architecture position:
    Configuration sits above ``namlend_kernel`` and below
    ``namlend_services``. The kernel never imports from here.

Failure modes:
    - ``FileNotFoundError`` for a missing config file.
    - ``ConfigurationError`` for invalid values.

Every successful call emits a ``namlend_config_loaded`` log entry with the
source path and checksum.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path

from namlend_config.loader import (
    ENV_CONFIG_PATH,
    apply_env_overrides,
    compute_checksum,
    load_yaml_file,
    parse_config,
)
from namlend_config.schema import (
    BreakerConfig,
    DatabaseConfig,
    GatewayConfig,
    LateFeeConfig,
    NamlendConfig,
    RoleConfig,
    ScheduleConfig,
)
from namlend_kernel.logging_config import get_logger

logger = get_logger("config")

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"


def get_active_config(
    path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> NamlendConfig:
    """Load, override and validate the runtime configuration.

    Resolution: explicit ``path``, else ``$NAMLEND_CONFIG``, else the
    packaged defaults. Env overrides apply on top of whichever file wins.
    """
    env = os.environ if environ is None else environ
    source = Path(path) if path is not None else Path(env.get(ENV_CONFIG_PATH) or DEFAULTS_PATH)

    config = parse_config(load_yaml_file(source))
    config = apply_env_overrides(config, env).validate()

    logger.info(
        "namlend_config_loaded",
        extra={"source": str(source), "checksum": compute_checksum(config)},
    )
    return config


__all__ = [
    "BreakerConfig",
    "DatabaseConfig",
    "GatewayConfig",
    "LateFeeConfig",
    "NamlendConfig",
    "RoleConfig",
    "ScheduleConfig",
    "compute_checksum",
    "get_active_config",
]
