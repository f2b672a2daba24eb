"""
namlend_engines.tracer -- debug trace records for pure engine calls.

``@traced_engine`` logs one ``engine_invoked`` record per call with the
engine name and version, how long it took, and a short fingerprint of
selected inputs. Two calls with equal inputs share a fingerprint, which
makes it easy to spot the same calculation being repeated across
procedures when reading a log.

The decorator only logs; engines stay free of I/O.

Usage:
    @traced_engine("late_fee", "1.0", fingerprint_fields=("balance",))
    def calculate_late_fee(*, balance, days_overdue, policy):
        ...
"""

from __future__ import annotations

import dataclasses
import functools
import hashlib
import inspect
import time
from collections.abc import Callable, Mapping
from typing import Any

from namlend_kernel.logging_config import get_logger
from namlend_kernel.utils.hashing import canonicalize_json

logger = get_logger("engines.tracer")


def _plain(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: _plain(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, (set, frozenset)):
        return sorted((_plain(v) for v in value), key=str)
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    arguments: Mapping[str, Any],
) -> str:
    """First 16 hex chars of SHA-256 over the named arguments; absent ones count as null."""
    selected = {name: _plain(arguments.get(name)) for name in fingerprint_fields}
    return hashlib.sha256(canonicalize_json(selected).encode("utf-8")).hexdigest()[:16]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    def decorator(func: Callable) -> Callable:
        signature = inspect.signature(func)

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            started = time.perf_counter()
            result = func(*args, **kwargs)
            elapsed_ms = (time.perf_counter() - started) * 1000

            fingerprint = ""
            if fingerprint_fields:
                bound = signature.bind(*args, **kwargs)
                fingerprint = compute_input_fingerprint(fingerprint_fields, bound.arguments)

            logger.debug(
                "engine_invoked",
                extra={
                    "engine_name": engine_name,
                    "engine_version": engine_version,
                    "input_fingerprint": fingerprint,
                    "duration_ms": round(elapsed_ms, 2),
                },
            )
            return result

        return wrapper

    return decorator
