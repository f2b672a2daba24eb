"""
RpcGateway -- resilience layer in front of the transactional command executor.

Responsibility:
    Invokes named procedures on a ``CommandExecutor`` with a per-attempt
    timeout, bounded retries with exponential backoff and jitter, and a
    per-procedure circuit breaker. Every outcome is returned as an
    ``RpcResult``; nothing is raised to the caller.

Architecture position:
    Services -- every client service (disbursements, workflow, schedule,
    roles) reaches the store only through this gateway.

Semantics:
    - A procedure that answers, even with ``{"success": False}``, is a
      successful call: business failures are the caller's concern and are
      never retried.
    - A TransportError from the executor (store error, timeout) is a failed
      attempt. After ``retries`` extra attempts the call fails and counts
      once towards the breaker.
    - Any other exception is a defect, not an outage: the call fails at
      once with an ``UnexpectedRpcError``, is reported to the monitor and
      neither retried nor counted towards the breaker.
    - A timed-out attempt has an unknown outcome: the procedure may still
      commit. Callers re-query state instead of blindly repeating
      non-idempotent actions.
    - While a breaker is open the call is refused without an attempt:
      ``meta.source == "circuit_open"`` and ``meta.attempts == 0``.

Breaker state lives in a ``CircuitBreakerRegistry`` owned by one gateway
(one per client/session), never in module globals.
"""

from __future__ import annotations

import contextvars
import random
import threading
import time
from collections.abc import Callable, Mapping
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from namlend_config.schema import BreakerConfig, GatewayConfig
from namlend_kernel.domain.clock import Clock, SystemClock
from namlend_kernel.exceptions import (
    CircuitOpenError,
    RpcTimeoutError,
    TransportError,
    UnexpectedRpcError,
)
from namlend_kernel.logging_config import get_logger
from namlend_services.observability import ErrorMonitor

logger = get_logger("services.rpc_gateway")


class CommandExecutor(Protocol):
    """Anything that can run a named procedure with flat ``p_`` arguments."""

    def execute(self, procedure: str, args: Mapping[str, Any]) -> Any:
        ...


class RpcSource(str, Enum):
    RPC = "rpc"
    CIRCUIT_OPEN = "circuit_open"


@dataclass(frozen=True)
class RpcOptions:
    """Per-call overrides; ``None`` falls back to the gateway config."""

    timeout_ms: int | None = None
    retries: int | None = None
    base_delay_ms: int | None = None


@dataclass(frozen=True)
class RpcMeta:
    attempts: int
    duration_ms: float
    source: RpcSource


@dataclass(frozen=True)
class RpcResult:
    ok: bool
    data: Any
    error: BaseException | None
    meta: RpcMeta

    @property
    def error_message(self) -> str | None:
        return None if self.error is None else str(self.error)

    @property
    def circuit_open(self) -> bool:
        return self.meta.source == RpcSource.CIRCUIT_OPEN


# ---------------------------------------------------------------------------
# Circuit breaker
# ---------------------------------------------------------------------------


@dataclass
class BreakerState:
    failures: int = 0
    open_until: float = 0.0


class CircuitBreakerRegistry:
    """Per-procedure consecutive-failure counters with a cooldown window."""

    def __init__(self, config: BreakerConfig | None = None, clock: Clock | None = None):
        self._config = config or BreakerConfig()
        self._clock = clock or SystemClock()
        self._states: dict[str, BreakerState] = {}
        self._lock = threading.Lock()

    def is_open(self, procedure: str) -> bool:
        return self.retry_after(procedure) > 0

    def retry_after(self, procedure: str) -> float:
        """Seconds until the breaker admits calls again (0 when closed)."""
        with self._lock:
            state = self._states.get(procedure)
            if state is None:
                return 0.0
            return max(state.open_until - self._clock.monotonic(), 0.0)

    def record_failure(self, procedure: str) -> BreakerState:
        with self._lock:
            state = self._states.setdefault(procedure, BreakerState())
            state.failures += 1
            if state.failures >= self._config.failure_threshold:
                state.open_until = self._clock.monotonic() + self._config.cooldown_ms / 1000
                logger.warning(
                    "rpc_circuit_opened",
                    extra={
                        "procedure": procedure,
                        "failures": state.failures,
                        "cooldown_ms": self._config.cooldown_ms,
                    },
                )
            return BreakerState(state.failures, state.open_until)

    def record_success(self, procedure: str) -> None:
        with self._lock:
            self._states[procedure] = BreakerState()

    def failures(self, procedure: str) -> int:
        with self._lock:
            state = self._states.get(procedure)
            return state.failures if state else 0

    def reset(self) -> None:
        with self._lock:
            self._states.clear()


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------


class RpcGateway:
    """Retry/timeout/circuit-breaker wrapper around a CommandExecutor."""

    def __init__(
        self,
        executor: CommandExecutor,
        *,
        config: GatewayConfig | None = None,
        breakers: CircuitBreakerRegistry | None = None,
        monitor: ErrorMonitor | None = None,
        clock: Clock | None = None,
        sleep: Callable[[float], None] = time.sleep,
        rand: Callable[[], float] = random.random,
        timer: Callable[[], float] = time.perf_counter,
    ):
        self._executor = executor
        self._config = config or GatewayConfig()
        self._clock = clock or SystemClock()
        self._breakers = breakers or CircuitBreakerRegistry(self._config.breaker, self._clock)
        self._monitor = monitor or ErrorMonitor(
            self._clock,
            slow_call_ms=self._config.slow_call_ms,
            critical_call_ms=self._config.critical_call_ms,
        )
        self._sleep = sleep
        self._rand = rand
        self._timer = timer
        self._pool = ThreadPoolExecutor(
            max_workers=self._config.max_workers, thread_name_prefix="namlend-rpc",
        )

    @property
    def breakers(self) -> CircuitBreakerRegistry:
        return self._breakers

    @property
    def monitor(self) -> ErrorMonitor:
        return self._monitor

    def close(self) -> None:
        # Timed-out attempts may still be running; do not block on them.
        self._pool.shutdown(wait=False, cancel_futures=True)

    def __enter__(self) -> RpcGateway:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def backoff_delay_ms(self, attempt: int, base_delay_ms: int) -> float:
        """``base * 2**(attempt-1)`` spread by +/- jitter_ratio."""
        delay = base_delay_ms * (2 ** (attempt - 1))
        spread = self._config.jitter_ratio * (2 * self._rand() - 1)
        return max(delay * (1 + spread), 0.0)

    def call(
        self,
        procedure: str,
        args: Mapping[str, Any] | None = None,
        options: RpcOptions | None = None,
    ) -> RpcResult:
        opts = options or RpcOptions()
        timeout_ms = opts.timeout_ms if opts.timeout_ms is not None else self._config.timeout_ms
        retries = max(0, opts.retries if opts.retries is not None else self._config.retries)
        base_delay_ms = (
            opts.base_delay_ms if opts.base_delay_ms is not None else self._config.base_delay_ms
        )
        payload = dict(args or {})
        start = self._timer()

        retry_after = self._breakers.retry_after(procedure)
        if retry_after > 0:
            logger.warning(
                "rpc_circuit_open",
                extra={"procedure": procedure, "retry_after_seconds": retry_after},
            )
            return RpcResult(
                ok=False,
                data=None,
                error=CircuitOpenError(procedure, retry_after),
                meta=RpcMeta(0, self._elapsed_ms(start), RpcSource.CIRCUIT_OPEN),
            )

        attempts = 0
        while True:
            attempts += 1
            try:
                data = self._attempt(procedure, payload, timeout_ms)
            except TransportError as exc:
                if attempts <= retries:
                    delay_ms = self.backoff_delay_ms(attempts, base_delay_ms)
                    logger.warning(
                        "rpc_call_retrying",
                        extra={
                            "procedure": procedure,
                            "attempt": attempts,
                            "delay_ms": round(delay_ms, 1),
                            "retries_left": retries - attempts + 1,
                            "error": str(exc),
                        },
                    )
                    self._sleep(delay_ms / 1000)
                    continue

                duration_ms = self._elapsed_ms(start)
                self._breakers.record_failure(procedure)
                logger.error(
                    "rpc_call_failed",
                    extra={
                        "procedure": procedure,
                        "attempts": attempts,
                        "duration_ms": duration_ms,
                    },
                    exc_info=exc,
                )
                self._monitor.monitor_rpc_call(procedure, duration_ms, False)
                return RpcResult(
                    ok=False,
                    data=None,
                    error=exc,
                    meta=RpcMeta(attempts, duration_ms, RpcSource.RPC),
                )
            except Exception as exc:
                duration_ms = self._elapsed_ms(start)
                logger.error(
                    "rpc_call_errored",
                    extra={
                        "procedure": procedure,
                        "attempts": attempts,
                        "duration_ms": duration_ms,
                        "exc_type": type(exc).__name__,
                    },
                    exc_info=exc,
                )
                self._monitor.monitor_rpc_call(procedure, duration_ms, False)
                error = UnexpectedRpcError(procedure, type(exc).__name__)
                error.__cause__ = exc
                return RpcResult(
                    ok=False,
                    data=None,
                    error=error,
                    meta=RpcMeta(attempts, duration_ms, RpcSource.RPC),
                )

            duration_ms = self._elapsed_ms(start)
            self._breakers.record_success(procedure)
            logger.info(
                "rpc_call_succeeded",
                extra={"procedure": procedure, "attempts": attempts, "duration_ms": duration_ms},
            )
            self._monitor.monitor_rpc_call(procedure, duration_ms, True)
            return RpcResult(
                ok=True,
                data=data,
                error=None,
                meta=RpcMeta(attempts, duration_ms, RpcSource.RPC),
            )

    def _attempt(self, procedure: str, payload: dict[str, Any], timeout_ms: int) -> Any:
        ctx = contextvars.copy_context()
        future = self._pool.submit(ctx.run, self._executor.execute, procedure, payload)
        try:
            return future.result(timeout=timeout_ms / 1000)
        except FutureTimeoutError:
            future.cancel()
            raise RpcTimeoutError(procedure, timeout_ms) from None

    def _elapsed_ms(self, start: float) -> float:
        return round((self._timer() - start) * 1000, 1)
