"""
Retry, timeout and circuit-breaker protection for calls to external dependencies.

Every model call and every tool call made by the agent loop goes through
:meth:`ResilientInvoker.invoke` under an *operation name*.  Circuit breakers are kept in a
process-wide registry keyed by that name, so all sessions talking to the same dependency share one
breaker: when the dependency starts failing, every session stops hammering it at once.

Breaker states
--------------
CLOSED     calls run; each failure increments ``failure_count`` and reaching the threshold opens the
           breaker.  Any success resets ``failure_count`` to zero.
OPEN       calls are rejected with :class:`CircuitOpenError` without running, until the recovery
           timeout has elapsed since the last failure.
HALF_OPEN  a single probe call runs; other callers are rejected while it is in flight.  Success
           closes the breaker, failure re-opens it.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from enum import Enum
from typing import (
    Awaitable,
    Callable,
    Dict,
    TypeVar,
)

from pydantic import (
    BaseModel,
    Field,
)

from refdesk.config import settings
from refdesk.core.errors import (
    CircuitOpenError,
    OperationTimeoutError,
    ResilienceExhaustedError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------
class RetryConfig(BaseModel):
    """Retry / backoff / per-attempt timeout policy."""

    max_attempts: int = Field(3, ge=1)
    base_delay_ms: float = Field(1000, ge=0)
    max_delay_ms: float = Field(10000, ge=0)
    backoff_multiplier: float = Field(2.0, ge=1)
    timeout_ms: float = Field(30000, gt=0)

    @classmethod
    def from_settings(cls) -> "RetryConfig":
        return cls(
            max_attempts=settings.RETRY_MAX_ATTEMPTS,
            base_delay_ms=settings.RETRY_BASE_DELAY_MS,
            max_delay_ms=settings.RETRY_MAX_DELAY_MS,
            backoff_multiplier=settings.RETRY_BACKOFF_MULTIPLIER,
            timeout_ms=settings.RETRY_TIMEOUT_MS,
        )


class CircuitBreakerConfig(BaseModel):
    """When a breaker opens and how long it stays open."""

    failure_threshold: int = Field(5, ge=1)
    recovery_timeout_ms: float = Field(60000, ge=0)

    @classmethod
    def from_settings(cls) -> "CircuitBreakerConfig":
        return cls(
            failure_threshold=settings.CIRCUIT_FAILURE_THRESHOLD,
            recovery_timeout_ms=settings.CIRCUIT_RECOVERY_TIMEOUT_MS,
        )


def compute_backoff_delay(attempt: int, config: RetryConfig) -> float:
    """Delay in milliseconds to wait before *attempt* (1-based; the first attempt never waits)."""
    if attempt <= 1:
        return 0.0
    delay = config.base_delay_ms * config.backoff_multiplier ** (attempt - 1)
    return min(delay, config.max_delay_ms)


# ---------------------------------------------------------------------------
# Circuit breaker
# ---------------------------------------------------------------------------
class CircuitBreakerState(str, Enum):
    """States of a circuit breaker."""

    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitBreakerStats(BaseModel):
    """Point-in-time snapshot of one breaker, for monitoring."""

    state: CircuitBreakerState
    failure_count: int
    success_count: int
    total_requests: int
    last_failure_time: float


class CircuitBreaker:
    """Breaker for a single operation name.  All mutations happen under ``_lock``."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._lock = threading.Lock()
        self._state = CircuitBreakerState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._total_requests = 0
        self._last_failure_time = 0.0
        self._probe_in_flight = False

    @property
    def state(self) -> CircuitBreakerState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    def try_acquire(self, config: CircuitBreakerConfig, now: float) -> bool:
        """Return True if a call may run right now."""
        with self._lock:
            if self._state is CircuitBreakerState.OPEN:
                elapsed_ms = (now - self._last_failure_time) * 1000
                if elapsed_ms < config.recovery_timeout_ms:
                    return False
                self._state = CircuitBreakerState.HALF_OPEN
                self._probe_in_flight = False
                logger.info("Circuit breaker for %s moved to HALF_OPEN", self.name)

            if self._state is CircuitBreakerState.HALF_OPEN:
                if self._probe_in_flight:
                    return False
                self._probe_in_flight = True
            return True

    def record_success(self) -> None:
        with self._lock:
            self._success_count += 1
            self._total_requests += 1
            self._failure_count = 0
            self._probe_in_flight = False
            if self._state is not CircuitBreakerState.CLOSED:
                self._state = CircuitBreakerState.CLOSED
                logger.info("Circuit breaker for %s reset to CLOSED", self.name)

    def record_failure(self, config: CircuitBreakerConfig, now: float) -> None:
        with self._lock:
            self._failure_count += 1
            self._total_requests += 1
            self._last_failure_time = now
            self._probe_in_flight = False
            if (
                self._state is CircuitBreakerState.HALF_OPEN
                or self._failure_count >= config.failure_threshold
            ):
                if self._state is not CircuitBreakerState.OPEN:
                    logger.warning(
                        "Circuit breaker for %s opened after %d failures",
                        self.name,
                        self._failure_count,
                    )
                self._state = CircuitBreakerState.OPEN

    def release_probe(self) -> None:
        """Free the HALF_OPEN slot of a probe that ended without an outcome (e.g. cancelled)."""
        with self._lock:
            self._probe_in_flight = False

    def reset(self) -> None:
        with self._lock:
            self._state = CircuitBreakerState.CLOSED
            self._failure_count = 0
            self._last_failure_time = 0.0
            self._probe_in_flight = False
        logger.info("Circuit breaker for %s manually reset", self.name)

    def snapshot(self) -> CircuitBreakerStats:
        with self._lock:
            return CircuitBreakerStats(
                state=self._state,
                failure_count=self._failure_count,
                success_count=self._success_count,
                total_requests=self._total_requests,
                last_failure_time=self._last_failure_time,
            )


# ---------------------------------------------------------------------------
# Process-wide registry
# ---------------------------------------------------------------------------
_CIRCUIT_BREAKERS: Dict[str, CircuitBreaker] = {}
_REGISTRY_LOCK = threading.Lock()


def get_circuit_breaker(operation_name: str) -> CircuitBreaker:
    """Return the breaker for *operation_name*, creating it on first use."""
    with _REGISTRY_LOCK:
        breaker = _CIRCUIT_BREAKERS.get(operation_name)
        if breaker is None:
            breaker = _CIRCUIT_BREAKERS[operation_name] = CircuitBreaker(operation_name)
        return breaker


def get_circuit_breaker_status() -> Dict[str, CircuitBreakerStats]:
    """Snapshot every known breaker."""
    with _REGISTRY_LOCK:
        breakers = list(_CIRCUIT_BREAKERS.values())
    return {breaker.name: breaker.snapshot() for breaker in breakers}


def reset_circuit_breaker(operation_name: str) -> bool:
    """Operator reset of one breaker.  Returns False if no breaker exists under that name."""
    with _REGISTRY_LOCK:
        breaker = _CIRCUIT_BREAKERS.get(operation_name)
    if breaker is None:
        return False
    breaker.reset()
    return True


# ---------------------------------------------------------------------------
# Invoker
# ---------------------------------------------------------------------------
class ResilientInvoker:
    """Runs async operations under retry, per-attempt timeout and circuit-breaker policies."""

    def __init__(
        self,
        retry_config: RetryConfig | None = None,
        circuit_config: CircuitBreakerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.retry_config = retry_config or RetryConfig()
        self.circuit_config = circuit_config or CircuitBreakerConfig()
        self._clock = clock
        self._sleep = sleep

    @classmethod
    def from_settings(cls) -> "ResilientInvoker":
        return cls(RetryConfig.from_settings(), CircuitBreakerConfig.from_settings())

    async def invoke(
        self,
        operation_name: str,
        operation: Callable[[], Awaitable[T]],
        retry_config: RetryConfig | None = None,
        circuit_config: CircuitBreakerConfig | None = None,
    ) -> T:
        """
        Run *operation* with resilience.

        Parameters
        ----------
        operation_name:
            Breaker key.  Use one name per downstream dependency.
        operation:
            Zero-argument callable returning a fresh awaitable for each attempt.
        retry_config, circuit_config:
            Per-call overrides of the invoker defaults.

        Raises
        ------
        CircuitOpenError
            The breaker rejected the first attempt; *operation* was never called.
        ResilienceExhaustedError
            No attempt succeeded.  Chained from the last observed error.
        """
        retry = retry_config or self.retry_config
        circuit = circuit_config or self.circuit_config
        breaker = get_circuit_breaker(operation_name)

        last_error: BaseException | None = None
        attempts_made = 0

        for attempt in range(1, retry.max_attempts + 1):
            if attempt > 1:
                delay_ms = compute_backoff_delay(attempt, retry)
                logger.debug("Retrying %s in %.0fms", operation_name, delay_ms)
                await self._sleep(delay_ms / 1000)

            if not breaker.try_acquire(circuit, self._clock()):
                if attempts_made == 0:
                    logger.warning("Circuit breaker prevented execution: %s", operation_name)
                    raise CircuitOpenError(operation_name)
                break

            attempts_made = attempt
            logger.debug(
                "Executing %s - attempt %d/%d", operation_name, attempt, retry.max_attempts
            )
            try:
                result = await asyncio.wait_for(operation(), timeout=retry.timeout_ms / 1000)
            except asyncio.TimeoutError:
                last_error = OperationTimeoutError(
                    f"{operation_name} timed out after {retry.timeout_ms:.0f}ms"
                )
            except Exception as exc:  # noqa: BLE001
                last_error = exc
            except BaseException:
                breaker.release_probe()
                raise
            else:
                breaker.record_success()
                if attempt > 1:
                    logger.info("%s succeeded on attempt %d", operation_name, attempt)
                return result

            breaker.record_failure(circuit, self._clock())
            logger.warning("%s failed on attempt %d: %s", operation_name, attempt, last_error)

            if breaker.state is CircuitBreakerState.OPEN:
                logger.warning("Circuit breaker opened for %s after failure", operation_name)
                break

        if last_error is None:
            last_error = RuntimeError(f"{operation_name} failed after {attempts_made} attempts")
        logger.error(
            "%s failed after %d attempt(s): %s", operation_name, attempts_made, last_error
        )
        raise ResilienceExhaustedError(operation_name, attempts_made, last_error) from last_error
