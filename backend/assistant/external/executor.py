"""Async executor for external collaborator calls.

Every call out of the request (language model, blob store, extraction worker)
goes through `ExternalCallExecutor.run`, which applies:
- A hard timeout per attempt
- Bounded retries with jitter (reads only; writes use retry_count=0)
- A per-call circuit breaker shared across requests via a registry
- Metrics and structured logging

Callers catch `ExternalCallError` and degrade along their fallback path.
"""

import asyncio
import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import TypeVar

from backend.assistant.config import Settings

T = TypeVar("T")


class ExternalCallError(Exception):
    """External call failed; the caller should fall back."""

    pass


class ExternalTimeoutError(ExternalCallError):
    """External call exceeded its timeout on every attempt."""

    pass


class ExternalCircuitOpenError(ExternalCallError):
    """Circuit breaker is open for this call."""

    pass


@dataclass(frozen=True)
class CallContext:
    """Context for an external call, used for logs and breaker keys."""

    request_id: str
    group_id: str | None
    call_name: str


@dataclass
class CallConfig:
    """Configuration for one kind of external call."""

    timeout_ms: int
    retry_count: int = 0
    retry_jitter_min_ms: int = 200
    retry_jitter_max_ms: int = 500
    breaker_failure_threshold: int = 5
    breaker_window_seconds: int = 60
    breaker_half_open_seconds: int = 30
    # Raised as-is: no retry, no breaker failure (e.g. "not found")
    passthrough: tuple[type[Exception], ...] = ()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        timeout_ms: int,
        retry_count: int = 0,
        passthrough: tuple[type[Exception], ...] = (),
    ) -> "CallConfig":
        return cls(
            timeout_ms=timeout_ms,
            retry_count=retry_count,
            retry_jitter_min_ms=settings.retry_jitter_min_ms,
            retry_jitter_max_ms=settings.retry_jitter_max_ms,
            breaker_failure_threshold=settings.circuit_breaker_failures,
            breaker_window_seconds=settings.circuit_breaker_window_sec,
            breaker_half_open_seconds=settings.circuit_breaker_half_open_sec,
            passthrough=passthrough,
        )


class BreakerState(str, Enum):
    """Circuit breaker state."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreaker:
    """Per-call circuit breaker.

    Tracks failures within a time window and opens after threshold.
    """

    call_name: str
    failure_threshold: int
    window_seconds: int
    half_open_seconds: int
    state: BreakerState = BreakerState.CLOSED
    failure_times: list[datetime] = field(default_factory=list)
    opened_at: datetime | None = None

    def record_success(self) -> None:
        """Record successful execution."""
        if self.state == BreakerState.HALF_OPEN:
            self.state = BreakerState.CLOSED
            self.failure_times.clear()
            self.opened_at = None

    def record_failure(self, now: datetime) -> None:
        """Record failed execution."""
        cutoff = now - timedelta(seconds=self.window_seconds)
        self.failure_times = [t for t in self.failure_times if t > cutoff]
        self.failure_times.append(now)

        tripped = len(self.failure_times) >= self.failure_threshold
        if self.state == BreakerState.HALF_OPEN or tripped:
            self.state = BreakerState.OPEN
            self.opened_at = now

    def is_open(self, now: datetime) -> bool:
        """Check if breaker is currently rejecting calls."""
        if self.state == BreakerState.OPEN and self.opened_at:
            if (now - self.opened_at).total_seconds() >= self.half_open_seconds:
                self.state = BreakerState.HALF_OPEN
        return self.state == BreakerState.OPEN


class BreakerRegistry:
    """Registry of per-call circuit breakers with shared state."""

    def __init__(self) -> None:
        self._by_call: dict[str, CircuitBreaker] = {}

    def get_or_create(self, call_name: str, config: CallConfig) -> CircuitBreaker:
        """Get existing breaker for a call or create one with the given config."""
        if call_name not in self._by_call:
            self._by_call[call_name] = CircuitBreaker(
                call_name=call_name,
                failure_threshold=config.breaker_failure_threshold,
                window_seconds=config.breaker_window_seconds,
                half_open_seconds=config.breaker_half_open_seconds,
            )
        return self._by_call[call_name]

    def clear(self) -> None:
        """Clear all breakers (useful for testing)."""
        self._by_call.clear()


_global_breaker_registry = BreakerRegistry()


def get_breaker_registry() -> BreakerRegistry:
    """Get the global breaker registry instance."""
    return _global_breaker_registry


class CallMetrics:
    """No-op metrics interface."""

    def record_latency(self, call: str, outcome: str, latency_ms: float) -> None:
        pass

    def inc_error(self, call: str, reason: str) -> None:
        pass


class CallLogger:
    """No-op structured logging interface."""

    def log_attempt(
        self,
        ctx: CallContext,
        attempt: int,
        outcome: str,
        latency_ms: float,
        error_reason: str | None = None,
    ) -> None:
        pass


class ExternalCallExecutor:
    """Runs external calls with timeout, retry and circuit breaking."""

    def __init__(
        self,
        metrics: CallMetrics | None = None,
        logger: CallLogger | None = None,
        registry: BreakerRegistry | None = None,
        sleep_fn: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        """Initialize executor.

        Args:
            metrics: Metrics recorder (optional, defaults to no-op)
            logger: Structured logger (optional, defaults to no-op)
            registry: Breaker registry (optional, defaults to the global one)
            sleep_fn: Injectable sleep function (default: asyncio.sleep)
        """
        self._metrics = metrics or CallMetrics()
        self._logger = logger or CallLogger()
        self._registry = registry or get_breaker_registry()
        self._sleep = sleep_fn or asyncio.sleep

    async def run(
        self,
        ctx: CallContext,
        config: CallConfig,
        fn: Callable[[], Awaitable[T]],
    ) -> T:
        """Execute an external call.

        Args:
            ctx: Call context
            config: Timeout/retry/breaker configuration
            fn: Zero-argument coroutine factory, invoked once per attempt

        Returns:
            The call's result

        Raises:
            ExternalTimeoutError: Every attempt timed out
            ExternalCircuitOpenError: Circuit breaker is open
            ExternalCallError: Every attempt failed
            Exception: Any `config.passthrough` exception, unchanged
        """
        breaker = self._registry.get_or_create(ctx.call_name, config)

        if breaker.is_open(datetime.now()):
            self._metrics.record_latency(ctx.call_name, "breaker_open", 0.0)
            self._metrics.inc_error(ctx.call_name, "breaker_open")
            self._logger.log_attempt(ctx, 0, "breaker_open", 0.0, error_reason="breaker_open")
            raise ExternalCircuitOpenError(f"Circuit breaker open for {ctx.call_name}")

        last_error: Exception | None = None
        for attempt in range(config.retry_count + 1):
            attempt_start = time.monotonic()

            try:
                result = await asyncio.wait_for(fn(), timeout=config.timeout_ms / 1000)

                elapsed_ms = (time.monotonic() - attempt_start) * 1000
                breaker.record_success()
                self._metrics.record_latency(ctx.call_name, "success", elapsed_ms)
                self._logger.log_attempt(ctx, attempt + 1, "success", elapsed_ms)
                return result

            except TimeoutError as e:
                elapsed_ms = (time.monotonic() - attempt_start) * 1000
                last_error = e
                self._metrics.inc_error(ctx.call_name, "timeout")
                self._logger.log_attempt(
                    ctx, attempt + 1, "timeout", elapsed_ms, error_reason="timeout"
                )
                breaker.record_failure(datetime.now())

            except config.passthrough as e:
                elapsed_ms = (time.monotonic() - attempt_start) * 1000
                self._metrics.record_latency(ctx.call_name, "passthrough", elapsed_ms)
                self._logger.log_attempt(
                    ctx, attempt + 1, "passthrough", elapsed_ms, error_reason=type(e).__name__
                )
                raise

            except Exception as e:
                elapsed_ms = (time.monotonic() - attempt_start) * 1000
                last_error = e
                self._metrics.inc_error(ctx.call_name, "execution_error")
                self._logger.log_attempt(
                    ctx, attempt + 1, "error", elapsed_ms, error_reason=type(e).__name__
                )
                breaker.record_failure(datetime.now())

            if attempt < config.retry_count:
                jitter_ms = random.uniform(config.retry_jitter_min_ms, config.retry_jitter_max_ms)
                await self._sleep(jitter_ms / 1000)

        if isinstance(last_error, TimeoutError):
            raise ExternalTimeoutError(f"{ctx.call_name} timed out after all retries")
        raise ExternalCallError(f"{ctx.call_name} failed after all retries") from last_error


def build_executor() -> ExternalCallExecutor:
    """Executor wired to Prometheus metrics and structured logging."""
    from backend.assistant.utils.logging import StructuredCallLogger
    from backend.assistant.utils.metrics import PrometheusCallMetrics

    return ExternalCallExecutor(metrics=PrometheusCallMetrics(), logger=StructuredCallLogger())
