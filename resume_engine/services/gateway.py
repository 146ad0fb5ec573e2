"""
External service gateway: circuit breaker, concurrency limit, timeout, retry.

Every call leaving the process (completion providers, blob store, job search
API) goes through ServiceGateway.execute() so one slow or failing provider
fails fast instead of stalling every pipeline run.

Usage:
    gw = get_gateway()
    text = await gw.execute("openai", client.chat.completions.create, **params)
"""
import asyncio
import random
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Coroutine, Dict, Optional

from resume_engine.utils.logger import logger
from resume_engine.utils.metrics import inc, observe


@dataclass(frozen=True)
class ServiceConfig:
    max_concurrent: int = 10
    timeout_seconds: float = 90.0
    max_retries: int = 2
    circuit_failure_threshold: int = 5
    circuit_recovery_seconds: float = 30.0
    base_backoff_seconds: float = 1.0


GATEWAY_CONFIG: Dict[str, ServiceConfig] = {
    "openai": ServiceConfig(max_concurrent=10, timeout_seconds=120.0, max_retries=2),
    "anthropic": ServiceConfig(max_concurrent=10, timeout_seconds=120.0, max_retries=2),
    "blob_store": ServiceConfig(
        max_concurrent=20,
        timeout_seconds=30.0,
        max_retries=2,
        circuit_failure_threshold=5,
        base_backoff_seconds=0.5,
    ),
    "adzuna": ServiceConfig(
        max_concurrent=4,
        timeout_seconds=20.0,
        max_retries=1,
        circuit_failure_threshold=3,
        circuit_recovery_seconds=60.0,
    ),
}


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Per-service circuit breaker (safe under the single-threaded event loop)."""

    def __init__(self, service: str, config: ServiceConfig):
        self.service = service
        self.config = config
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.last_failure_time = 0.0
        self.half_open_successes = 0

    def allow_request(self) -> bool:
        if self.state != CircuitState.OPEN:
            return True
        elapsed = time.monotonic() - self.last_failure_time
        if elapsed < self.config.circuit_recovery_seconds:
            return False
        self.state = CircuitState.HALF_OPEN
        self.half_open_successes = 0
        logger.info("circuit.half_open", extra={"service": self.service, "circuit_state": self.state.value})
        return True

    def record_success(self) -> None:
        if self.state == CircuitState.HALF_OPEN:
            self.half_open_successes += 1
            if self.half_open_successes >= 2:
                self.state = CircuitState.CLOSED
                self.failure_count = 0
                logger.info("circuit.closed", extra={"service": self.service, "circuit_state": self.state.value})
        else:
            self.failure_count = 0

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = time.monotonic()
        if self.state == CircuitState.HALF_OPEN or self.failure_count >= self.config.circuit_failure_threshold:
            self.state = CircuitState.OPEN
            logger.warning(
                "circuit.open",
                extra={"service": self.service, "circuit_state": self.state.value, "count": self.failure_count},
            )


_RETRYABLE_STATUS_CODES = {408, 429, 500, 502, 503, 504}


def is_retryable(exc: Exception) -> bool:
    """True for transient failures: timeouts, dropped connections, 429/5xx."""
    response = getattr(exc, "response", None)
    status = getattr(exc, "status_code", None) or getattr(response, "status_code", None)
    if status is not None:
        try:
            return int(status) in _RETRYABLE_STATUS_CODES
        except (TypeError, ValueError):
            return False
    if isinstance(exc, (asyncio.TimeoutError, ConnectionError)):
        return True
    name = type(exc).__name__.lower()
    return any(kw in name for kw in ("timeout", "connection", "ratelimit"))


class CircuitOpenError(Exception):
    """Raised when a circuit breaker is open and the request is rejected."""

    def __init__(self, service: str):
        self.service = service
        super().__init__(f"Circuit breaker open for {service}; request rejected")


class ServiceGateway:
    """Central gateway for external service calls."""

    def __init__(self, config: Optional[Dict[str, ServiceConfig]] = None) -> None:
        self._config = dict(config or GATEWAY_CONFIG)
        self._circuits = {name: CircuitBreaker(name, cfg) for name, cfg in self._config.items()}
        self._semaphores = {name: asyncio.Semaphore(cfg.max_concurrent) for name, cfg in self._config.items()}

    async def execute(self, service: str, fn: Callable[..., Coroutine], *args: Any, **kwargs: Any) -> Any:
        """Run fn through circuit breaker, semaphore, timeout and retry."""
        cfg = self._config.get(service)
        if cfg is None:
            return await fn(*args, **kwargs)

        breaker = self._circuits[service]
        if not breaker.allow_request():
            inc(f"{service}.rejected")
            raise CircuitOpenError(service)

        start = time.monotonic()
        attempt = 0
        while True:
            try:
                async with self._semaphores[service]:
                    result = await asyncio.wait_for(fn(*args, **kwargs), timeout=cfg.timeout_seconds)
            except Exception as exc:
                breaker.record_failure()
                inc(f"{service}.error")
                if attempt >= cfg.max_retries or not is_retryable(exc):
                    logger.error(
                        "gateway.failed",
                        extra={"service": service, "attempt": attempt + 1, "error": str(exc)[:200]},
                    )
                    raise
                backoff = cfg.base_backoff_seconds * (2 ** attempt)
                wait = backoff + random.uniform(0, backoff * 0.5)
                logger.warning(
                    "gateway.retry",
                    extra={"service": service, "attempt": attempt + 1, "error": str(exc)[:200]},
                )
                await asyncio.sleep(wait)
                if not breaker.allow_request():
                    raise CircuitOpenError(service) from exc
                attempt += 1
                continue

            breaker.record_success()
            inc(f"{service}.success")
            observe(f"{service}.duration_ms", (time.monotonic() - start) * 1000)
            return result

    def get_circuit_states(self) -> Dict[str, str]:
        """Current breaker state per service, for the health endpoint."""
        return {name: breaker.state.value for name, breaker in self._circuits.items()}


_gateway: Optional[ServiceGateway] = None


def get_gateway() -> ServiceGateway:
    global _gateway
    if _gateway is None:
        _gateway = ServiceGateway()
    return _gateway
