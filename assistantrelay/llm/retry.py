"""
Bounded in-place retry for one backend, guarded by that backend's circuit.
"""

from typing import Awaitable, Callable, Dict, TypeVar

from assistantrelay.utils.logging import get_logger

from .circuit_breaker import CircuitBreakerRegistry
from .exceptions import CircuitOpenError, ErrorKind, classify_error

logger = get_logger(__name__)

T = TypeVar("T")

# Failures that say nothing about the backend's health
_NOT_BACKEND_FAILURES = (ErrorKind.CONFIGURATION, ErrorKind.CANCELLED)


class RetryExecutor:
    """
    Runs one backend attempt with circuit checks and transient retries.

    Only transient failures are retried in place. Rate limits, invalid
    requests and fatal errors count against the circuit once and propagate
    straight away; configuration and cancellation errors propagate without
    touching the circuit at all.
    """

    def __init__(self, registry: CircuitBreakerRegistry, max_transient_retries: int = 2):
        self.registry = registry
        self.max_transient_retries = max_transient_retries
        self.retry_stats: Dict[str, int] = {
            "total_attempts": 0,
            "successful_retries": 0,
            "failed_retries": 0,
            "circuit_breaker_rejections": 0,
        }

    async def execute(self, backend: str, attempt: Callable[[str], Awaitable[T]]) -> T:
        """
        Call ``attempt(backend)`` under the retry policy.

        Args:
            backend: Backend identifier, also the circuit key
            attempt: Coroutine function performing one full attempt

        Returns:
            Whatever ``attempt`` returned

        Raises:
            CircuitOpenError: If the circuit is open; no attempt is made
        """
        if self.registry.is_open(backend):
            self.retry_stats["circuit_breaker_rejections"] += 1
            logger.warning(
                f"Circuit open for {backend}, rejecting call",
                extra={"backend": backend},
            )
            raise CircuitOpenError(backend, open_until=self.registry.get_state(backend).open_until)

        retries = 0
        while True:
            self.retry_stats["total_attempts"] += 1
            try:
                result = await attempt(backend)
            except Exception as error:
                kind = classify_error(error)

                if kind in _NOT_BACKEND_FAILURES:
                    raise

                if kind == ErrorKind.TRANSIENT and retries < self.max_transient_retries:
                    retries += 1
                    logger.warning(
                        f"Transient failure on {backend} "
                        f"(retry {retries}/{self.max_transient_retries}): {error}",
                        extra={"backend": backend},
                    )
                    continue

                if retries:
                    self.retry_stats["failed_retries"] += 1
                self.registry.record_failure(backend)
                logger.error(
                    f"Backend {backend} failed ({kind.value}): {error}",
                    extra={"backend": backend, "error_kind": kind.value},
                )
                raise

            self.registry.record_success(backend)
            if retries:
                self.retry_stats["successful_retries"] += 1
                logger.info(f"{backend} succeeded after {retries} retries")
            return result
