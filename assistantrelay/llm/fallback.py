"""
Fallback cascade across backends.

The cascade walks an ordered candidate list, handing each backend to the
retry executor, and stops at the first success. A rate-limit or open-circuit
signal is taken as backend-wide capacity pressure and, by default, ends the
whole cascade; ``RateLimitScope.BACKEND`` narrows that to skipping only the
limited backend.
"""

from typing import Awaitable, Callable, Iterable, List, Optional, Sequence, Tuple, TypeVar

from assistantrelay.utils.logging import get_logger

from .config import RateLimitScope
from .exceptions import ConfigurationError, ErrorKind, classify_error
from .retry import RetryExecutor

logger = get_logger(__name__)

T = TypeVar("T")


def build_candidates(
    requested: Optional[str],
    fallback: Optional[str],
    extras: Iterable[str],
    allowed: Sequence[str],
) -> List[str]:
    """
    Build the ordered, deduplicated, allow-listed candidate list.

    Args:
        requested: Backend asked for by the caller
        fallback: Configured fallback backend
        extras: Fixed known-good backends appended last
        allowed: Allow-list

    Returns:
        Candidates in first-seen order
    """
    candidates: List[str] = []
    for model in [requested, fallback, *extras]:
        if not model or model in candidates:
            continue
        if model not in allowed:
            logger.debug(f"Dropping non allow-listed backend {model}")
            continue
        candidates.append(model)
    return candidates


class FallbackCascade:
    """Drives a retry executor across candidate backends."""

    def __init__(
        self,
        executor: RetryExecutor,
        rate_limit_scope: RateLimitScope = RateLimitScope.CASCADE,
    ):
        self.executor = executor
        self.rate_limit_scope = rate_limit_scope

    async def run(
        self,
        candidates: Sequence[str],
        attempt: Callable[[str], Awaitable[T]],
    ) -> Tuple[str, T]:
        """
        Try ``attempt`` on each candidate until one succeeds.

        Args:
            candidates: Ordered backend identifiers
            attempt: Coroutine function performing one attempt on a backend

        Returns:
            (backend that succeeded, its result)

        Raises:
            ConfigurationError: If there are no candidates
            LLMError: The aborting error, or the last error once all failed
        """
        if not candidates:
            raise ConfigurationError("No allow-listed backend available")

        last_error: Optional[BaseException] = None
        for index, backend in enumerate(candidates):
            try:
                result = await self.executor.execute(backend, attempt)
            except Exception as error:
                last_error = error
                kind = classify_error(error)

                if kind in (ErrorKind.CONFIGURATION, ErrorKind.CANCELLED):
                    raise

                if (
                    kind == ErrorKind.RATE_LIMITED
                    and self.rate_limit_scope == RateLimitScope.CASCADE
                ):
                    logger.warning(
                        f"Capacity pressure on {backend}, aborting cascade",
                        extra={"backend": backend},
                    )
                    raise

                remaining = candidates[index + 1:]
                if remaining:
                    logger.warning(
                        f"Backend {backend} failed, falling back to {remaining[0]}",
                        extra={"backend": backend, "next_backend": remaining[0]},
                    )
                continue

            if index:
                logger.info(f"Fallback backend {backend} succeeded")
            return backend, result

        logger.error(f"All {len(candidates)} candidate backends failed")
        raise last_error
