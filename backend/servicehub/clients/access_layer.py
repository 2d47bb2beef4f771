import asyncio
import logging
import os
from collections import Counter
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Optional, TypeVar

from servicehub.errors import TransientError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _env_int(name: str, default: int) -> int:
    try:
        value = int(os.getenv(name, str(default)))
    except ValueError:
        return default
    return value if value > 0 else default


STORE_RETRY_DELAY_MS = _env_int("STORE_RETRY_DELAY_MS", 500)
STORE_MAX_RETRY_ATTEMPTS = _env_int("STORE_MAX_RETRY_ATTEMPTS", 3)


class Liveness:
    """Whether the caller still wants results. Checked, never awaited."""

    def __init__(self) -> None:
        self.alive = True

    def dispose(self) -> None:
        self.alive = False


class ResilientAccessLayer:
    def __init__(
        self,
        liveness: Optional[Liveness] = None,
        retry_delay: float = STORE_RETRY_DELAY_MS / 1000,
        max_attempts: int = STORE_MAX_RETRY_ATTEMPTS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.liveness = liveness or Liveness()
        self.retry_delay = retry_delay
        self.max_attempts = max_attempts
        self._sleep = sleep
        self._in_flight: Counter = Counter()
        self._cache: Dict[str, Any] = {}

    @property
    def in_flight(self) -> FrozenSet[str]:
        return frozenset(self._in_flight)

    def is_operation_in_progress(self, label: str) -> bool:
        return label in self._in_flight

    def _start(self, label: str) -> None:
        self._in_flight[label] += 1

    def _settle(self, label: str) -> None:
        self._in_flight[label] -= 1
        if self._in_flight[label] <= 0:
            del self._in_flight[label]

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        label: str,
        max_attempts: Optional[int] = None,
    ) -> Optional[T]:
        """
        Run ``operation`` and retry it on TransientError only.

        Attempt n+1 waits ``retry_delay * n`` seconds. Once the caller's
        liveness flag drops, any late result or error is discarded and None
        is returned.
        """
        attempts = max_attempts if max_attempts is not None else self.max_attempts
        if attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        self._start(label)
        try:
            for attempt in range(1, attempts + 1):
                if not self.liveness.alive:
                    logger.debug("Skipping %s: caller is gone", label)
                    return None
                try:
                    result = await operation()
                except TransientError as exc:
                    if not self.liveness.alive:
                        return None
                    if attempt >= attempts:
                        logger.error("%s failed after %d attempts: %s", label, attempt, exc)
                        raise
                    delay = self.retry_delay * attempt
                    logger.warning("%s attempt %d/%d failed (%s); retrying in %.2fs", label, attempt, attempts, exc, delay)
                    await self._sleep(delay)
                    continue
                except Exception:
                    if not self.liveness.alive:
                        return None
                    raise

                if not self.liveness.alive:
                    logger.debug("Discarding result of %s: caller is gone", label)
                    return None
                if attempt > 1:
                    logger.info("%s succeeded on attempt %d", label, attempt)
                return result
        finally:
            self._settle(label)

    async def get_cached(self, key: str, fetch: Callable[[], Awaitable[Optional[T]]]) -> Optional[T]:
        if key in self._cache:
            return self._cache[key]
        value = await fetch()
        if value is not None:
            self._cache[key] = value
        return value

    def clear_cache(self) -> None:
        self._cache.clear()
