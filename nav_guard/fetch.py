"""Concurrent fetch of account records with bounded per-source retry."""

import asyncio
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from nav_guard.errors import ConfigurationError, SourceFetchError


@dataclass(frozen=True)
class RetryPolicy:
    """Fixed-delay retry. Worst case is ``max_attempts * (timeout_s + delay_s)``."""

    max_attempts: int = 5
    delay_s: float = 0.5    # between attempts, no backoff growth
    timeout_s: float = 5.0  # per attempt

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ConfigurationError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.delay_s < 0:
            raise ConfigurationError(f"delay_s must be >= 0, got {self.delay_s}")
        if self.timeout_s <= 0:
            raise ConfigurationError(f"timeout_s must be > 0, got {self.timeout_s}")

    @property
    def worst_case_s(self) -> float:
        return self.max_attempts * (self.timeout_s + self.delay_s)


@dataclass(frozen=True)
class FetchSource:
    """One named record to fetch."""

    name: str                                  # e.g. "auth", "subscription"
    fetch: Callable[[], Awaitable[Any]]
    policy: RetryPolicy = field(default_factory=RetryPolicy)


@dataclass(frozen=True)
class FetchResult:
    """Settled outcome of one source.

    ``value`` is None either because the source reported the record missing
    (``degraded`` False) or because retries ran out (``degraded`` True).
    """

    name: str
    value: Any = None
    degraded: bool = False
    attempts: int = 0
    latency_ms: int = 0
    error: SourceFetchError | None = None


class FetchOrchestrator:
    """Run every source concurrently; a failing source degrades, it never raises."""

    async def fetch_all(self, sources: Iterable[FetchSource]) -> dict[str, FetchResult]:
        sources = list(sources)
        names = [s.name for s in sources]
        if len(set(names)) != len(names):
            raise ConfigurationError(f"Duplicate fetch source names: {names}")

        results = await asyncio.gather(*(self._fetch_with_retry(s) for s in sources))
        return {r.name: r for r in results}

    async def _fetch_with_retry(self, source: FetchSource) -> FetchResult:
        """Attempt ``source`` up to ``max_attempts`` times with a fixed delay between attempts."""
        policy = source.policy
        last_error: BaseException | None = None
        start = time.monotonic()

        for attempt in range(1, policy.max_attempts + 1):
            try:
                value = await asyncio.wait_for(source.fetch(), timeout=policy.timeout_s)
                latency_ms = int((time.monotonic() - start) * 1000)
                if attempt > 1:
                    logger.info(f"Fetch: {source.name} recovered on attempt {attempt} ({latency_ms}ms)")
                return FetchResult(
                    name=source.name, value=value, attempts=attempt, latency_ms=latency_ms,
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                last_error = e
                if isinstance(e, asyncio.TimeoutError):
                    last_error = TimeoutError(f"no response within {policy.timeout_s}s")
                logger.warning(
                    f"Fetch: {source.name} attempt {attempt}/{policy.max_attempts} failed: {last_error}"
                )
                if attempt < policy.max_attempts:
                    await asyncio.sleep(policy.delay_s)

        latency_ms = int((time.monotonic() - start) * 1000)
        error = SourceFetchError(source.name, policy.max_attempts, last_error)
        logger.warning(f"Fetch: {source.name} degraded to default after {latency_ms}ms: {error}")
        return FetchResult(
            name=source.name,
            degraded=True,
            attempts=policy.max_attempts,
            latency_ms=latency_ms,
            error=error,
        )
