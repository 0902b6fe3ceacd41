"""Tests for FetchOrchestrator retry and degradation."""

import asyncio
import time

import pytest

from nav_guard.errors import ConfigurationError, SourceFetchError
from nav_guard.fetch import FetchOrchestrator, FetchSource, RetryPolicy

FAST = RetryPolicy(max_attempts=3, delay_s=0.01, timeout_s=1.0)


def _failing(times: int, value="ok"):
    calls = {"n": 0}

    async def fetch():
        calls["n"] += 1
        if calls["n"] <= times:
            raise ConnectionError(f"down ({calls['n']})")
        return value

    return fetch, calls


@pytest.mark.asyncio
async def test_success_first_attempt():
    fetch, calls = _failing(0, value={"plan": "PRO"})
    results = await FetchOrchestrator().fetch_all([FetchSource("subscription", fetch, FAST)])
    result = results["subscription"]
    assert result.value == {"plan": "PRO"}
    assert not result.degraded
    assert result.attempts == 1
    assert result.error is None
    assert calls["n"] == 1


@pytest.mark.asyncio
async def test_recovers_after_failures():
    fetch, calls = _failing(2)
    result = (await FetchOrchestrator().fetch_all([FetchSource("setup", fetch, FAST)]))["setup"]
    assert result.value == "ok"
    assert not result.degraded
    assert result.attempts == 3
    assert calls["n"] == 3


@pytest.mark.asyncio
async def test_exhausted_source_degrades():
    fetch, calls = _failing(10)
    result = (await FetchOrchestrator().fetch_all([FetchSource("auth", fetch, FAST)]))["auth"]
    assert result.degraded
    assert result.value is None
    assert result.attempts == FAST.max_attempts
    assert calls["n"] == FAST.max_attempts
    assert isinstance(result.error, SourceFetchError)
    assert result.error.source == "auth"
    assert isinstance(result.error.cause, ConnectionError)


@pytest.mark.asyncio
async def test_missing_record_is_not_retried():
    calls = {"n": 0}

    async def fetch():
        calls["n"] += 1
        return None

    result = (await FetchOrchestrator().fetch_all([FetchSource("setup", fetch, FAST)]))["setup"]
    assert result.value is None
    assert not result.degraded
    assert calls["n"] == 1


@pytest.mark.asyncio
async def test_slow_attempt_times_out():
    async def fetch():
        await asyncio.sleep(1)

    policy = RetryPolicy(max_attempts=2, delay_s=0, timeout_s=0.05)
    result = (await FetchOrchestrator().fetch_all([FetchSource("auth", fetch, policy)]))["auth"]
    assert result.degraded
    assert isinstance(result.error.cause, TimeoutError)
    assert result.latency_ms < 1000


@pytest.mark.asyncio
async def test_sources_retry_concurrently():
    policy = RetryPolicy(max_attempts=3, delay_s=0.1, timeout_s=1.0)
    sub, _ = _failing(10)
    setup, _ = _failing(10)

    start = time.monotonic()
    results = await FetchOrchestrator().fetch_all([
        FetchSource("subscription", sub, policy),
        FetchSource("setup", setup, policy),
    ])
    elapsed = time.monotonic() - start

    assert results["subscription"].degraded and results["setup"].degraded
    # Two delays each; run one after the other this would take 0.4s.
    assert elapsed < 0.35


@pytest.mark.asyncio
async def test_one_failure_does_not_affect_others():
    bad, _ = _failing(10)
    good, _ = _failing(0, value=42)
    results = await FetchOrchestrator().fetch_all([
        FetchSource("subscription", bad, FAST),
        FetchSource("setup", good, FAST),
    ])
    assert results["subscription"].degraded
    assert results["setup"].value == 42
    assert not results["setup"].degraded


@pytest.mark.asyncio
async def test_duplicate_source_names_rejected():
    fetch, _ = _failing(0)
    with pytest.raises(ConfigurationError):
        await FetchOrchestrator().fetch_all([FetchSource("auth", fetch), FetchSource("auth", fetch)])


@pytest.mark.asyncio
async def test_empty_source_list():
    assert await FetchOrchestrator().fetch_all([]) == {}
