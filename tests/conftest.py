import asyncio
from collections.abc import Mapping
from dataclasses import replace
from typing import Any

import pytest

from nav_guard.models import (
    AuthIdentity,
    AuthSource,
    FetchDegraded,
    PermissionLevel,
    ResolvedState,
    SetupRecord,
    SetupStore,
    SubscriptionPlan,
    SubscriptionRecord,
    SubscriptionStatus,
    SubscriptionStore,
)

# A verified, fully onboarded user on an active FREE plan.
_BASE_STATE = ResolvedState(
    is_authenticated=True,
    is_email_verified=True,
    subscription_plan=SubscriptionPlan.FREE,
    subscription_status=SubscriptionStatus.ACTIVE,
    is_trial=False,
    days_until_expiry=None,
    needs_onboarding=False,
    needs_setup=False,
    first_time_setup=False,
    permission_level=PermissionLevel.TRIAL,
    fetch_degraded=FetchDegraded(),
    user_id="u1",
)


@pytest.fixture
def make_state():
    def _make(**overrides: Any) -> ResolvedState:
        return replace(_BASE_STATE, **overrides)

    return _make


class ScriptedAuth(AuthSource):
    """Returns scripted identities in call order; an optional gate delays a call."""

    def __init__(self, default: AuthIdentity | None = None):
        self.default = default
        self._script: list[tuple[AuthIdentity | None, asyncio.Event | None]] = []
        self.calls = 0

    def script(self, identity: AuthIdentity | None, gate: asyncio.Event | None = None) -> None:
        self._script.append((identity, gate))

    async def get_current_identity(self) -> AuthIdentity | None:
        self.calls += 1
        if not self._script:
            return self.default
        identity, gate = self._script.pop(0)
        if gate is not None:
            await gate.wait()
        return identity


class FlakySubscriptionStore(SubscriptionStore):
    """Fails the first ``failures`` calls, then returns ``record``."""

    def __init__(self, record: SubscriptionRecord | None, failures: int = 0):
        self.record = record
        self.failures = failures
        self.calls = 0

    async def get_by_user_id(self, user_id: str) -> SubscriptionRecord | None:
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError(f"subscription backend unavailable (call {self.calls})")
        return self.record


class LaggingSetupStore(SetupStore):
    """Always reads back the same record, whatever was written (a stale replica)."""

    def __init__(self, record: SetupRecord | None, fail_updates: int = 0):
        self.record = record
        self.fail_updates = fail_updates
        self.update_calls: list[tuple[str, dict]] = []

    async def get_by_user_id(self, user_id: str) -> SetupRecord | None:
        return self.record

    async def update(self, user_id: str, patch: Mapping[str, Any]) -> None:
        self.update_calls.append((user_id, dict(patch)))
        if len(self.update_calls) <= self.fail_updates:
            raise ConnectionError("setup backend write failed")
