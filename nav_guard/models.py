"""Core data models and collaborator contracts for nav-guard."""

import hashlib
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace
from enum import Enum, IntEnum
from types import MappingProxyType
from typing import Any

from nav_guard.routes import Route, RouteGroup


class SubscriptionPlan(str, Enum):
    NONE = "NONE"
    FREE = "FREE"
    BASIC = "BASIC"
    PRO = "PRO"
    STUDIO = "STUDIO"


PAID_PLANS = frozenset({SubscriptionPlan.BASIC, SubscriptionPlan.PRO, SubscriptionPlan.STUDIO})


class SubscriptionStatus(str, Enum):
    NONE = "NONE"
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    PAST_DUE = "PAST_DUE"
    CANCELLED = "CANCELLED"


class PermissionLevel(IntEnum):
    """Coarse access level, ordered from least to most capable."""
    GUEST = 0       # not signed in
    RESTRICTED = 1  # signed in, no usable subscription
    TRIAL = 2       # FREE plan or trial
    FULL = 3        # paid and ACTIVE


class TriggerEvent(str, Enum):
    AUTH_CHANGED = "auth_changed"
    ROUTE_CHANGED = "route_changed"
    RE_EVALUATE_REQUESTED = "re_evaluate_requested"


# --- Raw records returned by collaborators ---


@dataclass(frozen=True)
class AuthIdentity:
    """Current identity from the auth provider."""
    id: str | None
    is_authenticated: bool = False
    is_email_verified: bool = False


@dataclass(frozen=True)
class SubscriptionRecord:
    plan: SubscriptionPlan = SubscriptionPlan.NONE
    status: SubscriptionStatus = SubscriptionStatus.NONE
    is_trial: bool = False
    days_until_expiry: int | None = None
    auto_renew: bool = False


@dataclass(frozen=True)
class SetupRecord:
    show_onboarding: bool = True
    first_time_setup: bool = True
    skipped_email_verification: bool = False

    def apply(self, patch: Mapping[str, Any]) -> "SetupRecord":
        """Return a copy with ``patch`` merged in. Unknown keys raise ``KeyError``."""
        known = {f.name for f in fields(self)}
        unknown = set(patch) - known
        if unknown:
            raise KeyError(f"Unknown setup field(s): {', '.join(sorted(unknown))}")
        return replace(self, **patch)


# --- Resolved snapshot ---


@dataclass(frozen=True)
class SessionFlags:
    """Transient per-session flags. Reset when the dispatcher is recreated."""
    has_seen_expiry_warning: bool = False

    def merge(self, patch: Mapping[str, Any]) -> "SessionFlags":
        known = {f.name for f in fields(self)}
        unknown = set(patch) - known
        if unknown:
            raise KeyError(f"Unknown session flag(s): {', '.join(sorted(unknown))}")
        return replace(self, **patch)


@dataclass(frozen=True)
class FetchDegraded:
    """Per-source flag: True when that source's data is a fallback default."""
    auth: bool = False
    subscription: bool = False
    setup: bool = False

    @property
    def any_source(self) -> bool:
        return self.auth or self.subscription or self.setup

    @property
    def all_sources(self) -> bool:
        return self.auth and self.subscription and self.setup


# Fields that describe where the user is rather than who they are.
# Left out of the fingerprint so navigating does not re-arm side effects.
_NON_ACCOUNT_FIELDS = frozenset({"current_route", "explicit_redirect", "active_project_id"})


@dataclass(frozen=True)
class ResolvedState:
    """Canonical, fully-defaulted account snapshot. One per cycle."""
    is_authenticated: bool
    is_email_verified: bool
    subscription_plan: SubscriptionPlan
    subscription_status: SubscriptionStatus
    is_trial: bool
    days_until_expiry: int | None
    needs_onboarding: bool
    needs_setup: bool
    first_time_setup: bool
    permission_level: PermissionLevel
    explicit_redirect: Route | None = None
    fetch_degraded: FetchDegraded = field(default_factory=FetchDegraded)
    user_id: str | None = None
    auto_renew: bool = False
    skipped_email_verification: bool = False
    current_route: Route | None = None
    session_flags: SessionFlags = field(default_factory=SessionFlags)
    active_project_id: str | None = None  # project selected in the app shell

    def fingerprint(self) -> str:
        """Stable digest of the account-derived fields."""
        parts = [
            f"{f.name}={getattr(self, f.name)!r}"
            for f in fields(self)
            if f.name not in _NON_ACCOUNT_FIELDS
        ]
        return hashlib.sha256("|".join(parts).encode()).hexdigest()[:16]


# --- Rule output ---


class SideEffectKind(str, Enum):
    SETUP_UPDATE = "setup_update"    # SetupStore.update(user_id, patch)
    SESSION_FLAGS = "session_flags"  # merged into the dispatcher's SessionFlags


@dataclass(frozen=True)
class SideEffect:
    """Description of a one-shot write. Executed by the dispatcher, never by rules."""
    kind: SideEffectKind
    patch: Mapping[str, Any]

    def __post_init__(self) -> None:
        object.__setattr__(self, "patch", MappingProxyType(dict(self.patch)))

    @classmethod
    def setup_update(cls, **patch: Any) -> "SideEffect":
        return cls(SideEffectKind.SETUP_UPDATE, patch)

    @classmethod
    def session_flags(cls, **patch: Any) -> "SideEffect":
        return cls(SideEffectKind.SESSION_FLAGS, patch)


@dataclass(frozen=True)
class Decision:
    """Result of rule evaluation."""
    route: Route
    source_rule: str
    side_effect: SideEffect | None = None
    group: RouteGroup | None = None  # set when the rule targeted a group
    explicit: bool = False           # route came from an explicit redirect
    params: Mapping[str, Any] | None = field(default=None, hash=False)

    def __post_init__(self) -> None:
        if self.params is not None:
            object.__setattr__(self, "params", MappingProxyType(dict(self.params)))


# --- Collaborators ---


class AuthSource(ABC):
    """Read-only view of the auth provider. May lag right after verification."""

    @abstractmethod
    async def get_current_identity(self) -> AuthIdentity | None:
        ...


class SubscriptionStore(ABC):

    @abstractmethod
    async def get_by_user_id(self, user_id: str) -> SubscriptionRecord | None:
        """Return the record, or None when the user has none."""
        ...


class SetupStore(ABC):

    @abstractmethod
    async def get_by_user_id(self, user_id: str) -> SetupRecord | None:
        """Return the record, or None when the user has none."""
        ...

    @abstractmethod
    async def update(self, user_id: str, patch: Mapping[str, Any]) -> None:
        """Merge ``patch`` into the record. Must tolerate repeated equal patches."""
        ...


class NavigationHost(ABC):
    """The app's router."""

    @abstractmethod
    def current_route(self) -> Route | None:
        ...

    @abstractmethod
    def navigate(self, route: Route, params: Mapping[str, Any] | None = None) -> None:
        """Replace the current screen. Fire-and-forget.

        ``params`` are screen parameters such as ``{"mode": "update"}``.
        """
        ...

    def active_project_id(self) -> str | None:
        """Project currently selected in the app shell, if any."""
        return None

    @property
    def name(self) -> str:
        return self.__class__.__name__
