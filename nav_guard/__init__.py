"""nav-guard: account-state driven navigation with prioritized rules, resilient fetch and debounced dispatch."""

from nav_guard.config import NavGuardConfig
from nav_guard.default_rules import default_engine, default_rules
from nav_guard.dispatcher import Dispatcher, DispatcherPhase
from nav_guard.errors import (
    ConfigurationError,
    InvalidRouteError,
    NavGuardError,
    NavigationError,
    SideEffectError,
    SourceFetchError,
)
from nav_guard.events import TriggerBus
from nav_guard.fetch import FetchOrchestrator, FetchResult, FetchSource, RetryPolicy
from nav_guard.models import (
    AuthIdentity,
    Decision,
    FetchDegraded,
    PermissionLevel,
    ResolvedState,
    SessionFlags,
    SetupRecord,
    SideEffect,
    SideEffectKind,
    SubscriptionPlan,
    SubscriptionRecord,
    SubscriptionStatus,
    TriggerEvent,
)
from nav_guard.resolver import StateResolver
from nav_guard.routes import Route, RouteGroup, RouteTable, parse_route
from nav_guard.rules import RoutingRule, RuleEngine

__all__ = [
    "AuthIdentity",
    "ConfigurationError",
    "Decision",
    "Dispatcher",
    "DispatcherPhase",
    "FetchDegraded",
    "FetchOrchestrator",
    "FetchResult",
    "FetchSource",
    "InvalidRouteError",
    "NavGuardConfig",
    "NavGuardError",
    "NavigationError",
    "PermissionLevel",
    "ResolvedState",
    "RetryPolicy",
    "Route",
    "RouteGroup",
    "RouteTable",
    "RoutingRule",
    "RuleEngine",
    "SessionFlags",
    "SetupRecord",
    "SideEffect",
    "SideEffectError",
    "SideEffectKind",
    "SourceFetchError",
    "StateResolver",
    "SubscriptionPlan",
    "SubscriptionRecord",
    "SubscriptionStatus",
    "TriggerBus",
    "TriggerEvent",
    "default_engine",
    "default_rules",
    "parse_route",
]
