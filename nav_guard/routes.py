"""Route enumeration and group table: single source of truth for screen paths.

Every concrete route belongs to exactly one group, and every group has exactly
one default route. ``RouteTable`` checks both at construction.
"""

from __future__ import annotations

import difflib
from collections.abc import Mapping
from enum import Enum

from nav_guard.errors import ConfigurationError, InvalidRouteError


class RouteGroup(str, Enum):
    AUTH = "auth"
    ONBOARDING = "onboarding"
    SETUP = "setup"
    PAYMENT = "payment"
    SUBSCRIPTION = "subscription"
    PROJECTS = "projects"
    DASHBOARD = "dashboard"


class Route(str, Enum):
    # Auth
    WELCOME = "/(auth)/welcome"
    SIGN_IN = "/(auth)/signIn"
    REGISTER = "/(auth)/register"
    RESET_PASSWORD = "/(auth)/resetPassword"
    RESET_PASSWORD_CONFIRM = "/(auth)/resetPasswordConfirm"
    VERIFY_EMAIL = "/(auth)/emailVerification"
    SUBSCRIPTION_GATE = "/(auth)/subscriptionGate"
    TERMS_OF_SERVICE = "/(auth)/termsOfService"
    PRIVACY_POLICY = "/(auth)/privacyPolicy"

    # Onboarding
    ONBOARDING_FREE = "/(onboarding)/freeSubscription"
    ONBOARDING_PAID = "/(onboarding)/paidSubscription"
    ONBOARDING_EXPIRING = "/(onboarding)/expiringSubscription"

    # Setup
    SETUP_INDEX = "/(setup)"
    SETUP_KIT = "/(setup)/kit"
    SETUP_TASKS = "/(setup)/tasks"
    SETUP_GROUP_SHOTS = "/(setup)/groupShots"
    SETUP_COUPLE_SHOTS = "/(setup)/coupleShots"

    # Payment / subscription
    PAYMENT_INDEX = "/(payment)"
    SUBSCRIPTION_PRICING = "/(subscription)/pricing"

    # Projects
    PROJECTS_INDEX = "/(projects)"

    # Dashboard
    DASHBOARD_HOME = "/(dashboard)/(home)"
    DASHBOARD_TIMELINE = "/(dashboard)/(timeline)"
    DASHBOARD_SHOTS = "/(dashboard)/(shots)"
    DASHBOARD_TOOLS = "/(dashboard)/(tools)"
    DASHBOARD_SETTINGS = "/(dashboard)/(settings)"
    DASHBOARD_HOME_LOCATIONS = "/(dashboard)/(home)/locations"
    DASHBOARD_HOME_KEY_PEOPLE = "/(dashboard)/(home)/keyPeople"
    DASHBOARD_HOME_NOTES = "/(dashboard)/(home)/notes"
    DASHBOARD_SHOTS_REQUESTED = "/(dashboard)/(shots)/requested"
    DASHBOARD_SHOTS_KIT_LIST = "/(dashboard)/(shots)/kitList"
    DASHBOARD_SHOTS_TASK_LIST = "/(dashboard)/(shots)/taskList"
    DASHBOARD_TOOLS_GUIDES = "/(dashboard)/(tools)/guides"
    DASHBOARD_TOOLS_TAGS = "/(dashboard)/(tools)/tags"
    DASHBOARD_TOOLS_VENDORS = "/(dashboard)/(tools)/vendors"
    DASHBOARD_TOOLS_QR_CARD = "/(dashboard)/(tools)/qrCard"
    DASHBOARD_SETTINGS_PROJECT_SETTINGS = "/(dashboard)/(settings)/projectSettings"
    DASHBOARD_SETTINGS_MANAGE_DATA = "/(dashboard)/(settings)/manageData"
    DASHBOARD_SETTINGS_MANAGE_PROJECTS = "/(dashboard)/(settings)/manageProjects"
    DASHBOARD_SETTINGS_MY_ACCOUNT = "/(dashboard)/(settings)/myAccount"


# Path prefix segment → group. A route's group is decided by its first segment.
_SEGMENT_GROUPS: dict[str, RouteGroup] = {
    "(auth)": RouteGroup.AUTH,
    "(onboarding)": RouteGroup.ONBOARDING,
    "(setup)": RouteGroup.SETUP,
    "(payment)": RouteGroup.PAYMENT,
    "(subscription)": RouteGroup.SUBSCRIPTION,
    "(projects)": RouteGroup.PROJECTS,
    "(dashboard)": RouteGroup.DASHBOARD,
}

DEFAULT_GROUP_ROUTES: dict[RouteGroup, Route] = {
    RouteGroup.AUTH: Route.WELCOME,
    RouteGroup.ONBOARDING: Route.ONBOARDING_FREE,
    RouteGroup.SETUP: Route.SETUP_INDEX,
    RouteGroup.PAYMENT: Route.PAYMENT_INDEX,
    RouteGroup.SUBSCRIPTION: Route.SUBSCRIPTION_PRICING,
    RouteGroup.PROJECTS: Route.PROJECTS_INDEX,
    RouteGroup.DASHBOARD: Route.DASHBOARD_HOME,
}


def _group_of(route: Route) -> RouteGroup | None:
    segment = route.value.lstrip("/").split("/", 1)[0]
    return _SEGMENT_GROUPS.get(segment)


ROUTE_GROUPS: dict[Route, RouteGroup] = {}
for _route in Route:
    _group = _group_of(_route)
    if _group is None:
        raise ConfigurationError(f"Route {_route.name} has no group segment")
    ROUTE_GROUPS[_route] = _group
del _route, _group


def route_group(route: Route) -> RouteGroup:
    """Get the group a route belongs to."""
    return ROUTE_GROUPS[route]


def is_route_in_group(route: Route, group: RouteGroup) -> bool:
    return ROUTE_GROUPS[route] is group


def routes_in_group(group: RouteGroup) -> list[Route]:
    """All routes of a group, in declaration order."""
    return [r for r, g in ROUTE_GROUPS.items() if g is group]


class RouteTable:
    """Total mapping from every ``RouteGroup`` to its default ``Route``."""

    def __init__(self, defaults: Mapping[RouteGroup, Route] | None = None) -> None:
        self._defaults = dict(DEFAULT_GROUP_ROUTES if defaults is None else defaults)
        self._validate()

    def _validate(self) -> None:
        missing = [g.name for g in RouteGroup if g not in self._defaults]
        if missing:
            raise ConfigurationError(f"Route groups without a default route: {', '.join(missing)}")
        for group, route in self._defaults.items():
            if not isinstance(group, RouteGroup) or not isinstance(route, Route):
                raise ConfigurationError(f"Invalid route table entry: {group!r} -> {route!r}")
            if ROUTE_GROUPS[route] is not group:
                raise ConfigurationError(
                    f"Default route {route.name} for group {group.name} belongs to "
                    f"{ROUTE_GROUPS[route].name}"
                )

    def default_for(self, group: RouteGroup) -> Route:
        return self._defaults[group]

    def __contains__(self, group: object) -> bool:
        return group in self._defaults


# Normalized path / enum name → route.
# Built once at import time for fast lookup.
_NORMALIZED: dict[str, Route] = {}


def _normalize(s: str) -> str:
    """Strip whitespace, query string, fragment and trailing slash; lowercase."""
    s = s.strip().split("?", 1)[0].split("#", 1)[0]
    if not s.startswith("/"):
        s = "/" + s
    if len(s) > 1:
        s = s.rstrip("/")
    return s.lower()


def _build_normalized() -> None:
    """Populate the normalized lookup table."""
    _NORMALIZED.clear()
    for route in Route:
        _NORMALIZED[_normalize(route.value)] = route
        _NORMALIZED[route.name.lower()] = route


_build_normalized()


def parse_route(raw: str) -> Route:
    """Map a free-form path or route name onto the closed ``Route`` enumeration.

    Accepts the exact path, the path with a trailing slash, query string or
    missing leading slash, and the enum member name in any case. Anything else
    raises ``InvalidRouteError``; close matches are offered as a suggestion but
    never accepted.
    """
    if isinstance(raw, Route):
        return raw
    if not raw or not raw.strip():
        raise InvalidRouteError(raw or "")

    bare = raw.strip().lower()
    if bare in _NORMALIZED:
        return _NORMALIZED[bare]

    normed = _normalize(raw)
    if normed in _NORMALIZED:
        return _NORMALIZED[normed]

    candidates = difflib.get_close_matches(normed, [_normalize(r.value) for r in Route], n=1, cutoff=0.7)
    suggestion = _NORMALIZED[candidates[0]].value if candidates else None
    raise InvalidRouteError(raw, suggestion)
