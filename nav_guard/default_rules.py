"""Production routing policy.

Priorities are unique. Rules that read subscription or setup data only fire
when that data is real; with degraded data the user falls through to the
catch-all and lands on the projects screen instead of being bounced around
on placeholder values.
"""

from nav_guard.models import PAID_PLANS, ResolvedState, SideEffect, SubscriptionPlan, SubscriptionStatus
from nav_guard.routes import Route, RouteGroup, RouteTable, is_route_in_group
from nav_guard.rules import RoutingRule, RuleEngine

# Days before expiry on which the renewal warning is shown.
EXPIRY_WARNING_DAYS = frozenset({14, 10, 5, 3, 1})


def _in_group(state: ResolvedState, group: RouteGroup) -> bool:
    return state.current_route is not None and is_route_in_group(state.current_route, group)


def _in_checkout(state: ResolvedState) -> bool:
    """On pricing or anywhere in the payment flow."""
    return state.current_route is Route.SUBSCRIPTION_PRICING or _in_group(state, RouteGroup.PAYMENT)


def _account_known(state: ResolvedState) -> bool:
    """Signed in, with real subscription and setup records."""
    return (
        state.is_authenticated
        and not state.fetch_degraded.subscription
        and not state.fetch_degraded.setup
    )


def _signed_out(state: ResolvedState) -> bool:
    # A degraded auth source is not proof of being signed out.
    return not state.is_authenticated and not state.fetch_degraded.auth


def _must_verify_email(state: ResolvedState) -> bool:
    return (
        state.is_authenticated
        and not state.is_email_verified
        and not state.skipped_email_verification
    )


def _unverified_in_payment(state: ResolvedState) -> bool:
    return state.is_authenticated and not state.is_email_verified and _in_group(state, RouteGroup.PAYMENT)


def _verified_in_payment(state: ResolvedState) -> bool:
    return state.is_email_verified and _in_group(state, RouteGroup.PAYMENT)


def _on_pricing(state: ResolvedState) -> bool:
    return state.is_authenticated and state.current_route is Route.SUBSCRIPTION_PRICING


def _no_plan(state: ResolvedState) -> bool:
    return (
        _account_known(state)
        and (
            state.subscription_plan is SubscriptionPlan.NONE
            or state.subscription_status is SubscriptionStatus.NONE
        )
        and state.first_time_setup
    )


def _newly_registered(state: ResolvedState) -> bool:
    return (
        _account_known(state)
        and state.subscription_status is SubscriptionStatus.INACTIVE
        and state.first_time_setup
    )


def _expiring_soon(state: ResolvedState) -> bool:
    return (
        _account_known(state)
        and state.subscription_plan not in (SubscriptionPlan.FREE, SubscriptionPlan.NONE)
        and not state.auto_renew
        and state.days_until_expiry in EXPIRY_WARNING_DAYS
        and not state.session_flags.has_seen_expiry_warning
        and not _in_checkout(state)
    )


def _mark_expiry_warning_seen(_state: ResolvedState) -> SideEffect:
    return SideEffect.session_flags(has_seen_expiry_warning=True)


def _reading_expiry_warning(state: ResolvedState) -> bool:
    return state.session_flags.has_seen_expiry_warning and state.current_route is Route.ONBOARDING_EXPIRING


def _inactive(state: ResolvedState) -> bool:
    return _account_known(state) and state.subscription_status is SubscriptionStatus.INACTIVE


def _past_due(state: ResolvedState) -> bool:
    return _account_known(state) and state.subscription_status is SubscriptionStatus.PAST_DUE


def _cancelled(state: ResolvedState) -> bool:
    return (
        _account_known(state)
        and state.subscription_status is SubscriptionStatus.CANCELLED
        and not _in_checkout(state)
    )


def _free_plan_onboarding(state: ResolvedState) -> bool:
    return (
        _account_known(state)
        and state.is_email_verified
        and state.subscription_plan is SubscriptionPlan.FREE
        and state.needs_onboarding
    )


def _complete_free_onboarding(_state: ResolvedState) -> SideEffect:
    return SideEffect.setup_update(show_onboarding=False, first_time_setup=False)


def _paid_onboarding(state: ResolvedState) -> bool:
    return (
        _account_known(state)
        and state.subscription_status is SubscriptionStatus.ACTIVE
        and state.subscription_plan in PAID_PLANS
        and not state.is_trial
        and state.needs_onboarding
        and not _in_checkout(state)
    )


def _trial_onboarding(state: ResolvedState) -> bool:
    return (
        _account_known(state)
        and state.is_trial
        and state.subscription_status is SubscriptionStatus.ACTIVE
        and state.needs_onboarding
        and not _in_checkout(state)
    )


def _first_time_setup(state: ResolvedState) -> bool:
    return (
        _account_known(state)
        and state.is_email_verified
        and state.subscription_status is SubscriptionStatus.ACTIVE
        and state.needs_setup
        and not _in_checkout(state)
    )


def _dashboard_without_project(state: ResolvedState) -> bool:
    return _in_group(state, RouteGroup.DASHBOARD) and not state.active_project_id


def _working_in_project(state: ResolvedState) -> bool:
    return state.is_authenticated and _in_group(state, RouteGroup.DASHBOARD) and bool(state.active_project_id)


def default_rules() -> list[RoutingRule]:
    """The routing policy, highest priority first."""
    return [
        RoutingRule(
            "sign-in-required", 120, _signed_out, RouteGroup.AUTH,
            description="Signed-out users stay in the auth flow",
        ),
        RoutingRule(
            "email-verification", 110, _must_verify_email, Route.VERIFY_EMAIL,
            description="Unverified users must verify email first (unless skipped)",
        ),
        RoutingRule(
            "payment-verification-gate", 105, _unverified_in_payment, Route.VERIFY_EMAIL,
            description="Payment routes require email verification",
        ),
        RoutingRule(
            "stay-in-payment", 104, _verified_in_payment, RouteGroup.PAYMENT,
            description="Verified users in the payment flow are left there",
        ),
        RoutingRule(
            "stay-on-pricing", 103, _on_pricing, RouteGroup.SUBSCRIPTION,
            description="Users choosing a plan are left on pricing",
        ),
        RoutingRule(
            "no-plan-pricing", 99, _no_plan, Route.SUBSCRIPTION_PRICING,
            description="Users without a plan must select one",
        ),
        RoutingRule(
            "newly-registered-pricing", 98, _newly_registered, Route.SUBSCRIPTION_PRICING,
            description="Newly registered users must select a plan",
        ),
        RoutingRule(
            "subscription-expiry-warning", 90, _expiring_soon, Route.ONBOARDING_EXPIRING,
            on_match=_mark_expiry_warning_seen,
            description="Renewal warning on set days before expiry, once per session",
        ),
        RoutingRule(
            "stay-on-expiry-warning", 89, _reading_expiry_warning, Route.ONBOARDING_EXPIRING,
            description="The renewal warning stays up until the user leaves it",
        ),
        RoutingRule(
            "inactive-subscription", 80, _inactive, RouteGroup.PAYMENT,
            description="Inactive subscriptions need payment",
        ),
        RoutingRule(
            "past-due-subscription", 75, _past_due, Route.PAYMENT_INDEX,
            params={"mode": "update"},
            description="Past due subscriptions need a payment update",
        ),
        RoutingRule(
            "cancelled-subscription", 70, _cancelled, Route.SUBSCRIPTION_GATE,
            description="Cancelled subscriptions need reactivation",
        ),
        RoutingRule(
            "free-plan-onboarding-complete", 65, _free_plan_onboarding, RouteGroup.PROJECTS,
            on_match=_complete_free_onboarding,
            description="Free users skip onboarding and setup; both are marked done",
        ),
        RoutingRule(
            "active-onboarding", 62, _paid_onboarding, Route.ONBOARDING_PAID,
            description="Active paid users see paid onboarding before setup",
        ),
        RoutingRule(
            "dashboard-project-guard", 61, _dashboard_without_project, Route.PROJECTS_INDEX,
            description="Dashboard pages require a selected project",
        ),
        RoutingRule(
            "trialing-onboarding", 60, _trial_onboarding, RouteGroup.ONBOARDING,
            description="Trialing users see free onboarding",
        ),
        RoutingRule(
            "active-first-time-setup", 59, _first_time_setup, RouteGroup.SETUP,
            description="Verified active users go through the setup wizard",
        ),
        RoutingRule(
            "stay-in-dashboard", 20, _working_in_project, RouteGroup.DASHBOARD,
            description="Users working in a selected project are left there",
        ),
        RoutingRule.fallback(
            "default-projects", RouteGroup.PROJECTS, priority=10,
            description="Default route for everyone else",
        ),
    ]


def default_engine(table: RouteTable | None = None) -> RuleEngine:
    return RuleEngine(default_rules(), table)
