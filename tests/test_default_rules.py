"""Tests for the production routing policy."""

import pytest

from nav_guard.default_rules import default_engine, default_rules
from nav_guard.models import FetchDegraded, SessionFlags, SideEffect, SubscriptionPlan, SubscriptionStatus
from nav_guard.routes import Route, RouteGroup


@pytest.fixture
def engine():
    return default_engine()


def test_policy_builds_with_unique_priorities():
    priorities = [r.priority for r in default_rules()]
    assert len(priorities) == len(set(priorities))
    assert default_engine().rules[-1].name == "default-projects"


def test_signed_out_user_goes_to_auth(engine, make_state):
    decision = engine.evaluate(make_state(is_authenticated=False, is_email_verified=False, user_id=None))
    assert decision.source_rule == "sign-in-required"
    assert decision.route is Route.WELCOME
    assert decision.group is RouteGroup.AUTH


@pytest.mark.parametrize("overrides", [
    {},
    {"subscription_plan": SubscriptionPlan.NONE, "subscription_status": SubscriptionStatus.NONE},
    {"subscription_status": SubscriptionStatus.CANCELLED},
    {"needs_onboarding": True, "needs_setup": True, "first_time_setup": True},
    {"fetch_degraded": FetchDegraded(subscription=True, setup=True)},
])
def test_unverified_user_must_verify_email(engine, make_state, overrides):
    decision = engine.evaluate(make_state(is_email_verified=False, **overrides))
    assert decision.route is Route.VERIFY_EMAIL
    assert decision.source_rule == "email-verification"


def test_skipped_verification_is_not_forced(engine, make_state):
    decision = engine.evaluate(make_state(is_email_verified=False, skipped_email_verification=True))
    assert decision.route is not Route.VERIFY_EMAIL


def test_unverified_user_cannot_pay(engine, make_state):
    state = make_state(
        is_email_verified=False, skipped_email_verification=True, current_route=Route.PAYMENT_INDEX,
    )
    decision = engine.evaluate(state)
    assert decision.source_rule == "payment-verification-gate"
    assert decision.route is Route.VERIFY_EMAIL


def test_free_user_skips_onboarding_and_marks_it_done(engine, make_state):
    state = make_state(needs_onboarding=True, needs_setup=True, first_time_setup=True)
    decision = engine.evaluate(state)
    assert decision.source_rule == "free-plan-onboarding-complete"
    assert decision.route is Route.PROJECTS_INDEX
    assert decision.side_effect == SideEffect.setup_update(show_onboarding=False, first_time_setup=False)


def test_degraded_subscription_falls_to_projects(engine, make_state):
    state = make_state(
        subscription_plan=SubscriptionPlan.NONE,
        subscription_status=SubscriptionStatus.NONE,
        needs_onboarding=True,
        needs_setup=True,
        first_time_setup=True,
        fetch_degraded=FetchDegraded(subscription=True),
    )
    decision = engine.evaluate(state)
    assert decision.source_rule == "default-projects"
    assert decision.route is Route.PROJECTS_INDEX
    assert decision.side_effect is None


def test_everything_degraded_falls_to_projects(engine, make_state):
    state = make_state(
        is_authenticated=False,
        is_email_verified=False,
        user_id=None,
        fetch_degraded=FetchDegraded(auth=True, subscription=True, setup=True),
    )
    assert engine.evaluate(state).source_rule == "default-projects"


@pytest.mark.parametrize("overrides, rule, route", [
    ({"subscription_plan": SubscriptionPlan.NONE, "subscription_status": SubscriptionStatus.NONE,
      "first_time_setup": True},
     "no-plan-pricing", Route.SUBSCRIPTION_PRICING),
    ({"subscription_status": SubscriptionStatus.INACTIVE, "first_time_setup": True},
     "newly-registered-pricing", Route.SUBSCRIPTION_PRICING),
    ({"subscription_plan": SubscriptionPlan.PRO, "subscription_status": SubscriptionStatus.INACTIVE},
     "inactive-subscription", Route.PAYMENT_INDEX),
    ({"subscription_plan": SubscriptionPlan.PRO, "subscription_status": SubscriptionStatus.PAST_DUE},
     "past-due-subscription", Route.PAYMENT_INDEX),
    ({"subscription_plan": SubscriptionPlan.PRO, "subscription_status": SubscriptionStatus.CANCELLED},
     "cancelled-subscription", Route.SUBSCRIPTION_GATE),
    ({"subscription_plan": SubscriptionPlan.PRO, "needs_onboarding": True},
     "active-onboarding", Route.ONBOARDING_PAID),
    ({"subscription_plan": SubscriptionPlan.PRO, "is_trial": True, "needs_onboarding": True},
     "trialing-onboarding", Route.ONBOARDING_FREE),
    ({"subscription_plan": SubscriptionPlan.PRO, "needs_setup": True},
     "active-first-time-setup", Route.SETUP_INDEX),
    ({"current_route": Route.DASHBOARD_TOOLS_GUIDES, "active_project_id": "p1"},
     "stay-in-dashboard", Route.DASHBOARD_HOME),
    ({"current_route": Route.DASHBOARD_TOOLS_GUIDES},
     "dashboard-project-guard", Route.PROJECTS_INDEX),
    ({}, "default-projects", Route.PROJECTS_INDEX),
])
def test_account_rules(engine, make_state, overrides, rule, route):
    decision = engine.evaluate(make_state(**overrides))
    assert decision.source_rule == rule
    assert decision.route is route


class TestExpiryWarning:
    @pytest.fixture
    def expiring(self, make_state):
        def _make(**overrides):
            base = dict(subscription_plan=SubscriptionPlan.PRO, days_until_expiry=5, auto_renew=False)
            base.update(overrides)
            return make_state(**base)

        return _make

    def test_shown_once_with_session_flag(self, engine, expiring):
        decision = engine.evaluate(expiring())
        assert decision.source_rule == "subscription-expiry-warning"
        assert decision.route is Route.ONBOARDING_EXPIRING
        assert decision.side_effect == SideEffect.session_flags(has_seen_expiry_warning=True)

    def test_user_may_stay_on_warning(self, engine, expiring):
        state = expiring(
            session_flags=SessionFlags(has_seen_expiry_warning=True), current_route=Route.ONBOARDING_EXPIRING,
        )
        assert engine.evaluate(state).source_rule == "stay-on-expiry-warning"

    def test_not_shown_again_after_seen(self, engine, expiring):
        state = expiring(session_flags=SessionFlags(has_seen_expiry_warning=True))
        assert engine.evaluate(state).source_rule == "default-projects"

    @pytest.mark.parametrize("overrides", [
        {"days_until_expiry": 6},
        {"auto_renew": True},
        {"subscription_plan": SubscriptionPlan.FREE},
        {"current_route": Route.SUBSCRIPTION_PRICING},
    ])
    def test_not_shown(self, engine, expiring, overrides):
        assert engine.evaluate(expiring(**overrides)).source_rule != "subscription-expiry-warning"


def test_checkout_users_are_left_alone(engine, make_state):
    paying = engine.evaluate(make_state(current_route=Route.PAYMENT_INDEX))
    assert paying.source_rule == "stay-in-payment"
    assert paying.group is RouteGroup.PAYMENT

    pricing = engine.evaluate(make_state(current_route=Route.SUBSCRIPTION_PRICING))
    assert pricing.source_rule == "stay-on-pricing"
    assert pricing.group is RouteGroup.SUBSCRIPTION


def test_past_due_asks_for_payment_update(engine, make_state):
    past_due = engine.evaluate(make_state(
        subscription_plan=SubscriptionPlan.PRO, subscription_status=SubscriptionStatus.PAST_DUE,
    ))
    inactive = engine.evaluate(make_state(
        subscription_plan=SubscriptionPlan.PRO, subscription_status=SubscriptionStatus.INACTIVE,
    ))
    assert past_due.route is inactive.route is Route.PAYMENT_INDEX
    assert dict(past_due.params) == {"mode": "update"}
    assert inactive.params is None


def test_project_guard_outranks_trial_onboarding(engine, make_state):
    state = make_state(
        subscription_plan=SubscriptionPlan.PRO,
        is_trial=True,
        needs_onboarding=True,
        current_route=Route.DASHBOARD_HOME,
    )
    assert engine.evaluate(state).source_rule == "dashboard-project-guard"
