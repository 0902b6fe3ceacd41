"""StateResolver: raw account records -> one canonical ResolvedState.

Pure. Missing records are replaced by the same safe defaults used when a
source runs out of retries, and the matching ``fetch_degraded`` flag is set so
callers can tell a real record from a best-effort one.
"""

from collections.abc import Iterable

from nav_guard.models import (
    PAID_PLANS,
    AuthIdentity,
    FetchDegraded,
    PermissionLevel,
    ResolvedState,
    SessionFlags,
    SetupRecord,
    SubscriptionPlan,
    SubscriptionRecord,
    SubscriptionStatus,
)
from nav_guard.routes import Route

SOURCE_NAMES = ("auth", "subscription", "setup")

# Safe defaults: an unauthenticated visitor; a brand-new account with no plan
# that has not finished onboarding or setup.
DEFAULT_AUTH = AuthIdentity(id=None, is_authenticated=False, is_email_verified=False)
DEFAULT_SUBSCRIPTION = SubscriptionRecord()
DEFAULT_SETUP = SetupRecord(show_onboarding=True, first_time_setup=True, skipped_email_verification=False)


def permission_level_for(auth: AuthIdentity, subscription: SubscriptionRecord) -> PermissionLevel:
    """Derive the access level from authentication and subscription."""
    if not auth.is_authenticated:
        return PermissionLevel.GUEST
    if subscription.status is not SubscriptionStatus.ACTIVE or subscription.plan is SubscriptionPlan.NONE:
        return PermissionLevel.RESTRICTED
    if subscription.is_trial or subscription.plan is SubscriptionPlan.FREE:
        return PermissionLevel.TRIAL
    if subscription.plan in PAID_PLANS:
        return PermissionLevel.FULL
    return PermissionLevel.RESTRICTED


class StateResolver:

    def resolve(
        self,
        auth: AuthIdentity | None,
        subscription: SubscriptionRecord | None,
        setup: SetupRecord | None,
        *,
        degraded: Iterable[str] = (),
        current_route: Route | None = None,
        explicit_redirect: Route | None = None,
        session_flags: SessionFlags | None = None,
        active_project_id: str | None = None,
    ) -> ResolvedState:
        """Build the snapshot.

        ``degraded`` names sources whose value is already a fallback (retries
        exhausted). A ``None`` record is treated the same way.
        """
        degraded = set(degraded)
        unknown = degraded - set(SOURCE_NAMES)
        if unknown:
            raise ValueError(f"Unknown source name(s): {', '.join(sorted(unknown))}")

        if auth is None:
            auth = DEFAULT_AUTH
            degraded.add("auth")
        if subscription is None:
            subscription = DEFAULT_SUBSCRIPTION
            degraded.add("subscription")
        if setup is None:
            setup = DEFAULT_SETUP
            degraded.add("setup")

        return ResolvedState(
            is_authenticated=auth.is_authenticated,
            # An unauthenticated identity cannot be verified.
            is_email_verified=auth.is_authenticated and auth.is_email_verified,
            subscription_plan=subscription.plan,
            subscription_status=subscription.status,
            is_trial=subscription.is_trial,
            days_until_expiry=subscription.days_until_expiry,
            needs_onboarding=setup.show_onboarding,
            needs_setup=setup.first_time_setup,
            first_time_setup=setup.first_time_setup,
            permission_level=permission_level_for(auth, subscription),
            explicit_redirect=explicit_redirect,
            fetch_degraded=FetchDegraded(
                auth="auth" in degraded,
                subscription="subscription" in degraded,
                setup="setup" in degraded,
            ),
            user_id=auth.id if auth.is_authenticated else None,
            auto_renew=subscription.auto_renew,
            skipped_email_verification=setup.skipped_email_verification,
            current_route=current_route,
            session_flags=session_flags or SessionFlags(),
            active_project_id=active_project_id,
        )
