"""Dispatcher: trigger -> fetch -> resolve -> evaluate -> side effect -> navigate.

Each trigger starts a new cycle tagged with a generation number. Cycles are
never queued behind each other: an older cycle keeps draining its fetches, but
its output is dropped at the apply and navigate boundaries once a newer
generation exists, so only the most recent trigger ever moves the user.

After a navigation, a short cooldown absorbs the route-change events the
navigation itself causes.
"""

import asyncio
from enum import Enum
from typing import Any

from loguru import logger

from nav_guard.config import NavGuardConfig
from nav_guard.default_rules import default_engine
from nav_guard.errors import InvalidRouteError, NavigationError, SideEffectError
from nav_guard.fetch import FetchOrchestrator, FetchSource
from nav_guard.models import (
    AuthIdentity,
    AuthSource,
    Decision,
    NavigationHost,
    ResolvedState,
    SessionFlags,
    SetupStore,
    SideEffect,
    SideEffectKind,
    SubscriptionStore,
    TriggerEvent,
)
from nav_guard.resolver import StateResolver
from nav_guard.routes import Route, RouteGroup, is_route_in_group, parse_route
from nav_guard.rules import RuleEngine


class DispatcherPhase(str, Enum):
    IDLE = "idle"
    RESOLVING = "resolving"
    APPLYING = "applying"
    NAVIGATING = "navigating"
    COOLDOWN = "cooldown"


class Dispatcher:
    """Turns routing decisions into at most one navigation per trigger burst.

    Owns all mutable routing state: the generation counter, the applied
    side-effect keys, the session flags and any pending explicit redirect.
    """

    def __init__(
        self,
        auth: AuthSource,
        subscriptions: SubscriptionStore,
        setups: SetupStore,
        host: NavigationHost,
        *,
        engine: RuleEngine | None = None,
        resolver: StateResolver | None = None,
        orchestrator: FetchOrchestrator | None = None,
        config: NavGuardConfig | None = None,
    ):
        self._auth = auth
        self._subscriptions = subscriptions
        self._setups = setups
        self._host = host
        self._engine = engine or default_engine()
        self._resolver = resolver or StateResolver()
        self._orchestrator = orchestrator or FetchOrchestrator()
        self._config = config or NavGuardConfig()

        self._generation = 0
        self._phase = DispatcherPhase.IDLE
        self._tasks: set[asyncio.Task] = set()
        self._cooldown_until = 0.0
        self._cooldown_handle: asyncio.TimerHandle | None = None

        # (rule name, state fingerprint) of effects already applied / in flight
        self._applied_keys: set[tuple[str, str]] = set()
        self._applied_fingerprint: str | None = None
        self._pending_keys: set[tuple[str, str]] = set()

        self._session_flags = SessionFlags()
        self._session_user: str | None = None
        self._pending_redirect: Route | None = None
        self._last_decision: Decision | None = None
        self._unsubscribe = None
        self._closed = False

    # --- Introspection ---

    @property
    def phase(self) -> DispatcherPhase:
        return self._phase

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def last_decision(self) -> Decision | None:
        """Decision of the most recent cycle that reached the navigate step."""
        return self._last_decision

    @property
    def session_flags(self) -> SessionFlags:
        return self._session_flags

    @property
    def pending_redirect(self) -> Route | None:
        return self._pending_redirect

    # --- Triggers ---

    def attach(self, bus: Any) -> None:
        """Subscribe to a trigger bus (anything with ``subscribe(listener)``)."""
        self.detach()
        self._unsubscribe = bus.subscribe(self.trigger)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def trigger(self, event: TriggerEvent = TriggerEvent.RE_EVALUATE_REQUESTED) -> asyncio.Task | None:
        """Start a new cycle. Must be called from inside the running event loop.

        Returns the cycle's task, or None when the trigger was absorbed.
        """
        if self._closed:
            return None

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            raise RuntimeError(
                "Dispatcher.trigger must be called from inside the running event loop"
            ) from None
        if event is TriggerEvent.ROUTE_CHANGED and loop.time() < self._cooldown_until:
            logger.debug("Dispatcher: route change absorbed by cooldown")
            return None

        self._generation += 1
        generation = self._generation
        self._cancel_cooldown()
        self._phase = DispatcherPhase.RESOLVING

        task = asyncio.create_task(self._run_cycle(generation, event))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def redirect(self, route: Route | str) -> asyncio.Task | None:
        """Send the user to ``route`` on the next cycle, overriding the rules.

        Free-form paths are validated; unknown ones raise ``InvalidRouteError``.
        """
        self._pending_redirect = parse_route(route)
        logger.info(f"Dispatcher: explicit redirect requested → {self._pending_redirect.value}")
        return self.trigger(TriggerEvent.RE_EVALUATE_REQUESTED)

    async def wait_idle(self) -> None:
        """Wait until every started cycle has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        self._closed = True
        self.detach()
        self._cancel_cooldown()
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)
        self._phase = DispatcherPhase.IDLE

    # --- Cycle ---

    async def resolve_state(self) -> ResolvedState:
        """Fetch every source and build the snapshot. No side effects."""
        _, state = await self._resolve()
        return state

    async def _resolve(self) -> tuple[AuthIdentity | None, ResolvedState]:
        results = await self._orchestrator.fetch_all([
            FetchSource("auth", self._auth.get_current_identity, self._config.auth_retry),
        ])
        degraded = {name for name, r in results.items() if r.degraded}

        identity = results["auth"].value
        if identity is not None and not isinstance(identity, AuthIdentity):
            logger.warning(f"Dispatcher: auth source returned {type(identity).__name__}, ignoring")
            identity = None

        subscription = setup = None
        if identity is not None and identity.is_authenticated and identity.id:
            user_id = identity.id
            results = await self._orchestrator.fetch_all([
                FetchSource(
                    "subscription",
                    lambda: self._subscriptions.get_by_user_id(user_id),
                    self._config.subscription_retry,
                ),
                FetchSource(
                    "setup",
                    lambda: self._setups.get_by_user_id(user_id),
                    self._config.setup_retry,
                ),
            ])
            degraded |= {name for name, r in results.items() if r.degraded}
            subscription = results["subscription"].value
            setup = results["setup"].value

        state = self._resolver.resolve(
            identity,
            subscription,
            setup,
            degraded=degraded,
            current_route=self._read_current_route(),
            explicit_redirect=self._pending_redirect,
            session_flags=self._session_flags_for(identity),
            active_project_id=self._read_active_project(),
        )
        return identity, state

    async def _run_cycle(self, generation: int, event: TriggerEvent) -> None:
        try:
            identity, state = await self._resolve()
            decision = self._engine.evaluate(state)
            if state.fetch_degraded.any_source:
                logger.warning(f"Dispatcher: cycle {generation} running on degraded data {state.fetch_degraded}")

            if self._is_stale(generation, "apply"):
                return
            self._track_session_user(identity)
            self._phase = DispatcherPhase.APPLYING
            await self._apply_side_effect(decision, state)

            if self._is_stale(generation, "navigate"):
                return
            self._phase = DispatcherPhase.NAVIGATING
            self._last_decision = decision
            if decision.explicit and self._pending_redirect is state.explicit_redirect:
                self._pending_redirect = None

            logger.info(
                f"Dispatcher: cycle {generation} ({event.value}) → {decision.route.value} "
                f"via {decision.source_rule}"
            )
            self._navigate(generation, decision, state.current_route)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"Dispatcher: cycle {generation} failed: {e}")
            if generation == self._generation:
                self._fall_back(generation)
        finally:
            if generation == self._generation and self._phase is not DispatcherPhase.COOLDOWN:
                self._phase = DispatcherPhase.IDLE

    def _fall_back(self, generation: int) -> None:
        """Send the user to the catch-all route after a failed cycle."""
        current = self._read_current_route()
        if current is not None and is_route_in_group(current, RouteGroup.DASHBOARD):
            return
        decision = self._engine.fallback_decision()
        logger.warning(f"Dispatcher: cycle {generation} falling back to {decision.route.value}")
        self._phase = DispatcherPhase.NAVIGATING
        self._last_decision = decision
        self._navigate(generation, decision, current)

    def _is_stale(self, generation: int, step: str) -> bool:
        if generation != self._generation:
            logger.debug(f"Dispatcher: cycle {generation} superseded by {self._generation}, skipping {step}")
            return True
        return False

    # --- Side effects ---

    async def _apply_side_effect(self, decision: Decision, state: ResolvedState) -> None:
        effect = decision.side_effect
        if effect is None:
            return

        fingerprint = state.fingerprint()
        if fingerprint != self._applied_fingerprint:
            self._applied_fingerprint = fingerprint
            self._applied_keys.clear()

        key = (decision.source_rule, fingerprint)
        if key in self._applied_keys or key in self._pending_keys:
            logger.debug(f"Dispatcher: side effect for {decision.source_rule} already applied")
            return

        self._pending_keys.add(key)
        try:
            await self._execute(effect, state)
        except Exception as e:
            # Released so the next cycle retries if the rule still matches.
            logger.warning(f"Dispatcher: {SideEffectError(decision.source_rule, e)}")
            return
        finally:
            self._pending_keys.discard(key)

        if self._applied_fingerprint == fingerprint:
            self._applied_keys.add(key)
        logger.info(f"Dispatcher: applied {effect.kind.value} for {decision.source_rule}: {dict(effect.patch)}")

    async def _execute(self, effect: SideEffect, state: ResolvedState) -> None:
        if effect.kind is SideEffectKind.SESSION_FLAGS:
            self._session_flags = self._session_flags.merge(effect.patch)
        elif effect.kind is SideEffectKind.SETUP_UPDATE:
            if state.user_id is None:
                raise ValueError("no signed-in user to update")
            await self._setups.update(state.user_id, dict(effect.patch))
        else:
            raise ValueError(f"unsupported side effect {effect.kind!r}")

    # --- Navigation ---

    def _read_current_route(self) -> Route | None:
        try:
            current = self._host.current_route()
        except Exception as e:
            logger.warning(f"Dispatcher: {self._host.name} could not report current route: {e}")
            return None
        if current is None or isinstance(current, Route):
            return current
        try:
            return parse_route(current)
        except InvalidRouteError as e:
            logger.warning(f"Dispatcher: {e}")
            return None

    def _read_active_project(self) -> str | None:
        try:
            return self._host.active_project_id()
        except Exception as e:
            logger.warning(f"Dispatcher: {self._host.name} could not report active project: {e}")
            return None

    def _navigate(self, generation: int, decision: Decision, current: Route | None) -> None:
        if current is decision.route:
            logger.debug(f"Dispatcher: already at {current.value}")
            return
        if decision.group is not None and current is not None and is_route_in_group(current, decision.group):
            logger.debug(f"Dispatcher: {current.value} already in group {decision.group.value}")
            return

        # Cooldown starts first: hosts may emit the route change synchronously.
        self._start_cooldown(generation)
        try:
            self._host.navigate(decision.route, decision.params)
        except Exception as e:
            logger.error(f"Dispatcher: {NavigationError(decision.route.value, e)}")
            self._cancel_cooldown()
            self._cooldown_until = 0.0
            self._phase = DispatcherPhase.IDLE

    def _start_cooldown(self, generation: int) -> None:
        cooldown_s = self._config.cooldown_s
        if cooldown_s <= 0:
            return
        loop = asyncio.get_running_loop()
        self._cooldown_until = loop.time() + cooldown_s
        self._phase = DispatcherPhase.COOLDOWN
        self._cooldown_handle = loop.call_later(cooldown_s, self._end_cooldown, generation)

    def _end_cooldown(self, generation: int) -> None:
        self._cooldown_handle = None
        if generation == self._generation and self._phase is DispatcherPhase.COOLDOWN:
            self._phase = DispatcherPhase.IDLE

    def _cancel_cooldown(self) -> None:
        if self._cooldown_handle is not None:
            self._cooldown_handle.cancel()
            self._cooldown_handle = None

    def _session_flags_for(self, identity: AuthIdentity | None) -> SessionFlags:
        user = identity.id if identity is not None and identity.is_authenticated else None
        if user is None or self._session_user in (None, user):
            return self._session_flags
        return SessionFlags()

    def _track_session_user(self, identity: AuthIdentity | None) -> None:
        """Session flags belong to one signed-in user; a different user starts fresh."""
        user = identity.id if identity is not None and identity.is_authenticated else None
        if user is None or user == self._session_user:
            return
        if self._session_user is not None:
            logger.info("Dispatcher: signed-in user changed, resetting session flags")
            self._session_flags = SessionFlags()
        self._session_user = user
