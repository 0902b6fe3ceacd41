"""RuleEngine: prioritized routing rules evaluated against a ResolvedState.

Rules are ordered once, at construction, by (priority desc, declaration
order asc). The first matching rule wins. Every rule set carries exactly one
catch-all rule at the lowest priority, so evaluation always yields a Decision.
"""

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from loguru import logger

from nav_guard.errors import ConfigurationError
from nav_guard.models import Decision, ResolvedState, SideEffect
from nav_guard.routes import Route, RouteGroup, RouteTable

Predicate = Callable[[ResolvedState], bool]
OnMatch = Callable[[ResolvedState], SideEffect]


def always(_state: ResolvedState) -> bool:
    return True


@dataclass(frozen=True)
class RoutingRule:
    """A named, prioritized predicate -> target mapping."""

    name: str
    priority: int
    predicate: Predicate
    target: Route | RouteGroup
    on_match: OnMatch | None = None  # pure factory; the dispatcher runs the effect
    description: str = ""
    catch_all: bool = False
    params: Mapping[str, Any] | None = field(default=None, hash=False)  # passed to the host

    def __post_init__(self) -> None:
        if self.params is not None:
            object.__setattr__(self, "params", MappingProxyType(dict(self.params)))

    @classmethod
    def fallback(cls, name: str, target: Route | RouteGroup, priority: int = 0,
                 description: str = "") -> "RoutingRule":
        """Build the catch-all rule for a rule set."""
        return cls(name, priority, always, target, description=description, catch_all=True)


class RuleEngine:
    """Selects the destination for a ResolvedState.

    Usage:
        engine = RuleEngine(default_rules())
        decision = engine.evaluate(state)
    """

    def __init__(self, rules: Iterable[RoutingRule], table: RouteTable | None = None) -> None:
        self._table = table or RouteTable()
        declared = list(rules)
        self._validate(declared)
        # Stable sort keeps declaration order as the secondary key.
        self._ordered: tuple[RoutingRule, ...] = tuple(
            rule for _, rule in sorted(enumerate(declared), key=lambda p: (-p[1].priority, p[0]))
        )
        self._catch_all = self._ordered[-1]

    def _validate(self, rules: list[RoutingRule]) -> None:
        if not rules:
            raise ConfigurationError("Rule set is empty")

        seen_names: set[str] = set()
        seen_priorities: dict[int, str] = {}
        for rule in rules:
            if not rule.name:
                raise ConfigurationError("Rule with empty name")
            if rule.name in seen_names:
                raise ConfigurationError(f"Duplicate rule name: {rule.name}")
            seen_names.add(rule.name)

            if rule.priority in seen_priorities:
                raise ConfigurationError(
                    f"Rules '{seen_priorities[rule.priority]}' and '{rule.name}' "
                    f"share priority {rule.priority}"
                )
            seen_priorities[rule.priority] = rule.name

            if isinstance(rule.target, RouteGroup):
                if rule.target not in self._table:
                    raise ConfigurationError(
                        f"Rule '{rule.name}' targets group {rule.target.name} with no default route"
                    )
            elif not isinstance(rule.target, Route):
                raise ConfigurationError(f"Rule '{rule.name}' has invalid target {rule.target!r}")

            if not callable(rule.predicate):
                raise ConfigurationError(f"Rule '{rule.name}' predicate is not callable")
            if rule.on_match is not None and not callable(rule.on_match):
                raise ConfigurationError(f"Rule '{rule.name}' on_match is not callable")

        catch_alls = [r for r in rules if r.catch_all]
        if len(catch_alls) != 1:
            raise ConfigurationError(
                f"Rule set needs exactly one catch-all rule, found {len(catch_alls)}"
            )
        lowest = min(r.priority for r in rules)
        if catch_alls[0].priority != lowest:
            raise ConfigurationError(
                f"Catch-all rule '{catch_alls[0].name}' must have the lowest priority ({lowest})"
            )

    @property
    def rules(self) -> tuple[RoutingRule, ...]:
        """Rules in evaluation order."""
        return self._ordered

    @property
    def table(self) -> RouteTable:
        return self._table

    def evaluate(self, state: ResolvedState) -> Decision:
        for rule in self._ordered:
            if rule.predicate(state):
                return self._decide(rule, state)

        # Only reachable if the catch-all predicate was overridden to return False.
        logger.warning(f"RuleEngine: no rule matched, using catch-all '{self._catch_all.name}'")
        return self._decide(self._catch_all, state)

    def explain(self, state: ResolvedState) -> list[str]:
        """Names of every matching rule, in evaluation order. The first one wins."""
        return [rule.name for rule in self._ordered if rule.predicate(state)]

    def fallback_decision(self) -> Decision:
        """Decision of the catch-all rule, without evaluating any predicate."""
        rule = self._catch_all
        group = rule.target if isinstance(rule.target, RouteGroup) else None
        return Decision(
            route=self.resolve_target(rule.target), source_rule=rule.name, group=group, params=rule.params,
        )

    def resolve_target(self, target: Route | RouteGroup) -> Route:
        if isinstance(target, RouteGroup):
            return self._table.default_for(target)
        return target

    def _decide(self, rule: RoutingRule, state: ResolvedState) -> Decision:
        side_effect = rule.on_match(state) if rule.on_match else None

        if state.explicit_redirect is not None:
            return Decision(
                route=state.explicit_redirect,
                source_rule=rule.name,
                side_effect=side_effect,
                explicit=True,
            )

        group = rule.target if isinstance(rule.target, RouteGroup) else None
        return Decision(
            route=self.resolve_target(rule.target),
            source_rule=rule.name,
            side_effect=side_effect,
            group=group,
            params=rule.params,
        )
