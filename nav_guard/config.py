"""Dispatcher configuration.

NavGuardConfig is a frozen dataclass: immutable after creation, every field
has a default. Override what you need::

    config = NavGuardConfig(cooldown_s=0.25)
    config = NavGuardConfig.from_dict({"cooldown_s": 0.25, "subscription_retry": {"max_attempts": 3}})
"""

from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from typing import Any

from nav_guard.errors import ConfigurationError
from nav_guard.fetch import RetryPolicy

_RETRY_FIELDS = ("auth_retry", "subscription_retry", "setup_retry")


@dataclass(frozen=True)
class NavGuardConfig:
    # Per-source retry (5 attempts, 500 ms apart)
    auth_retry: RetryPolicy = field(default_factory=RetryPolicy)
    subscription_retry: RetryPolicy = field(default_factory=RetryPolicy)
    setup_retry: RetryPolicy = field(default_factory=RetryPolicy)

    # Window after a navigation during which route-change triggers are absorbed
    cooldown_s: float = 0.5

    def __post_init__(self) -> None:
        if self.cooldown_s < 0:
            raise ConfigurationError(f"cooldown_s must be >= 0, got {self.cooldown_s}")
        for name in _RETRY_FIELDS:
            if not isinstance(getattr(self, name), RetryPolicy):
                raise ConfigurationError(f"{name} must be a RetryPolicy")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "NavGuardConfig":
        """Build from plain settings, e.g. a parsed JSON or TOML section. Fails loud."""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(f"Unknown nav-guard setting(s): {', '.join(sorted(unknown))}")

        kwargs: dict[str, Any] = {}
        for name, value in data.items():
            if name in _RETRY_FIELDS:
                if not isinstance(value, Mapping):
                    raise ConfigurationError(f"{name} must be a mapping")
                try:
                    kwargs[name] = RetryPolicy(**value)
                except TypeError as e:
                    raise ConfigurationError(f"Invalid {name}: {e}") from e
            elif name == "cooldown_s":
                if isinstance(value, bool) or not isinstance(value, (int, float)):
                    raise ConfigurationError(f"cooldown_s must be a number, got {value!r}")
                kwargs[name] = float(value)
        return cls(**kwargs)
