"""Exception types for nav-guard."""


class NavGuardError(Exception):
    """Base class for all nav-guard errors."""


class ConfigurationError(NavGuardError):
    """Rule set, route table or settings are invalid. Raised at construction."""


class InvalidRouteError(NavGuardError, ValueError):
    """A free-form path does not name a known route."""

    def __init__(self, raw: str, suggestion: str | None = None):
        self.raw = raw
        self.suggestion = suggestion
        message = f"Unknown route '{raw}'"
        if suggestion:
            message += f". Did you mean: {suggestion}?"
        super().__init__(message)


class SourceFetchError(NavGuardError):
    """A data source kept failing after its retry budget was spent.

    Never raised past the fetch orchestrator; carried in ``FetchResult.error``.
    """

    def __init__(self, source: str, attempts: int, cause: BaseException | None = None):
        self.source = source
        self.attempts = attempts
        self.cause = cause
        super().__init__(f"Source '{source}' failed after {attempts} attempt(s): {cause}")


class SideEffectError(NavGuardError):
    """An ``on_match`` write failed."""

    def __init__(self, rule: str, cause: BaseException):
        self.rule = rule
        self.cause = cause
        super().__init__(f"Side effect for rule '{rule}' failed: {cause}")


class NavigationError(NavGuardError):
    """The navigation host rejected a route."""

    def __init__(self, route: str, cause: BaseException):
        self.route = route
        self.cause = cause
        super().__init__(f"Navigation to '{route}' failed: {cause}")
