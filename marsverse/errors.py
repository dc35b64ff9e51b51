"""Exception types raised by Marsverse.

Only configuration problems and programming errors are exceptions. Infeasible
candidates, idle agents and blocked mission stages are ordinary return values
and never surface here.
"""


class MarsverseError(Exception):
    """Base class for all Marsverse errors."""


class ConfigurationError(MarsverseError):
    """Raised at load time when configuration or catalog data is invalid."""


class InvalidScopeError(ConfigurationError):
    """Raised when a malfunction or component scope string is malformed."""

    def __init__(self, scope: object, *, owner: str | None = None) -> None:
        self.scope = scope
        self.owner = owner
        where = f" in '{owner}'" if owner else ""
        super().__init__(f"Malformed scope {scope!r}{where}")


class UnknownResourceError(ConfigurationError):
    """Raised when a manifest or scenario names a resource kind nobody declared."""

    def __init__(self, kind: str, known: frozenset[str] | None = None) -> None:
        self.kind = kind
        self.known = known or frozenset()
        hint = f" (known kinds: {', '.join(sorted(self.known))})" if self.known else ""
        super().__init__(f"Unknown resource kind '{kind}'{hint}")


class InvalidTransitionError(MarsverseError):
    """Raised when a process is driven in a way its state machine forbids."""


class PulseListenerError(MarsverseError):
    """Raised when one or more pulse listeners fail after a pulse.

    Listeners run outside the pulse loop, so a failure never corrupts the
    pulse itself; the orchestrator still stops the run and reports all of
    the failures together.
    """

    def __init__(self, *, tick: int, errors: dict[str, Exception]) -> None:
        self.tick = tick
        self.errors = errors
        lines = [f"One or more pulse listeners failed after pulse {tick}:"]
        for name, exc in errors.items():
            lines.append(f"  - {name}: {exc}")
        super().__init__("\n".join(lines))
