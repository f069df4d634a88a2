"""Custom exception hierarchy for the command pipeline."""


class PipelineError(Exception):
    """Base exception for all pipeline errors."""


# --- Configuration ---
class ConfigError(PipelineError):
    """Invalid or missing configuration."""


# --- Commands ---
class CommandError(PipelineError):
    """Malformed or unroutable command."""


class UnknownCommandError(CommandError):
    """No use case is registered for the command name."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"No use case registered for command {name!r}")


# --- Domain ---
class DomainError(PipelineError):
    """Domain model error."""


class InvariantViolation(DomainError):
    """An aggregate operation rejected a mutation.

    ``field`` names the offending input (or ``"state"`` when the
    rejection is about the aggregate's current status).
    """

    def __init__(self, rule: str, message: str, field: str = "state"):
        self.rule = rule
        self.field = field
        self.message = message
        super().__init__(f"[{rule}] {message}")


class SealedAggregateError(DomainError, AttributeError):
    """Attribute write on an aggregate outside one of its mutation operations."""


# --- Policy ---
class PolicyFault(PipelineError):
    """A policy implementation failed unexpectedly (not a denial)."""

    def __init__(self, policy_name: str, reason: str):
        self.policy_name = policy_name
        self.reason = reason
        super().__init__(f"Policy {policy_name!r} faulted: {reason}")


# --- Store ---
class StoreError(PipelineError):
    """Aggregate store error."""


class AggregateNotFound(StoreError):
    """No aggregate exists for the requested identity."""

    def __init__(self, aggregate_id: str):
        self.aggregate_id = aggregate_id
        super().__init__(f"Aggregate {aggregate_id!r} not found")


class VersionConflict(StoreError):
    """Optimistic version check failed on save."""

    def __init__(self, aggregate_id: str, expected: int, actual: int):
        self.aggregate_id = aggregate_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Version conflict on {aggregate_id!r}: "
            f"expected v{expected}, store has v{actual}"
        )


class StoreUnavailable(StoreError):
    """The store could not be reached or refused the write."""


# --- Publication ---
class PublishError(PipelineError):
    """The event publisher refused or failed to accept an event."""


# --- Lifecycle ---
class LifecycleError(PipelineError, ValueError):
    """Invalid execution lifecycle transition."""
