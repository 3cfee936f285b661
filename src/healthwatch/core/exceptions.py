"""Error taxonomy for the monitoring core.

Every error raised by the core derives from HealthwatchError so callers can
catch the whole family. None of them is fatal to the process.
"""


class HealthwatchError(Exception):
    """Base class for all errors raised by healthwatch."""


class ValidationError(HealthwatchError, ValueError):
    """Input rejected before any write took place."""


class DuplicateTypeError(HealthwatchError):
    """A metric type with the same name already exists."""

    def __init__(self, name: str) -> None:
        super().__init__(f"metric type {name!r} already exists")
        self.name = name


class NotFoundError(HealthwatchError, LookupError):
    """Referenced entity does not exist."""


class UnknownTypeError(NotFoundError):
    """Referenced metric type does not exist."""

    def __init__(self, name: str) -> None:
        super().__init__(f"unknown metric type {name!r}")
        self.name = name


class InvalidStateError(HealthwatchError):
    """Illegal alert state transition."""


class UnsupportedMethodError(HealthwatchError):
    """Aggregation method not allowed for the metric type."""


class InsufficientDataError(HealthwatchError):
    """Fewer samples than the aggregation's configured minimum."""


class StorageUnavailableError(HealthwatchError):
    """The storage backend failed; no partial state was written."""
