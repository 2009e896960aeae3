from __future__ import annotations

from typing import TYPE_CHECKING, List

if TYPE_CHECKING:  # pragma: no cover
    from .schemas import FieldIssue
    from .verification import VerificationResult


class TrackingError(RuntimeError):
    """Base class for failures raised while routing or shipping events."""


class InvalidEventError(ValueError):
    """Raised when an event or schema URI is malformed at construction."""


class UnknownSchema(TrackingError, LookupError):
    """Raised when a schema URI does not resolve to a known schema document."""

    def __init__(self, schema: str) -> None:
        super().__init__(f"Schema '{schema}' not found")
        self.schema = schema


class SchemaMismatch(TrackingError):
    """Raised when a custom event payload does not conform to its schema."""

    def __init__(self, schema: str, issues: List["FieldIssue"]) -> None:
        details = "; ".join(issue.describe() for issue in issues)
        super().__init__(f"Payload does not match {schema}: {details}")
        self.schema = schema
        self.issues = list(issues)


class RegistrationAfterFreeze(TrackingError):
    """Raised when a handler is registered after dispatch has started."""


class TransportError(TrackingError):
    """Raised when an event cannot be delivered to the collector."""


class VerificationMismatch(AssertionError):
    """Raised when observed events differ from the expected sequence."""

    def __init__(self, result: "VerificationResult") -> None:
        super().__init__(result.describe())
        self.result = result


class CollectorTimeout(VerificationMismatch):
    """Raised when expected traffic did not reach the collector in time."""
