"""Typed analytics events: dispatch, schema validation and test verification."""

from .config import Environment, MismatchPolicy, TrackingConfig
from .dispatch import AnalyticsService, DispatchRegistry, build_tracking
from .errors import (
    CollectorTimeout,
    InvalidEventError,
    RegistrationAfterFreeze,
    SchemaMismatch,
    TrackingError,
    TransportError,
    UnknownSchema,
    VerificationMismatch,
)
from .models import (
    EventKind,
    EventTag,
    GenericPayload,
    ScreenView,
    SchemaURI,
    Structured,
    Unstructured,
    UnstructuredEventConvertible,
)
from .recorder import EventRecorder, RecordedEvent
from .schemas import SchemaDocument, SchemaRegistry, SchemaValidator
from .sinks import HttpTransport, RealSink, TrackerBackend, Transport
from .verification import ABSENT, ANY, ExpectedEvent, VerificationResult

__all__ = [
    "ABSENT",
    "ANY",
    "AnalyticsService",
    "CollectorTimeout",
    "DispatchRegistry",
    "Environment",
    "EventKind",
    "EventRecorder",
    "EventTag",
    "ExpectedEvent",
    "GenericPayload",
    "HttpTransport",
    "InvalidEventError",
    "MismatchPolicy",
    "RealSink",
    "RecordedEvent",
    "RegistrationAfterFreeze",
    "SchemaDocument",
    "SchemaMismatch",
    "SchemaRegistry",
    "SchemaURI",
    "SchemaValidator",
    "ScreenView",
    "Structured",
    "TrackerBackend",
    "TrackingConfig",
    "TrackingError",
    "Transport",
    "TransportError",
    "UnknownSchema",
    "Unstructured",
    "UnstructuredEventConvertible",
    "VerificationMismatch",
    "VerificationResult",
    "build_tracking",
]
