from __future__ import annotations

from typing import Any, Iterable, List, Optional

from .collector import MockCollectorServer
from .dispatch import DispatchRegistry, TagLike
from .models import Event
from .recorder import EventRecorder
from .schemas import SchemaValidator
from .verification import ExpectedLike, VerificationResult


class TrackingTestHarness:
    """Test-facing surface over the event recorder and the mock collector.

    Collector verification is deferred to `close()`, which runs after the
    scenario body so tests stay linear. A scenario that raised is torn down
    without verification so its own error is what gets reported.
    """

    def __init__(
        self,
        registry: Optional[DispatchRegistry] = None,
        tags: Iterable[TagLike] = (),
        *,
        recorder: Optional[EventRecorder] = None,
        validator: Optional[SchemaValidator] = None,
        verify_timeout: float = 5.0,
    ) -> None:
        self.recorder = recorder or EventRecorder()
        self.registry = registry
        self.validator = validator
        self.verify_timeout = verify_timeout
        self.collector: Optional[MockCollectorServer] = None
        self.last_result: Optional[VerificationResult] = None
        tags = tuple(tags)
        if registry is not None and tags:
            registry.register_backend(self.recorder, *tags)

    def enable_mock_collector(self) -> MockCollectorServer:
        if self.collector is None:
            self.collector = MockCollectorServer(
                validator=self.validator,
                verify_timeout=self.verify_timeout,
            ).start()
        return self.collector

    def set_expected_events(self, events: Iterable[ExpectedLike]) -> None:
        self._require_collector().set_expected_events(events)

    def verify(self) -> bool:
        self.last_result = self._require_collector().verify()
        return self.last_result.passed

    def accumulated_events(self) -> List[Event]:
        return list(self.recorder.events)

    def clear_accumulated_events(self) -> None:
        self.recorder.clear()

    def close(self, *, verify: bool = True) -> None:
        collector, self.collector = self.collector, None
        result: Optional[VerificationResult] = None
        try:
            if collector is not None and verify and collector.has_expectations:
                result = self.last_result = collector.verify()
        finally:
            if collector is not None:
                collector.stop()
            self.recorder.clear()
        if result is not None:
            result.raise_for_failure()

    def __enter__(self) -> "TrackingTestHarness":
        return self

    def __exit__(self, exc_type: Any, *exc_info: Any) -> None:
        self.close(verify=exc_type is None)

    def _require_collector(self) -> MockCollectorServer:
        if self.collector is None:
            raise RuntimeError("Call enable_mock_collector() first")
        return self.collector
