from __future__ import annotations

import itertools
import threading
from dataclasses import dataclass
from typing import Iterable, List, Tuple

from .models import Event
from .sinks import TrackerBackend
from .verification import ExpectedLike, VerificationResult, compare_sequences


@dataclass(frozen=True)
class RecordedEvent:
    index: int
    event: Event


class EventRecorder(TrackerBackend):
    """In-memory, order-preserving log of dispatched events for unit tests.

    Appends are serialized by a lock and numbered by a monotonic counter, so
    concurrent dispatch neither loses nor duplicates events.
    """

    def __init__(self) -> None:
        self._records: List[RecordedEvent] = []
        self._counter = itertools.count()
        self._lock = threading.Lock()

    def receive(self, event: Event) -> None:
        with self._lock:
            self._records.append(RecordedEvent(index=next(self._counter), event=event))

    def on_dispatch(self, event: Event) -> None:
        self.receive(event)

    def accumulated_events(self) -> Tuple[RecordedEvent, ...]:
        with self._lock:
            return tuple(self._records)

    @property
    def events(self) -> Tuple[Event, ...]:
        return tuple(record.event for record in self.accumulated_events())

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
            self._counter = itertools.count()

    def verify(self, expected: Iterable[ExpectedLike]) -> VerificationResult:
        observed = [event.to_wire() for event in self.events]
        return compare_sequences(expected, observed)

    def assert_events(self, expected: Iterable[ExpectedLike]) -> None:
        self.verify(expected).raise_for_failure()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
