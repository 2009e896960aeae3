from __future__ import annotations

import threading
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple, Type, Union

import requests

from .config import TrackingConfig
from .errors import RegistrationAfterFreeze
from .logger import TrackingLogger
from .models import (
    SCREEN_VIEW_TAG,
    STRUCTURED_TAG,
    Event,
    EventTag,
    ScreenView,
    Structured,
    Trackable,
    UnstructuredEventConvertible,
    as_event,
)
from .schemas import SchemaRegistry, SchemaValidator
from .sinks import HttpTransport, RealSink, TrackerBackend

Handler = Callable[[Event], Any]
TagLike = Union[EventTag, Type[UnstructuredEventConvertible]]


def _coerce_tag(tag: TagLike) -> EventTag:
    if isinstance(tag, EventTag):
        return tag
    if isinstance(tag, type) and issubclass(tag, UnstructuredEventConvertible):
        return tag.event_tag()
    raise TypeError(f"Expected an EventTag or custom event type, got {tag!r}")


class DispatchRegistry:
    """Type-keyed table routing each event to the handlers registered for it.

    Handlers are registered during a single-threaded startup phase. The table
    freezes on `freeze()` or on the first dispatch; registering afterwards
    raises `RegistrationAfterFreeze`. Once frozen, `dispatch` only reads the
    table and may be called from any thread.
    """

    def __init__(self, *, logger: TrackingLogger | None = None) -> None:
        self.logger = logger or TrackingLogger()
        self._handlers: Dict[EventTag, List[Handler]] = {}
        self._table: Dict[EventTag, Tuple[Handler, ...]] = {}
        self._frozen = False
        self._unrouted: Set[EventTag] = set()
        self._lock = threading.Lock()

    @property
    def frozen(self) -> bool:
        return self._frozen

    def register(self, tag: TagLike, handler: Handler) -> None:
        event_tag = _coerce_tag(tag)
        if not callable(handler):
            raise TypeError(f"Handler for {event_tag} is not callable")
        with self._lock:
            if self._frozen:
                raise RegistrationAfterFreeze(
                    f"Cannot register a handler for {event_tag} after dispatch started"
                )
            self._handlers.setdefault(event_tag, []).append(handler)

    def register_backend(self, backend: TrackerBackend, *tags: TagLike) -> None:
        for tag in tags:
            self.register(tag, backend.receive)

    def freeze(self) -> None:
        with self._lock:
            if self._frozen:
                return
            self._table = {tag: tuple(handlers) for tag, handlers in self._handlers.items()}
            self._frozen = True

    def handlers_for(self, tag: TagLike) -> Tuple[Handler, ...]:
        event_tag = _coerce_tag(tag)
        if self._frozen:
            return self._table.get(event_tag, ())
        with self._lock:
            return tuple(self._handlers.get(event_tag, ()))

    def dispatch(self, event: Trackable) -> int:
        instance = as_event(event)
        if not self._frozen:
            self.freeze()
        handlers = self._table.get(instance.tag, ())
        if not handlers:
            self._note_unrouted(instance.tag)
            return 0
        for handler in handlers:
            handler(instance)
        return len(handlers)

    def _note_unrouted(self, tag: EventTag) -> None:
        with self._lock:
            if tag in self._unrouted:
                return
            self._unrouted.add(tag)
        self.logger.warning("Dispatch", f"No handler registered for {tag}; event ignored")


class AnalyticsService:
    """Entry point application code emits events through.

    Passed explicitly to whatever builds events instead of living in a
    process-wide global.
    """

    def __init__(self, registry: DispatchRegistry) -> None:
        self.registry = registry

    def track(self, event: Trackable) -> int:
        return self.registry.dispatch(event)

    def track_screen(self, name: str) -> int:
        return self.track(ScreenView(name=name))

    def track_structured(
        self,
        category: str,
        action: str,
        *,
        label: Optional[str] = None,
        property: Optional[str] = None,
        value: Optional[float] = None,
    ) -> int:
        return self.track(
            Structured(
                category=category,
                action=action,
                label=label,
                property=property,
                value=value,
            )
        )


def build_tracking(
    config: TrackingConfig,
    resolver: SchemaRegistry,
    tags: Iterable[TagLike] = (),
    *,
    session: Optional[requests.Session] = None,
    logger: TrackingLogger | None = None,
) -> AnalyticsService:
    """Wire a registry that ships every listed event type to the collector."""
    if not config.collector_url:
        raise ValueError("A collector_url is required to build the tracking pipeline")
    logger = logger or TrackingLogger()
    transport = HttpTransport(
        config.collector_url,
        session=session,
        timeout=config.timeout,
        attempts=config.attempts,
    )
    sink = RealSink(
        validator=SchemaValidator(resolver),
        transport=transport,
        policy=config.mismatch_policy,
        logger=logger,
    )
    registry = DispatchRegistry(logger=logger)
    registry.register_backend(sink, SCREEN_VIEW_TAG, STRUCTURED_TAG, *tags)
    return AnalyticsService(registry)
