from __future__ import annotations

import copy
import math
import re
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, ClassVar, Dict, Mapping, Optional, Tuple, Union

from .errors import InvalidEventError

SCREEN_VIEW_SCHEMA = "screen_view"
GENERIC_KEYS = ("category", "action", "label", "property", "value")
TRANSIENT_KEYS = ("eid", "dtm")

_IGLU_RE = re.compile(
    r"^iglu:(?P<vendor>[a-zA-Z0-9_.\-]+)/(?P<name>[a-zA-Z0-9_\-]+)/"
    r"(?P<format>jsonschema)/(?P<model>[1-9][0-9]*)-(?P<revision>[0-9]+)-(?P<addition>[0-9]+)$"
)


class EventKind(str, Enum):
    SCREEN_VIEW = "screen_view"
    STRUCTURED = "structured"
    UNSTRUCTURED = "unstructured"


@dataclass(frozen=True)
class EventTag:
    """Stable routing identity of an event variant."""

    kind: EventKind
    name: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", EventKind(self.kind))
        if self.kind is EventKind.UNSTRUCTURED:
            if not isinstance(self.name, str) or not self.name:
                raise InvalidEventError("Unstructured event tags require a name")
        elif self.name is not None:
            raise InvalidEventError(f"{self.kind.value} tags do not take a name")

    @classmethod
    def unstructured(cls, name: str) -> "EventTag":
        return cls(EventKind.UNSTRUCTURED, name)

    def __str__(self) -> str:
        if self.name is None:
            return self.kind.value
        return f"{self.kind.value}({self.name})"


SCREEN_VIEW_TAG = EventTag(EventKind.SCREEN_VIEW)
STRUCTURED_TAG = EventTag(EventKind.STRUCTURED)


@dataclass(frozen=True)
class SchemaURI:
    """Parsed `iglu:<vendor>/<name>/jsonschema/<model>-<revision>-<addition>` URI."""

    vendor: str
    name: str
    version: Tuple[int, int, int]
    format: str = "jsonschema"

    @classmethod
    def parse(cls, text: str) -> "SchemaURI":
        if not isinstance(text, str):
            raise InvalidEventError(f"Schema URI must be a string, got {type(text).__name__}")
        match = _IGLU_RE.match(text.strip())
        if not match:
            raise InvalidEventError(f"Malformed Iglu schema URI: {text!r}")
        return cls(
            vendor=match.group("vendor"),
            name=match.group("name"),
            version=(
                int(match.group("model")),
                int(match.group("revision")),
                int(match.group("addition")),
            ),
            format=match.group("format"),
        )

    @classmethod
    def coerce(cls, value: Union["SchemaURI", str]) -> "SchemaURI":
        if isinstance(value, SchemaURI):
            return value
        return cls.parse(value)

    @property
    def version_string(self) -> str:
        return "-".join(str(part) for part in self.version)

    def __str__(self) -> str:
        return f"iglu:{self.vendor}/{self.name}/{self.format}/{self.version_string}"


def _require_text(name: str, value: Any) -> None:
    if not isinstance(value, str) or not value.strip():
        raise InvalidEventError(f"{name} must be a non-empty string")


def _frozen_mapping(value: Any, name: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise InvalidEventError(f"{name} must be a mapping")
    for key in value:
        if not isinstance(key, str):
            raise InvalidEventError(f"{name} keys must be strings, got {key!r}")
    return MappingProxyType(copy.deepcopy(dict(value)))


def _new_event_id() -> str:
    return uuid.uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def _transient_wire(event: Any) -> Dict[str, Any]:
    return {
        "eid": event.event_id,
        "dtm": int(event.timestamp.timestamp() * 1000),
    }


@dataclass(frozen=True)
class GenericPayload:
    category: str
    action: str
    label: Optional[str] = None
    property: Optional[str] = None
    value: Optional[float] = None

    def __post_init__(self) -> None:
        _require_text("category", self.category)
        _require_text("action", self.action)
        for key in ("label", "property"):
            if getattr(self, key) is not None and not isinstance(getattr(self, key), str):
                raise InvalidEventError(f"{key} must be a string when present")
        if self.value is not None and (
            isinstance(self.value, bool) or not isinstance(self.value, (int, float))
        ):
            raise InvalidEventError("value must be a number when present")
        if self.value is not None and not math.isfinite(self.value):
            raise InvalidEventError("value must be finite")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "GenericPayload":
        unknown = sorted(set(data) - set(GENERIC_KEYS))
        if unknown:
            raise InvalidEventError(f"Unknown generic payload keys: {', '.join(unknown)}")
        for key in ("category", "action"):
            if key not in data:
                raise InvalidEventError(f"Generic payload requires '{key}'")
        return cls(**{key: data.get(key) for key in GENERIC_KEYS})

    def to_wire(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"category": self.category, "action": self.action}
        for key in ("label", "property", "value"):
            if getattr(self, key) is not None:
                payload[key] = getattr(self, key)
        return payload


@dataclass(frozen=True)
class ScreenView:
    name: str
    event_id: str = field(default_factory=_new_event_id, compare=False, repr=False)
    timestamp: datetime = field(default_factory=_utcnow, compare=False, repr=False)

    tag: ClassVar[EventTag] = SCREEN_VIEW_TAG

    def __post_init__(self) -> None:
        _require_text("name", self.name)

    def to_wire(self) -> Dict[str, Any]:
        return {"schema": SCREEN_VIEW_SCHEMA, "name": self.name, **_transient_wire(self)}


@dataclass(frozen=True)
class Structured:
    category: str
    action: str
    label: Optional[str] = None
    property: Optional[str] = None
    value: Optional[float] = None
    event_id: str = field(default_factory=_new_event_id, compare=False, repr=False)
    timestamp: datetime = field(default_factory=_utcnow, compare=False, repr=False)

    tag: ClassVar[EventTag] = STRUCTURED_TAG

    def __post_init__(self) -> None:
        self.generic_payload()

    def generic_payload(self) -> GenericPayload:
        return GenericPayload(
            category=self.category,
            action=self.action,
            label=self.label,
            property=self.property,
            value=self.value,
        )

    def to_wire(self) -> Dict[str, Any]:
        return {**self.generic_payload().to_wire(), **_transient_wire(self)}


@dataclass(frozen=True)
class Unstructured:
    """Schema-bound custom event: specific payload plus generic fields.

    `name` is the routing name used for the event tag; it defaults to the
    schema name. `data` is deep-copied and exposed read-only.
    """

    schema: SchemaURI
    data: Mapping[str, Any]
    generic: GenericPayload
    name: Optional[str] = None
    event_id: str = field(default_factory=_new_event_id, compare=False, repr=False)
    timestamp: datetime = field(default_factory=_utcnow, compare=False, repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "schema", SchemaURI.coerce(self.schema))
        object.__setattr__(self, "data", _frozen_mapping(self.data, "data"))
        if isinstance(self.generic, Mapping):
            object.__setattr__(self, "generic", GenericPayload.from_mapping(self.generic))
        elif not isinstance(self.generic, GenericPayload):
            raise InvalidEventError("generic must be a GenericPayload or mapping")
        if self.name is None:
            object.__setattr__(self, "name", self.schema.name)
        _require_text("name", self.name)

    @property
    def tag(self) -> EventTag:
        return EventTag.unstructured(self.name)

    def specific_payload(self) -> Dict[str, Any]:
        return copy.deepcopy(dict(self.data))

    def to_wire(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "schema": str(self.schema),
            "data": self.specific_payload(),
        }
        payload.update(self.generic.to_wire())
        payload.update(_transient_wire(self))
        return payload


Event = Union[ScreenView, Structured, Unstructured]


class UnstructuredEventConvertible(ABC):
    """Capability of a custom event type to travel as an unstructured event.

    Subclasses provide the schema URI, the schema-specific payload and the
    generic category/action fields. `event_name` is the routing name and
    defaults to the class name.
    """

    event_name: ClassVar[str]

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        if "event_name" not in cls.__dict__:
            cls.event_name = cls.__name__

    @abstractmethod
    def schema_uri(self) -> Union[SchemaURI, str]:
        ...

    @abstractmethod
    def specific_payload(self) -> Mapping[str, Any]:
        ...

    @abstractmethod
    def generic_payload(self) -> Union[GenericPayload, Mapping[str, Any]]:
        ...

    @classmethod
    def event_tag(cls) -> EventTag:
        return EventTag.unstructured(cls.event_name)

    def to_event(self) -> Unstructured:
        return Unstructured(
            schema=self.schema_uri(),
            data=self.specific_payload(),
            generic=self.generic_payload(),
            name=self.event_name,
        )


Trackable = Union[Event, UnstructuredEventConvertible]


def as_event(value: Trackable) -> Event:
    if isinstance(value, UnstructuredEventConvertible):
        return value.to_event()
    if isinstance(value, (ScreenView, Structured, Unstructured)):
        return value
    raise InvalidEventError(f"Not a trackable event: {type(value).__name__}")


def event_from_wire(payload: Mapping[str, Any]) -> Event:
    """Decode an outbound wire dict back into an event instance."""
    if not isinstance(payload, Mapping):
        raise InvalidEventError("Wire event must be a JSON object")
    transient: Dict[str, Any] = {}
    if isinstance(payload.get("eid"), str):
        transient["event_id"] = payload["eid"]
    dtm = payload.get("dtm")
    if isinstance(dtm, (int, float)) and not isinstance(dtm, bool):
        transient["timestamp"] = datetime.fromtimestamp(dtm / 1000, tz=timezone.utc)

    schema = payload.get("schema")
    if schema == SCREEN_VIEW_SCHEMA:
        return ScreenView(name=payload.get("name"), **transient)
    generic = GenericPayload.from_mapping(
        {key: payload[key] for key in GENERIC_KEYS if key in payload}
    )
    if schema is None:
        return Structured(
            category=generic.category,
            action=generic.action,
            label=generic.label,
            property=generic.property,
            value=generic.value,
            **transient,
        )
    if "data" not in payload:
        raise InvalidEventError(f"Unstructured event for {schema} carries no data")
    return Unstructured(schema=schema, data=payload["data"], generic=generic, **transient)
