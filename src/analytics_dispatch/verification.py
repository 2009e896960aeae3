"""Positional comparison of observed event traffic against expectations.

Observed events are compared in their wire form, so the same rules apply to
events captured in memory and to events decoded from intercepted requests.
Transient keys (`eid`, `dtm`) never take part in the comparison.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from .errors import CollectorTimeout, VerificationMismatch
from .models import (
    SCREEN_VIEW_SCHEMA,
    TRANSIENT_KEYS,
    EventKind,
    SchemaURI,
    Trackable,
    as_event,
)


class _Marker:
    def __init__(self, name: str) -> None:
        self._name = name

    def __repr__(self) -> str:
        return self._name


ANY = _Marker("ANY")
ABSENT = _Marker("ABSENT")

_SCALAR_FIELDS = ("name", "schema", "category", "action", "label", "property", "value")


@dataclass(frozen=True)
class ExpectedEvent:
    """Partially specified event.

    A field left as `ANY` is not checked, `ABSENT` requires the field to be
    missing, and any other value must match exactly. Mapping values (such as
    `data`) are compared key by key and reject undeclared observed keys.
    """

    kind: EventKind
    name: Any = ANY
    schema: Any = ANY
    data: Any = ANY
    category: Any = ANY
    action: Any = ANY
    label: Any = ANY
    property: Any = ANY
    value: Any = ANY

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", EventKind(self.kind))
        if self.schema is not ANY and self.schema is not ABSENT:
            object.__setattr__(self, "schema", str(SchemaURI.coerce(self.schema)))

    @classmethod
    def screen_view(cls, name: Any = ANY) -> "ExpectedEvent":
        return cls(EventKind.SCREEN_VIEW, name=name)

    @classmethod
    def structured(
        cls,
        category: Any = ANY,
        action: Any = ANY,
        *,
        label: Any = ANY,
        property: Any = ANY,
        value: Any = ANY,
    ) -> "ExpectedEvent":
        return cls(
            EventKind.STRUCTURED,
            category=category,
            action=action,
            label=label,
            property=property,
            value=value,
        )

    @classmethod
    def unstructured(
        cls,
        schema: Any = ANY,
        data: Any = ANY,
        *,
        category: Any = ANY,
        action: Any = ANY,
        label: Any = ANY,
        property: Any = ANY,
        value: Any = ANY,
    ) -> "ExpectedEvent":
        return cls(
            EventKind.UNSTRUCTURED,
            schema=schema,
            data=data,
            category=category,
            action=action,
            label=label,
            property=property,
            value=value,
        )

    @classmethod
    def from_event(cls, event: Trackable) -> "ExpectedEvent":
        """Exact expectation for `event`; unset optional fields must be absent."""
        wire = as_event(event).to_wire()
        kind = _kind_of(wire)
        if kind is EventKind.SCREEN_VIEW:
            return cls.screen_view(wire["name"])
        optional = {key: wire.get(key, ABSENT) for key in ("label", "property", "value")}
        if kind is EventKind.STRUCTURED:
            return cls.structured(wire["category"], wire["action"], **optional)
        return cls.unstructured(
            wire["schema"],
            wire["data"],
            category=wire["category"],
            action=wire["action"],
            **optional,
        )

    def summary(self) -> Dict[str, Any]:
        fields = {"kind": self.kind.value}
        for key in _SCALAR_FIELDS + ("data",):
            if getattr(self, key) is not ANY:
                fields[key] = getattr(self, key)
        return fields


@dataclass(frozen=True)
class FieldDiff:
    index: Optional[int]
    field: str
    expected: Any
    actual: Any

    def describe(self) -> str:
        where = "sequence" if self.index is None else f"#{self.index}"
        return f"{where} {self.field}: expected {self.expected!r}, got {self.actual!r}"


@dataclass
class VerificationResult:
    passed: bool
    diffs: List[FieldDiff] = field(default_factory=list)
    timed_out: bool = False
    expected_count: int = 0
    observed_count: int = 0

    def __bool__(self) -> bool:
        return self.passed

    def describe(self) -> str:
        if self.passed:
            return f"{self.observed_count} event(s) matched the expected sequence"
        if self.timed_out:
            header = "Timed out waiting for events"
        else:
            header = "Event sequence mismatch"
        lines = [f"{header}: expected {self.expected_count}, observed {self.observed_count}"]
        lines.extend(f"  {diff.describe()}" for diff in self.diffs)
        return "\n".join(lines)

    def raise_for_failure(self) -> None:
        if self.passed:
            return
        if self.timed_out:
            raise CollectorTimeout(self)
        raise VerificationMismatch(self)


ExpectedLike = Union[ExpectedEvent, Trackable]


def _kind_of(wire: Mapping[str, Any]) -> EventKind:
    schema = wire.get("schema")
    if schema == SCREEN_VIEW_SCHEMA:
        return EventKind.SCREEN_VIEW
    if schema is None:
        return EventKind.STRUCTURED
    return EventKind.UNSTRUCTURED


def _strip_transient(wire: Mapping[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in wire.items() if key not in TRANSIENT_KEYS}


def coerce_expected(item: ExpectedLike) -> ExpectedEvent:
    if isinstance(item, ExpectedEvent):
        return item
    return ExpectedEvent.from_event(item)


def _compare_value(
    index: int, path: str, want: Any, present: bool, actual: Any, diffs: List[FieldDiff]
) -> None:
    if want is ANY:
        return
    if want is ABSENT:
        if present:
            diffs.append(FieldDiff(index, path, ABSENT, actual))
        return
    if not present:
        diffs.append(FieldDiff(index, path, want, ABSENT))
        return
    if isinstance(want, Mapping) and isinstance(actual, Mapping):
        _compare_mapping(index, path, want, actual, diffs)
        return
    if type(want) is bool or type(actual) is bool:
        if type(want) is not type(actual) or want != actual:
            diffs.append(FieldDiff(index, path, want, actual))
        return
    if want != actual:
        diffs.append(FieldDiff(index, path, want, actual))


def _compare_mapping(
    index: int,
    path: str,
    want: Mapping[str, Any],
    actual: Mapping[str, Any],
    diffs: List[FieldDiff],
) -> None:
    for key, expected in want.items():
        _compare_value(index, f"{path}.{key}", expected, key in actual, actual.get(key), diffs)
    for key in actual:
        if key not in want:
            diffs.append(FieldDiff(index, f"{path}.{key}", ABSENT, actual[key]))


def match_event(expected: ExpectedEvent, wire: Mapping[str, Any], index: int) -> List[FieldDiff]:
    kind = _kind_of(wire)
    if kind is not expected.kind:
        return [FieldDiff(index, "kind", expected.kind.value, kind.value)]
    diffs: List[FieldDiff] = []
    for key in _SCALAR_FIELDS:
        if key == "schema" and kind is EventKind.SCREEN_VIEW:
            continue
        _compare_value(index, key, getattr(expected, key), key in wire, wire.get(key), diffs)
    _compare_value(index, "data", expected.data, "data" in wire, wire.get("data"), diffs)
    return diffs


def compare_sequences(
    expected: Iterable[ExpectedLike],
    observed: Sequence[Mapping[str, Any]],
    *,
    timed_out: bool = False,
) -> VerificationResult:
    """Compare observed wire events against expectations, position by position."""
    wanted = [coerce_expected(item) for item in expected]
    diffs: List[FieldDiff] = []
    if len(wanted) != len(observed):
        diffs.append(FieldDiff(None, "count", len(wanted), len(observed)))
    for index in range(max(len(wanted), len(observed))):
        if index >= len(observed):
            diffs.append(FieldDiff(index, "event", wanted[index].summary(), ABSENT))
        elif index >= len(wanted):
            diffs.append(FieldDiff(index, "event", ABSENT, _strip_transient(observed[index])))
        else:
            diffs.extend(match_event(wanted[index], observed[index], index))
    return VerificationResult(
        passed=not diffs,
        diffs=diffs,
        timed_out=timed_out and len(observed) < len(wanted),
        expected_count=len(wanted),
        observed_count=len(observed),
    )
