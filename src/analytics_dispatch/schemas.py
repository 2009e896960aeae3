from __future__ import annotations

import copy
import json
import threading
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, List, Mapping, Union

from .errors import InvalidEventError, SchemaMismatch, UnknownSchema
from .models import SchemaURI

_TYPE_CHECKS: Dict[str, Callable[[Any], bool]] = {
    "string": lambda value: isinstance(value, str),
    "integer": lambda value: isinstance(value, int) and not isinstance(value, bool),
    "number": lambda value: isinstance(value, (int, float)) and not isinstance(value, bool),
    "boolean": lambda value: isinstance(value, bool),
    "object": lambda value: isinstance(value, Mapping),
    "array": lambda value: isinstance(value, (list, tuple)),
    "null": lambda value: value is None,
}


def _json_type(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, float):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, Mapping):
        return "object"
    if isinstance(value, (list, tuple)):
        return "array"
    return type(value).__name__


def _declared_types(definition: Mapping[str, Any]) -> List[str]:
    declared = definition.get("type")
    if declared is None:
        return []
    if isinstance(declared, str):
        return [declared]
    return list(declared)


def _join(path: str, key: str) -> str:
    return f"{path}.{key}" if path else key


@dataclass(frozen=True)
class FieldIssue:
    path: str
    problem: str
    expected: Any = None
    actual: Any = None

    def describe(self) -> str:
        if self.problem == "missing":
            return f"{self.path}: required field missing (expected {self.expected})"
        if self.problem == "undeclared":
            return f"{self.path}: undeclared field of type {self.actual}"
        return f"{self.path}: expected {self.expected}, got {self.actual}"


@dataclass(frozen=True)
class SchemaDocument:
    """Structural definition published under an Iglu URI. Read-only."""

    uri: SchemaURI
    definition: Mapping[str, Any]

    def __post_init__(self) -> None:
        object.__setattr__(self, "uri", SchemaURI.coerce(self.uri))
        if not isinstance(self.definition, Mapping):
            raise InvalidEventError("Schema definition must be a JSON object")
        object.__setattr__(
            self, "definition", MappingProxyType(copy.deepcopy(dict(self.definition)))
        )

    @classmethod
    def from_self_describing(cls, document: Mapping[str, Any]) -> "SchemaDocument":
        block = document.get("self")
        if not isinstance(block, Mapping):
            raise InvalidEventError("Self-describing schema requires a 'self' block")
        try:
            text = "iglu:{vendor}/{name}/{format}/{version}".format(**block)
        except KeyError as exc:
            raise InvalidEventError(f"Schema 'self' block is missing {exc}") from exc
        definition = {
            key: value for key, value in document.items() if key not in {"self", "$schema"}
        }
        return cls(uri=SchemaURI.parse(text), definition=definition)


class SchemaRegistry:
    """Thread-safe, in-process stand-in for the external Iglu schema registry."""

    def __init__(self, documents: Iterable[SchemaDocument] = ()) -> None:
        self._documents: Dict[str, SchemaDocument] = {}
        self._lock = threading.Lock()
        for document in documents:
            self.register(document)

    def register(self, document: SchemaDocument) -> None:
        key = str(document.uri)
        with self._lock:
            existing = self._documents.get(key)
            if existing is not None and existing.definition != document.definition:
                raise ValueError(f"Schema '{key}' is already published with another definition")
            self._documents[key] = document

    def register_definition(self, document: Mapping[str, Any]) -> SchemaDocument:
        schema = SchemaDocument.from_self_describing(document)
        self.register(schema)
        return schema

    def resolve(self, uri: Union[SchemaURI, str]) -> SchemaDocument:
        try:
            key = str(SchemaURI.coerce(uri))
        except InvalidEventError as exc:
            raise UnknownSchema(str(uri)) from exc
        with self._lock:
            document = self._documents.get(key)
        if document is None:
            raise UnknownSchema(key)
        return document

    def load_directory(self, root: Union[str, Path]) -> int:
        """Load schemas stored as `schemas/<vendor>/<name>/jsonschema/<version>`."""
        base = Path(root)
        if (base / "schemas").is_dir():
            base = base / "schemas"
        loaded = 0
        for path in sorted(base.glob("*/*/jsonschema/*")):
            if not path.is_file():
                continue
            document = json.loads(path.read_text(encoding="utf-8"))
            vendor, name = path.parent.parent.parent.name, path.parent.parent.name
            location_uri = SchemaURI.parse(f"iglu:{vendor}/{name}/jsonschema/{path.name}")
            if "self" in document:
                schema = SchemaDocument.from_self_describing(document)
                if schema.uri != location_uri:
                    raise ValueError(f"{path} declares {schema.uri}, expected {location_uri}")
            else:
                schema = SchemaDocument(uri=location_uri, definition=document)
            self.register(schema)
            loaded += 1
        return loaded

    def __contains__(self, uri: object) -> bool:
        try:
            self.resolve(uri)  # type: ignore[arg-type]
        except UnknownSchema:
            return False
        return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._documents)


class SchemaValidator:
    """Checks custom event payloads against their referenced schema.

    The check is structural only: required fields present with the declared
    type, no undeclared fields when `additionalProperties` is false, and
    nested objects and array items checked recursively. Payloads are never
    rewritten.
    """

    def __init__(self, resolver: SchemaRegistry) -> None:
        self.resolver = resolver

    def check(self, schema_uri: Union[SchemaURI, str], payload: Any) -> List[FieldIssue]:
        document = self.resolver.resolve(schema_uri)
        issues: List[FieldIssue] = []
        self._check(document.definition, payload, "", issues)
        return issues

    def validate(self, schema_uri: Union[SchemaURI, str], payload: Any) -> None:
        issues = self.check(schema_uri, payload)
        if issues:
            raise SchemaMismatch(str(schema_uri), issues)

    def _check(
        self,
        definition: Mapping[str, Any],
        value: Any,
        path: str,
        issues: List[FieldIssue],
    ) -> None:
        types = _declared_types(definition)
        if types and not any(_TYPE_CHECKS.get(name, lambda _: True)(value) for name in types):
            issues.append(FieldIssue(path or "$", "type", "|".join(types), _json_type(value)))
            return
        if "enum" in definition and value not in definition["enum"]:
            issues.append(FieldIssue(path or "$", "enum", list(definition["enum"]), value))
        if isinstance(value, Mapping):
            self._check_object(definition, value, path, issues)
        elif isinstance(value, (list, tuple)) and isinstance(definition.get("items"), Mapping):
            for index, item in enumerate(value):
                self._check(definition["items"], item, f"{path}[{index}]", issues)

    def _check_object(
        self,
        definition: Mapping[str, Any],
        value: Mapping[str, Any],
        path: str,
        issues: List[FieldIssue],
    ) -> None:
        properties = definition.get("properties") or {}
        for name in definition.get("required") or []:
            if name not in value:
                expected = "|".join(_declared_types(properties.get(name, {}))) or "any"
                issues.append(FieldIssue(_join(path, name), "missing", expected, None))
        additional = definition.get("additionalProperties", True)
        for key, item in value.items():
            child = _join(path, key)
            if key in properties:
                self._check(properties[key], item, child, issues)
            elif additional is False:
                issues.append(FieldIssue(child, "undeclared", None, _json_type(item)))
            elif isinstance(additional, Mapping):
                self._check(additional, item, child, issues)
