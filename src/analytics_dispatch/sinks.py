from __future__ import annotations

import json
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional

import requests

from .config import MismatchPolicy, TrackingConfig
from .errors import SchemaMismatch, TransportError, UnknownSchema
from .logger import TrackingLogger
from .models import Event, Unstructured
from .schemas import SchemaValidator

PAYLOAD_DATA_SCHEMA = "iglu:com.snowplowanalytics.snowplow/payload_data/jsonschema/1-0-4"
COLLECTOR_PATH = "/com.snowplowanalytics.snowplow/tp2"


class TrackerBackend(ABC):
    """Sink receiving dispatched events."""

    @abstractmethod
    def receive(self, event: Event) -> None:
        ...


class Transport(ABC):
    @abstractmethod
    def send(self, payload: Dict[str, Any]) -> None:
        ...


def _is_retryable(exc: requests.RequestException) -> bool:
    if isinstance(exc, requests.HTTPError):
        response = exc.response
        return response is None or response.status_code >= 500
    return isinstance(exc, (requests.ConnectionError, requests.Timeout))


class HttpTransport(Transport):
    """POSTs serialized events to a collector's tp2 endpoint."""

    def __init__(
        self,
        collector_url: str,
        *,
        session: Optional[requests.Session] = None,
        timeout: float = 5.0,
        attempts: int = 3,
        backoff: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.endpoint = f"{collector_url.rstrip('/')}{COLLECTOR_PATH}"
        self.session = session or requests.Session()
        self.timeout = timeout
        self.attempts = max(1, attempts)
        self.backoff = backoff
        self._sleep = sleep

    def send(self, payload: Dict[str, Any]) -> None:
        body = {"schema": PAYLOAD_DATA_SCHEMA, "data": [payload]}
        try:
            json.dumps(body, allow_nan=False)
        except (TypeError, ValueError) as exc:
            raise TransportError(f"Event cannot be encoded as JSON: {exc}") from exc
        for attempt in range(1, self.attempts + 1):
            try:
                response = self.session.post(
                    self.endpoint,
                    headers={"Content-Type": "application/json"},
                    json=body,
                    timeout=self.timeout,
                )
                response.raise_for_status()
                return
            except requests.RequestException as exc:
                if attempt < self.attempts and _is_retryable(exc):
                    self._sleep(self.backoff * 2 ** (attempt - 1))
                    continue
                raise TransportError(
                    f"Collector did not accept event after {attempt} attempt(s): {exc}"
                ) from exc


class RealSink(TrackerBackend):
    """Validates, serializes and ships events through a transport.

    With `MismatchPolicy.RAISE` validation and transport failures propagate;
    with `MismatchPolicy.DROP` they are logged on the `Sink` channel and the
    event is dropped.
    """

    def __init__(
        self,
        *,
        validator: SchemaValidator,
        transport: Transport,
        policy: MismatchPolicy | None = None,
        logger: TrackingLogger | None = None,
    ) -> None:
        self.validator = validator
        self.transport = transport
        self.policy = policy or TrackingConfig.from_env().mismatch_policy
        self.logger = logger or TrackingLogger()
        self._dropped: List[Event] = []
        self._lock = threading.Lock()

    def receive(self, event: Event) -> None:
        try:
            if isinstance(event, Unstructured):
                self.validator.validate(event.schema, event.data)
            self.transport.send(event.to_wire())
        except (SchemaMismatch, UnknownSchema, TransportError) as exc:
            if self.policy is MismatchPolicy.RAISE:
                raise
            with self._lock:
                self._dropped.append(event)
            self.logger.warning("Sink", f"Dropped {event.tag} event: {exc}")

    @property
    def dropped(self) -> List[Event]:
        with self._lock:
            return list(self._dropped)
