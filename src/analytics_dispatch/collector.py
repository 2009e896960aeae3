"""Mock collector intercepting outbound event traffic for end-to-end tests.

The collector speaks the same tp2 endpoint the real sink posts to, keeps good
and bad events apart the way Snowplow Micro does, and verifies the good ones
against an expected sequence after a bounded wait.
"""

from __future__ import annotations

import socket
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

import uvicorn
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from .errors import InvalidEventError, SchemaMismatch, UnknownSchema
from .logger import TrackingLogger
from .models import Event, Unstructured, event_from_wire
from .schemas import SchemaValidator
from .sinks import COLLECTOR_PATH
from .verification import (
    ExpectedEvent,
    ExpectedLike,
    VerificationResult,
    coerce_expected,
    compare_sequences,
)

PAYLOAD_DATA_PREFIX = "iglu:com.snowplowanalytics.snowplow/payload_data/"


class PayloadData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    schema_uri: str = Field(..., alias="schema")
    data: List[Any] = Field(default_factory=list)


class CollectResponse(BaseModel):
    accepted: int
    rejected: int


class CountsResponse(BaseModel):
    total: int
    good: int
    bad: int


class BadEventResponse(BaseModel):
    payload: Any
    errors: List[str]


@dataclass
class BadEvent:
    payload: Any
    errors: List[str]


class CollectorStore:
    """Buffers intercepted events; waiters are woken on every arrival."""

    def __init__(self, validator: Optional[SchemaValidator] = None) -> None:
        self.validator = validator
        self._good: List[Dict[str, Any]] = []
        self._bad: List[BadEvent] = []
        self._condition = threading.Condition()

    def ingest(self, payload: Any) -> bool:
        try:
            event = event_from_wire(payload)
            if self.validator is not None and isinstance(event, Unstructured):
                self.validator.validate(event.schema, event.data)
        except (InvalidEventError, SchemaMismatch, UnknownSchema) as exc:
            with self._condition:
                self._bad.append(BadEvent(payload=payload, errors=[str(exc)]))
                self._condition.notify_all()
            return False
        with self._condition:
            self._good.append(dict(payload))
            self._condition.notify_all()
        return True

    def good(self) -> List[Dict[str, Any]]:
        with self._condition:
            return list(self._good)

    def bad(self) -> List[BadEvent]:
        with self._condition:
            return list(self._bad)

    def reset(self) -> None:
        with self._condition:
            self._good.clear()
            self._bad.clear()

    def wait_for(self, count: int, timeout: float) -> bool:
        with self._condition:
            return self._condition.wait_for(lambda: len(self._good) >= count, timeout=timeout)


def create_collector_app(store: CollectorStore) -> FastAPI:
    app = FastAPI(
        title="Mock analytics collector",
        version="1.0.0",
        description="Intercepts tracker traffic for end-to-end tests.",
    )

    @app.get("/health")
    def health() -> Dict[str, str]:
        return {"status": "ok"}

    @app.post(COLLECTOR_PATH, response_model=CollectResponse)
    def collect(envelope: PayloadData) -> CollectResponse:
        if not envelope.schema_uri.startswith(PAYLOAD_DATA_PREFIX):
            raise HTTPException(
                status_code=400,
                detail=f"unsupported payload schema {envelope.schema_uri}",
            )
        accepted = sum(1 for item in envelope.data if store.ingest(item))
        return CollectResponse(accepted=accepted, rejected=len(envelope.data) - accepted)

    @app.get("/micro/all", response_model=CountsResponse)
    def counts() -> CountsResponse:
        good, bad = len(store.good()), len(store.bad())
        return CountsResponse(total=good + bad, good=good, bad=bad)

    @app.get("/micro/good")
    def good_events() -> List[Dict[str, Any]]:
        return store.good()

    @app.get("/micro/bad", response_model=List[BadEventResponse])
    def bad_events() -> List[BadEventResponse]:
        return [BadEventResponse(payload=item.payload, errors=item.errors) for item in store.bad()]

    @app.post("/micro/reset", response_model=CountsResponse)
    def reset() -> CountsResponse:
        store.reset()
        return CountsResponse(total=0, good=0, bad=0)

    return app


class MockCollectorServer:
    """Local collector endpoint served by uvicorn on a background thread.

    One scenario per instance: declare the expected sequence, drive the
    application, then `verify()` waits up to `verify_timeout` seconds for the
    expected number of events and compares them positionally.
    """

    def __init__(
        self,
        *,
        host: str = "127.0.0.1",
        port: int = 0,
        validator: Optional[SchemaValidator] = None,
        verify_timeout: float = 5.0,
        settle_time: float = 0.1,
        startup_timeout: float = 10.0,
        logger: TrackingLogger | None = None,
    ) -> None:
        self.host = host
        self.port = port
        self.verify_timeout = verify_timeout
        self.settle_time = settle_time
        self.startup_timeout = startup_timeout
        self.logger = logger or TrackingLogger()
        self.store = CollectorStore(validator)
        self.app = create_collector_app(self.store)
        self._expected: Optional[List[ExpectedEvent]] = None
        self._server: Optional[uvicorn.Server] = None
        self._thread: Optional[threading.Thread] = None
        self._socket: Optional[socket.socket] = None

    @property
    def running(self) -> bool:
        return self._server is not None

    @property
    def url(self) -> str:
        if not self.running:
            raise RuntimeError("Mock collector is not running")
        return f"http://{self.host}:{self.port}"

    def start(self) -> "MockCollectorServer":
        if self.running:
            raise RuntimeError("Mock collector already started")
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((self.host, self.port))
        self.port = sock.getsockname()[1]
        config = uvicorn.Config(
            self.app,
            host=self.host,
            port=self.port,
            log_level="warning",
            log_config=None,
            access_log=False,
        )
        server = uvicorn.Server(config)
        thread = threading.Thread(
            target=server.run,
            kwargs={"sockets": [sock]},
            name="mock-collector",
            daemon=True,
        )
        self._server, self._thread, self._socket = server, thread, sock
        thread.start()
        deadline = time.monotonic() + self.startup_timeout
        while not server.started:
            if not thread.is_alive() or time.monotonic() > deadline:
                self.stop()
                raise RuntimeError("Mock collector failed to start")
            time.sleep(0.01)
        self.logger.log("Collector", f"Listening on {self.url}")
        return self

    def stop(self) -> None:
        server, thread, sock = self._server, self._thread, self._socket
        self._server = self._thread = self._socket = None
        if server is None:
            return
        server.should_exit = True
        if thread is not None:
            thread.join(timeout=self.startup_timeout)
        if sock is not None:
            sock.close()
        self.logger.log("Collector", "Stopped")

    def __enter__(self) -> "MockCollectorServer":
        return self.start()

    def __exit__(self, *exc_info: Any) -> None:
        self.stop()

    def set_expected_events(self, events: Iterable[ExpectedLike]) -> None:
        self._expected = [coerce_expected(item) for item in events]

    @property
    def has_expectations(self) -> bool:
        return self._expected is not None

    @property
    def expected_events(self) -> List[ExpectedEvent]:
        return list(self._expected or [])

    def observed_events(self) -> List[Event]:
        return [event_from_wire(payload) for payload in self.store.good()]

    def reset(self) -> None:
        self._expected = None
        self.store.reset()

    def verify(self, timeout: Optional[float] = None) -> VerificationResult:
        expected = self.expected_events
        wait = self.verify_timeout if timeout is None else timeout
        arrived = self.store.wait_for(len(expected), wait)
        if arrived and self.settle_time:
            # Give trailing, unexpected requests a chance to land.
            time.sleep(self.settle_time)
        result = compare_sequences(expected, self.store.good(), timed_out=not arrived)
        if not result:
            self.logger.warning("Collector", result.describe())
        return result
