from datetime import datetime

import pytest
import requests

from analytics_dispatch import (
    DispatchRegistry,
    Environment,
    HttpTransport,
    MismatchPolicy,
    RealSink,
    SchemaMismatch,
    SchemaRegistry,
    SchemaValidator,
    ScreenView,
    Structured,
    TrackingConfig,
    Transport,
    TransportError,
    UnknownSchema,
    Unstructured,
)
from analytics_dispatch.logger import TrackingLogger
from analytics_dispatch.sinks import PAYLOAD_DATA_SCHEMA
from game_events import AchievementUnlocked, BadgeAwarded

pytestmark = pytest.mark.unit


class ListTransport(Transport):
    def __init__(self):
        self.sent = []

    def send(self, payload):
        self.sent.append(payload)


class FailingTransport(Transport):
    def send(self, payload):
        raise TransportError("collector unreachable")


def test_real_sink_serializes_valid_events(validator):
    transport = ListTransport()
    sink = RealSink(validator=validator, transport=transport, policy=MismatchPolicy.RAISE)
    sink.receive(ScreenView(name="achievement"))
    sink.receive(AchievementUnlocked.honor_reward("Slay Dragon", 10).to_event())
    assert [payload["schema"] for payload in transport.sent] == [
        "screen_view",
        "iglu:com.thegame/achievement/jsonschema/1-0-0",
    ]
    assert transport.sent[1]["data"] == {"honor": 10}


def test_missing_required_key_aborts_under_test_policy(validator):
    transport = ListTransport()
    sink = RealSink(validator=validator, transport=transport, policy=MismatchPolicy.RAISE)
    registry = DispatchRegistry()
    registry.register_backend(sink, BadgeAwarded)
    with pytest.raises(SchemaMismatch) as excinfo:
        registry.dispatch(BadgeAwarded(badge="gold"))
    assert excinfo.value.issues[0].path == "honor"
    assert transport.sent == []


def test_production_policy_logs_and_drops(validator):
    transport = ListTransport()
    logger = TrackingLogger()
    sink = RealSink(
        validator=validator,
        transport=transport,
        policy=Environment.PRODUCTION.mismatch_policy,
        logger=logger,
    )
    bad = BadgeAwarded(badge="gold").to_event()
    sink.receive(bad)
    sink.receive(ScreenView(name="home"))
    assert sink.dropped == [bad]
    assert len(transport.sent) == 1
    assert logger.entries[0].startswith("> [Sink] Dropped unstructured(badge_awarded) event")


def test_unknown_schema_follows_policy(validator):
    event = Unstructured(
        schema="iglu:com.thegame/unknown/jsonschema/1-0-0",
        data={},
        generic={"category": "a", "action": "b"},
    )
    strict = RealSink(validator=validator, transport=ListTransport(), policy=MismatchPolicy.RAISE)
    with pytest.raises(UnknownSchema):
        strict.receive(event)
    lenient = RealSink(validator=validator, transport=ListTransport(), policy=MismatchPolicy.DROP)
    lenient.receive(event)
    assert lenient.dropped == [event]


def test_transport_failures_follow_policy(validator):
    strict = RealSink(validator=validator, transport=FailingTransport(), policy=MismatchPolicy.RAISE)
    with pytest.raises(TransportError):
        strict.receive(ScreenView(name="home"))
    lenient = RealSink(validator=validator, transport=FailingTransport(), policy=MismatchPolicy.DROP)
    lenient.receive(ScreenView(name="home"))
    assert len(lenient.dropped) == 1


def test_sink_policy_defaults_from_environment(monkeypatch, validator):
    monkeypatch.setenv("ANALYTICS_ENVIRONMENT", "production")
    assert RealSink(validator=validator, transport=ListTransport()).policy is MismatchPolicy.DROP
    monkeypatch.setenv("ANALYTICS_ENVIRONMENT", "test")
    assert RealSink(validator=validator, transport=ListTransport()).policy is MismatchPolicy.RAISE


def test_config_from_env_reads_all_settings():
    config = TrackingConfig.from_env(
        {
            "ANALYTICS_ENVIRONMENT": "Staging",
            "ANALYTICS_COLLECTOR_URL": "http://collector.local",
            "ANALYTICS_TIMEOUT": "2.5",
            "ANALYTICS_ATTEMPTS": "0",
            "ANALYTICS_VERIFY_TIMEOUT": "1",
        }
    )
    assert config.environment is Environment.STAGING
    assert config.mismatch_policy is MismatchPolicy.RAISE
    assert config.collector_url == "http://collector.local"
    assert config.timeout == 2.5
    assert config.attempts == 1
    assert config.verify_timeout == 1.0
    assert TrackingConfig.from_env({}) == TrackingConfig()
    with pytest.raises(ValueError):
        TrackingConfig.from_env({"ANALYTICS_ENVIRONMENT": "qa"})


def test_http_transport_posts_payload_data_envelope(monkeypatch):
    observed = {}

    def fake_post(self, url, headers=None, json=None, timeout=None):
        observed["url"] = url
        observed["payload"] = json
        observed["timeout"] = timeout

        class Response:
            def raise_for_status(self):
                return None

        return Response()

    monkeypatch.setattr(requests.Session, "post", fake_post)
    transport = HttpTransport("http://collector.test", timeout=1.5)
    transport.send({"schema": "screen_view", "name": "home"})
    assert observed["url"] == "http://collector.test/com.snowplowanalytics.snowplow/tp2"
    assert observed["payload"] == {
        "schema": PAYLOAD_DATA_SCHEMA,
        "data": [{"schema": "screen_view", "name": "home"}],
    }
    assert observed["timeout"] == 1.5


def test_http_transport_retries_then_raises(monkeypatch):
    attempts = []
    sleeps = []

    def fake_post(self, url, headers=None, json=None, timeout=None):
        attempts.append(url)
        raise requests.ConnectionError("connection refused")

    monkeypatch.setattr(requests.Session, "post", fake_post)
    transport = HttpTransport("http://collector.test", attempts=3, backoff=0.1, sleep=sleeps.append)
    with pytest.raises(TransportError):
        transport.send({"schema": "screen_view", "name": "home"})
    assert len(attempts) == 3
    assert sleeps == [0.1, 0.2]


def test_http_transport_treats_error_status_as_failure(monkeypatch):
    def fake_post(self, url, headers=None, json=None, timeout=None):
        class Response:
            def raise_for_status(self):
                raise requests.HTTPError("500 Server Error")

        return Response()

    monkeypatch.setattr(requests.Session, "post", fake_post)
    transport = HttpTransport("http://collector.test", attempts=1)
    with pytest.raises(TransportError):
        transport.send({"category": "a", "action": "b"})


OPEN_SCHEMA = "iglu:com.thegame/session/jsonschema/1-0-0"


def open_validator():
    registry = SchemaRegistry()
    registry.register_definition(
        {
            "self": {
                "vendor": "com.thegame",
                "name": "session",
                "format": "jsonschema",
                "version": "1-0-0",
            },
            "type": "object",
            "properties": {"when": {}},
        }
    )
    return SchemaValidator(registry)


def test_unencodable_payload_is_dropped_in_production(monkeypatch):
    posted = []

    def fake_post(self, url, headers=None, json=None, timeout=None):
        posted.append(json)

    monkeypatch.setattr(requests.Session, "post", fake_post)
    logger = TrackingLogger()
    sink = RealSink(
        validator=open_validator(),
        transport=HttpTransport("http://collector.test"),
        policy=MismatchPolicy.DROP,
        logger=logger,
    )
    event = Unstructured(
        schema=OPEN_SCHEMA,
        data={"when": datetime(2024, 1, 1), "tags": {"pvp"}},
        generic={"category": "session", "action": "start"},
    )
    sink.receive(event)
    assert sink.dropped == [event]
    assert posted == []
    assert logger.entries[0].startswith("> [Sink] Dropped unstructured(session) event")


def test_unencodable_payload_raises_transport_error_under_test_policy():
    sink = RealSink(
        validator=open_validator(),
        transport=HttpTransport("http://collector.test", attempts=1),
        policy=MismatchPolicy.RAISE,
    )
    event = Unstructured(
        schema=OPEN_SCHEMA,
        data={"when": datetime(2024, 1, 1)},
        generic={"category": "session", "action": "start"},
    )
    with pytest.raises(TransportError) as excinfo:
        sink.receive(event)
    assert isinstance(excinfo.value.__cause__, TypeError)


def test_http_transport_does_not_retry_non_finite_numbers(monkeypatch):
    posted = []
    sleeps = []

    def fake_post(self, url, headers=None, json=None, timeout=None):
        posted.append(json)

    monkeypatch.setattr(requests.Session, "post", fake_post)
    wire = Structured(category="a", action="b").to_wire()
    wire["value"] = float("nan")
    transport = HttpTransport("http://collector.test", attempts=3, backoff=0.5, sleep=sleeps.append)
    with pytest.raises(TransportError):
        transport.send(wire)
    assert posted == []
    assert sleeps == []


def test_http_transport_does_not_retry_client_errors(monkeypatch):
    attempts = []
    sleeps = []

    def fake_post(self, url, headers=None, json=None, timeout=None):
        attempts.append(url)

        class Response:
            status_code = 422

            def raise_for_status(self):
                raise requests.HTTPError("422 Client Error", response=self)

        return Response()

    monkeypatch.setattr(requests.Session, "post", fake_post)
    transport = HttpTransport("http://collector.test", attempts=3, backoff=0.1, sleep=sleeps.append)
    with pytest.raises(TransportError):
        transport.send({"category": "a", "action": "b"})
    assert len(attempts) == 1
    assert sleeps == []


def test_http_transport_retries_server_errors(monkeypatch):
    attempts = []
    sleeps = []

    def fake_post(self, url, headers=None, json=None, timeout=None):
        attempts.append(url)

        class Response:
            status_code = 503

            def raise_for_status(self):
                if len(attempts) < 3:
                    raise requests.HTTPError("503 Server Error", response=self)

        return Response()

    monkeypatch.setattr(requests.Session, "post", fake_post)
    transport = HttpTransport("http://collector.test", attempts=3, backoff=0.1, sleep=sleeps.append)
    transport.send({"category": "a", "action": "b"})
    assert len(attempts) == 3
    assert sleeps == [0.1, 0.2]
