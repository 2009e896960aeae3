import pytest

from analytics_dispatch import (
    EventKind,
    EventTag,
    GenericPayload,
    InvalidEventError,
    SchemaURI,
    ScreenView,
    Structured,
    Unstructured,
)
from analytics_dispatch.models import as_event, event_from_wire
from game_events import ACHIEVEMENT_SCHEMA, AchievementUnlocked, BadgeAwarded

pytestmark = pytest.mark.unit


def strip(wire):
    return {key: value for key, value in wire.items() if key not in {"eid", "dtm"}}


def test_schema_uri_parses_vendor_name_and_version():
    uri = SchemaURI.parse(ACHIEVEMENT_SCHEMA)
    assert uri.vendor == "com.thegame"
    assert uri.name == "achievement"
    assert uri.version == (1, 0, 0)
    assert str(uri) == ACHIEVEMENT_SCHEMA


@pytest.mark.parametrize(
    "text",
    [
        "com.thegame/achievement/jsonschema/1-0-0",
        "iglu:com.thegame/achievement/avro/1-0-0",
        "iglu:com.thegame/achievement/jsonschema/1-0",
        "iglu:com.thegame/achievement/jsonschema/0-1-0",
    ],
)
def test_malformed_schema_uri_is_rejected(text):
    with pytest.raises(InvalidEventError):
        SchemaURI.parse(text)


def test_generic_payload_requires_category_and_action():
    with pytest.raises(InvalidEventError):
        GenericPayload.from_mapping({"category": "achievement"})
    with pytest.raises(InvalidEventError):
        GenericPayload(category="", action="x")


def test_generic_payload_value_must_be_numeric():
    assert GenericPayload(category="a", action="b", value=2.5).value == 2.5
    with pytest.raises(InvalidEventError):
        GenericPayload(category="a", action="b", value="2")
    with pytest.raises(InvalidEventError):
        GenericPayload(category="a", action="b", value=True)
    for value in (float("nan"), float("inf"), float("-inf")):
        with pytest.raises(InvalidEventError):
            GenericPayload(category="a", action="b", value=value)


def test_generic_payload_rejects_unknown_keys():
    with pytest.raises(InvalidEventError):
        GenericPayload.from_mapping({"category": "a", "action": "b", "extra": 1})


def test_wire_shapes_per_variant():
    assert strip(ScreenView(name="achievement").to_wire()) == {
        "schema": "screen_view",
        "name": "achievement",
    }
    assert strip(Structured(category="shop", action="buy", value=3).to_wire()) == {
        "category": "shop",
        "action": "buy",
        "value": 3,
    }
    event = AchievementUnlocked.honor_reward("Slay Dragon", 10).to_event()
    assert strip(event.to_wire()) == {
        "schema": ACHIEVEMENT_SCHEMA,
        "data": {"honor": 10},
        "category": "achievement",
        "action": "Slay Dragon",
    }


def test_wire_carries_transient_identifiers():
    wire = ScreenView(name="home").to_wire()
    assert isinstance(wire["eid"], str) and wire["eid"]
    assert isinstance(wire["dtm"], int)


def test_equality_ignores_transient_fields():
    first = ScreenView(name="home")
    second = ScreenView(name="home")
    assert first.event_id != second.event_id
    assert first == second
    assert Structured(category="a", action="b") != Structured(category="a", action="c")


def test_unstructured_payload_is_snapshotted_and_read_only():
    data = {"honor": 1, "reward": {"points": 2}}
    event = Unstructured(
        schema=ACHIEVEMENT_SCHEMA,
        data=data,
        generic={"category": "achievement", "action": "x"},
    )
    data["honor"] = 99
    data["reward"]["points"] = 99
    assert event.data["honor"] == 1
    assert event.data["reward"]["points"] == 2
    with pytest.raises(TypeError):
        event.data["honor"] = 5


def test_unstructured_tag_defaults_to_schema_name():
    event = Unstructured(
        schema=ACHIEVEMENT_SCHEMA,
        data={"honor": 1},
        generic=GenericPayload(category="achievement", action="x"),
    )
    assert event.tag == EventTag.unstructured("achievement")


def test_convertible_uses_class_name_or_declared_event_name():
    assert AchievementUnlocked.event_tag() == EventTag(EventKind.UNSTRUCTURED, "AchievementUnlocked")
    assert BadgeAwarded.event_tag() == EventTag.unstructured("badge_awarded")
    event = as_event(BadgeAwarded(badge="gold"))
    assert isinstance(event, Unstructured)
    assert event.name == "badge_awarded"
    assert event.generic.label == "gold"


def test_event_tags_validate_names():
    assert str(EventTag.unstructured("AchievementUnlocked")) == "unstructured(AchievementUnlocked)"
    with pytest.raises(InvalidEventError):
        EventTag(EventKind.UNSTRUCTURED)
    with pytest.raises(InvalidEventError):
        EventTag(EventKind.SCREEN_VIEW, "home")


def test_as_event_rejects_untrackable_objects():
    with pytest.raises(InvalidEventError):
        as_event({"schema": "screen_view", "name": "home"})


def test_event_from_wire_restores_unstructured_event():
    original = AchievementUnlocked.honor_reward("Slay Dragon", 10).to_event()
    decoded = event_from_wire(original.to_wire())
    assert isinstance(decoded, Unstructured)
    assert decoded.event_id == original.event_id
    assert decoded.schema == original.schema
    assert dict(decoded.data) == {"honor": 10}
    assert decoded.generic == original.generic


def test_event_from_wire_rejects_incomplete_payloads():
    with pytest.raises(InvalidEventError):
        event_from_wire({"schema": "screen_view"})
    with pytest.raises(InvalidEventError):
        event_from_wire({"schema": ACHIEVEMENT_SCHEMA, "category": "a", "action": "b"})
    with pytest.raises(InvalidEventError):
        event_from_wire({"action": "b"})
