import pytest

from analytics_dispatch import SchemaRegistry, SchemaValidator
from game_events import ACHIEVEMENT_DEFINITION

pytest_plugins = ["analytics_dispatch.pytest_plugin"]


@pytest.fixture
def schema_registry():
    registry = SchemaRegistry()
    registry.register_definition(ACHIEVEMENT_DEFINITION)
    return registry


@pytest.fixture
def validator(schema_registry):
    return SchemaValidator(schema_registry)
