"""pytest fixtures for tracking tests.

Enable with ``pytest_plugins = ["analytics_dispatch.pytest_plugin"]``.
"""

from __future__ import annotations

from typing import Iterator

import pytest

from .collector import MockCollectorServer
from .config import TrackingConfig
from .errors import VerificationMismatch
from .harness import TrackingTestHarness
from .recorder import EventRecorder


@pytest.fixture
def event_recorder() -> Iterator[EventRecorder]:
    recorder = EventRecorder()
    yield recorder
    recorder.clear()


@pytest.fixture
def mock_collector() -> Iterator[MockCollectorServer]:
    """Running collector; expectations set by the test are verified at teardown."""
    config = TrackingConfig.from_env()
    collector = MockCollectorServer(verify_timeout=config.verify_timeout).start()
    yield collector
    try:
        result = collector.verify() if collector.has_expectations else None
    finally:
        collector.stop()
    if result is not None and not result:
        pytest.fail(result.describe(), pytrace=False)


@pytest.fixture
def tracking_harness() -> Iterator[TrackingTestHarness]:
    config = TrackingConfig.from_env()
    harness = TrackingTestHarness(verify_timeout=config.verify_timeout)
    yield harness
    try:
        harness.close()
    except VerificationMismatch as exc:
        pytest.fail(str(exc), pytrace=False)
