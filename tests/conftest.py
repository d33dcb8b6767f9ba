"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
"""
import random
import sys
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from config import Settings  # noqa: E402
from priority_engine.engine import PriorityEngine  # noqa: E402
from priority_engine.graph.facade import (  # noqa: E402
    INCREMENTAL_PRIORITY_SLOT,
    INCREMENTAL_TAG,
    LAST_UPDATED_SLOT,
    NEXT_REP_DATE_SLOT,
    PRIORITY_SLOT,
    PRIORITY_TAG,
    SOURCE_SLOT,
)
from priority_engine.graph.memory import InMemoryGraph  # noqa: E402
from priority_engine.storage.state_store import StateStore  # noqa: E402

# Review units and items due at epoch 0 are always due; FAR_FUTURE never is.
DUE = 0
FAR_FUTURE = 9_999_999_999_999


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (full engine over a snapshot)")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        # Mark based on test file location
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        elif "smoke" in str(item.fspath):
            item.add_marker(pytest.mark.smoke)


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture(scope="session")
def sample_snapshot_path():
    """JSON graph snapshot shared by the integration and smoke tests."""
    return PROJECT_ROOT / "tests" / "fixtures" / "sample_graph.json"


@pytest.fixture
def settings(tmp_path):
    """Settings with no deferred delays and an isolated state database."""
    return Settings(
        _env_file=None,
        cache_debounce_ms=20,
        cache_deferred_delay_seconds=0,
        cache_deferred_pause_seconds=0,
        cache_deferred_batch_size=2,
        incremental_load_pause_seconds=0,
        state_db_path=tmp_path / "state.db",
        knowledge_base_id="test-kb",
    )


@pytest.fixture
def store(settings):
    """State store backed by a temporary SQLite file."""
    state_store = StateStore(settings.state_db_path)
    yield state_store
    state_store.close()


@pytest.fixture
def graph():
    """Empty in-memory graph."""
    return InMemoryGraph()


@pytest.fixture
def engine(graph, store, settings):
    """Fully wired engine with a seeded RNG."""
    return PriorityEngine.create(graph, store, settings, rng=random.Random(0))


def add_incremental(
    graph: InMemoryGraph,
    node_id: str,
    priority: int,
    next_rep_date: int = DUE,
    parent_id: str | None = None,
    text: str = "",
) -> None:
    """Add a node carrying the incremental tag."""
    graph.add_node(node_id, parent_id, text or node_id)
    graph.set_tag(
        node_id,
        INCREMENTAL_TAG,
        {INCREMENTAL_PRIORITY_SLOT: priority, NEXT_REP_DATE_SLOT: next_rep_date},
    )


def tag_priority(
    graph: InMemoryGraph,
    node_id: str,
    priority: int,
    source: str = "manual",
    last_updated: int = 1,
) -> None:
    """Write a priority tag directly into the graph."""
    graph.set_tag(
        node_id,
        PRIORITY_TAG,
        {PRIORITY_SLOT: priority, SOURCE_SLOT: source, LAST_UPDATED_SLOT: last_updated},
    )


@pytest.fixture
def add_item(graph):
    """Bound `add_incremental` for the test graph."""

    def _add(node_id, priority, next_rep_date=DUE, parent_id=None, text=""):
        add_incremental(graph, node_id, priority, next_rep_date, parent_id, text)

    return _add


@pytest.fixture
def tag_node(graph):
    """Bound `tag_priority` for the test graph."""

    def _tag(node_id, priority, source="manual", last_updated=1):
        tag_priority(graph, node_id, priority, source, last_updated)

    return _tag
