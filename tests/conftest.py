"""
Pytest fixtures for the mission workflow test suite.

Provides:
- A fresh database per test (SQLite file under tmp_path by default)
- Kernel services wired through WorkflowOrchestrator with a DeterministicClock
- Helpers that create missions and drive them along the workflow
- Structured log capture

Environment Variables:
- DATABASE_URL: run against another database (e.g. PostgreSQL) instead of
  the per-test SQLite file.  Tables are dropped and recreated per test.
"""

import json
import logging
import os
from io import StringIO
from typing import Generator

import pytest
from sqlalchemy.orm import Session

from mission_config import DEFAULT_CONFIG_PATH, get_active_config
from mission_config.bridges import build_transition_table
from mission_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from mission_kernel.db.immutability import register_immutability_listeners
from mission_kernel.domain.clock import DeterministicClock
from mission_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from mission_services.orchestrator import WorkflowOrchestrator
from mission_services.procedures import WorkflowProcedures
from tests.helpers import ACTION_DEFAULTS, DISPATCH_ID

# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture mission_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, transition_engine):
            transition_engine.perform(...)
            logs = captured_logs()
            assert any(r["message"] == "transition_applied" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("mission_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "postgres: mark test as requiring PostgreSQL")


# =============================================================================
# Database
# =============================================================================


def get_database_url(tmp_path) -> str:
    """DATABASE_URL when set, otherwise a SQLite file private to the test."""
    return os.environ.get("DATABASE_URL") or f"sqlite:///{tmp_path / 'missions.db'}"


@pytest.fixture
def db_engine(tmp_path):
    """Initialized engine with a freshly created schema and triggers."""
    url = get_database_url(tmp_path)
    engine = init_engine_from_url(url)
    register_immutability_listeners()
    if engine.dialect.name != "sqlite":
        drop_tables()
    create_tables()
    yield engine
    if engine.dialect.name != "sqlite":
        drop_tables()
    reset_engine()


@pytest.fixture
def session(db_engine) -> Generator[Session, None, None]:
    """Session for direct service tests; rolled back at teardown."""
    sess = get_session()
    try:
        yield sess
    finally:
        sess.rollback()
        sess.close()


@pytest.fixture
def session_factory(db_engine):
    """Factory for tests that need real commits (procedures, scripts)."""
    return get_session_factory()


# =============================================================================
# Configuration and services
# =============================================================================


@pytest.fixture
def deterministic_clock():
    """Clock fixed at Monday 2025-11-10 14:00 Paris (inside business hours)."""
    return DeterministicClock()


@pytest.fixture
def workflow_config():
    return get_active_config(DEFAULT_CONFIG_PATH)


@pytest.fixture
def transition_table(workflow_config):
    return build_transition_table(workflow_config)


@pytest.fixture
def orchestrator(session, workflow_config, transition_table, deterministic_clock):
    return WorkflowOrchestrator(
        session, workflow_config, table=transition_table, clock=deterministic_clock
    )


@pytest.fixture
def transition_engine(orchestrator):
    return orchestrator.engine


@pytest.fixture
def workflow_log(orchestrator):
    return orchestrator.workflow_log


@pytest.fixture
def idempotency_service(orchestrator):
    return orchestrator.idempotency


@pytest.fixture
def notification_queue(orchestrator):
    return orchestrator.notifications


@pytest.fixture
def monitoring(orchestrator):
    return orchestrator.monitoring


@pytest.fixture
def procedures(session_factory, workflow_config, deterministic_clock):
    return WorkflowProcedures(
        session_factory=session_factory,
        config=workflow_config,
        clock=deterministic_clock,
    )


# =============================================================================
# Mission helpers
# =============================================================================


@pytest.fixture
def create_mission(transition_engine):
    """Create a BROUILLON mission and return it."""

    def _create(title: str = "Entretien PAC", **kwargs):
        kwargs.setdefault("actor_id", DISPATCH_ID)
        kwargs.setdefault("actor_role", "DISPATCH")
        kwargs.setdefault("client_name", "SCI Les Tilleuls")
        kwargs.setdefault("address", "12 rue des Lilas, 69003 Lyon")
        return transition_engine.create_mission(title, **kwargs)

    return _create


@pytest.fixture
def drive_mission(transition_engine):
    """
    Fire a sequence of actions on a mission with the default role and
    parameters from ACTION_DEFAULTS.  Returns the last TransitionResult.
    """

    def _drive(mission_id, *actions):
        result = None
        for action in actions:
            role, actor_id, params = ACTION_DEFAULTS[action]
            result = transition_engine.perform(
                mission_id, action, role, actor_id=actor_id, params=params
            )
        return result

    return _drive
