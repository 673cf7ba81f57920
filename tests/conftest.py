"""
Pytest fixtures for the workflow test suite.

Provides:
- Structured logging configured at DEBUG for every test, plus a
  ``captured_logs`` fixture returning parsed JSON records
- Deterministic clock and sequential id generator
- In-memory SQLite session factory and ``WorkflowStore``
- Approval chain fixtures
"""

import json
import logging
from io import StringIO

import pytest

from workflow_engines.approval_chain import create_approval_chain
from workflow_kernel.db.engine import (
    create_session_factory,
    create_tables,
    create_workflow_engine,
    drop_tables,
)
from workflow_kernel.domain.approval import Approver, SameLevelPolicy
from workflow_kernel.domain.clock import DeterministicClock
from workflow_kernel.domain.ids import SequentialIdGenerator
from workflow_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from workflow_kernel.services.workflow_store import WorkflowStore


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def _configure_test_logging():
    """Configure structured logging at DEBUG for each test."""
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())
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
    Capture workflow_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs):
            machine.transition(instance, "submit")
            logs = captured_logs()
            assert any(r["message"] == "workflow_transition" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("workflow_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Determinism fixtures
# =============================================================================


@pytest.fixture
def clock() -> DeterministicClock:
    """Clock fixed at 2024-01-01 12:00 UTC."""
    return DeterministicClock()


@pytest.fixture
def ids() -> SequentialIdGenerator:
    return SequentialIdGenerator("id")


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def db_engine():
    """Fresh in-memory SQLite database per test."""
    engine = create_workflow_engine("sqlite://")
    create_tables(engine)
    yield engine
    drop_tables(engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest.fixture
def store(session_factory) -> WorkflowStore:
    return WorkflowStore(session_factory)


# =============================================================================
# Factories
# =============================================================================


def _approver(approver_id: str, level: int = 1, role: str = "manager") -> Approver:
    return Approver(id=approver_id, name=approver_id.title(), role=role, level=level)


@pytest.fixture
def two_level_chain(clock, ids):
    """Chain with mgr-001 at level 1 and dir-001 at level 2."""
    return create_approval_chain(
        "rev-1",
        [_approver("dir-001", 2, "director"), _approver("mgr-001", 1)],
        clock=clock,
        id_generator=ids,
    )


@pytest.fixture
def same_level_chain_factory(clock, ids):
    """Build a chain with two level-1 peers and one level-2 approver."""

    def _build(policy: SameLevelPolicy = SameLevelPolicy.ALL):
        return create_approval_chain(
            "rev-1",
            [
                _approver("mgr-a", 1),
                _approver("mgr-b", 1),
                _approver("vp-001", 2, "vp"),
            ],
            same_level_policy=policy,
            clock=clock,
            id_generator=ids,
        )

    return _build
