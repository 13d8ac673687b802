"""pytest configuration for TaskChat tests."""

import os
import sys
import uuid
from datetime import date
from pathlib import Path

import pytest

# Add src directory to path so tests can import taskchat
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Set DUCKDB_PATH to :memory: for all tests to ensure test isolation
os.environ["DUCKDB_PATH"] = ":memory:"
# Never reach for a real Redis or delegate from tests
os.environ["REDIS_ENABLED"] = "false"
os.environ.setdefault("TASKCHAT_DELEGATE_PROVIDER", "stub")

from taskchat.db import init_db  # noqa: E402
from taskchat.db.chat_messages import SessionStore  # noqa: E402
from taskchat.db.entities import (  # noqa: E402
    DuckDBEntityStore,
    insert_goal,
    insert_milestone,
    insert_project,
    insert_task,
)
from taskchat.entities import Goal, Milestone, Project, Task  # noqa: E402

TODAY = date(2026, 3, 2)


@pytest.fixture
def test_user_id() -> str:
    """A consistent test user ID."""
    return "12345678-1234-1234-1234-123456789012"


@pytest.fixture
def today() -> date:
    """Fixed reference date for relative dates and deadlines."""
    return TODAY


@pytest.fixture
def db_conn():
    """Migrated in-memory DuckDB connection."""
    conn = init_db(":memory:")
    yield conn
    conn.close()


@pytest.fixture
def store(db_conn, test_user_id) -> DuckDBEntityStore:
    """Entity store for the test user."""
    return DuckDBEntityStore(db_conn, test_user_id)


@pytest.fixture
def session_store(db_conn, test_user_id) -> SessionStore:
    """Durable session log for one chat session."""
    return SessionStore(db_conn, test_user_id, "session-1")


class Seeder:
    """Insert entities directly through the row helpers."""

    def __init__(self, conn, owner_id: str) -> None:
        self.conn = conn
        self.owner_id = owner_id

    def project(self, name: str, **fields):
        return insert_project(self.conn, self.owner_id, Project(id=str(uuid.uuid4()), name=name, **fields))

    def goal(self, project, name: str, **fields):
        goal = Goal(id=str(uuid.uuid4()), name=name, **fields)
        return insert_goal(self.conn, self.owner_id, project.id, goal)

    def task(self, goal, name: str, **fields):
        task = Task(id=str(uuid.uuid4()), name=name, **fields)
        return insert_task(self.conn, self.owner_id, goal.id, task)

    def milestone(self, project, name: str, **fields):
        milestone = Milestone(id=str(uuid.uuid4()), name=name, **fields)
        return insert_milestone(self.conn, self.owner_id, project.id, milestone)


@pytest.fixture
def seed(db_conn, test_user_id) -> Seeder:
    """Synchronous helpers for arranging store state."""
    return Seeder(db_conn, test_user_id)
