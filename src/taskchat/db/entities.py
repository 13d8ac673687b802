"""Entity store persistence module.

Stores projects with their goals, tasks and milestones plus the per-user
profile (focus areas and growth trackers). Snapshot reads are synchronous;
mutators are coroutines so callers can await them before deriving anything
from the new state.
"""

import json
import logging
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Protocol

import duckdb

from taskchat.entities import (
    EntityStatus,
    Goal,
    Milestone,
    Priority,
    Project,
    Task,
    UserProfile,
)

logger = logging.getLogger(__name__)

# Entity attribute -> column, per table
_PROJECT_COLUMNS = {
    "name": "name",
    "description": "description",
    "status": "status",
    "priority": "priority",
    "order": "sort_order",
}
_GOAL_COLUMNS = {
    "name": "name",
    "description": "description",
    "status": "status",
    "target_date": "target_date",
    "order": "sort_order",
}
_TASK_COLUMNS = {
    "name": "name",
    "priority": "priority",
    "completed": "completed",
    "archived_at": "archived_at",
    "order": "sort_order",
}
_MILESTONE_COLUMNS = {
    "name": "name",
    "due_date": "due_date",
    "status": "status",
    "order": "sort_order",
}


class EntityStore(Protocol):
    """Collaborator contract used by the action executor."""

    def get_projects(self) -> list[Project]: ...

    def get_tasks(self) -> list[Task]: ...

    def get_profile(self) -> UserProfile: ...

    async def add_project(self, project: Project) -> bool: ...

    async def update_project(self, project_id: str, changes: dict[str, Any]) -> bool: ...

    async def remove_project(self, project_id: str) -> bool: ...

    async def add_goal(self, project_id: str, goal: Goal) -> bool: ...

    async def update_goal(self, goal_id: str, changes: dict[str, Any]) -> bool: ...

    async def remove_goal(self, goal_id: str) -> bool: ...

    async def add_task(self, goal_id: str, task: Task) -> bool: ...

    async def update_task(self, task_id: str, changes: dict[str, Any]) -> bool: ...

    async def add_milestone(self, project_id: str, milestone: Milestone) -> bool: ...

    async def update_milestone(self, milestone_id: str, changes: dict[str, Any]) -> bool: ...

    async def update_profile(self, changes: dict[str, Any]) -> bool: ...


def utcnow() -> datetime:
    """Current UTC time as a naive timestamp, matching the TIMESTAMP columns."""
    return datetime.now(UTC).replace(tzinfo=None)


def _db_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return value


def insert_project(conn: duckdb.DuckDBPyConnection, owner_id: str, project: Project) -> Project:
    """Insert a project row (without its children).

    Args:
        conn: Database connection.
        owner_id: Owning user.
        project: Project to store; missing timestamps are filled in.

    Returns:
        The stored project.
    """
    now = utcnow()
    project.created_at = project.created_at or now
    project.updated_at = project.updated_at or now
    conn.execute(
        """
        INSERT INTO projects
        (id, owner_id, name, description, status, priority, sort_order, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        [
            project.id,
            owner_id,
            project.name,
            project.description,
            project.status.value,
            project.priority.value,
            project.order,
            project.created_at,
            project.updated_at,
        ],
    )
    return project


def insert_goal(conn: duckdb.DuckDBPyConnection, owner_id: str, project_id: str, goal: Goal) -> Goal:
    """Insert a goal row under a project."""
    now = utcnow()
    goal.project_id = project_id
    goal.created_at = goal.created_at or now
    goal.updated_at = goal.updated_at or now
    conn.execute(
        """
        INSERT INTO goals
        (id, owner_id, project_id, name, description, status, target_date, sort_order,
         created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        [
            goal.id,
            owner_id,
            project_id,
            goal.name,
            goal.description,
            goal.status.value,
            goal.target_date,
            goal.order,
            goal.created_at,
            goal.updated_at,
        ],
    )
    return goal


def insert_task(conn: duckdb.DuckDBPyConnection, owner_id: str, goal_id: str, task: Task) -> Task:
    """Insert a task row under a goal."""
    now = utcnow()
    task.goal_id = goal_id
    task.created_at = task.created_at or now
    task.updated_at = task.updated_at or now
    conn.execute(
        """
        INSERT INTO tasks
        (id, owner_id, goal_id, name, priority, completed, archived_at, sort_order,
         created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        [
            task.id,
            owner_id,
            goal_id,
            task.name,
            task.priority.value,
            task.completed,
            task.archived_at,
            task.order,
            task.created_at,
            task.updated_at,
        ],
    )
    return task


def insert_milestone(
    conn: duckdb.DuckDBPyConnection, owner_id: str, project_id: str, milestone: Milestone
) -> Milestone:
    """Insert a milestone row under a project."""
    now = utcnow()
    milestone.project_id = project_id
    milestone.created_at = milestone.created_at or now
    milestone.updated_at = milestone.updated_at or now
    conn.execute(
        """
        INSERT INTO milestones
        (id, owner_id, project_id, name, due_date, status, sort_order, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        [
            milestone.id,
            owner_id,
            project_id,
            milestone.name,
            milestone.due_date,
            milestone.status.value,
            milestone.order,
            milestone.created_at,
            milestone.updated_at,
        ],
    )
    return milestone


def update_row(
    conn: duckdb.DuckDBPyConnection,
    table: str,
    columns: dict[str, str],
    owner_id: str,
    row_id: str,
    changes: dict[str, Any],
) -> bool:
    """Apply attribute changes to one row.

    Args:
        conn: Database connection.
        table: Table name (one of the entity tables).
        columns: Attribute-to-column mapping for the table.
        owner_id: Owning user.
        row_id: Row identifier.
        changes: Entity attribute names mapped to new values.

    Returns:
        True if the row exists and was updated, False otherwise.

    Raises:
        ValueError: If a change names an attribute the table does not store.
    """
    unknown = set(changes) - set(columns)
    if unknown:
        raise ValueError(f"Cannot update {table} fields: {', '.join(sorted(unknown))}")

    exists = conn.execute(
        f"SELECT 1 FROM {table} WHERE id = ? AND owner_id = ?", [row_id, owner_id]
    ).fetchone()
    if not exists:
        return False

    assignments = [f"{columns[key]} = ?" for key in changes]
    values = [_db_value(value) for value in changes.values()]
    assignments.append("updated_at = ?")
    values.append(utcnow())

    conn.execute(
        f"UPDATE {table} SET {', '.join(assignments)} WHERE id = ? AND owner_id = ?",
        [*values, row_id, owner_id],
    )
    return True


def list_tasks(conn: duckdb.DuckDBPyConnection, owner_id: str) -> list[Task]:
    """Return every task of the user in sibling order."""
    rows = conn.execute(
        """
        SELECT id, name, priority, completed, archived_at, goal_id, sort_order,
               created_at, updated_at
        FROM tasks
        WHERE owner_id = ?
        ORDER BY goal_id, sort_order, created_at
        """,
        [owner_id],
    ).fetchall()
    return [
        Task(
            id=row[0],
            name=row[1],
            priority=Priority(row[2]),
            completed=bool(row[3]),
            archived_at=row[4],
            goal_id=row[5],
            order=row[6],
            created_at=row[7],
            updated_at=row[8],
        )
        for row in rows
    ]


def list_projects(conn: duckdb.DuckDBPyConnection, owner_id: str) -> list[Project]:
    """Return every project of the user with goals, tasks and milestones attached."""
    project_rows = conn.execute(
        """
        SELECT id, name, description, status, priority, sort_order, created_at, updated_at
        FROM projects
        WHERE owner_id = ?
        ORDER BY sort_order, created_at
        """,
        [owner_id],
    ).fetchall()
    goal_rows = conn.execute(
        """
        SELECT id, project_id, name, description, status, target_date, sort_order,
               created_at, updated_at
        FROM goals
        WHERE owner_id = ?
        ORDER BY sort_order, created_at
        """,
        [owner_id],
    ).fetchall()
    milestone_rows = conn.execute(
        """
        SELECT id, project_id, name, due_date, status, sort_order, created_at, updated_at
        FROM milestones
        WHERE owner_id = ?
        ORDER BY sort_order, created_at
        """,
        [owner_id],
    ).fetchall()

    tasks_by_goal: dict[str, list[Task]] = {}
    for task in list_tasks(conn, owner_id):
        tasks_by_goal.setdefault(task.goal_id, []).append(task)

    goals_by_project: dict[str, list[Goal]] = {}
    for row in goal_rows:
        goal = Goal(
            id=row[0],
            project_id=row[1],
            name=row[2],
            description=row[3],
            status=EntityStatus(row[4]),
            target_date=row[5],
            order=row[6],
            created_at=row[7],
            updated_at=row[8],
            tasks=tasks_by_goal.get(row[0], []),
        )
        goals_by_project.setdefault(goal.project_id, []).append(goal)

    milestones_by_project: dict[str, list[Milestone]] = {}
    for row in milestone_rows:
        milestone = Milestone(
            id=row[0],
            project_id=row[1],
            name=row[2],
            due_date=row[3],
            status=EntityStatus(row[4]),
            order=row[5],
            created_at=row[6],
            updated_at=row[7],
        )
        milestones_by_project.setdefault(milestone.project_id, []).append(milestone)

    return [
        Project(
            id=row[0],
            name=row[1],
            description=row[2],
            status=EntityStatus(row[3]),
            priority=Priority(row[4]),
            order=row[5],
            created_at=row[6],
            updated_at=row[7],
            goals=goals_by_project.get(row[0], []),
            milestones=milestones_by_project.get(row[0], []),
        )
        for row in project_rows
    ]


def get_profile(conn: duckdb.DuckDBPyConnection, owner_id: str) -> UserProfile:
    """Load the user's profile, empty if none has been saved yet."""
    row = conn.execute(
        "SELECT focus_areas, growth_trackers FROM user_profiles WHERE owner_id = ?",
        [owner_id],
    ).fetchone()
    if row is None:
        return UserProfile()
    return UserProfile(
        focus_areas=json.loads(row[0]) if row[0] else [],
        growth_trackers=json.loads(row[1]) if row[1] else {},
    )


def save_profile(conn: duckdb.DuckDBPyConnection, owner_id: str, profile: UserProfile) -> None:
    """Insert or replace the user's profile."""
    conn.execute(
        """
        INSERT OR REPLACE INTO user_profiles (owner_id, focus_areas, growth_trackers, updated_at)
        VALUES (?, ?, ?, ?)
        """,
        [
            owner_id,
            json.dumps(profile.focus_areas),
            json.dumps(profile.growth_trackers),
            utcnow(),
        ],
    )


class DuckDBEntityStore:
    """EntityStore backed by a DuckDB connection, scoped to one owner."""

    def __init__(self, conn: duckdb.DuckDBPyConnection, owner_id: str) -> None:
        self.conn = conn
        self.owner_id = owner_id

    def get_projects(self) -> list[Project]:
        return list_projects(self.conn, self.owner_id)

    def get_tasks(self) -> list[Task]:
        return list_tasks(self.conn, self.owner_id)

    def get_profile(self) -> UserProfile:
        return get_profile(self.conn, self.owner_id)

    async def add_project(self, project: Project) -> bool:
        insert_project(self.conn, self.owner_id, project)
        logger.debug("Stored project %s (%s)", project.name, project.id)
        return True

    async def update_project(self, project_id: str, changes: dict[str, Any]) -> bool:
        return update_row(self.conn, "projects", _PROJECT_COLUMNS, self.owner_id, project_id, changes)

    async def remove_project(self, project_id: str) -> bool:
        # Soft delete; children stay attached but drop out of active pools with the project
        return update_row(
            self.conn,
            "projects",
            _PROJECT_COLUMNS,
            self.owner_id,
            project_id,
            {"status": EntityStatus.DELETED},
        )

    async def add_goal(self, project_id: str, goal: Goal) -> bool:
        insert_goal(self.conn, self.owner_id, project_id, goal)
        return True

    async def update_goal(self, goal_id: str, changes: dict[str, Any]) -> bool:
        return update_row(self.conn, "goals", _GOAL_COLUMNS, self.owner_id, goal_id, changes)

    async def remove_goal(self, goal_id: str) -> bool:
        return update_row(
            self.conn, "goals", _GOAL_COLUMNS, self.owner_id, goal_id, {"status": EntityStatus.DELETED}
        )

    async def add_task(self, goal_id: str, task: Task) -> bool:
        insert_task(self.conn, self.owner_id, goal_id, task)
        return True

    async def update_task(self, task_id: str, changes: dict[str, Any]) -> bool:
        return update_row(self.conn, "tasks", _TASK_COLUMNS, self.owner_id, task_id, changes)

    async def add_milestone(self, project_id: str, milestone: Milestone) -> bool:
        insert_milestone(self.conn, self.owner_id, project_id, milestone)
        return True

    async def update_milestone(self, milestone_id: str, changes: dict[str, Any]) -> bool:
        return update_row(self.conn, "milestones", _MILESTONE_COLUMNS, self.owner_id, milestone_id, changes)

    async def update_profile(self, changes: dict[str, Any]) -> bool:
        profile = self.get_profile()
        for key, value in changes.items():
            if not hasattr(profile, key):
                raise ValueError(f"Unknown profile field: {key}")
            setattr(profile, key, value)
        save_profile(self.conn, self.owner_id, profile)
        return True
