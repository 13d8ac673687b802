"""Domain entities owned by the entity store.

A Project exclusively owns its Goals and Milestones; a Goal exclusively owns
its Tasks. Name comparisons across all entities are case-insensitive.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum


class EntityStatus(str, Enum):
    """Lifecycle status shared by projects, goals and milestones."""

    PLANNED = "Planned"
    IN_PROGRESS = "InProgress"
    ON_HOLD = "OnHold"
    COMPLETED = "Completed"
    DELETED = "deleted"


class Priority(str, Enum):
    """Priority levels."""

    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


# Entities in these states never appear in active candidate pools
INACTIVE_STATUSES = frozenset({EntityStatus.COMPLETED, EntityStatus.DELETED})


@dataclass
class Task:
    """A task under a goal."""

    id: str
    name: str
    priority: Priority = Priority.MEDIUM
    completed: bool = False
    archived_at: datetime | None = None
    goal_id: str | None = None
    order: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return not self.completed and self.archived_at is None


@dataclass
class Goal:
    """A goal under a project."""

    id: str
    name: str
    status: EntityStatus = EntityStatus.PLANNED
    target_date: date | None = None
    description: str | None = None
    project_id: str | None = None
    order: int = 0
    tasks: list[Task] = field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status not in INACTIVE_STATUSES

    @property
    def active_tasks(self) -> list[Task]:
        return [task for task in self.tasks if task.is_active]


@dataclass
class Milestone:
    """A dated checkpoint under a project."""

    id: str
    name: str
    due_date: date | None = None
    status: EntityStatus = EntityStatus.PLANNED
    project_id: str | None = None
    order: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status not in INACTIVE_STATUSES


@dataclass
class Project:
    """A project with its goals and milestones."""

    id: str
    name: str
    status: EntityStatus = EntityStatus.PLANNED
    priority: Priority = Priority.MEDIUM
    description: str | None = None
    order: int = 0
    goals: list[Goal] = field(default_factory=list)
    milestones: list[Milestone] = field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status not in INACTIVE_STATUSES

    @property
    def active_goals(self) -> list[Goal]:
        return [goal for goal in self.goals if goal.is_active]

    @property
    def active_milestones(self) -> list[Milestone]:
        return [milestone for milestone in self.milestones if milestone.is_active]


@dataclass
class UserProfile:
    """Per-user focus areas and growth trackers."""

    focus_areas: list[str] = field(default_factory=list)
    # area name -> progress percentage (0-100)
    growth_trackers: dict[str, int] = field(default_factory=dict)


def same_name(left: str, right: str) -> bool:
    """Case-insensitive, whitespace-trimmed name equality."""
    return left.strip().casefold() == right.strip().casefold()
