"""Typed parsed commands, one variant per intent."""

from dataclasses import dataclass, field, fields, replace
from datetime import date
from enum import Enum
from typing import Any, ClassVar, Union

from taskchat.entities import EntityStatus, Priority


@dataclass
class _Command:
    intent: ClassVar[str] = ""
    entity_type: ClassVar[str] = ""
    action: ClassVar[str] = ""

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API responses and pending-action storage."""
        entities: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            if isinstance(value, Enum):
                value = value.value
            elif isinstance(value, date):
                value = value.isoformat()
            elif isinstance(value, list):
                value = list(value)
            entities[f.name] = value
        return {"name": self.intent, "entities": entities}


@dataclass
class ProjectCreate(_Command):
    intent: ClassVar[str] = "project.create"
    entity_type: ClassVar[str] = "project"
    action: ClassVar[str] = "create"

    project_name: str
    description: str | None = None
    status: EntityStatus | None = None
    priority: Priority | None = None


@dataclass
class ProjectUpdate(_Command):
    intent: ClassVar[str] = "project.update"
    entity_type: ClassVar[str] = "project"
    action: ClassVar[str] = "update"

    project_name: str
    status: EntityStatus | None = None
    priority: Priority | None = None
    new_name: str | None = None


@dataclass
class ProjectDelete(_Command):
    intent: ClassVar[str] = "project.delete"
    entity_type: ClassVar[str] = "project"
    action: ClassVar[str] = "delete"

    project_name: str


@dataclass
class GrowthTrackerUpdate(_Command):
    intent: ClassVar[str] = "growth_tracker.update"
    entity_type: ClassVar[str] = "growth_tracker"
    action: ClassVar[str] = "update"

    area: str
    value: int


@dataclass
class FocusAreasUpdate(_Command):
    intent: ClassVar[str] = "focus_areas.update"
    entity_type: ClassVar[str] = "focus_areas"
    action: ClassVar[str] = "update"

    focus_areas: list[str] = field(default_factory=list)
    # "replace" or "add"
    mode: str = "replace"


@dataclass
class GoalCreate(_Command):
    intent: ClassVar[str] = "goal.create"
    entity_type: ClassVar[str] = "goal"
    action: ClassVar[str] = "create"

    goal_title: str
    project_name: str | None = None
    status: EntityStatus | None = None
    target_date: date | None = None
    description: str | None = None


@dataclass
class GoalUpdate(_Command):
    intent: ClassVar[str] = "goal.update"
    entity_type: ClassVar[str] = "goal"
    action: ClassVar[str] = "update"

    goal_title: str
    project_name: str | None = None
    status: EntityStatus | None = None
    target_date: date | None = None


@dataclass
class TaskCreate(_Command):
    intent: ClassVar[str] = "task.create"
    entity_type: ClassVar[str] = "task"
    action: ClassVar[str] = "create"

    task_name: str
    goal_title: str
    project_name: str | None = None
    priority: Priority | None = None


@dataclass
class TaskPrioritize(_Command):
    intent: ClassVar[str] = "task.prioritize"
    entity_type: ClassVar[str] = "task"
    action: ClassVar[str] = "prioritize"

    task_name: str
    priority: Priority = Priority.HIGH


@dataclass
class MilestoneCreate(_Command):
    intent: ClassVar[str] = "milestone.create"
    entity_type: ClassVar[str] = "milestone"
    action: ClassVar[str] = "create"

    milestone_name: str
    project_name: str | None = None
    target_date: date | None = None


@dataclass
class MilestoneComplete(_Command):
    intent: ClassVar[str] = "milestone.complete"
    entity_type: ClassVar[str] = "milestone"
    action: ClassVar[str] = "complete"

    milestone_name: str
    project_name: str | None = None


ParsedCommand = Union[
    ProjectCreate,
    ProjectUpdate,
    ProjectDelete,
    GrowthTrackerUpdate,
    FocusAreasUpdate,
    GoalCreate,
    GoalUpdate,
    TaskCreate,
    TaskPrioritize,
    MilestoneCreate,
    MilestoneComplete,
]

COMMAND_TYPES: dict[str, type] = {
    cls.intent: cls
    for cls in (
        ProjectCreate,
        ProjectUpdate,
        ProjectDelete,
        GrowthTrackerUpdate,
        FocusAreasUpdate,
        GoalCreate,
        GoalUpdate,
        TaskCreate,
        TaskPrioritize,
        MilestoneCreate,
        MilestoneComplete,
    )
}

_FIELD_DECODERS = {
    "status": EntityStatus,
    "priority": Priority,
    "target_date": date.fromisoformat,
}


def build_command(intent: str, entities: dict[str, Any]) -> ParsedCommand:
    """Build a typed command from an intent tag and raw field values.

    Raises:
        KeyError: If the intent tag is unknown
        TypeError: If required fields are missing
    """
    command_type = COMMAND_TYPES[intent]
    allowed = {f.name for f in fields(command_type)}
    kwargs = {key: value for key, value in entities.items() if key in allowed}
    return command_type(**kwargs)


def command_from_dict(data: dict[str, Any]) -> ParsedCommand:
    """Rebuild a command serialized with ``to_dict``."""
    entities = {}
    for key, value in data.get("entities", {}).items():
        decoder = _FIELD_DECODERS.get(key)
        entities[key] = decoder(value) if decoder and value is not None else value
    return build_command(data["name"], entities)


def retarget(command: ParsedCommand, **changes: Any) -> ParsedCommand:
    """Return a copy of the command with the given name fields replaced."""
    return replace(command, **changes)
