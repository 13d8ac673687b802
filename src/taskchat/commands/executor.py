"""Action executor: applies parsed commands to the entity store.

Every create is an idempotent upsert keyed by case-insensitive name within its
scope. Store mutations are awaited before the result is returned, so the
caller can derive suggestions from the post-mutation state.
"""

import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from taskchat.db.entities import EntityStore
from taskchat.entities import (
    EntityStatus,
    Goal,
    Milestone,
    Priority,
    Project,
    Task,
    same_name,
)
from taskchat.errors import (
    AmbiguousMatchError,
    NotFoundError,
    PersistenceError,
    TaskChatError,
    ValidationError,
)
from taskchat.logging_utils import log_debug, log_error, log_info, log_warning
from taskchat.metrics import MetricsCollector

from .parsed import (
    FocusAreasUpdate,
    GoalCreate,
    GoalUpdate,
    GrowthTrackerUpdate,
    MilestoneComplete,
    MilestoneCreate,
    ParsedCommand,
    ProjectCreate,
    ProjectDelete,
    ProjectUpdate,
    TaskCreate,
    TaskPrioritize,
    retarget,
)
from .resolver import ResolutionResult, ResolutionTier, resolve, resolve_goal, resolve_milestone
from .suggestions import days_until

logger = logging.getLogger(__name__)

STATUS_OK = "ok"
STATUS_INFO = "info"
STATUS_NEEDS_CONFIRMATION = "needs_confirmation"
STATUS_NOT_FOUND = "not_found"
STATUS_ERROR = "error"

# Derived task priority is High when a deadline falls within this many days
URGENT_WINDOW_DAYS = 3

_STATUS_LABELS = {
    EntityStatus.PLANNED: "planned",
    EntityStatus.IN_PROGRESS: "in progress",
    EntityStatus.ON_HOLD: "on hold",
    EntityStatus.COMPLETED: "completed",
}


@dataclass
class ExecutionResult:
    """Outcome of executing one command."""

    status: str
    message: str
    intent: str
    entity_type: str
    action: str
    entity_name: str | None = None
    mutated: bool = False
    project_id: str | None = None
    goal_id: str | None = None
    milestone_id: str | None = None
    notes: list[str] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)
    pending_command: ParsedCommand | None = None

    @property
    def reply(self) -> str:
        """Assistant text: resolution notes followed by the outcome message."""
        return " ".join([*self.notes, self.message])


class ConfirmationRequired(TaskChatError):
    """Resolution proposed an entity the user has to approve first."""

    def __init__(self, message: str, command: ParsedCommand) -> None:
        super().__init__(message)
        self.command = command


def _new_id() -> str:
    return str(uuid.uuid4())


def _quoted(name: str) -> str:
    return f'"{name}"'


def _due_suffix(value: date | None) -> str:
    return f" (due {value.isoformat()})" if value else ""


class ActionExecutor:
    """Execute typed commands against an EntityStore."""

    def __init__(
        self,
        store: EntityStore,
        *,
        confirm_fuzzy_matches: bool = False,
        today_provider: Callable[[], date] = date.today,
        metrics: MetricsCollector | None = None,
    ) -> None:
        """Initialize the executor.

        Args:
            store: Entity store handle; every read is an explicit snapshot call
            confirm_fuzzy_matches: Ask before applying substring matches
            today_provider: Returns the reference date for deadline checks
            metrics: Optional collector for resolution tiers
        """
        self.store = store
        self.confirm_fuzzy_matches = confirm_fuzzy_matches
        self.today_provider = today_provider
        self.metrics = metrics
        self._handlers: dict[type, Callable[[Any, list[str]], Awaitable[ExecutionResult]]] = {
            ProjectCreate: self._project_create,
            ProjectUpdate: self._project_update,
            ProjectDelete: self._project_delete,
            GrowthTrackerUpdate: self._growth_tracker_update,
            FocusAreasUpdate: self._focus_areas_update,
            GoalCreate: self._goal_create,
            GoalUpdate: self._goal_update,
            TaskCreate: self._task_create,
            TaskPrioritize: self._task_prioritize,
            MilestoneCreate: self._milestone_create,
            MilestoneComplete: self._milestone_complete,
        }

    async def execute(self, command: ParsedCommand) -> ExecutionResult:
        """Resolve and apply one command.

        NotFound, validation, confirmation and persistence outcomes are
        returned as results rather than raised.

        Args:
            command: Parsed command

        Returns:
            ExecutionResult describing what happened
        """
        notes: list[str] = []
        handler = self._handlers[type(command)]
        try:
            return await handler(command, notes)
        except ConfirmationRequired as e:
            return self._result(
                command,
                STATUS_NEEDS_CONFIRMATION,
                str(e),
                notes=notes,
                pending_command=e.command,
            )
        except NotFoundError as e:
            log_info(logger, "Entity not found", intent=command.intent, suggestions=len(e.suggestions))
            result = self._result(command, STATUS_NOT_FOUND, str(e), notes=notes)
            result.suggestions = list(e.suggestions)
            return result
        except ValidationError as e:
            log_info(logger, "Command rejected", intent=command.intent, reason=str(e))
            return self._result(command, STATUS_ERROR, str(e), notes=notes)
        except PersistenceError as e:
            log_error(logger, "Store mutation failed", intent=command.intent, error=str(e))
            return self._result(
                command,
                STATUS_ERROR,
                "I couldn't save that change. Nothing was lost on your side; please try again.",
                notes=notes,
            )

    def _result(self, command: ParsedCommand, status: str, message: str, **kwargs: Any) -> ExecutionResult:
        return ExecutionResult(
            status=status,
            message=message,
            intent=command.intent,
            entity_type=command.entity_type,
            action=command.action,
            **kwargs,
        )

    async def _apply(self, operation: str, call: Awaitable[bool]) -> None:
        """Await a store mutation, translating failures into PersistenceError."""
        try:
            applied = await call
        except TaskChatError:
            raise
        except Exception as e:
            raise PersistenceError(f"{operation} failed: {e}") from e
        if not applied:
            raise PersistenceError(f"{operation} was not applied")

    def _require(
        self,
        result: ResolutionResult,
        command: ParsedCommand,
        field_name: str,
        notes: list[str],
        **retarget_extra: Any,
    ) -> Any:
        """Return the resolved entity or stop with the tier's outcome.

        Args:
            result: Resolution outcome
            command: The command being executed
            field_name: Command field holding the resolved name
            notes: Collected resolution notes for the reply
            **retarget_extra: Further fields to rewrite when asking for confirmation

        Raises:
            ConfirmationRequired: SuggestedFallback, or FuzzyResolved when configured
            NotFoundError: NotFound or NoCandidates
        """
        log_debug(logger, "Resolved name", query=result.query, tier=result.tier.value)
        if self.metrics is not None:
            self.metrics.record_resolution(result.tier.value)

        if result.tier == ResolutionTier.RESOLVED:
            return result.entity

        if result.tier == ResolutionTier.AMBIGUOUS_RESOLVED:
            warning = AmbiguousMatchError(result.message or "", result.match_count)
            log_warning(logger, "Ambiguous match", query=result.query, matches=warning.match_count)
            notes.append(str(warning))
            return result.entity

        if result.tier == ResolutionTier.FUZZY_RESOLVED:
            name = result.entity.name
            if self.confirm_fuzzy_matches:
                raise ConfirmationRequired(
                    f"Did you mean {_quoted(name)}?",
                    retarget(command, **{field_name: name}, **retarget_extra),
                )
            notes.append(f"Using {_quoted(name)} for {_quoted(result.query)}.")
            return result.entity

        if result.tier == ResolutionTier.SUGGESTED_FALLBACK:
            name = result.entity.name
            raise ConfirmationRequired(
                result.message or f"Did you mean {_quoted(name)}?",
                retarget(command, **{field_name: name}, **retarget_extra),
            )

        raise NotFoundError(result.message or f"I couldn't find {_quoted(result.query)}.", result.suggestions)

    def _project_for(
        self, project_name: str | None, projects: list[Project], command: ParsedCommand, notes: list[str]
    ) -> Project:
        """Resolve the project a child entity belongs to."""
        if project_name:
            return self._require(resolve(project_name, projects, kind="project"), command, "project_name", notes)

        active = [p for p in projects if p.is_active]
        if len(active) == 1:
            return active[0]
        if not active:
            raise NotFoundError("You don't have any active projects yet. Create a project first.")
        names = [p.name for p in active[:3]]
        raise NotFoundError(
            "Which project should I use? Try adding \"to <project>\", for example: "
            + ", ".join(_quoted(n) for n in names)
            + ".",
            names,
        )

    # Project

    async def _project_create(self, command: ProjectCreate, notes: list[str]) -> ExecutionResult:
        projects = self.store.get_projects()
        existing = next(
            (p for p in projects if p.is_active and same_name(p.name, command.project_name)), None
        )
        if existing is not None:
            return self._result(
                command,
                STATUS_INFO,
                f"Project {_quoted(existing.name)} already exists.",
                entity_name=existing.name,
                project_id=existing.id,
            )

        project = Project(
            id=_new_id(),
            name=command.project_name,
            description=command.description,
            status=command.status or EntityStatus.PLANNED,
            priority=command.priority or Priority.MEDIUM,
            order=len(projects) + 1,
        )
        await self._apply("add project", self.store.add_project(project))
        log_info(logger, "Project created", project_id=project.id)

        message = f"Created project {_quoted(project.name)}"
        if project.description:
            message += f" for {project.description}"
        return self._result(
            command,
            STATUS_OK,
            message + ".",
            entity_name=project.name,
            mutated=True,
            project_id=project.id,
            notes=notes,
        )

    async def _project_update(self, command: ProjectUpdate, notes: list[str]) -> ExecutionResult:
        projects = self.store.get_projects()
        project = self._require(resolve(command.project_name, projects, kind="project"), command, "project_name", notes)

        changes: dict[str, Any] = {}
        described: list[str] = []
        if command.new_name and command.new_name != project.name:
            clash = next(
                (
                    p
                    for p in projects
                    if p.is_active and p.id != project.id and same_name(p.name, command.new_name)
                ),
                None,
            )
            if clash is not None:
                raise ValidationError(f"A project named {_quoted(clash.name)} already exists.")
            changes["name"] = command.new_name
            described.append(f"renamed to {_quoted(command.new_name)}")
        if command.status is not None and command.status != project.status:
            changes["status"] = command.status
            described.append(f"marked {_STATUS_LABELS.get(command.status, command.status.value)}")
        if command.priority is not None and command.priority != project.priority:
            changes["priority"] = command.priority
            described.append(f"set to {command.priority.value} priority")

        if not changes:
            if command.status is None and command.priority is None and not command.new_name:
                raise ValidationError("Tell me what to change: a status, a priority or a new name.")
            return self._result(
                command,
                STATUS_INFO,
                f"Project {_quoted(project.name)} is already up to date.",
                entity_name=project.name,
                project_id=project.id,
                notes=notes,
            )

        await self._apply("update project", self.store.update_project(project.id, changes))
        return self._result(
            command,
            STATUS_OK,
            f"Project {_quoted(project.name)} {' and '.join(described)}.",
            entity_name=changes.get("name", project.name),
            mutated=True,
            project_id=project.id,
            notes=notes,
        )

    async def _project_delete(self, command: ProjectDelete, notes: list[str]) -> ExecutionResult:
        projects = self.store.get_projects()
        project = self._require(resolve(command.project_name, projects, kind="project"), command, "project_name", notes)

        await self._apply("remove project", self.store.remove_project(project.id))
        log_info(logger, "Project deleted", project_id=project.id)
        return self._result(
            command,
            STATUS_OK,
            f"Deleted project {_quoted(project.name)}.",
            entity_name=project.name,
            mutated=True,
            notes=notes,
        )

    # Profile

    async def _growth_tracker_update(self, command: GrowthTrackerUpdate, notes: list[str]) -> ExecutionResult:
        if not command.area:
            raise ValidationError("Which growth area should I update?")
        if not 0 <= command.value <= 100:
            raise ValidationError("Growth progress must be between 0 and 100 percent.")

        profile = self.store.get_profile()
        trackers = dict(profile.growth_trackers)
        area = next((key for key in trackers if same_name(key, command.area)), command.area)
        if trackers.get(area) == command.value:
            return self._result(
                command,
                STATUS_INFO,
                f"Your {_quoted(area)} growth tracker is already at {command.value}%.",
                entity_name=area,
            )

        trackers[area] = command.value
        await self._apply("update growth tracker", self.store.update_profile({"growth_trackers": trackers}))
        return self._result(
            command,
            STATUS_OK,
            f"Updated your {_quoted(area)} growth tracker to {command.value}%.",
            entity_name=area,
            mutated=True,
        )

    async def _focus_areas_update(self, command: FocusAreasUpdate, notes: list[str]) -> ExecutionResult:
        if not command.focus_areas:
            raise ValidationError("I couldn't find any focus areas in that message.")

        current = list(self.store.get_profile().focus_areas)
        if command.mode == "add":
            updated = list(current)
            for area in command.focus_areas:
                if not any(same_name(area, existing) for existing in updated):
                    updated.append(area)
        else:
            updated = list(command.focus_areas)

        if updated == current:
            return self._result(
                command,
                STATUS_INFO,
                f"Your focus areas are already: {', '.join(current)}.",
            )

        await self._apply("update focus areas", self.store.update_profile({"focus_areas": updated}))
        return self._result(
            command,
            STATUS_OK,
            f"Your focus areas are now: {', '.join(updated)}.",
            entity_name=", ".join(updated),
            mutated=True,
        )

    # Goal

    async def _goal_create(self, command: GoalCreate, notes: list[str]) -> ExecutionResult:
        projects = self.store.get_projects()
        project = self._project_for(command.project_name, projects, command, notes)

        existing = next(
            (g for g in project.active_goals if same_name(g.name, command.goal_title)), None
        )
        if existing is not None:
            changes: dict[str, Any] = {}
            if command.status is not None and command.status != existing.status:
                changes["status"] = command.status
            if command.target_date is not None and command.target_date != existing.target_date:
                changes["target_date"] = command.target_date
            if not changes:
                return self._result(
                    command,
                    STATUS_INFO,
                    f"Goal {_quoted(existing.name)} already exists in {_quoted(project.name)}.",
                    entity_name=existing.name,
                    project_id=project.id,
                    goal_id=existing.id,
                    notes=notes,
                )
            await self._apply("update goal", self.store.update_goal(existing.id, changes))
            return self._result(
                command,
                STATUS_OK,
                f"Goal {_quoted(existing.name)} already exists in {_quoted(project.name)}, "
                f"so I updated it{_due_suffix(changes.get('target_date'))}.",
                entity_name=existing.name,
                mutated=True,
                project_id=project.id,
                goal_id=existing.id,
                notes=notes,
            )

        goal = Goal(
            id=_new_id(),
            name=command.goal_title,
            status=command.status or EntityStatus.PLANNED,
            target_date=command.target_date,
            description=command.description,
            order=len(project.goals) + 1,
        )
        await self._apply("add goal", self.store.add_goal(project.id, goal))
        log_info(logger, "Goal created", goal_id=goal.id, project_id=project.id)
        return self._result(
            command,
            STATUS_OK,
            f"Added goal {_quoted(goal.name)} to {_quoted(project.name)}{_due_suffix(goal.target_date)}.",
            entity_name=goal.name,
            mutated=True,
            project_id=project.id,
            goal_id=goal.id,
            notes=notes,
        )

    async def _goal_update(self, command: GoalUpdate, notes: list[str]) -> ExecutionResult:
        if command.status is None and command.target_date is None:
            raise ValidationError(f"What should I change about goal {_quoted(command.goal_title)}?")

        projects = self.store.get_projects()
        scope = None
        if command.project_name:
            scope = self._project_for(command.project_name, projects, command, notes)
        match = resolve_goal(command.goal_title, projects, scope)
        if not match.result.is_resolved and command.status == EntityStatus.COMPLETED:
            done = _completed_named(command.goal_title, [g for p in projects for g in p.goals])
            if done is not None:
                return self._result(
                    command, STATUS_INFO, f"Goal {_quoted(done.name)} is already completed.", entity_name=done.name
                )
        extra = {"project_name": match.project.name} if match.project else {}
        goal = self._require(match.result, command, "goal_title", notes, **extra)
        project = match.project

        changes: dict[str, Any] = {}
        if command.status is not None and command.status != goal.status:
            changes["status"] = command.status
        if command.target_date is not None and command.target_date != goal.target_date:
            changes["target_date"] = command.target_date
        if not changes:
            return self._result(
                command,
                STATUS_INFO,
                f"Goal {_quoted(goal.name)} is already up to date.",
                entity_name=goal.name,
                project_id=project.id,
                goal_id=goal.id,
                notes=notes,
            )

        await self._apply("update goal", self.store.update_goal(goal.id, changes))
        described = []
        if "status" in changes:
            described.append(f"marked {_STATUS_LABELS.get(changes['status'], changes['status'].value)}")
        if "target_date" in changes:
            described.append(f"due {changes['target_date'].isoformat()}")
        return self._result(
            command,
            STATUS_OK,
            f"Goal {_quoted(goal.name)} in {_quoted(project.name)} {' and '.join(described)}.",
            entity_name=goal.name,
            mutated=True,
            project_id=project.id,
            goal_id=goal.id,
            notes=notes,
        )

    # Task

    async def _task_create(self, command: TaskCreate, notes: list[str]) -> ExecutionResult:
        projects = self.store.get_projects()
        scope = None
        if command.project_name:
            scope = self._project_for(command.project_name, projects, command, notes)
        match = resolve_goal(command.goal_title, projects, scope)
        extra = {"project_name": match.project.name} if match.project else {}
        goal = self._require(match.result, command, "goal_title", notes, **extra)
        project = match.project

        existing = next((t for t in goal.active_tasks if same_name(t.name, command.task_name)), None)
        if existing is not None:
            return self._result(
                command,
                STATUS_INFO,
                f"Task {_quoted(existing.name)} already exists under goal {_quoted(goal.name)}.",
                entity_name=existing.name,
                project_id=project.id,
                goal_id=goal.id,
                notes=notes,
            )

        priority = command.priority or self._derive_priority(project, goal)
        task = Task(
            id=_new_id(),
            name=command.task_name,
            priority=priority,
            order=len(goal.tasks) + 1,
        )
        await self._apply("add task", self.store.add_task(goal.id, task))
        log_info(logger, "Task created", task_id=task.id, goal_id=goal.id)
        return self._result(
            command,
            STATUS_OK,
            f"Added task {_quoted(task.name)} to goal {_quoted(goal.name)} ({priority.value} priority).",
            entity_name=task.name,
            mutated=True,
            project_id=project.id,
            goal_id=goal.id,
            notes=notes,
        )

    def _derive_priority(self, project: Project, goal: Goal) -> Priority:
        """High when the project is High or a deadline is within the urgent window."""
        if project.priority == Priority.HIGH:
            return Priority.HIGH
        today = self.today_provider()
        deadlines = [goal.target_date] + [m.due_date for m in project.active_milestones]
        for deadline in deadlines:
            days = days_until(deadline, today)
            if days is not None and 0 <= days <= URGENT_WINDOW_DAYS:
                return Priority.HIGH
        return Priority.MEDIUM

    async def _task_prioritize(self, command: TaskPrioritize, notes: list[str]) -> ExecutionResult:
        projects = self.store.get_projects()
        open_goals = {g.id: (p, g) for p in projects if p.is_active for g in p.active_goals}
        tasks = [t for t in self.store.get_tasks() if t.goal_id in open_goals]

        task = self._require(resolve(command.task_name, tasks, kind="task"), command, "task_name", notes)
        project, goal = open_goals[task.goal_id]

        if task.priority == command.priority:
            return self._result(
                command,
                STATUS_INFO,
                f"Task {_quoted(task.name)} is already {command.priority.value} priority.",
                entity_name=task.name,
                project_id=project.id,
                goal_id=goal.id,
                notes=notes,
            )

        await self._apply("update task", self.store.update_task(task.id, {"priority": command.priority}))
        return self._result(
            command,
            STATUS_OK,
            f"Task {_quoted(task.name)} is now {command.priority.value} priority.",
            entity_name=task.name,
            mutated=True,
            project_id=project.id,
            goal_id=goal.id,
            notes=notes,
        )

    # Milestone

    async def _milestone_create(self, command: MilestoneCreate, notes: list[str]) -> ExecutionResult:
        projects = self.store.get_projects()
        project = self._project_for(command.project_name, projects, command, notes)

        existing = next(
            (m for m in project.active_milestones if same_name(m.name, command.milestone_name)), None
        )
        if existing is not None:
            if command.target_date is None or command.target_date == existing.due_date:
                return self._result(
                    command,
                    STATUS_INFO,
                    f"Milestone {_quoted(existing.name)} already exists in {_quoted(project.name)}.",
                    entity_name=existing.name,
                    project_id=project.id,
                    milestone_id=existing.id,
                    notes=notes,
                )
            await self._apply(
                "update milestone", self.store.update_milestone(existing.id, {"due_date": command.target_date})
            )
            return self._result(
                command,
                STATUS_OK,
                f"Milestone {_quoted(existing.name)} already exists, so I moved it{_due_suffix(command.target_date)}.",
                entity_name=existing.name,
                mutated=True,
                project_id=project.id,
                milestone_id=existing.id,
                notes=notes,
            )

        milestone = Milestone(
            id=_new_id(),
            name=command.milestone_name,
            due_date=command.target_date,
            order=len(project.milestones) + 1,
        )
        await self._apply("add milestone", self.store.add_milestone(project.id, milestone))
        log_info(logger, "Milestone created", milestone_id=milestone.id, project_id=project.id)
        return self._result(
            command,
            STATUS_OK,
            f"Added milestone {_quoted(milestone.name)} to {_quoted(project.name)}"
            f"{_due_suffix(milestone.due_date)}.",
            entity_name=milestone.name,
            mutated=True,
            project_id=project.id,
            milestone_id=milestone.id,
            notes=notes,
        )

    async def _milestone_complete(self, command: MilestoneComplete, notes: list[str]) -> ExecutionResult:
        projects = self.store.get_projects()
        scope = None
        if command.project_name:
            scope = self._project_for(command.project_name, projects, command, notes)
        match = resolve_milestone(command.milestone_name, projects, scope)

        if not match.result.is_resolved:
            pool = scope.milestones if scope else [m for p in projects if p.is_active for m in p.milestones]
            done = _completed_named(command.milestone_name, pool)
            if done is not None:
                return self._result(
                    command,
                    STATUS_INFO,
                    f"Milestone {_quoted(done.name)} is already completed.",
                    entity_name=done.name,
                    milestone_id=done.id,
                )

        extra = {"project_name": match.project.name} if match.project else {}
        milestone = self._require(match.result, command, "milestone_name", notes, **extra)
        project = match.project

        await self._apply(
            "complete milestone",
            self.store.update_milestone(milestone.id, {"status": EntityStatus.COMPLETED}),
        )
        log_info(logger, "Milestone completed", milestone_id=milestone.id)
        return self._result(
            command,
            STATUS_OK,
            f"Marked milestone {_quoted(milestone.name)} in {_quoted(project.name)} as completed.",
            entity_name=milestone.name,
            mutated=True,
            project_id=project.id,
            milestone_id=milestone.id,
            notes=notes,
        )


def _completed_named(name: str, entities: list[Any]) -> Any | None:
    """Find a completed entity with exactly this name."""
    return next(
        (e for e in entities if e.status == EntityStatus.COMPLETED and same_name(e.name, name)),
        None,
    )
