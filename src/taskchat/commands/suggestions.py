"""Proactive follow-up suggestions after a successful mutation.

``generate_suggestions`` is a pure function of the entity type, the action and
a context snapshot taken after the mutation was applied. Rules live in an
ordered table; each fires when its guard holds, and generation stops once the
cap is reached.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date

from taskchat.entities import EntityStatus, Goal, Milestone, Project, UserProfile

MAX_SUGGESTIONS = 3


def days_until(target: date | None, today: date) -> int | None:
    """Whole days from today to target (negative when overdue)."""
    if target is None:
        return None
    return (target - today).days


@dataclass
class ContextSnapshot:
    """Store state after a mutation, focused on the affected entities."""

    today: date
    projects: list[Project] = field(default_factory=list)
    profile: UserProfile = field(default_factory=UserProfile)
    project: Project | None = None
    goal: Goal | None = None
    milestone: Milestone | None = None
    overload_project_threshold: int = 5
    overload_task_threshold: int = 20
    split_goal_task_threshold: int = 5


@dataclass
class Signals:
    """Derived guards evaluated by suggestion rules."""

    project_name: str
    project_is_active: bool
    goal_name: str
    milestone_name: str
    has_goals: bool
    has_milestones: bool
    has_tasks: bool
    goal_has_date: bool
    goal_task_count: int
    days_left: int | None
    overdue: bool
    urgent: bool
    approaching: bool
    overdue_milestones: int
    next_milestone: Milestone | None
    active_project_count: int
    total_active_tasks: int
    is_overloaded: bool
    focus_areas: list[str]
    split_threshold: int


def derive_signals(snapshot: ContextSnapshot) -> Signals:
    """Compute health, deadline and workload signals from a snapshot."""
    project = snapshot.project
    goal = snapshot.goal
    milestone = snapshot.milestone
    today = snapshot.today

    active_projects = [p for p in snapshot.projects if p.is_active]
    total_active_tasks = sum(
        len(g.active_tasks) for p in active_projects for g in p.active_goals
    )

    open_milestones = project.active_milestones if project else []
    dated = sorted((m for m in open_milestones if m.due_date), key=lambda m: m.due_date)
    overdue_milestones = sum(1 for m in dated if days_until(m.due_date, today) < 0)
    next_milestone = next((m for m in dated if days_until(m.due_date, today) >= 0), None)

    # The deadline that matters for the affected entity
    if milestone is not None:
        deadline = milestone.due_date if milestone.is_active else None
    elif goal is not None:
        deadline = goal.target_date if goal.is_active else None
    else:
        deadline = next_milestone.due_date if next_milestone else None
    days_left = days_until(deadline, today)

    active_project_count = len(active_projects)
    return Signals(
        project_name=project.name if project else "",
        project_is_active=bool(project and project.is_active and project.status != EntityStatus.ON_HOLD),
        goal_name=goal.name if goal else "",
        milestone_name=milestone.name if milestone else "",
        has_goals=bool(project and project.active_goals),
        has_milestones=bool(project and project.milestones),
        has_tasks=bool(project and any(g.active_tasks for g in project.active_goals)),
        goal_has_date=bool(goal and goal.target_date),
        goal_task_count=len(goal.active_tasks) if goal else 0,
        days_left=days_left,
        overdue=days_left is not None and days_left < 0,
        urgent=days_left is not None and 0 <= days_left <= 3,
        approaching=days_left is not None and 4 <= days_left <= 7,
        overdue_milestones=overdue_milestones,
        next_milestone=next_milestone,
        active_project_count=active_project_count,
        total_active_tasks=total_active_tasks,
        is_overloaded=(
            active_project_count > snapshot.overload_project_threshold
            or total_active_tasks > snapshot.overload_task_threshold
        ),
        focus_areas=list(snapshot.profile.focus_areas),
        split_threshold=snapshot.split_goal_task_threshold,
    )


@dataclass
class SuggestionRule:
    """A guarded suggestion for one (entity type, action) pair.

    ``entity_type`` and ``action`` accept ``"*"`` to match anything.
    """

    entity_type: str
    action: str
    when: Callable[[Signals], bool]
    render: Callable[[Signals], str]

    def applies_to(self, entity_type: str, action: str) -> bool:
        return self.entity_type in ("*", entity_type) and self.action in ("*", action)


def _in_days(days: int) -> str:
    if days == 0:
        return "today"
    if days == 1:
        return "tomorrow"
    return f"in {days} days"


def _focus_pair(s: Signals) -> str:
    return " and ".join(s.focus_areas[:2])


RULES: list[SuggestionRule] = [
    # Project
    SuggestionRule(
        "project", "create",
        lambda s: not s.has_goals,
        lambda s: f'Add a goal to "{s.project_name}" to define what success looks like.',
    ),
    SuggestionRule(
        "project", "create",
        lambda s: not s.has_milestones,
        lambda s: f'Set a milestone for "{s.project_name}" to mark your first checkpoint.',
    ),
    SuggestionRule(
        "project", "create",
        lambda s: bool(s.focus_areas),
        lambda s: f'Align "{s.project_name}" with your focus areas: {_focus_pair(s)}.',
    ),
    SuggestionRule(
        "project", "update",
        lambda s: s.project_is_active and not s.has_goals,
        lambda s: f'"{s.project_name}" has no active goals yet. Add one to keep it moving.',
    ),
    # Goal
    SuggestionRule(
        "goal", "create",
        lambda s: s.goal_task_count == 0,
        lambda s: f'Break "{s.goal_name}" into a few tasks to get started.',
    ),
    SuggestionRule(
        "goal", "create",
        lambda s: not s.goal_has_date,
        lambda s: f'Give "{s.goal_name}" a target date so it stays on track.',
    ),
    SuggestionRule(
        "goal", "*",
        lambda s: s.urgent,
        lambda s: f'"{s.goal_name}" is due {_in_days(s.days_left)}. Focus on its remaining tasks first.',
    ),
    SuggestionRule(
        "goal", "*",
        lambda s: s.overdue,
        lambda s: f'"{s.goal_name}" is past its target date. Consider moving the date.',
    ),
    # Task
    SuggestionRule(
        "task", "create",
        lambda s: s.goal_task_count > s.split_threshold,
        lambda s: (
            f'"{s.goal_name}" now has {s.goal_task_count} tasks. '
            "Consider splitting it into smaller sub-goals."
        ),
    ),
    SuggestionRule(
        "task", "*",
        lambda s: s.urgent and s.goal_name != "",
        lambda s: f'"{s.goal_name}" is due {_in_days(s.days_left)}. Tackle its high-priority tasks first.',
    ),
    SuggestionRule(
        "task", "*",
        lambda s: s.overdue and s.goal_name != "",
        lambda s: f'"{s.goal_name}" is past its target date. Consider moving the date.',
    ),
    # Milestone
    SuggestionRule(
        "milestone", "create",
        lambda s: s.urgent or s.approaching,
        lambda s: f'"{s.milestone_name}" is due {_in_days(s.days_left)}. Line up the tasks it needs.',
    ),
    SuggestionRule(
        "milestone", "create",
        lambda s: not s.has_goals,
        lambda s: f'Add a goal to "{s.project_name}" that leads up to "{s.milestone_name}".',
    ),
    SuggestionRule(
        "milestone", "complete",
        lambda s: s.next_milestone is not None,
        lambda s: (
            f'Next up: "{s.next_milestone.name}" is due '
            f"{s.next_milestone.due_date.isoformat()}."
        ),
    ),
    SuggestionRule(
        "milestone", "complete",
        lambda s: s.project_name != "" and s.has_milestones and s.next_milestone is None and s.overdue_milestones == 0,
        lambda s: f'No open dated milestones left in "{s.project_name}". Set the next one or wrap up the project.',
    ),
    # Any mutation
    SuggestionRule(
        "*", "*",
        lambda s: s.overdue_milestones > 0,
        lambda s: (
            f'{s.overdue_milestones} milestone{"s" if s.overdue_milestones != 1 else ""} '
            f'in "{s.project_name}" {"are" if s.overdue_milestones != 1 else "is"} overdue.'
        ),
    ),
    SuggestionRule(
        "*", "*",
        lambda s: s.is_overloaded,
        lambda s: (
            f"You have {s.active_project_count} active projects and {s.total_active_tasks} open tasks. "
            "Consider putting something on hold."
        ),
    ),
]


def generate_suggestions(
    entity_type: str,
    action: str,
    snapshot: ContextSnapshot,
    rules: list[SuggestionRule] | None = None,
    limit: int = MAX_SUGGESTIONS,
) -> list[str]:
    """Produce up to ``limit`` follow-up hints for a mutation.

    Args:
        entity_type: "project", "goal", "task", "milestone", ...
        action: "create", "update", "delete", "complete", "prioritize"
        snapshot: Store state after the mutation
        rules: Rule table (default: RULES)
        limit: Maximum number of suggestions, never more than MAX_SUGGESTIONS

    Returns:
        Suggestion texts in rule declaration order
    """
    limit = min(limit, MAX_SUGGESTIONS)
    if limit <= 0:
        return []

    signals = derive_signals(snapshot)
    suggestions: list[str] = []
    for rule in RULES if rules is None else rules:
        if not rule.applies_to(entity_type, action) or not rule.when(signals):
            continue
        text = rule.render(signals)
        if text not in suggestions:
            suggestions.append(text)
        if len(suggestions) >= limit:
            break
    return suggestions


def build_snapshot(
    projects: list[Project],
    profile: UserProfile,
    today: date,
    project_id: str | None = None,
    goal_id: str | None = None,
    milestone_id: str | None = None,
    **thresholds: int,
) -> ContextSnapshot:
    """Locate the affected entities by id in a fresh store snapshot."""
    project = next((p for p in projects if p.id == project_id), None) if project_id else None
    goal = None
    milestone = None
    for candidate in [project] if project else projects:
        if candidate is None:
            continue
        if goal_id and goal is None:
            goal = next((g for g in candidate.goals if g.id == goal_id), None)
            if goal is not None and project is None:
                project = candidate
        if milestone_id and milestone is None:
            milestone = next((m for m in candidate.milestones if m.id == milestone_id), None)
            if milestone is not None and project is None:
                project = candidate
    return ContextSnapshot(
        today=today,
        projects=projects,
        profile=profile,
        project=project,
        goal=goal,
        milestone=milestone,
        **thresholds,
    )
