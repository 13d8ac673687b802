"""Tests for proactive follow-up suggestions."""

from datetime import date, timedelta

import pytest

from taskchat.commands.suggestions import (
    MAX_SUGGESTIONS,
    ContextSnapshot,
    SuggestionRule,
    build_snapshot,
    days_until,
    derive_signals,
    generate_suggestions,
)
from taskchat.entities import EntityStatus, Goal, Milestone, Project, Task, UserProfile

TODAY = date(2026, 3, 2)


def tasks(count: int) -> list[Task]:
    return [Task(id=f"t{i}", name=f"Task {i}") for i in range(count)]


def snapshot_for(project: Project, **kwargs) -> ContextSnapshot:
    return ContextSnapshot(today=TODAY, projects=kwargs.pop("projects", [project]), project=project, **kwargs)


class TestDaysUntil:
    def test_days_until(self) -> None:
        assert days_until(TODAY + timedelta(days=3), TODAY) == 3
        assert days_until(TODAY - timedelta(days=1), TODAY) == -1
        assert days_until(None, TODAY) is None


class TestProjectSuggestions:
    """Suggestions after project mutations."""

    def test_new_empty_project(self) -> None:
        project = Project(id="p1", name="Launch")
        profile = UserProfile(focus_areas=["health", "career", "family"])

        suggestions = generate_suggestions("project", "create", snapshot_for(project, profile=profile))

        assert suggestions == [
            'Add a goal to "Launch" to define what success looks like.',
            'Set a milestone for "Launch" to mark your first checkpoint.',
            'Align "Launch" with your focus areas: health and career.',
        ]

    def test_project_with_goals_and_milestones(self) -> None:
        project = Project(
            id="p1",
            name="Launch",
            goals=[Goal(id="g1", name="MVP")],
            milestones=[Milestone(id="m1", name="Beta", due_date=TODAY + timedelta(days=20))],
        )

        assert generate_suggestions("project", "create", snapshot_for(project)) == []

    def test_project_update_without_goals(self) -> None:
        project = Project(id="p1", name="Launch", goals=[Goal(id="g1", name="Old", status=EntityStatus.COMPLETED)])

        suggestions = generate_suggestions("project", "update", snapshot_for(project))

        assert suggestions == ['"Launch" has no active goals yet. Add one to keep it moving.']

    @pytest.mark.parametrize("status", [EntityStatus.COMPLETED, EntityStatus.ON_HOLD])
    def test_finished_or_paused_project_is_not_nudged(self, status) -> None:
        project = Project(id="p1", name="Launch", status=status)

        suggestions = generate_suggestions("project", "update", snapshot_for(project))

        assert not any("Add one to keep it moving" in s for s in suggestions)
        assert not derive_signals(snapshot_for(project)).project_is_active


class TestGoalAndTaskSuggestions:
    """Suggestions after goal and task mutations."""

    def test_new_goal_without_tasks_or_date(self) -> None:
        goal = Goal(id="g1", name="MVP")
        project = Project(id="p1", name="Launch", goals=[goal])

        suggestions = generate_suggestions("goal", "create", snapshot_for(project, goal=goal))

        assert suggestions == [
            'Break "MVP" into a few tasks to get started.',
            'Give "MVP" a target date so it stays on track.',
        ]

    def test_urgent_goal(self) -> None:
        goal = Goal(id="g1", name="MVP", target_date=TODAY + timedelta(days=2), tasks=tasks(1))
        project = Project(id="p1", name="Launch", goals=[goal])

        suggestions = generate_suggestions("goal", "update", snapshot_for(project, goal=goal))

        assert suggestions == ['"MVP" is due in 2 days. Focus on its remaining tasks first.']

    def test_overdue_goal(self) -> None:
        goal = Goal(id="g1", name="MVP", target_date=TODAY - timedelta(days=1), tasks=tasks(1))
        project = Project(id="p1", name="Launch", goals=[goal])

        suggestions = generate_suggestions("goal", "update", snapshot_for(project, goal=goal))

        assert suggestions == ['"MVP" is past its target date. Consider moving the date.']

    def test_seventh_task_suggests_splitting(self) -> None:
        goal = Goal(id="g1", name="MVP", tasks=tasks(7))
        project = Project(id="p1", name="Launch", goals=[goal])

        suggestions = generate_suggestions("task", "create", snapshot_for(project, goal=goal))

        assert suggestions[0] == '"MVP" now has 7 tasks. Consider splitting it into smaller sub-goals.'

    def test_split_threshold_is_exclusive(self) -> None:
        goal = Goal(id="g1", name="MVP", tasks=tasks(5))
        project = Project(id="p1", name="Launch", goals=[goal])

        suggestions = generate_suggestions("task", "create", snapshot_for(project, goal=goal))

        assert not any("splitting" in s for s in suggestions)

    def test_completed_tasks_do_not_count(self) -> None:
        done = [Task(id=f"d{i}", name=f"Done {i}", completed=True) for i in range(4)]
        goal = Goal(id="g1", name="MVP", tasks=tasks(3) + done)
        project = Project(id="p1", name="Launch", goals=[goal])

        signals = derive_signals(snapshot_for(project, goal=goal))

        assert signals.goal_task_count == 3

    def test_split_threshold_is_configurable(self) -> None:
        goal = Goal(id="g1", name="MVP", tasks=tasks(3))
        project = Project(id="p1", name="Launch", goals=[goal])

        suggestions = generate_suggestions(
            "task", "create", snapshot_for(project, goal=goal, split_goal_task_threshold=2)
        )

        assert suggestions[0].startswith('"MVP" now has 3 tasks.')


class TestMilestoneSuggestions:
    """Suggestions after milestone mutations."""

    def test_new_milestone_due_soon(self) -> None:
        beta = Milestone(id="m1", name="Beta", due_date=TODAY + timedelta(days=1))
        project = Project(id="p1", name="Launch", goals=[Goal(id="g1", name="MVP")], milestones=[beta])

        suggestions = generate_suggestions("milestone", "create", snapshot_for(project, milestone=beta))

        assert suggestions == ['"Beta" is due tomorrow. Line up the tasks it needs.']

    def test_completed_milestone_points_to_next(self) -> None:
        beta = Milestone(id="m1", name="Beta", due_date=TODAY, status=EntityStatus.COMPLETED)
        ga = Milestone(id="m2", name="GA", due_date=TODAY + timedelta(days=14))
        project = Project(id="p1", name="Launch", goals=[Goal(id="g1", name="MVP")], milestones=[beta, ga])

        suggestions = generate_suggestions("milestone", "complete", snapshot_for(project, milestone=beta))

        assert suggestions == [f'Next up: "GA" is due {(TODAY + timedelta(days=14)).isoformat()}.']

    def test_last_milestone_completed(self) -> None:
        beta = Milestone(id="m1", name="Beta", due_date=TODAY, status=EntityStatus.COMPLETED)
        project = Project(id="p1", name="Launch", goals=[Goal(id="g1", name="MVP")], milestones=[beta])

        suggestions = generate_suggestions("milestone", "complete", snapshot_for(project, milestone=beta))

        assert suggestions == [
            'No open dated milestones left in "Launch". Set the next one or wrap up the project.'
        ]


class TestGlobalSuggestions:
    """Rules that apply to any mutation."""

    def test_overdue_milestones(self) -> None:
        late = [
            Milestone(id="m1", name="Alpha", due_date=TODAY - timedelta(days=5)),
            Milestone(id="m2", name="Beta", due_date=TODAY - timedelta(days=1)),
        ]
        project = Project(id="p1", name="Launch", goals=[Goal(id="g1", name="MVP")], milestones=late)

        suggestions = generate_suggestions("project", "update", snapshot_for(project))

        assert suggestions == ['2 milestones in "Launch" are overdue.']

    def test_overloaded(self) -> None:
        projects = [
            Project(id=f"p{i}", name=f"Project {i}", goals=[Goal(id=f"g{i}", name="Goal")]) for i in range(6)
        ]

        suggestions = generate_suggestions("project", "update", snapshot_for(projects[0], projects=projects))

        assert suggestions == [
            "You have 6 active projects and 0 open tasks. Consider putting something on hold."
        ]

    def test_inactive_projects_do_not_count_toward_overload(self) -> None:
        projects = [Project(id=f"p{i}", name=f"P{i}", status=EntityStatus.COMPLETED) for i in range(10)]
        active = Project(id="a", name="Launch", goals=[Goal(id="g1", name="MVP")])

        signals = derive_signals(snapshot_for(active, projects=projects + [active]))

        assert signals.active_project_count == 1
        assert not signals.is_overloaded


class TestCapAndRules:
    """The cap and the rule table."""

    def test_never_more_than_three(self) -> None:
        late = [Milestone(id=f"m{i}", name=f"M{i}", due_date=TODAY - timedelta(days=1)) for i in range(2)]
        project = Project(id="p1", name="Launch", milestones=late)
        projects = [project] + [Project(id=f"x{i}", name=f"X{i}") for i in range(6)]
        profile = UserProfile(focus_areas=["health"])

        suggestions = generate_suggestions(
            "project", "create", snapshot_for(project, projects=projects, profile=profile), limit=10
        )

        assert len(suggestions) == MAX_SUGGESTIONS

    def test_limit_zero(self) -> None:
        project = Project(id="p1", name="Launch")
        assert generate_suggestions("project", "create", snapshot_for(project), limit=0) == []

    def test_custom_rules_with_wildcards(self) -> None:
        rules = [
            SuggestionRule("*", "delete", lambda s: True, lambda s: "deleted"),
            SuggestionRule("task", "*", lambda s: True, lambda s: "task"),
            SuggestionRule("*", "*", lambda s: True, lambda s: "task"),
        ]
        project = Project(id="p1", name="Launch")

        assert generate_suggestions("task", "prioritize", snapshot_for(project), rules=rules) == ["task"]
        assert generate_suggestions("project", "delete", snapshot_for(project), rules=rules) == ["deleted", "task"]


class TestBuildSnapshot:
    """Locating affected entities in a fresh snapshot."""

    def test_goal_id_finds_goal_and_project(self) -> None:
        goal = Goal(id="g2", name="MVP")
        projects = [
            Project(id="p1", name="Hiring", goals=[Goal(id="g1", name="Recruit")]),
            Project(id="p2", name="Launch", goals=[goal]),
        ]

        snapshot = build_snapshot(projects, UserProfile(), TODAY, goal_id="g2")

        assert snapshot.goal is goal
        assert snapshot.project is projects[1]

    def test_milestone_id_with_project(self) -> None:
        beta = Milestone(id="m1", name="Beta")
        project = Project(id="p1", name="Launch", milestones=[beta])

        snapshot = build_snapshot([project], UserProfile(), TODAY, project_id="p1", milestone_id="m1")

        assert snapshot.project is project
        assert snapshot.milestone is beta

    def test_thresholds_are_passed_through(self) -> None:
        snapshot = build_snapshot([], UserProfile(), TODAY, split_goal_task_threshold=9)
        assert snapshot.split_goal_task_threshold == 9
        assert snapshot.project is None
