"""Tests for the action executor."""

from datetime import datetime, timedelta

import pytest

from taskchat.commands.executor import (
    STATUS_ERROR,
    STATUS_INFO,
    STATUS_NEEDS_CONFIRMATION,
    STATUS_NOT_FOUND,
    STATUS_OK,
    ActionExecutor,
)
from taskchat.commands.parsed import (
    FocusAreasUpdate,
    GoalCreate,
    GoalUpdate,
    GrowthTrackerUpdate,
    MilestoneComplete,
    MilestoneCreate,
    ProjectCreate,
    ProjectDelete,
    ProjectUpdate,
    TaskCreate,
    TaskPrioritize,
)
from taskchat.db.entities import DuckDBEntityStore
from taskchat.entities import EntityStatus, Priority
from taskchat.metrics import MetricsCollector


@pytest.fixture
def executor(store, today) -> ActionExecutor:
    """Executor with a fixed reference date."""
    return ActionExecutor(store, today_provider=lambda: today)


def active_goal_names(store, project_name: str) -> list[str]:
    project = next(p for p in store.get_projects() if p.name == project_name)
    return [g.name for g in project.active_goals]


class TestProjectCommands:
    """Project create/update/delete."""

    @pytest.mark.asyncio
    async def test_create_project_in_empty_store(self, executor, store) -> None:
        result = await executor.execute(ProjectCreate(project_name="Launch", description="Q1 marketing"))

        assert result.status == STATUS_OK
        assert result.mutated
        assert "Launch" in result.reply

        projects = store.get_projects()
        assert len(projects) == 1
        assert projects[0].name == "Launch"
        assert projects[0].description == "Q1 marketing"
        assert projects[0].status == EntityStatus.PLANNED
        assert projects[0].priority == Priority.MEDIUM
        assert projects[0].order == 1

    @pytest.mark.asyncio
    async def test_create_existing_project_is_idempotent(self, executor, store, seed) -> None:
        seed.project("Launch")

        result = await executor.execute(ProjectCreate(project_name="launch"))

        assert result.status == STATUS_INFO
        assert not result.mutated
        assert "already exists" in result.message
        assert len(store.get_projects()) == 1

    @pytest.mark.asyncio
    async def test_completed_project_name_can_be_reused(self, executor, store, seed) -> None:
        seed.project("Launch", status=EntityStatus.COMPLETED)

        result = await executor.execute(ProjectCreate(project_name="Launch"))

        assert result.status == STATUS_OK
        assert len(store.get_projects()) == 2

    @pytest.mark.asyncio
    async def test_rename_project(self, executor, store, seed) -> None:
        seed.project("Launch")

        result = await executor.execute(ProjectUpdate(project_name="Launch", new_name="Liftoff"))

        assert result.status == STATUS_OK
        assert result.entity_name == "Liftoff"
        assert [p.name for p in store.get_projects()] == ["Liftoff"]

    @pytest.mark.asyncio
    async def test_rename_onto_existing_name_is_rejected(self, executor, store, seed) -> None:
        seed.project("Launch")
        seed.project("Liftoff")

        result = await executor.execute(ProjectUpdate(project_name="Launch", new_name="liftoff"))

        assert result.status == STATUS_ERROR
        assert "already exists" in result.message
        assert sorted(p.name for p in store.get_projects()) == ["Launch", "Liftoff"]

    @pytest.mark.asyncio
    async def test_update_status_and_priority(self, executor, store, seed) -> None:
        seed.project("Launch")

        result = await executor.execute(
            ProjectUpdate(project_name="Launch", status=EntityStatus.IN_PROGRESS, priority=Priority.HIGH)
        )

        assert result.status == STATUS_OK
        assert "in progress" in result.message
        project = store.get_projects()[0]
        assert project.status == EntityStatus.IN_PROGRESS
        assert project.priority == Priority.HIGH

    @pytest.mark.asyncio
    async def test_update_without_changes_is_rejected(self, executor, seed) -> None:
        seed.project("Launch")

        result = await executor.execute(ProjectUpdate(project_name="Launch"))

        assert result.status == STATUS_ERROR

    @pytest.mark.asyncio
    async def test_delete_project_is_soft(self, executor, store, seed) -> None:
        seed.project("Launch")

        result = await executor.execute(ProjectDelete(project_name="Launch"))

        assert result.status == STATUS_OK
        assert result.message == 'Deleted project "Launch".'
        projects = store.get_projects()
        assert projects[0].status == EntityStatus.DELETED
        assert not projects[0].is_active

    @pytest.mark.asyncio
    async def test_delete_unknown_project_with_no_projects(self, executor, store) -> None:
        result = await executor.execute(ProjectDelete(project_name="Launch"))

        assert result.status == STATUS_NOT_FOUND
        assert not result.mutated


class TestResolutionOutcomes:
    """How resolution tiers surface through execution."""

    @pytest.mark.asyncio
    async def test_two_substring_candidates_are_not_found(self, executor, store, seed) -> None:
        seed.project("Launch Alpha")
        seed.project("Launch Beta")

        result = await executor.execute(GoalCreate(goal_title="MVP", project_name="Launch"))

        assert result.status == STATUS_NOT_FOUND
        assert "Launch Alpha" in result.message
        assert "Launch Beta" in result.message
        assert set(result.suggestions) == {"Launch Alpha", "Launch Beta"}
        assert all(not p.goals for p in store.get_projects())

    @pytest.mark.asyncio
    async def test_single_project_fallback_needs_confirmation(self, executor, store, seed) -> None:
        seed.project("Launch")

        result = await executor.execute(GoalCreate(goal_title="MVP", project_name="Growth"))

        assert result.status == STATUS_NEEDS_CONFIRMATION
        assert "Launch" in result.message
        assert not result.mutated
        assert result.pending_command == GoalCreate(goal_title="MVP", project_name="Launch")
        assert store.get_projects()[0].goals == []

    @pytest.mark.asyncio
    async def test_confirmed_fallback_command_applies(self, executor, store, seed) -> None:
        seed.project("Launch")
        pending = (await executor.execute(GoalCreate(goal_title="MVP", project_name="Growth"))).pending_command

        result = await executor.execute(pending)

        assert result.status == STATUS_OK
        assert active_goal_names(store, "Launch") == ["MVP"]

    @pytest.mark.asyncio
    async def test_fuzzy_match_applies_with_note(self, executor, store, seed) -> None:
        seed.project("Launch Alpha")
        seed.project("Hiring")

        result = await executor.execute(GoalCreate(goal_title="MVP", project_name="alpha"))

        assert result.status == STATUS_OK
        assert result.notes == ['Using "Launch Alpha" for "alpha".']
        assert result.reply.startswith('Using "Launch Alpha"')
        assert active_goal_names(store, "Launch Alpha") == ["MVP"]

    @pytest.mark.asyncio
    async def test_fuzzy_match_can_require_confirmation(self, store, seed, today) -> None:
        seed.project("Launch Alpha")
        seed.project("Hiring")
        executor = ActionExecutor(store, confirm_fuzzy_matches=True, today_provider=lambda: today)

        result = await executor.execute(GoalCreate(goal_title="MVP", project_name="alpha"))

        assert result.status == STATUS_NEEDS_CONFIRMATION
        assert result.pending_command.project_name == "Launch Alpha"
        assert active_goal_names(store, "Launch Alpha") == []

    @pytest.mark.asyncio
    async def test_ambiguous_match_uses_most_recent_with_warning(self, executor, store, seed) -> None:
        seed.project("Launch", updated_at=datetime(2026, 1, 1))
        newer = seed.project("Launch", updated_at=datetime(2026, 2, 1))

        result = await executor.execute(GoalCreate(goal_title="MVP", project_name="Launch"))

        assert result.status == STATUS_OK
        assert result.project_id == newer.id
        assert len(result.notes) == 1
        assert "2 projects" in result.notes[0]

    @pytest.mark.asyncio
    async def test_child_create_without_project_uses_the_only_project(self, executor, store, seed) -> None:
        seed.project("Launch")

        result = await executor.execute(GoalCreate(goal_title="MVP"))

        assert result.status == STATUS_OK
        assert active_goal_names(store, "Launch") == ["MVP"]

    @pytest.mark.asyncio
    async def test_child_create_without_project_asks_when_several(self, executor, seed) -> None:
        seed.project("Launch")
        seed.project("Hiring")

        result = await executor.execute(GoalCreate(goal_title="MVP"))

        assert result.status == STATUS_NOT_FOUND
        assert result.message.startswith("Which project")
        assert set(result.suggestions) == {"Launch", "Hiring"}

    @pytest.mark.asyncio
    async def test_resolution_tiers_are_recorded(self, store, seed, today) -> None:
        seed.project("Launch")
        metrics = MetricsCollector()
        executor = ActionExecutor(store, today_provider=lambda: today, metrics=metrics)

        await executor.execute(GoalCreate(goal_title="MVP", project_name="Launch"))

        assert metrics.resolution_tiers["resolved"] == 1


class TestProfileCommands:
    """Growth tracker and focus areas."""

    @pytest.mark.asyncio
    async def test_growth_tracker_update(self, executor, store) -> None:
        result = await executor.execute(GrowthTrackerUpdate(area="Fitness", value=40))

        assert result.status == STATUS_OK
        assert store.get_profile().growth_trackers == {"Fitness": 40}

    @pytest.mark.asyncio
    async def test_growth_tracker_reuses_existing_area_spelling(self, executor, store) -> None:
        await executor.execute(GrowthTrackerUpdate(area="Fitness", value=40))
        await executor.execute(GrowthTrackerUpdate(area="fitness", value=55))

        assert store.get_profile().growth_trackers == {"Fitness": 55}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value", [-1, 101, 250])
    async def test_growth_tracker_out_of_range(self, executor, store, value) -> None:
        result = await executor.execute(GrowthTrackerUpdate(area="Fitness", value=value))

        assert result.status == STATUS_ERROR
        assert store.get_profile().growth_trackers == {}

    @pytest.mark.asyncio
    async def test_focus_areas_replace_then_add(self, executor, store) -> None:
        await executor.execute(FocusAreasUpdate(focus_areas=["health", "career"], mode="replace"))
        result = await executor.execute(FocusAreasUpdate(focus_areas=["Career", "family"], mode="add"))

        assert result.status == STATUS_OK
        assert store.get_profile().focus_areas == ["health", "career", "family"]
        assert result.message == "Your focus areas are now: health, career, family."

    @pytest.mark.asyncio
    async def test_empty_focus_areas_are_rejected(self, executor, store) -> None:
        result = await executor.execute(FocusAreasUpdate(focus_areas=[]))

        assert result.status == STATUS_ERROR
        assert result.message == "I couldn't find any focus areas in that message."


class TestGoalCommands:
    """Goal create/update."""

    @pytest.mark.asyncio
    async def test_create_goal_with_date(self, executor, store, seed, today) -> None:
        seed.project("Launch")
        due = today + timedelta(days=10)

        result = await executor.execute(GoalCreate(goal_title="MVP", project_name="Launch", target_date=due))

        assert result.status == STATUS_OK
        assert result.message == f'Added goal "MVP" to "Launch" (due {due.isoformat()}).'
        goal = store.get_projects()[0].goals[0]
        assert goal.target_date == due
        assert goal.order == 1

    @pytest.mark.asyncio
    async def test_create_existing_goal_updates_date(self, executor, store, seed, today) -> None:
        project = seed.project("Launch")
        seed.goal(project, "MVP")
        due = today + timedelta(days=5)

        result = await executor.execute(GoalCreate(goal_title="mvp", project_name="Launch", target_date=due))

        assert result.status == STATUS_OK
        goals = store.get_projects()[0].goals
        assert len(goals) == 1
        assert goals[0].target_date == due

    @pytest.mark.asyncio
    async def test_create_existing_goal_without_changes(self, executor, store, seed) -> None:
        project = seed.project("Launch")
        seed.goal(project, "MVP")

        result = await executor.execute(GoalCreate(goal_title="MVP", project_name="Launch"))

        assert result.status == STATUS_INFO
        assert len(store.get_projects()[0].goals) == 1

    @pytest.mark.asyncio
    async def test_complete_goal(self, executor, store, seed) -> None:
        project = seed.project("Launch")
        seed.goal(project, "MVP")

        result = await executor.execute(GoalUpdate(goal_title="MVP", status=EntityStatus.COMPLETED))

        assert result.status == STATUS_OK
        assert result.message == 'Goal "MVP" in "Launch" marked completed.'
        assert store.get_projects()[0].goals[0].status == EntityStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_completing_a_completed_goal_is_info(self, executor, seed) -> None:
        project = seed.project("Launch")
        seed.goal(project, "MVP", status=EntityStatus.COMPLETED)

        result = await executor.execute(GoalUpdate(goal_title="MVP", status=EntityStatus.COMPLETED))

        assert result.status == STATUS_INFO
        assert "already completed" in result.message

    @pytest.mark.asyncio
    async def test_goal_update_needs_a_change(self, executor, seed) -> None:
        project = seed.project("Launch")
        seed.goal(project, "MVP")

        result = await executor.execute(GoalUpdate(goal_title="MVP"))

        assert result.status == STATUS_ERROR


class TestTaskCommands:
    """Task create/prioritize."""

    @pytest.mark.asyncio
    async def test_create_task(self, executor, store, seed) -> None:
        project = seed.project("Launch")
        seed.goal(project, "MVP")

        result = await executor.execute(TaskCreate(task_name="Write copy", goal_title="MVP"))

        assert result.status == STATUS_OK
        assert result.message == 'Added task "Write copy" to goal "MVP" (Medium priority).'
        tasks = store.get_tasks()
        assert [t.name for t in tasks] == ["Write copy"]

    @pytest.mark.asyncio
    async def test_duplicate_task_in_same_goal_is_idempotent(self, executor, store, seed) -> None:
        project = seed.project("Launch")
        goal = seed.goal(project, "MVP")
        seed.task(goal, "Write copy")

        result = await executor.execute(TaskCreate(task_name="write copy", goal_title="MVP"))

        assert result.status == STATUS_INFO
        assert len(store.get_tasks()) == 1

    @pytest.mark.asyncio
    async def test_same_task_name_under_another_goal_is_allowed(self, executor, store, seed) -> None:
        project = seed.project("Launch")
        first = seed.goal(project, "MVP")
        seed.goal(project, "Beta")
        seed.task(first, "Write copy")

        result = await executor.execute(TaskCreate(task_name="Write copy", goal_title="Beta"))

        assert result.status == STATUS_OK
        assert len(store.get_tasks()) == 2

    @pytest.mark.asyncio
    async def test_seventh_task_is_created(self, executor, store, seed) -> None:
        project = seed.project("Launch")
        goal = seed.goal(project, "MVP")
        for i in range(6):
            seed.task(goal, f"Task {i + 1}", order=i + 1)

        result = await executor.execute(TaskCreate(task_name="Task 7", goal_title="MVP"))

        assert result.status == STATUS_OK
        new_task = next(t for t in store.get_tasks() if t.name == "Task 7")
        assert new_task.order == 7

    @pytest.mark.asyncio
    async def test_priority_derived_from_urgent_goal(self, executor, store, seed, today) -> None:
        project = seed.project("Launch")
        seed.goal(project, "MVP", target_date=today + timedelta(days=2))

        result = await executor.execute(TaskCreate(task_name="Write copy", goal_title="MVP"))

        assert result.status == STATUS_OK
        assert store.get_tasks()[0].priority == Priority.HIGH

    @pytest.mark.asyncio
    async def test_priority_derived_from_high_priority_project(self, executor, store, seed) -> None:
        project = seed.project("Launch", priority=Priority.HIGH)
        seed.goal(project, "MVP")

        await executor.execute(TaskCreate(task_name="Write copy", goal_title="MVP"))

        assert store.get_tasks()[0].priority == Priority.HIGH

    @pytest.mark.asyncio
    async def test_priority_derived_from_upcoming_milestone(self, executor, store, seed, today) -> None:
        project = seed.project("Launch")
        seed.goal(project, "MVP", target_date=today + timedelta(days=30))
        seed.milestone(project, "Beta", due_date=today + timedelta(days=1))

        await executor.execute(TaskCreate(task_name="Write copy", goal_title="MVP"))

        assert store.get_tasks()[0].priority == Priority.HIGH

    @pytest.mark.asyncio
    async def test_overdue_deadline_does_not_raise_priority(self, executor, store, seed, today) -> None:
        project = seed.project("Launch")
        seed.goal(project, "MVP", target_date=today - timedelta(days=2))

        await executor.execute(TaskCreate(task_name="Write copy", goal_title="MVP"))

        assert store.get_tasks()[0].priority == Priority.MEDIUM

    @pytest.mark.asyncio
    async def test_explicit_priority_wins(self, executor, store, seed, today) -> None:
        project = seed.project("Launch", priority=Priority.HIGH)
        seed.goal(project, "MVP")

        await executor.execute(TaskCreate(task_name="Write copy", goal_title="MVP", priority=Priority.LOW))

        assert store.get_tasks()[0].priority == Priority.LOW

    @pytest.mark.asyncio
    async def test_prioritize_task(self, executor, store, seed) -> None:
        project = seed.project("Launch")
        goal = seed.goal(project, "MVP")
        seed.task(goal, "Write copy")

        result = await executor.execute(TaskPrioritize(task_name="Write copy", priority=Priority.HIGH))

        assert result.status == STATUS_OK
        assert result.message == 'Task "Write copy" is now High priority.'
        assert store.get_tasks()[0].priority == Priority.HIGH

    @pytest.mark.asyncio
    async def test_prioritize_ignores_tasks_of_completed_goals(self, executor, seed) -> None:
        project = seed.project("Launch")
        goal = seed.goal(project, "MVP", status=EntityStatus.COMPLETED)
        seed.task(goal, "Write copy")

        result = await executor.execute(TaskPrioritize(task_name="Write copy"))

        assert result.status == STATUS_NOT_FOUND


class TestMilestoneCommands:
    """Milestone create/complete."""

    @pytest.mark.asyncio
    async def test_create_milestone(self, executor, store, seed, today) -> None:
        seed.project("Launch")
        due = today + timedelta(days=1)

        result = await executor.execute(MilestoneCreate(milestone_name="Beta", project_name="Launch", target_date=due))

        assert result.status == STATUS_OK
        milestone = store.get_projects()[0].milestones[0]
        assert milestone.name == "Beta"
        assert milestone.due_date == due

    @pytest.mark.asyncio
    async def test_create_existing_milestone_moves_due_date(self, executor, store, seed, today) -> None:
        project = seed.project("Launch")
        seed.milestone(project, "Beta", due_date=today + timedelta(days=3))
        moved = today + timedelta(days=9)

        result = await executor.execute(
            MilestoneCreate(milestone_name="beta", project_name="Launch", target_date=moved)
        )

        assert result.status == STATUS_OK
        milestones = store.get_projects()[0].milestones
        assert len(milestones) == 1
        assert milestones[0].due_date == moved

    @pytest.mark.asyncio
    async def test_complete_milestone(self, executor, store, seed) -> None:
        project = seed.project("Launch")
        seed.milestone(project, "Beta")

        result = await executor.execute(MilestoneComplete(milestone_name="Beta"))

        assert result.status == STATUS_OK
        assert store.get_projects()[0].milestones[0].status == EntityStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_completing_a_completed_milestone_is_info(self, executor, seed) -> None:
        project = seed.project("Launch")
        seed.milestone(project, "Beta", status=EntityStatus.COMPLETED)

        result = await executor.execute(MilestoneComplete(milestone_name="Beta"))

        assert result.status == STATUS_INFO
        assert result.message == 'Milestone "Beta" is already completed.'


class FailingStore(DuckDBEntityStore):
    """Store whose project mutations fail."""

    def __init__(self, conn, owner_id, *, raise_error: bool) -> None:
        super().__init__(conn, owner_id)
        self.raise_error = raise_error

    async def add_project(self, project) -> bool:
        if self.raise_error:
            raise RuntimeError("disk full")
        return False


class TestPersistenceFailures:
    """Store failures surface as a retryable error."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raise_error", [True, False])
    async def test_store_failure_is_reported(self, db_conn, test_user_id, today, raise_error) -> None:
        store = FailingStore(db_conn, test_user_id, raise_error=raise_error)
        executor = ActionExecutor(store, today_provider=lambda: today)

        result = await executor.execute(ProjectCreate(project_name="Launch"))

        assert result.status == STATUS_ERROR
        assert not result.mutated
        assert "try again" in result.message
        assert store.get_projects() == []
