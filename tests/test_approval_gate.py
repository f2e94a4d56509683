"""
Unit Tests for the Project Approval Gate

Test coverage for:
- Eligibility: no tasks, mixed reviews, all approved, archived
- Exactly one project-level record regardless of task count
- Idempotent retries and concurrent approvals
- Failure reporting per step (retryable vs inconsistent)
"""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from taskhive.approval_gate import approver_display_name, is_completion_record
from taskhive.changelog_store import PROJECT_LEVEL_TASK_ID, ChangeLogStore, build_record
from taskhive.entity_store import EntityStore
from taskhive.errors import (
    ApprovalPreconditionError,
    ApprovalStepError,
    InconsistentStateError,
    InvalidTransitionError,
)
from taskhive.status import ProjectStatus, ReviewAction, TaskStatus
from tests.conftest import OWNER_ID, REVIEWER_ID, async_test


async def make_project(service, task_count=1, approve=True):
    """A project whose tasks are Done and (optionally) approved by review."""
    project = await service.create_project({"name": "Launch"}, OWNER_ID)
    for i in range(task_count):
        task = await service.create_task(project.id, {"name": f"Task {i}"}, OWNER_ID)
        await service.update_task_progress(task.id, 100, OWNER_ID)
        if approve:
            await service.append_review_feedback(task.id, ReviewAction.APPROVE, "looks good", actor_id=REVIEWER_ID)
    return project


async def completion_records(service, project_id):
    records = await service.changelogs.list(project_id=project_id)
    return [r for r in records if is_completion_record(r, project_id)]


class TestEligibility:
    """Test can_approve_project."""

    @async_test
    async def test_no_tasks(self, service):
        project = await service.create_project({"name": "Empty"}, OWNER_ID)
        assert await service.can_approve_project(project.id) is False
        with pytest.raises(ApprovalPreconditionError) as exc:
            await service.approve_project(project.id, REVIEWER_ID)
        assert exc.value.details["blocking_task_ids"] == []

    @async_test
    async def test_one_pending_blocks_until_approved(self, service):
        project = await make_project(service, task_count=1)
        pending = await service.create_task(project.id, {"name": "Late"}, OWNER_ID)
        await service.update_task_progress(pending.id, 100, OWNER_ID)

        assert await service.can_approve_project(project.id) is False
        with pytest.raises(ApprovalPreconditionError) as exc:
            await service.approve_project(project.id, REVIEWER_ID)
        assert exc.value.details["blocking_task_ids"] == [pending.id]

        await service.append_review_feedback(pending.id, "approve", "fine now", actor_id=REVIEWER_ID)
        assert await service.can_approve_project(project.id) is True

    @async_test
    async def test_changes_requested_blocks(self, service):
        project = await make_project(service, task_count=2)
        tasks = await service.list_tasks(project.id)
        await service.append_review_feedback(
            tasks[0].id, ReviewAction.REQUEST_CHANGES, "close", "add tests", actor_id=REVIEWER_ID
        )
        assert await service.can_approve_project(project.id) is False

    @async_test
    async def test_precondition_failure_writes_nothing(self, service):
        project = await make_project(service, task_count=2, approve=False)
        before = await service.changelogs.list()
        with pytest.raises(ApprovalPreconditionError):
            await service.approve_project(project.id, REVIEWER_ID)
        assert await service.changelogs.list() == before
        assert (await service.get_project(project.id)).status == ProjectStatus.TODO

    @async_test
    async def test_archived_project_rejected(self, service):
        project = await make_project(service, task_count=1)
        await service.archive_project(project.id, OWNER_ID)
        assert await service.can_approve_project(project.id) is False
        with pytest.raises(InvalidTransitionError):
            await service.approve_project(project.id, REVIEWER_ID)
        assert await completion_records(service, project.id) == []


class TestApproval:
    """Test the approval sequence."""

    @pytest.mark.parametrize("task_count", [1, 50])
    @async_test
    async def test_exactly_one_project_record(self, service, task_count):
        project = await make_project(service, task_count=task_count)
        outcome = await service.approve_project(project.id, REVIEWER_ID, "Dana")

        records = await completion_records(service, project.id)
        assert len(records) == 1
        assert records[0].task_id == PROJECT_LEVEL_TASK_ID
        assert records[0].user_id == REVIEWER_ID
        assert records[0].description == "Project approved by Dana"
        assert outcome.record_created is True
        assert outcome.project.status == ProjectStatus.COMPLETED
        assert (await service.get_project(project.id)).status == ProjectStatus.COMPLETED

    @async_test
    async def test_tasks_end_done(self, service):
        project = await make_project(service, task_count=3)
        await service.approve_project(project.id, REVIEWER_ID)
        for task in await service.list_tasks(project.id):
            assert task.status == TaskStatus.DONE
            assert task.progress == 100

    @async_test
    async def test_retry_is_idempotent(self, service):
        project = await make_project(service, task_count=2)
        first = await service.approve_project(project.id, REVIEWER_ID)
        second = await service.approve_project(project.id, REVIEWER_ID)
        assert second.record_created is False
        assert second.record.id == first.record.id
        assert len(await completion_records(service, project.id)) == 1

    @async_test
    async def test_concurrent_approvals_write_one_record(self, service):
        project = await make_project(service, task_count=3)
        outcomes = await asyncio.gather(
            service.approve_project(project.id, REVIEWER_ID),
            service.approve_project(project.id, OWNER_ID),
        )
        assert sorted(o.record_created for o in outcomes) == [False, True]
        assert len(await completion_records(service, project.id)) == 1

    @async_test
    async def test_approval_does_not_write_task_records(self, service):
        project = await make_project(service, task_count=2)
        before = len(await service.changelogs.list())
        await service.approve_project(project.id, REVIEWER_ID)
        assert len(await service.changelogs.list()) == before + 1

    def test_display_name(self):
        assert approver_display_name(4) == "User 4"
        assert approver_display_name(4, "  ") == "User 4"
        assert approver_display_name(4, "dana@example.com") == "dana"


class TestApprovalFailures:
    """Test step failure reporting."""

    @async_test
    async def test_record_failure_is_retryable(self, service):
        project = await make_project(service, task_count=1)
        with patch.object(ChangeLogStore, "append_if_absent", AsyncMock(side_effect=OSError("disk full"))):
            with pytest.raises(ApprovalStepError) as exc:
                await service.approve_project(project.id, REVIEWER_ID)
        assert exc.value.step == "record_completion"
        assert await completion_records(service, project.id) == []

        outcome = await service.approve_project(project.id, REVIEWER_ID)
        assert outcome.record_created is True

    @async_test
    async def test_project_save_failure_is_inconsistent(self, service):
        project = await make_project(service, task_count=2)
        with patch.object(EntityStore, "save_project", AsyncMock(side_effect=OSError("read-only"))):
            with pytest.raises(InconsistentStateError) as exc:
                await service.approve_project(project.id, REVIEWER_ID)

        records = await completion_records(service, project.id)
        assert len(records) == 1
        assert exc.value.details["record_id"] == records[0].id
        assert (await service.get_project(project.id)).status == ProjectStatus.TODO

        # A retry converges without a second record
        outcome = await service.approve_project(project.id, REVIEWER_ID)
        assert outcome.record_created is False
        assert (await service.get_project(project.id)).status == ProjectStatus.COMPLETED
        assert len(await completion_records(service, project.id)) == 1

    @async_test
    async def test_task_save_failure_is_retryable(self, service):
        project = await make_project(service, task_count=1)
        # Task entity drifted out of Done without a changelog record
        task = (await service.list_tasks(project.id))[0]
        task.update_progress(50)
        await service.entities.save_task(task)

        with patch.object(EntityStore, "save_task", AsyncMock(side_effect=OSError("disk full"))):
            with pytest.raises(ApprovalStepError) as exc:
                await service.approve_project(project.id, REVIEWER_ID)
        assert exc.value.step == "complete_tasks"
        assert await completion_records(service, project.id) == []

        outcome = await service.approve_project(project.id, REVIEWER_ID)
        assert outcome.completed_task_ids == [task.id]

    @async_test
    async def test_reopened_task_blocks_approval(self, service):
        project = await make_project(service, task_count=1)
        task = (await service.list_tasks(project.id))[0]
        await service.change_task_status(task.id, TaskStatus.TODO, OWNER_ID)
        assert await service.can_approve_project(project.id) is False

    def test_completion_record_predicate(self):
        record = build_record(1, description="x", new_status=" completed ", project_id=5, task_id=0)
        assert is_completion_record(record, 5) is True
        assert is_completion_record(record, 6) is False
        assert is_completion_record(build_record(1, description="x", new_status="Completed", project_id=5, task_id=3), 5) is False
