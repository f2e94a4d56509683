"""
Project Approval Gate

Decides whether a project may be approved and runs the approval sequence.

PRECONDITION (checked before any write):
- the project exists and is not archived
- it has at least one task
- every task's derived review status is approved

SEQUENCE:
1. Move every task to Done through update_progress(100). Idempotent for
   tasks already Done; writes no changelog records.
2. Append exactly ONE project-level changelog record (task_id 0,
   new_status "Completed"), guarded so a retry or a concurrent approval
   finds the existing record instead of writing a second one.
3. Complete the project entity.

A failure at step 1 or 2 raises ApprovalStepError: nothing inconsistent was
written and the whole sequence may be retried. A failure at step 3 raises
InconsistentStateError: the completion record stays (the log is
append-only) and the project status is stale until a retry succeeds.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Tuple

from .changelog_store import ChangeLogRecord, ChangeLogStore, PROJECT_LEVEL_TASK_ID, build_record
from .entity_store import EntityStore
from .errors import (
    ApprovalPreconditionError,
    ApprovalStepError,
    InconsistentStateError,
    InvalidTransitionError,
    NotFoundError,
)
from .project_model import Project
from .review_engine import ReviewInfo
from .status import ProjectStatus, ReviewStatus, TaskStatus
from .task_model import Task

logger = logging.getLogger("approval_gate")

COMPLETION_STATUS = "Completed"

ReviewSource = Callable[[Task], Awaitable[ReviewInfo]]


@dataclass
class ApprovalOutcome:
    """Result of a successful approval sequence."""
    project: Project
    record: ChangeLogRecord
    record_created: bool
    completed_task_ids: List[int] = field(default_factory=list)

    def to_dict(self):
        return {
            "project": self.project.to_dict(),
            "record": self.record.to_dict(),
            "record_created": self.record_created,
            "completed_task_ids": self.completed_task_ids,
        }


def is_completion_record(record: ChangeLogRecord, project_id: int) -> bool:
    """True for the project-level record written by a previous approval."""
    return (
        record.project_id == project_id
        and record.task_id == PROJECT_LEVEL_TASK_ID
        and (record.new_status or "").strip().lower() == COMPLETION_STATUS.lower()
    )


def approver_display_name(actor_id: int, actor_name: Optional[str] = None) -> str:
    if actor_name and actor_name.strip():
        name = actor_name.strip()
        return name.split("@")[0] if "@" in name else name
    return f"User {actor_id}"


class ProjectApprovalGate:
    """Aggregates derived task reviews and applies project approval."""

    def __init__(self, entities: EntityStore, changelogs: ChangeLogStore, review_source: ReviewSource):
        self._entities = entities
        self._changelogs = changelogs
        self._review_source = review_source

    # -------------------------------------------------------------------------
    # Precondition
    # -------------------------------------------------------------------------

    async def project_reviews(self, project_id: int) -> List[Tuple[Task, ReviewInfo]]:
        """Every task of the project with its derived review, derived concurrently."""
        tasks = await self._entities.list_tasks(project_id=project_id)
        reviews = await asyncio.gather(*(self._review_source(task) for task in tasks))
        return list(zip(tasks, reviews))

    async def all_project_approved(self, project_id: int) -> bool:
        pairs = await self.project_reviews(project_id)
        return bool(pairs) and all(r.review_status == ReviewStatus.APPROVED for _, r in pairs)

    async def _load_project(self, project_id: int) -> Project:
        project = await self._entities.get_project(project_id)
        if project is None:
            raise NotFoundError("project", project_id)
        return project

    async def can_approve(self, project_id: int) -> bool:
        project = await self._load_project(project_id)
        if project.archived:
            return False
        return await self.all_project_approved(project_id)

    async def check_preconditions(self, project_id: int) -> Tuple[Project, List[Task]]:
        """Raise before any write if approval is not permitted."""
        project = await self._load_project(project_id)
        if project.archived or project.status == ProjectStatus.ARCHIVED:
            raise InvalidTransitionError(
                entity="project",
                from_status=project.status.value,
                to_status=ProjectStatus.COMPLETED.value,
                message="Cannot approve an archived project",
            )

        pairs = await self.project_reviews(project_id)
        blocking = [task.id for task, review in pairs if review.review_status != ReviewStatus.APPROVED]
        if not pairs or blocking:
            raise ApprovalPreconditionError(project_id, blocking)
        return project, [task for task, _ in pairs]

    # -------------------------------------------------------------------------
    # Approval Sequence
    # -------------------------------------------------------------------------

    async def approve_project(
        self,
        project_id: int,
        actor_id: int,
        actor_name: Optional[str] = None,
    ) -> ApprovalOutcome:
        project, tasks = await self.check_preconditions(project_id)

        # Step 1: tasks to Done
        completed_task_ids = []
        try:
            for task in tasks:
                if task.status != TaskStatus.DONE:
                    task.update_progress(100)
                    await self._entities.save_task(task)
                    completed_task_ids.append(task.id)
        except Exception as e:
            logger.error(f"Approval of project {project_id} failed completing tasks: {e}")
            raise ApprovalStepError("complete_tasks", project_id, e) from e

        # Step 2: single project-level record
        record = build_record(
            actor_id,
            description=f"Project approved by {approver_display_name(actor_id, actor_name)}",
            old_status=project.status.value,
            new_status=COMPLETION_STATUS,
            project_id=project_id,
            task_id=PROJECT_LEVEL_TASK_ID,
        )
        try:
            record, created = await self._changelogs.append_if_absent(
                record, lambda r: is_completion_record(r, project_id)
            )
        except Exception as e:
            logger.error(f"Approval of project {project_id} failed writing completion record: {e}")
            raise ApprovalStepError("record_completion", project_id, e) from e

        # Step 3: project to Completed
        try:
            if project.complete():
                await self._entities.save_project(project)
        except Exception as e:
            logger.error(
                f"INCONSISTENT: project {project_id} has completion record {record.id} "
                f"but status update failed: {e}"
            )
            raise InconsistentStateError(project_id, record.id, e) from e

        logger.info(
            f"Project {project_id} approved by {actor_id}: {len(tasks)} task(s), "
            f"record {record.id} ({'new' if created else 'existing'})"
        )
        return ApprovalOutcome(
            project=project,
            record=record,
            record_created=created,
            completed_task_ids=completed_task_ids,
        )
