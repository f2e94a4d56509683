"""
Taskhive Service

The operations controllers and UIs call. Each operation validates through the
entities, persists through the stores and writes the changelog records that
later derivations replay.

Status changes and review feedback invalidate the task's cached review; the
cache (if configured) is never consulted by a write.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .approval_gate import ApprovalOutcome, ProjectApprovalGate
from .changelog_store import (
    ChangeLogRecord,
    ChangeLogStore,
    build_record,
    project_created_record,
    project_status_change_record,
    task_created_record,
    task_moved_record,
    task_status_change_record,
    task_updated_record,
)
from .config import Settings, load_settings
from .entity_store import EntityStore
from .errors import InvalidTransitionError, NotFoundError, PermissionDeniedError, ValidationError
from .project_model import Project
from .remark_parser import encode_remark
from .review_cache import ReviewCache
from .review_engine import ReviewInfo, derive_review, order_records, summarize_reviews
from .status import REVIEW_ACTION_STATUS, ProjectStatus, ReviewAction, TaskStatus
from .task_model import Task
from .task_model import validate_priority as validate_task_priority
from .task_model import validate_status as validate_task_status

logger = logging.getLogger("taskhive_service")

ADMIN_ROLE = "admin"

_EARLIEST = datetime.min.replace(tzinfo=timezone.utc)


def is_owner_or_admin(owner_id: Any, user_id: Any, roles: Optional[Iterable[str]] = None) -> bool:
    """Destructive-operation rule: the owner, or anyone holding the admin role."""
    if user_id is not None and owner_id == user_id:
        return True
    return any((role or "").strip().lower() == ADMIN_ROLE for role in (roles or []))


def feedback_description(action: ReviewAction, notes: str, change_details: Optional[str] = None) -> str:
    """Human-readable description, in the legacy format older readers parse."""
    if action == ReviewAction.APPROVE:
        return f"Review approved: {notes}"
    if action == ReviewAction.HOLD_DISCUSSION:
        return f"Held for discussion: {notes}"
    if change_details:
        return f"Feedback: {notes} - Changes needed: {change_details}"
    return f"Feedback: {notes}"


def _parse_action(action: Any) -> ReviewAction:
    try:
        return ReviewAction(action)
    except ValueError:
        valid = ", ".join(a.value for a in ReviewAction)
        raise ValidationError("action", f"Invalid review action. Valid options are: {valid}")


def review_summary(pairs: List[Tuple[Task, ReviewInfo]]) -> Dict[str, Any]:
    """Counts per review status for a project's tasks, plus approval eligibility."""
    summary = summarize_reviews(review for _, review in pairs)
    summary["can_approve"] = bool(pairs) and summary["approved"] == summary["total"]
    return summary


def _recently_updated_first(items: Iterable[Any]) -> List[Any]:
    return sorted(items, key=lambda item: (item.updated_at or _EARLIEST, item.id or 0), reverse=True)


class TaskhiveService:
    """Task, project and review operations over the entity and changelog stores."""

    def __init__(
        self,
        entities: EntityStore,
        changelogs: ChangeLogStore,
        review_cache: Optional[ReviewCache] = None,
    ):
        self.entities = entities
        self.changelogs = changelogs
        self.review_cache = review_cache
        self.gate = ProjectApprovalGate(entities, changelogs, self._review_for_task)

    # -------------------------------------------------------------------------
    # Projects
    # -------------------------------------------------------------------------

    async def get_project(self, project_id: int) -> Project:
        project = await self.entities.get_project(project_id)
        if project is None:
            raise NotFoundError("project", project_id)
        return project

    async def list_projects(self, user_id: Optional[int] = None) -> List[Project]:
        return await self.entities.list_projects(user_id=user_id)

    async def create_project(self, data: Dict[str, Any], owner_id: int) -> Project:
        project = Project.create(data, owner_id)
        await self.entities.save_project(project)
        await self.changelogs.append(project_created_record(project.id, owner_id, project.name))
        logger.info(f"Project {project.id} created by {owner_id}")
        return project

    async def update_project(self, project_id: int, data: Dict[str, Any], actor_id: int) -> Project:
        project = await self.get_project(project_id)
        old_status = project.status
        project.update(data)
        await self.entities.save_project(project)
        if project.status != old_status:
            await self.changelogs.append(project_status_change_record(
                project.id, actor_id, old_status.value, project.status.value
            ))
        return project

    async def archive_project(self, project_id: int, actor_id: int) -> Project:
        return await self.update_project(project_id, {"archived": True}, actor_id)

    async def unarchive_project(self, project_id: int, actor_id: int) -> Project:
        return await self.update_project(project_id, {"archived": False}, actor_id)

    async def delete_project(self, project_id: int) -> Dict[str, Any]:
        """Delete a project, its tasks and every changelog record of either."""
        project = await self.get_project(project_id)
        if not project.can_be_deleted():
            raise InvalidTransitionError(
                entity="project",
                from_status=project.status.value,
                to_status="Deleted",
                message="Project can only be deleted when archived or in Todo status",
            )

        task_ids = await self.entities.delete_project(project_id)
        purged = await self.changelogs.purge_subject(task_ids=task_ids, project_id=project_id)
        self._invalidate(task_ids)
        logger.info(f"Project {project_id} deleted with {len(task_ids)} task(s), {purged} record(s)")
        return {"project_id": project_id, "deleted_task_ids": task_ids, "purged_records": purged}

    async def list_active_projects(self, user_id: int) -> List[Project]:
        """Non-archived projects of `user_id`, most recently updated first."""
        projects = await self.list_projects(user_id=user_id)
        return _recently_updated_first(p for p in projects if not p.archived)

    async def list_archived_projects(self, user_id: int) -> List[Project]:
        """Archived projects of `user_id`, most recently archived first."""
        projects = [p for p in await self.list_projects(user_id=user_id) if p.archived]
        return sorted(projects, key=lambda p: (p.archived_at or _EARLIEST, p.id), reverse=True)

    async def list_overdue_projects(self, user_id: int, now: Optional[datetime] = None) -> List[Project]:
        """Open projects past their due date, earliest due first."""
        projects = [
            p for p in await self.list_projects(user_id=user_id)
            if not p.archived and p.is_overdue(now)
        ]
        return sorted(projects, key=lambda p: (p.due_date, p.id))

    async def project_stats(self, user_id: int, now: Optional[datetime] = None) -> Dict[str, int]:
        projects = await self.list_projects(user_id=user_id)
        return {
            "total": len(projects),
            "in_progress": sum(
                1 for p in projects if p.status == ProjectStatus.IN_PROGRESS and not p.archived
            ),
            "completed": sum(1 for p in projects if p.status == ProjectStatus.COMPLETED),
            "archived": sum(1 for p in projects if p.archived),
            "overdue": len(await self.list_overdue_projects(user_id, now)),
        }

    # -------------------------------------------------------------------------
    # Tasks
    # -------------------------------------------------------------------------

    async def get_task(self, task_id: int) -> Task:
        task = await self.entities.get_task(task_id)
        if task is None:
            raise NotFoundError("task", task_id)
        return task

    async def list_tasks(self, project_id: int) -> List[Task]:
        await self.get_project(project_id)
        return await self.entities.list_tasks(project_id=project_id)

    async def create_task(self, project_id: int, data: Dict[str, Any], actor_id: int) -> Task:
        await self.get_project(project_id)
        task = Task.create(data, project_id)
        await self.entities.save_task(task)
        await self.changelogs.append(task_created_record(task.id, project_id, actor_id, task.name))
        logger.info(f"Task {task.id} created in project {project_id}")
        return task

    async def update_task(self, task_id: int, data: Dict[str, Any], actor_id: int) -> Task:
        task = await self.get_task(task_id)
        task.update(data)
        await self.entities.save_task(task)
        if data:
            await self.changelogs.append(task_updated_record(
                task.id, task.project_id, actor_id, ", ".join(sorted(data))
            ))
        return task

    async def change_task_status(self, task_id: int, new_status: Any, actor_id: int) -> Task:
        task = await self.get_task(task_id)
        old_status = task.status
        if not task.change_status(new_status):
            return task

        await self.entities.save_task(task)
        await self._record_status_change(task, old_status, actor_id)
        return task

    async def update_task_progress(self, task_id: int, progress: Any, actor_id: int) -> Task:
        task = await self.get_task(task_id)
        old_status = task.status
        status_changed = task.update_progress(progress)
        await self.entities.save_task(task)
        if status_changed:
            await self._record_status_change(task, old_status, actor_id)
        return task

    async def delete_task(self, task_id: int) -> Dict[str, Any]:
        task = await self.get_task(task_id)
        await self.entities.delete_task(task.id)
        purged = await self.changelogs.purge_subject(task_ids=[task.id])
        self._invalidate([task.id])
        logger.info(f"Task {task_id} deleted with {purged} record(s)")
        return {"task_id": task_id, "purged_records": purged}

    async def _record_status_change(self, task: Task, old_status: TaskStatus, actor_id: int) -> None:
        await self.changelogs.append(task_status_change_record(
            task.id, task.project_id, actor_id, old_status.value, task.status.value
        ))
        self._invalidate([task.id])

    async def move_task(
        self,
        task_id: int,
        target_project_id: int,
        actor_id: int,
        roles: Optional[Iterable[str]] = None,
    ) -> Task:
        """
        Reassign a task to another project.

        The actor must own both projects, or hold the admin role. Records are
        looked up by task id, so the task keeps its review history.
        """
        task = await self.get_task(task_id)
        source = await self.get_project(task.project_id)
        target = await self.get_project(target_project_id)
        roles = list(roles or [])
        if not (is_owner_or_admin(source.user_id, actor_id, roles)
                and is_owner_or_admin(target.user_id, actor_id, roles)):
            logger.warning(f"User {actor_id} denied moving task {task.id} to project {target.id}")
            raise PermissionDeniedError(
                "move_task", "You must own both projects to move a task between them"
            )
        if source.id == target.id:
            return task

        task.move_to(target.id)
        await self.entities.save_task(task)
        await self.changelogs.append(task_moved_record(task.id, source.id, target.id, actor_id))
        self._invalidate([task.id])
        logger.info(f"Task {task.id} moved from project {source.id} to {target.id} by {actor_id}")
        return task

    # -------------------------------------------------------------------------
    # Task Queries
    # -------------------------------------------------------------------------

    async def filter_tasks(
        self,
        project_id: int,
        status: Any = None,
        priority: Any = None,
        assignee: Optional[str] = None,
        overdue: Optional[bool] = None,
        now: Optional[datetime] = None,
    ) -> List[Task]:
        """Tasks of a project matching every given filter, most recently updated first."""
        tasks = await self.list_tasks(project_id)
        if status is not None:
            status = validate_task_status(status)
            tasks = [t for t in tasks if t.status == status]
        if priority is not None:
            priority = validate_task_priority(priority)
            tasks = [t for t in tasks if t.priority == priority]
        if assignee is not None:
            tasks = [t for t in tasks if t.assignee == assignee]
        if overdue is not None:
            tasks = [t for t in tasks if t.is_overdue(now) == overdue]
        return _recently_updated_first(tasks)

    async def search_tasks(self, project_id: int, term: Any) -> List[Task]:
        """Case-insensitive substring match on name, contents and assignee."""
        if not isinstance(term, str):
            raise ValidationError("q", "Search term must be text")
        needle = term.strip().lower()
        tasks = await self.list_tasks(project_id)
        return _recently_updated_first(
            t for t in tasks
            if any(needle in (value or "").lower() for value in (t.name, t.contents, t.assignee))
        )

    async def task_stats(self, project_id: int, now: Optional[datetime] = None) -> Dict[str, int]:
        """Task counts per status, plus the total and how many are overdue."""
        tasks = await self.list_tasks(project_id)
        stats = {"total": len(tasks)}
        for status in TaskStatus:
            stats[status.name.lower()] = sum(1 for t in tasks if t.status == status)
        stats["overdue"] = sum(1 for t in tasks if t.is_overdue(now))
        return stats

    # -------------------------------------------------------------------------
    # Reviews
    # -------------------------------------------------------------------------

    async def append_review_feedback(
        self,
        task_id: int,
        action: Any,
        notes: Optional[str],
        change_details: Optional[str] = None,
        actor_id: Optional[int] = None,
    ) -> ChangeLogRecord:
        """Record a reviewer decision on a Done task."""
        action = _parse_action(action)
        if not isinstance(notes, str) or not notes.strip():
            raise ValidationError("notes", "Review notes are required")
        notes = notes.strip()
        change_details = change_details.strip() if isinstance(change_details, str) and change_details.strip() else None

        task = await self.get_task(task_id)
        if task.status != TaskStatus.DONE:
            raise InvalidTransitionError(
                entity="task",
                from_status=task.status.value,
                to_status=REVIEW_ACTION_STATUS[action],
                message="Only completed tasks can be reviewed",
            )

        record = await self.changelogs.append(build_record(
            actor_id,
            description=feedback_description(action, notes, change_details),
            remark=encode_remark(notes, change_details),
            old_status=task.status.value,
            new_status=REVIEW_ACTION_STATUS[action],
            project_id=task.project_id,
            task_id=task.id,
        ))
        self._invalidate([task.id])
        logger.info(f"Review {action.value} on task {task.id} by {actor_id}")
        return record

    async def derive_task_review(self, task_id: int) -> ReviewInfo:
        task = await self.get_task(task_id)
        return await self._review_for_task(task)

    async def list_project_reviews(self, project_id: int) -> List[Tuple[Task, ReviewInfo]]:
        await self.get_project(project_id)
        return await self.gate.project_reviews(project_id)

    async def project_review_summary(self, project_id: int) -> Dict[str, Any]:
        return review_summary(await self.list_project_reviews(project_id))

    async def can_approve_project(self, project_id: int) -> bool:
        return await self.gate.can_approve(project_id)

    async def approve_project(
        self,
        project_id: int,
        actor_id: int,
        actor_name: Optional[str] = None,
    ) -> ApprovalOutcome:
        return await self.gate.approve_project(project_id, actor_id, actor_name)

    async def _review_for_task(self, task: Task) -> ReviewInfo:
        async def compute() -> ReviewInfo:
            records = await self.changelogs.list(task_id=task.id)
            return derive_review(records, task_id=task.id)

        if self.review_cache is None:
            return await compute()
        return await self.review_cache.get_or_compute(task.id, compute)

    def _invalidate(self, task_ids: Iterable[int]) -> None:
        if self.review_cache is None:
            return
        for task_id in task_ids:
            self.review_cache.invalidate(task_id)

    # -------------------------------------------------------------------------
    # Changelog
    # -------------------------------------------------------------------------

    async def list_changelogs(
        self,
        task_id: Optional[int] = None,
        project_id: Optional[int] = None,
        user_id: Optional[int] = None,
    ) -> List[ChangeLogRecord]:
        """Matching records, oldest first."""
        records = await self.changelogs.list(task_id=task_id, project_id=project_id, user_id=user_id)
        return order_records(records)


# -----------------------------------------------------------------------------
# Singleton Instance
# -----------------------------------------------------------------------------
_service: Optional[TaskhiveService] = None


def build_service(settings: Settings) -> TaskhiveService:
    review_cache = ReviewCache(settings.review_cache_ttl) if settings.review_cache_ttl > 0 else None
    return TaskhiveService(
        entities=EntityStore(settings.entities_file),
        changelogs=ChangeLogStore(settings.changelog_file),
        review_cache=review_cache,
    )


def get_service() -> TaskhiveService:
    """Get the service singleton, built from settings on first use."""
    global _service
    if _service is None:
        _service = build_service(load_settings())
    return _service
