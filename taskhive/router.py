"""
Taskhive API Router

HTTP surface over TaskhiveService:
- Projects: create, list, read, update, archive, delete, stats
- Tasks: create, list, filter, search, stats, update, status, progress,
  move, delete
- Reviews: feedback, derived review state, project summary
- Approval: eligibility check and project approval
- Changelog: filtered history

Identity arrives in request headers set by the identity boundary and is
trusted as delivered:
    X-User-Id     integer user id (required)
    X-User-Roles  comma-separated roles
    X-User-Name   display name used in approval records
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from pydantic import BaseModel, Field

from .errors import (
    ApprovalPreconditionError,
    ApprovalStepError,
    InconsistentStateError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    StoreError,
    TaskhiveError,
    ValidationError,
)
from .service import TaskhiveService, get_service, is_owner_or_admin, review_summary

# -----------------------------------------------------------------------------
# Logging
# -----------------------------------------------------------------------------
logger = logging.getLogger("taskhive_router")

# -----------------------------------------------------------------------------
# Router Setup
# -----------------------------------------------------------------------------
router = APIRouter(prefix="/api", tags=["Taskhive"])

ERROR_STATUS_CODES = {
    ValidationError: 400,
    NotFoundError: 404,
    PermissionDeniedError: 403,
    InvalidTransitionError: 409,
    ApprovalPreconditionError: 409,
    ApprovalStepError: 503,
    StoreError: 503,
    InconsistentStateError: 500,
}


def to_http_error(error: TaskhiveError) -> HTTPException:
    """Map a domain error onto an HTTPException carrying its structured body."""
    status_code = 500
    for error_type, code in ERROR_STATUS_CODES.items():
        if isinstance(error, error_type):
            status_code = code
            break

    detail = error.to_dict()
    if isinstance(error, ApprovalPreconditionError):
        # A disabled action, not a failure to report
        detail["disabled"] = True
    if status_code >= 500:
        logger.error(f"{error.code}: {error.message}")
    return HTTPException(status_code=status_code, detail=detail)


# -----------------------------------------------------------------------------
# Identity
# -----------------------------------------------------------------------------
@dataclass
class Identity:
    user_id: int
    roles: List[str] = field(default_factory=list)
    name: Optional[str] = None


def get_identity(
    x_user_id: int = Header(...),
    x_user_roles: str = Header(""),
    x_user_name: Optional[str] = Header(None),
) -> Identity:
    roles = [r.strip() for r in x_user_roles.split(",") if r.strip()]
    return Identity(user_id=x_user_id, roles=roles, name=x_user_name)


def _require_owner_or_admin(owner_id: int, identity: Identity, action: str) -> None:
    if not is_owner_or_admin(owner_id, identity.user_id, identity.roles):
        logger.warning(f"User {identity.user_id} denied {action}")
        raise HTTPException(
            status_code=403,
            detail={"error": True, "code": "FORBIDDEN", "message": f"Not allowed to {action}"},
        )


# -----------------------------------------------------------------------------
# Request Models
# -----------------------------------------------------------------------------
class CreateProjectRequest(BaseModel):
    name: str
    description: Optional[str] = None
    priority: Optional[str] = None
    due_date: Optional[str] = None


class UpdateProjectRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    priority: Optional[str] = None
    status: Optional[str] = None
    due_date: Optional[str] = None
    archived: Optional[bool] = None


class CreateTaskRequest(BaseModel):
    name: str
    contents: Optional[str] = None
    priority: Optional[str] = None
    assignee: Optional[str] = None
    due_date: Optional[str] = None


class UpdateTaskRequest(BaseModel):
    name: Optional[str] = None
    contents: Optional[str] = None
    priority: Optional[str] = None
    assignee: Optional[str] = None
    due_date: Optional[str] = None


class ChangeStatusRequest(BaseModel):
    status: str


class UpdateProgressRequest(BaseModel):
    progress: int = Field(..., description="0-100")


class MoveTaskRequest(BaseModel):
    project_id: int = Field(..., description="Target project")


class ReviewFeedbackRequest(BaseModel):
    action: str = Field(..., description="approve | request_changes | hold_discussion")
    notes: str
    change_details: Optional[str] = None


# -----------------------------------------------------------------------------
# Projects
# -----------------------------------------------------------------------------
@router.post("/projects", status_code=201)
async def create_project(
    request: CreateProjectRequest,
    identity: Identity = Depends(get_identity),
    service: TaskhiveService = Depends(get_service),
) -> Dict[str, Any]:
    try:
        project = await service.create_project(request.model_dump(exclude_none=True), identity.user_id)
    except TaskhiveError as e:
        raise to_http_error(e)
    return project.to_dict()


@router.get("/projects")
async def list_projects(
    user_id: Optional[int] = Query(None, description="Filter by owner"),
    service: TaskhiveService = Depends(get_service),
) -> Dict[str, Any]:
    projects = await service.list_projects(user_id=user_id)
    return {"projects": [p.to_dict() for p in projects], "total": len(projects)}


# Declared before /projects/{project_id} so the literal segments match first
@router.get("/projects/active")
async def list_active_projects(
    identity: Identity = Depends(get_identity),
    service: TaskhiveService = Depends(get_service),
) -> Dict[str, Any]:
    projects = await service.list_active_projects(identity.user_id)
    return {"projects": [p.to_dict() for p in projects], "total": len(projects)}


@router.get("/projects/archived")
async def list_archived_projects(
    identity: Identity = Depends(get_identity),
    service: TaskhiveService = Depends(get_service),
) -> Dict[str, Any]:
    projects = await service.list_archived_projects(identity.user_id)
    return {"projects": [p.to_dict() for p in projects], "total": len(projects)}


@router.get("/projects/overdue")
async def list_overdue_projects(
    identity: Identity = Depends(get_identity),
    service: TaskhiveService = Depends(get_service),
) -> Dict[str, Any]:
    projects = await service.list_overdue_projects(identity.user_id)
    return {"projects": [p.to_dict() for p in projects], "total": len(projects)}


@router.get("/projects/stats")
async def get_project_stats(
    identity: Identity = Depends(get_identity),
    service: TaskhiveService = Depends(get_service),
) -> Dict[str, Any]:
    return await service.project_stats(identity.user_id)


@router.get("/projects/{project_id}")
async def get_project(project_id: int, service: TaskhiveService = Depends(get_service)) -> Dict[str, Any]:
    try:
        project = await service.get_project(project_id)
    except TaskhiveError as e:
        raise to_http_error(e)
    return project.to_dict()


@router.patch("/projects/{project_id}")
async def update_project(
    project_id: int,
    request: UpdateProjectRequest,
    identity: Identity = Depends(get_identity),
    service: TaskhiveService = Depends(get_service),
) -> Dict[str, Any]:
    try:
        data = request.model_dump(exclude_unset=True)
        if "archived" in data:
            project = await service.get_project(project_id)
            _require_owner_or_admin(project.user_id, identity, "archive this project")
        project = await service.update_project(project_id, data, identity.user_id)
    except TaskhiveError as e:
        raise to_http_error(e)
    return project.to_dict()


@router.post("/projects/{project_id}/archive")
async def archive_project(
    project_id: int,
    identity: Identity = Depends(get_identity),
    service: TaskhiveService = Depends(get_service),
) -> Dict[str, Any]:
    try:
        project = await service.get_project(project_id)
        _require_owner_or_admin(project.user_id, identity, "archive this project")
        project = await service.archive_project(project_id, identity.user_id)
    except TaskhiveError as e:
        raise to_http_error(e)
    return project.to_dict()


@router.post("/projects/{project_id}/unarchive")
async def unarchive_project(
    project_id: int,
    identity: Identity = Depends(get_identity),
    service: TaskhiveService = Depends(get_service),
) -> Dict[str, Any]:
    try:
        project = await service.get_project(project_id)
        _require_owner_or_admin(project.user_id, identity, "unarchive this project")
        project = await service.unarchive_project(project_id, identity.user_id)
    except TaskhiveError as e:
        raise to_http_error(e)
    return project.to_dict()


@router.delete("/projects/{project_id}")
async def delete_project(
    project_id: int,
    identity: Identity = Depends(get_identity),
    service: TaskhiveService = Depends(get_service),
) -> Dict[str, Any]:
    try:
        project = await service.get_project(project_id)
        _require_owner_or_admin(project.user_id, identity, "delete this project")
        return await service.delete_project(project_id)
    except TaskhiveError as e:
        raise to_http_error(e)


# -----------------------------------------------------------------------------
# Tasks
# -----------------------------------------------------------------------------
@router.post("/projects/{project_id}/tasks", status_code=201)
async def create_task(
    project_id: int,
    request: CreateTaskRequest,
    identity: Identity = Depends(get_identity),
    service: TaskhiveService = Depends(get_service),
) -> Dict[str, Any]:
    try:
        task = await service.create_task(project_id, request.model_dump(exclude_none=True), identity.user_id)
    except TaskhiveError as e:
        raise to_http_error(e)
    return task.to_dict()


@router.get("/projects/{project_id}/tasks")
async def list_tasks(
    project_id: int,
    status: Optional[str] = Query(None),
    priority: Optional[str] = Query(None),
    assignee: Optional[str] = Query(None),
    overdue: Optional[bool] = Query(None),
    service: TaskhiveService = Depends(get_service),
) -> Dict[str, Any]:
    filters = {"status": status, "priority": priority, "assignee": assignee, "overdue": overdue}
    try:
        if any(value is not None for value in filters.values()):
            tasks = await service.filter_tasks(project_id, **filters)
        else:
            tasks = await service.list_tasks(project_id)
    except TaskhiveError as e:
        raise to_http_error(e)
    return {"tasks": [t.to_dict() for t in tasks], "total": len(tasks)}


@router.get("/projects/{project_id}/tasks/search")
async def search_tasks(
    project_id: int,
    q: str = Query(..., description="Matched against name, contents and assignee"),
    service: TaskhiveService = Depends(get_service),
) -> Dict[str, Any]:
    try:
        tasks = await service.search_tasks(project_id, q)
    except TaskhiveError as e:
        raise to_http_error(e)
    return {"tasks": [t.to_dict() for t in tasks], "total": len(tasks)}


@router.get("/projects/{project_id}/tasks/stats")
async def get_task_stats(project_id: int, service: TaskhiveService = Depends(get_service)) -> Dict[str, Any]:
    try:
        return await service.task_stats(project_id)
    except TaskhiveError as e:
        raise to_http_error(e)


@router.get("/tasks/{task_id}")
async def get_task(task_id: int, service: TaskhiveService = Depends(get_service)) -> Dict[str, Any]:
    try:
        task = await service.get_task(task_id)
    except TaskhiveError as e:
        raise to_http_error(e)
    result = task.to_dict()
    result["valid_transitions"] = [s.value for s in task.valid_transitions()]
    result["is_overdue"] = task.is_overdue()
    return result


@router.patch("/tasks/{task_id}")
async def update_task(
    task_id: int,
    request: UpdateTaskRequest,
    identity: Identity = Depends(get_identity),
    service: TaskhiveService = Depends(get_service),
) -> Dict[str, Any]:
    try:
        task = await service.update_task(task_id, request.model_dump(exclude_unset=True), identity.user_id)
    except TaskhiveError as e:
        raise to_http_error(e)
    return task.to_dict()


@router.post("/tasks/{task_id}/status")
async def change_task_status(
    task_id: int,
    request: ChangeStatusRequest,
    identity: Identity = Depends(get_identity),
    service: TaskhiveService = Depends(get_service),
) -> Dict[str, Any]:
    try:
        task = await service.change_task_status(task_id, request.status, identity.user_id)
    except TaskhiveError as e:
        raise to_http_error(e)
    return task.to_dict()


@router.post("/tasks/{task_id}/progress")
async def update_task_progress(
    task_id: int,
    request: UpdateProgressRequest,
    identity: Identity = Depends(get_identity),
    service: TaskhiveService = Depends(get_service),
) -> Dict[str, Any]:
    try:
        task = await service.update_task_progress(task_id, request.progress, identity.user_id)
    except TaskhiveError as e:
        raise to_http_error(e)
    return task.to_dict()


@router.post("/tasks/{task_id}/move")
async def move_task(
    task_id: int,
    request: MoveTaskRequest,
    identity: Identity = Depends(get_identity),
    service: TaskhiveService = Depends(get_service),
) -> Dict[str, Any]:
    try:
        task = await service.move_task(task_id, request.project_id, identity.user_id, identity.roles)
    except TaskhiveError as e:
        raise to_http_error(e)
    return task.to_dict()


@router.delete("/tasks/{task_id}")
async def delete_task(
    task_id: int,
    identity: Identity = Depends(get_identity),
    service: TaskhiveService = Depends(get_service),
) -> Dict[str, Any]:
    try:
        task = await service.get_task(task_id)
        project = await service.get_project(task.project_id)
        _require_owner_or_admin(project.user_id, identity, "delete this task")
        return await service.delete_task(task_id)
    except TaskhiveError as e:
        raise to_http_error(e)


# -----------------------------------------------------------------------------
# Reviews
# -----------------------------------------------------------------------------
@router.post("/tasks/{task_id}/reviews", status_code=201)
async def append_review_feedback(
    task_id: int,
    request: ReviewFeedbackRequest,
    identity: Identity = Depends(get_identity),
    service: TaskhiveService = Depends(get_service),
) -> Dict[str, Any]:
    try:
        record = await service.append_review_feedback(
            task_id,
            request.action,
            request.notes,
            change_details=request.change_details,
            actor_id=identity.user_id,
        )
        review = await service.derive_task_review(task_id)
    except TaskhiveError as e:
        raise to_http_error(e)
    return {"record": record.to_dict(), "review": review.to_dict()}


@router.get("/tasks/{task_id}/review")
async def get_task_review(task_id: int, service: TaskhiveService = Depends(get_service)) -> Dict[str, Any]:
    try:
        review = await service.derive_task_review(task_id)
    except TaskhiveError as e:
        raise to_http_error(e)
    return review.to_dict()


@router.get("/projects/{project_id}/reviews")
async def list_project_reviews(project_id: int, service: TaskhiveService = Depends(get_service)) -> Dict[str, Any]:
    try:
        pairs = await service.list_project_reviews(project_id)
    except TaskhiveError as e:
        raise to_http_error(e)
    return {
        "project_id": project_id,
        "tasks": [{"task": task.to_dict(), "review": review.to_dict()} for task, review in pairs],
        "summary": review_summary(pairs),
    }


# -----------------------------------------------------------------------------
# Approval
# -----------------------------------------------------------------------------
@router.get("/projects/{project_id}/approval")
async def get_project_approval(project_id: int, service: TaskhiveService = Depends(get_service)) -> Dict[str, Any]:
    try:
        can_approve = await service.can_approve_project(project_id)
    except TaskhiveError as e:
        raise to_http_error(e)
    return {"project_id": project_id, "can_approve": can_approve, "disabled": not can_approve}


@router.post("/projects/{project_id}/approve")
async def approve_project(
    project_id: int,
    identity: Identity = Depends(get_identity),
    service: TaskhiveService = Depends(get_service),
) -> Dict[str, Any]:
    try:
        outcome = await service.approve_project(project_id, identity.user_id, identity.name)
    except TaskhiveError as e:
        raise to_http_error(e)
    return outcome.to_dict()


# -----------------------------------------------------------------------------
# Changelog
# -----------------------------------------------------------------------------
@router.get("/changelogs")
async def list_changelogs(
    task_id: Optional[int] = Query(None),
    project_id: Optional[int] = Query(None),
    user_id: Optional[int] = Query(None),
    service: TaskhiveService = Depends(get_service),
) -> Dict[str, Any]:
    records = await service.list_changelogs(task_id=task_id, project_id=project_id, user_id=user_id)
    return {"records": [r.to_dict() for r in records], "total": len(records)}
