"""
Error kinds raised by the review core.

Every error carries a stable code, a message and structured details so the
HTTP layer (or any other caller) can report it without string matching.
"""

from typing import Any, Dict, List, Optional


class TaskhiveError(Exception):
    """Base error with structured details."""
    def __init__(self, code: str, message: str, details: Dict[str, Any] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": True,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(TaskhiveError):
    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(
            code="VALIDATION_FAILED",
            message=message,
            details={"field": field}
        )


class InvalidTransitionError(TaskhiveError):
    def __init__(self, entity: str, from_status: str, to_status: str, message: Optional[str] = None):
        super().__init__(
            code="INVALID_TRANSITION",
            message=message or f"Cannot transition {entity} from {from_status} to {to_status}",
            details={"entity": entity, "from_status": from_status, "to_status": to_status}
        )


class NotFoundError(TaskhiveError):
    def __init__(self, entity: str, entity_id: Any):
        super().__init__(
            code="NOT_FOUND",
            message=f"{entity.capitalize()} '{entity_id}' not found",
            details={"entity": entity, "id": entity_id}
        )


class ApprovalPreconditionError(TaskhiveError):
    """Project approval attempted while a task is unapproved (or there are none)."""
    def __init__(self, project_id: int, blocking_task_ids: List[int]):
        if blocking_task_ids:
            message = f"Project '{project_id}' has {len(blocking_task_ids)} task(s) not yet approved"
        else:
            message = f"Project '{project_id}' has no tasks to approve"
        super().__init__(
            code="APPROVAL_PRECONDITION_FAILED",
            message=message,
            details={"project_id": project_id, "blocking_task_ids": blocking_task_ids}
        )


class ApprovalStepError(TaskhiveError):
    """A step of the approval sequence failed; retrying the whole sequence is safe."""
    def __init__(self, step: str, project_id: int, cause: Exception):
        self.step = step
        super().__init__(
            code="APPROVAL_STEP_FAILED",
            message=f"Approval of project '{project_id}' failed at step '{step}': {cause}",
            details={"step": step, "project_id": project_id, "cause": str(cause)}
        )


class InconsistentStateError(TaskhiveError):
    """Completion record written but the project status could not be saved."""
    def __init__(self, project_id: int, record_id: str, cause: Exception):
        super().__init__(
            code="INCONSISTENT_STATE",
            message=(
                f"Project '{project_id}' has completion record '{record_id}' "
                f"but its status could not be updated: {cause}"
            ),
            details={
                "project_id": project_id,
                "record_id": record_id,
                "step": "complete_project",
                "cause": str(cause),
            }
        )


class StoreError(TaskhiveError):
    def __init__(self, operation: str, cause: Exception):
        super().__init__(
            code="STORE_FAILED",
            message=f"Store operation '{operation}' failed: {cause}",
            details={"operation": operation, "cause": str(cause)}
        )


class PermissionDeniedError(TaskhiveError):
    """Actor is neither the owner of the affected project nor an admin."""
    def __init__(self, action: str, message: str):
        super().__init__(
            code="FORBIDDEN",
            message=message,
            details={"action": action}
        )
