"""
Task Entity

Owns a task's identity, status, priority and progress, and enforces the
status transition table together with progress/status co-variance.

Transitions (directed, from -> allowed targets):
    Todo        -> In Progress
    In Progress -> Done, Todo
    Done        -> Todo (reopen)

Requesting the status a task already has is a no-op, not an error.

Invariants held after every mutation:
    status == Done        <=> progress == 100
    status == Todo         => progress == 0
    0 < progress < 100     => status == In Progress
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from .errors import InvalidTransitionError, ValidationError
from .status import TaskPriority, TaskStatus
from .timeutil import isoformat, parse_datetime, utcnow

logger = logging.getLogger("task_model")

# -----------------------------------------------------------------------------
# Limits
# -----------------------------------------------------------------------------
MAX_NAME_LENGTH = 200
MAX_CONTENTS_LENGTH = 5000
MAX_ASSIGNEE_LENGTH = 100

# -----------------------------------------------------------------------------
# Transition Rules
# -----------------------------------------------------------------------------
VALID_TRANSITIONS: Dict[TaskStatus, List[TaskStatus]] = {
    TaskStatus.TODO: [TaskStatus.IN_PROGRESS],
    TaskStatus.IN_PROGRESS: [TaskStatus.DONE, TaskStatus.TODO],
    TaskStatus.DONE: [TaskStatus.TODO],  # Reopen
}


def can_transition(current: TaskStatus, target: TaskStatus) -> bool:
    """Check if a status transition is listed in the table."""
    return target in VALID_TRANSITIONS.get(current, [])


# -----------------------------------------------------------------------------
# Field Validation
# -----------------------------------------------------------------------------
def validate_name(name: Any) -> str:
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("name", "Task name is required")
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError("name", f"Task name cannot exceed {MAX_NAME_LENGTH} characters")
    return name.strip()


def validate_contents(contents: Any) -> Optional[str]:
    if contents is None:
        return None
    if not isinstance(contents, str):
        raise ValidationError("contents", "Task contents must be text")
    if len(contents) > MAX_CONTENTS_LENGTH:
        raise ValidationError("contents", f"Task contents cannot exceed {MAX_CONTENTS_LENGTH} characters")
    return contents.strip()


def validate_assignee(assignee: Any) -> Optional[str]:
    if assignee is None:
        return None
    if not isinstance(assignee, str) or not assignee.strip():
        raise ValidationError("assignee", "Assignee cannot be empty string")
    if len(assignee) > MAX_ASSIGNEE_LENGTH:
        raise ValidationError("assignee", f"Assignee name cannot exceed {MAX_ASSIGNEE_LENGTH} characters")
    return assignee.strip()


def validate_progress(progress: Any) -> int:
    # bool is an int subclass; True is not a progress value
    if isinstance(progress, bool) or not isinstance(progress, int):
        raise ValidationError("progress", "Progress must be an integer")
    if progress < 0 or progress > 100:
        raise ValidationError("progress", "Progress must be between 0 and 100")
    return progress


def validate_priority(priority: Any) -> TaskPriority:
    try:
        return TaskPriority(priority)
    except ValueError:
        valid = ", ".join(p.value for p in TaskPriority)
        raise ValidationError("priority", f"Invalid priority. Valid options are: {valid}")


def validate_status(status: Any) -> TaskStatus:
    parsed = TaskStatus.parse(status) if isinstance(status, str) else None
    if parsed is None:
        valid = ", ".join(s.value for s in TaskStatus)
        raise ValidationError("status", f"Invalid status. Valid options are: {valid}")
    return parsed


# -----------------------------------------------------------------------------
# Task
# -----------------------------------------------------------------------------
@dataclass
class Task:
    """
    A unit of work belonging to one project.

    Mutate only through change_status(), update_progress() and update();
    direct assignment to status or progress bypasses the invariants.
    """
    id: Optional[int]
    name: str
    project_id: int
    status: TaskStatus = TaskStatus.TODO
    priority: TaskPriority = TaskPriority.MEDIUM
    progress: int = 0
    contents: Optional[str] = None
    assignee: Optional[str] = None
    due_date: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def create(cls, data: Dict[str, Any], project_id: int) -> "Task":
        """
        Validate input and build a new task in Todo with progress 0.

        Recognised keys: name, contents, priority, assignee, due_date.
        """
        name = validate_name(data.get("name"))
        contents = validate_contents(data.get("contents"))
        assignee = validate_assignee(data.get("assignee"))
        due_date = parse_datetime(data.get("due_date"), "due_date")
        priority = validate_priority(data["priority"]) if data.get("priority") else TaskPriority.MEDIUM

        now = utcnow()
        return cls(
            id=None,
            name=name,
            project_id=project_id,
            status=TaskStatus.TODO,
            priority=priority,
            progress=0,
            contents=contents,
            assignee=assignee,
            due_date=due_date,
            created_at=now,
            updated_at=now,
        )

    # -------------------------------------------------------------------------
    # Status / Progress
    # -------------------------------------------------------------------------

    def valid_transitions(self) -> List[TaskStatus]:
        return list(VALID_TRANSITIONS.get(self.status, []))

    def change_status(self, new_status: TaskStatus) -> bool:
        """
        Move to `new_status` if the transition table allows it.

        Done sets progress to 100, Todo resets it to 0, In Progress leaves it.
        Returns False when the task is already in `new_status` (no-op).
        """
        new_status = validate_status(new_status)
        if new_status == self.status:
            return False

        if not can_transition(self.status, new_status):
            raise InvalidTransitionError(
                entity="task",
                from_status=self.status.value,
                to_status=new_status.value,
                message=(
                    f"Cannot transition from {self.status.value} to {new_status.value}. "
                    f"Valid targets: {[s.value for s in self.valid_transitions()]}"
                ),
            )

        logger.debug(f"Task {self.id}: {self.status.value} -> {new_status.value}")
        self.status = new_status
        if new_status == TaskStatus.DONE:
            self.progress = 100
        elif new_status == TaskStatus.TODO:
            self.progress = 0
        self.updated_at = utcnow()
        return True

    def update_progress(self, progress: int) -> bool:
        """
        Set progress and bring status in line with it.

        100 means Done, 0 means Todo, anything in between means In Progress.
        Returns True if the status changed as a side effect.
        """
        progress = validate_progress(progress)
        previous_status = self.status

        self.progress = progress
        if progress == 100:
            self.status = TaskStatus.DONE
        elif progress == 0:
            self.status = TaskStatus.TODO
        else:
            # Covers Todo -> In Progress and a partially reopened Done task
            self.status = TaskStatus.IN_PROGRESS
        self.updated_at = utcnow()
        return self.status != previous_status

    # -------------------------------------------------------------------------
    # Field Updates
    # -------------------------------------------------------------------------

    def update(self, data: Dict[str, Any]) -> None:
        """Partial update of descriptive fields. Status and progress are excluded."""
        if "status" in data or "progress" in data:
            raise ValidationError(
                "status" if "status" in data else "progress",
                "Status and progress change only through their dedicated operations",
            )

        if "name" in data:
            self.name = validate_name(data["name"])
        if "contents" in data:
            self.contents = validate_contents(data["contents"])
        if "priority" in data:
            self.priority = validate_priority(data["priority"])
        if "assignee" in data:
            self.assignee = validate_assignee(data["assignee"])
        if "due_date" in data:
            self.due_date = parse_datetime(data["due_date"], "due_date")
        self.updated_at = utcnow()

    def move_to(self, project_id: int) -> None:
        """Reassign the task to another project. Status and progress are kept."""
        logger.debug(f"Task {self.id}: project {self.project_id} -> {project_id}")
        self.project_id = project_id
        self.updated_at = utcnow()

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def is_overdue(self, now: Optional[datetime] = None) -> bool:
        if not self.due_date:
            return False
        return self.due_date < (now or utcnow()) and self.status != TaskStatus.DONE

    def days_until_due(self, now: Optional[datetime] = None) -> Optional[int]:
        if not self.due_date:
            return None
        delta = self.due_date - (now or utcnow())
        return math.ceil(delta.total_seconds() / 86400)

    # -------------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "project_id": self.project_id,
            "status": self.status.value,
            "priority": self.priority.value,
            "progress": self.progress,
            "contents": self.contents,
            "assignee": self.assignee,
            "due_date": isoformat(self.due_date),
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        status = TaskStatus.parse(data.get("status", "")) or TaskStatus.TODO
        try:
            priority = TaskPriority(data.get("priority") or TaskPriority.MEDIUM.value)
        except ValueError:
            priority = TaskPriority.MEDIUM
        return cls(
            id=data.get("id"),
            name=data["name"],
            project_id=data["project_id"],
            status=status,
            priority=priority,
            progress=data.get("progress", 0),
            contents=data.get("contents"),
            assignee=data.get("assignee"),
            due_date=parse_datetime(data.get("due_date"), "due_date"),
            created_at=parse_datetime(data.get("created_at"), "created_at"),
            updated_at=parse_datetime(data.get("updated_at"), "updated_at"),
        )
