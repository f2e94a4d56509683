"""
Project Entity

Owns a project's identity, status and archival flag, plus the rules for
completion and deletion.

HARD RULES:
- archived == True forces status == Archived
- a project may only be deleted while archived or in Todo
- complete() is rejected for an archived project
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime, time, timezone
from typing import Any, Dict, Optional

from .errors import InvalidTransitionError, ValidationError
from .status import ProjectPriority, ProjectStatus
from .timeutil import isoformat, parse_datetime, utcnow

logger = logging.getLogger("project_model")

MAX_NAME_LENGTH = 200
MAX_DESCRIPTION_LENGTH = 1000

# Statuses only their dedicated operation may set
RESERVED_STATUSES = {
    ProjectStatus.COMPLETED: "Projects are completed by approving them",
    ProjectStatus.ARCHIVED: "Use archive to archive a project",
}


def validate_name(name: Any) -> str:
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("name", "Project name is required")
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError("name", f"Project name cannot exceed {MAX_NAME_LENGTH} characters")
    return name.strip()


def validate_description(description: Any) -> Optional[str]:
    if description is None:
        return None
    if not isinstance(description, str):
        raise ValidationError("description", "Project description must be text")
    if len(description) > MAX_DESCRIPTION_LENGTH:
        raise ValidationError(
            "description", f"Project description cannot exceed {MAX_DESCRIPTION_LENGTH} characters"
        )
    return description.strip() or None


def validate_due_date(value: Any, now: Optional[datetime] = None) -> Optional[datetime]:
    """Parse a due date and reject one that falls before today (UTC)."""
    due_date = parse_datetime(value, "due_date")
    if due_date is None:
        return None
    today = datetime.combine((now or utcnow()).date(), time.min, tzinfo=timezone.utc)
    if due_date < today:
        raise ValidationError("due_date", "Due date cannot be in the past")
    return due_date


def validate_priority(priority: Any) -> ProjectPriority:
    try:
        return ProjectPriority(priority)
    except ValueError:
        valid = ", ".join(p.value for p in ProjectPriority)
        raise ValidationError("priority", f"Invalid priority. Valid options are: {valid}")


def validate_status(status: Any) -> ProjectStatus:
    try:
        return ProjectStatus(status)
    except ValueError:
        valid = ", ".join(s.value for s in ProjectStatus)
        raise ValidationError("status", f"Invalid status. Valid options are: {valid}")


@dataclass
class Project:
    """A project owned by one user, grouping tasks."""
    id: Optional[int]
    name: str
    user_id: int
    description: Optional[str] = None
    status: ProjectStatus = ProjectStatus.TODO
    priority: ProjectPriority = ProjectPriority.MEDIUM
    archived: bool = False
    archived_at: Optional[datetime] = None
    due_date: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def create(cls, data: Dict[str, Any], owner_id: int) -> "Project":
        """Validate input and build a new project in Todo."""
        name = validate_name(data.get("name"))
        description = validate_description(data.get("description"))
        due_date = validate_due_date(data.get("due_date"))
        priority = validate_priority(data["priority"]) if data.get("priority") else ProjectPriority.MEDIUM

        now = utcnow()
        return cls(
            id=None,
            name=name,
            user_id=owner_id,
            description=description,
            status=ProjectStatus.TODO,
            priority=priority,
            due_date=due_date,
            created_at=now,
            updated_at=now,
        )

    def update(self, data: Dict[str, Any]) -> None:
        """
        Partial update.

        Flipping `archived` to True forces status Archived; flipping it back
        behaves like unarchive(). Completed is reached only through
        project approval and Archived only through archive(), so neither
        can be set here.
        """
        status = validate_status(data["status"]) if "status" in data else None
        archiving = status == ProjectStatus.ARCHIVED and bool(data.get("archived"))
        if status in RESERVED_STATUSES and status != self.status and not archiving:
            raise InvalidTransitionError(
                entity="project",
                from_status=self.status.value,
                to_status=status.value,
                message=RESERVED_STATUSES[status],
            )

        if "name" in data:
            self.name = validate_name(data["name"])
        if "description" in data:
            self.description = validate_description(data["description"])
        if "due_date" in data:
            self.due_date = validate_due_date(data["due_date"])
        if "priority" in data:
            self.priority = validate_priority(data["priority"])
        if status is not None:
            self.status = status

        if "archived" in data:
            if data["archived"]:
                self.archive()
            elif self.archived:
                self.unarchive()
        elif self.archived:
            self.status = ProjectStatus.ARCHIVED

        self.updated_at = utcnow()

    def archive(self) -> None:
        self.archived = True
        self.archived_at = utcnow()
        self.status = ProjectStatus.ARCHIVED
        self.updated_at = self.archived_at
        logger.debug(f"Project {self.id} archived")

    def unarchive(self) -> None:
        self.archived = False
        self.archived_at = None
        if self.status == ProjectStatus.ARCHIVED:
            self.status = ProjectStatus.TODO
        self.updated_at = utcnow()

    def complete(self) -> bool:
        """
        Mark the project Completed.

        Returns False if it already was. Raises for an archived project.
        """
        if self.status == ProjectStatus.ARCHIVED or self.archived:
            raise InvalidTransitionError(
                entity="project",
                from_status=self.status.value,
                to_status=ProjectStatus.COMPLETED.value,
                message="Cannot complete an archived project",
            )
        if self.status == ProjectStatus.COMPLETED:
            return False
        self.status = ProjectStatus.COMPLETED
        self.updated_at = utcnow()
        logger.info(f"Project {self.id} completed")
        return True

    def can_be_deleted(self) -> bool:
        return self.archived or self.status in ProjectStatus.deletable_states()

    def is_overdue(self, now: Optional[datetime] = None) -> bool:
        if not self.due_date or self.status == ProjectStatus.COMPLETED:
            return False
        return self.due_date < (now or utcnow())

    def days_until_due(self, now: Optional[datetime] = None) -> Optional[int]:
        if not self.due_date:
            return None
        delta = self.due_date - (now or utcnow())
        return math.ceil(delta.total_seconds() / 86400)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "user_id": self.user_id,
            "description": self.description,
            "status": self.status.value,
            "priority": self.priority.value,
            "archived": self.archived,
            "archived_at": isoformat(self.archived_at),
            "due_date": isoformat(self.due_date),
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Project":
        """Rebuild from stored data. Unknown status/priority fall back to defaults."""
        try:
            status = ProjectStatus(data.get("status") or ProjectStatus.TODO.value)
        except ValueError:
            status = ProjectStatus.TODO
        try:
            priority = ProjectPriority(data.get("priority") or ProjectPriority.MEDIUM.value)
        except ValueError:
            priority = ProjectPriority.MEDIUM

        archived = bool(data.get("archived", False))
        return cls(
            id=data.get("id"),
            name=data["name"],
            user_id=data["user_id"],
            description=data.get("description"),
            status=ProjectStatus.ARCHIVED if archived else status,
            priority=priority,
            archived=archived,
            archived_at=parse_datetime(data.get("archived_at"), "archived_at"),
            due_date=parse_datetime(data.get("due_date"), "due_date"),
            created_at=parse_datetime(data.get("created_at"), "created_at"),
            updated_at=parse_datetime(data.get("updated_at"), "updated_at"),
        )
