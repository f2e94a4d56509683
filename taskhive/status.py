"""
Status Value Types

Enumerations shared by the task and project entities, the changelog and the
review engine. Values are the human-readable strings persisted in records.
"""

from enum import Enum
from typing import Optional, Set


class TaskStatus(str, Enum):
    """Task lifecycle status."""
    TODO = "Todo"
    IN_PROGRESS = "In Progress"
    DONE = "Done"

    @classmethod
    def parse(cls, value: str) -> Optional["TaskStatus"]:
        """Match a status by value, case-insensitively. None if unknown."""
        if isinstance(value, cls):
            return value
        normalized = (value or "").strip().lower()
        for status in cls:
            if status.value.lower() == normalized:
                return status
        # Historical records use "Completed" for finished tasks
        if normalized == "completed":
            return cls.DONE
        return None


class TaskPriority(str, Enum):
    """Task priority."""
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


class ProjectStatus(str, Enum):
    """Project lifecycle status."""
    TODO = "Todo"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    ON_HOLD = "On Hold"
    ARCHIVED = "Archived"

    @classmethod
    def deletable_states(cls) -> Set["ProjectStatus"]:
        """States in which a non-archived project may be deleted."""
        return {cls.TODO}


class ProjectPriority(str, Enum):
    """Project priority."""
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


class ReviewAction(str, Enum):
    """Reviewer decision recorded against a task."""
    APPROVE = "approve"
    REQUEST_CHANGES = "request_changes"
    HOLD_DISCUSSION = "hold_discussion"


class ReviewStatus(str, Enum):
    """Derived review state of a task. Never stored."""
    PENDING = "pending"
    APPROVED = "approved"
    CHANGES_REQUESTED = "changes_requested"
    ON_HOLD = "on_hold"


# new_status strings written for each review action
REVIEW_ACTION_STATUS = {
    ReviewAction.APPROVE: "Completed",
    ReviewAction.REQUEST_CHANGES: "Request Changes",
    ReviewAction.HOLD_DISCUSSION: "On Hold",
}
