"""
Review Derivation Engine

Replays a task's changelog to compute its current review state. Nothing
here is stored: the changelog is the only source of truth and every read
re-derives.

DETERMINISTIC: derive_review() is a pure function of the *set* of records;
input order does not matter because records are sorted by
(created_at, sequence) before use.

TOLERANT: malformed or unknown historical values never raise; they classify
as pending (status) / approve (history action).

Classification of the latest record's new_status (lower-cased, trimmed):
    contains "request"          -> changes_requested / request_changes
    contains "hold"             -> on_hold / hold_discussion
    "completed" or "done"       -> approved only with explicit approval text
                                   ("review approved" or "approved:"),
                                   otherwise a plain completion -> pending
    anything else               -> pending
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .changelog_store import ChangeLogRecord
from .remark_parser import parse_remark
from .status import ReviewAction, ReviewStatus
from .timeutil import isoformat

logger = logging.getLogger("review_engine")

APPROVAL_MARKERS = ("review approved", "approved:")
COMPLETION_STATUSES = ("completed", "done")

# Prefixes the reviewer workflow prepends to notes in the description
_NOTE_PREFIX = re.compile(r"^\s*(review approved:|feedback:|held for discussion:)\s*", re.IGNORECASE)


# -----------------------------------------------------------------------------
# Derived Types
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class ReviewNote:
    """One changelog record seen as a review history entry."""
    record_id: Optional[str]
    task_id: int
    reviewer_id: Optional[int]
    action: ReviewAction
    notes: str
    change_details: Optional[str]
    timestamp: Optional[datetime]
    new_status: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "record_id": self.record_id,
            "task_id": self.task_id,
            "reviewer_id": self.reviewer_id,
            "action": self.action.value,
            "notes": self.notes,
            "change_details": self.change_details,
            "timestamp": isoformat(self.timestamp),
            "new_status": self.new_status,
        }


@dataclass(frozen=True)
class ReviewInfo:
    """Derived review state of one task."""
    task_id: Optional[int]
    review_status: ReviewStatus
    needs_review: bool
    last_action: Optional[ReviewAction] = None
    history: Tuple[ReviewNote, ...] = field(default_factory=tuple)

    @property
    def latest(self) -> Optional[ReviewNote]:
        return self.history[-1] if self.history else None

    @property
    def latest_notes(self) -> Optional[str]:
        return self.latest.notes if self.latest else None

    @property
    def latest_change_details(self) -> Optional[str]:
        return self.latest.change_details if self.latest else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "review_status": self.review_status.value,
            "needs_review": self.needs_review,
            "last_action": self.last_action.value if self.last_action else None,
            "latest_notes": self.latest_notes,
            "latest_change_details": self.latest_change_details,
            "history": [note.to_dict() for note in self.history],
        }


# -----------------------------------------------------------------------------
# Classification
# -----------------------------------------------------------------------------
def _normalize(value: Any) -> str:
    return value.strip().lower() if isinstance(value, str) else ""


def _signals_approval(description: Any, remark: Any = None) -> bool:
    text = f"{_normalize(description)} {_normalize(remark)}"
    return any(marker in text for marker in APPROVAL_MARKERS)


def classify(
    new_status: Optional[str],
    description: Optional[str] = None,
    remark: Optional[str] = None,
) -> Tuple[ReviewStatus, Optional[ReviewAction], bool]:
    """
    Classify one record as a review decision.

    Returns (review_status, last_action, needs_review). last_action is None
    when the record is not a review decision.
    """
    status = _normalize(new_status)

    if "request" in status:
        return ReviewStatus.CHANGES_REQUESTED, ReviewAction.REQUEST_CHANGES, True
    if "hold" in status:
        return ReviewStatus.ON_HOLD, ReviewAction.HOLD_DISCUSSION, True
    if status in COMPLETION_STATUSES and _signals_approval(description, remark):
        return ReviewStatus.APPROVED, ReviewAction.APPROVE, False
    return ReviewStatus.PENDING, None, True


def classify_action(new_status: Optional[str]) -> ReviewAction:
    """History annotation for a record; anything unrecognised reads as approve."""
    status = _normalize(new_status)
    if "request" in status:
        return ReviewAction.REQUEST_CHANGES
    if "hold" in status:
        return ReviewAction.HOLD_DISCUSSION
    return ReviewAction.APPROVE


def _strip_note_prefix(notes: str) -> str:
    return _NOTE_PREFIX.sub("", notes, count=1).strip()


def to_review_note(record: ChangeLogRecord) -> ReviewNote:
    parsed = parse_remark(record.remark, record.description)
    return ReviewNote(
        record_id=record.id,
        task_id=record.task_id or 0,
        reviewer_id=record.user_id,
        action=classify_action(record.new_status),
        notes=_strip_note_prefix(parsed.notes),
        change_details=parsed.change_details,
        timestamp=record.created_at,
        new_status=record.new_status,
    )


# -----------------------------------------------------------------------------
# Derivation
# -----------------------------------------------------------------------------
def order_records(records: Iterable[ChangeLogRecord]) -> List[ChangeLogRecord]:
    """Oldest first, by created_at then insertion order."""
    return sorted(records, key=ChangeLogRecord.sort_key)


def derive_review(records: Iterable[ChangeLogRecord], task_id: Optional[int] = None) -> ReviewInfo:
    """
    Compute a task's review state from its full changelog.

    An empty changelog is pending and still needs review; callers decide
    whether derivation is meaningful for a task that never reached Done.
    """
    ordered = order_records(records)
    if not ordered:
        return ReviewInfo(task_id=task_id, review_status=ReviewStatus.PENDING, needs_review=True)

    latest = ordered[-1]
    review_status, last_action, needs_review = classify(
        latest.new_status, latest.description, latest.remark
    )
    if latest.created_at is None:
        logger.debug(f"Record {latest.id} has no created_at; ordered by sequence only")

    history = tuple(to_review_note(record) for record in ordered)
    return ReviewInfo(
        task_id=task_id if task_id is not None else latest.task_id,
        review_status=review_status,
        needs_review=needs_review,
        last_action=last_action,
        history=history,
    )


def summarize_reviews(reviews: Iterable[ReviewInfo]) -> Dict[str, int]:
    """Count tasks per review status."""
    counts = {status.value: 0 for status in ReviewStatus}
    total = 0
    for review in reviews:
        counts[review.review_status.value] += 1
        total += 1
    counts["total"] = total
    return counts
